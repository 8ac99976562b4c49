# File: eldastat/__init__.py
# Location: eldastat/eldastat/__init__.py

"""
eldastat Package.

This package estimates the frequency of rare responding units (e.g. stem
cells) from limiting dilution assays and compares those frequencies
between experimental groups.
"""

from .version import __version__
