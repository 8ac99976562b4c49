# File: eldastat/setup.py
# Location: eldastat/eldastat/setup.py
"""
Setup script for eldastat.

This file configures how the package is built, installed, and what
dependencies are required.
"""

import os
from setuptools import setup, find_packages

# Load version from version.py without importing the module
version = {}
with open(os.path.join("eldastat", "version.py")) as f:
    exec(f.read(), version)

# Read the README for the long description
this_dir = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_dir, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="eldastat",
    version=version["__version__"],
    description="Extreme limiting dilution analysis: stem cell frequency estimation and tests.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["eldastat", "eldastat.*"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy",
        "pandas",
        "scipy",
        "statsmodels",
    ],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["eldastat=eldastat.cli:main"]},
    include_package_data=True,
    package_data={"eldastat": ["config.json"]},
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
    ],
)
