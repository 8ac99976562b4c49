# File: eldastat/reader.py
# Location: eldastat/eldastat/reader.py
"""
Delimited-file reader for limiting dilution data.

Reads a table with one row per (group, dose) and returns a validated
Dataset. Both the engine's column names (dose, responded, tested, group)
and the classic ELDA names (cells, positive, tested, group) are accepted.
"""

from __future__ import annotations

import csv
import logging
import os

import pandas as pd

from eldastat.elda.base import REQUIRED_COLUMNS, Dataset
from eldastat.elda.errors import InputValidationError

logger = logging.getLogger("eldastat")

COLUMN_ALIASES = {
    "cells": "dose",
    "positive": "responded",
    "response": "responded",
}


def _detect_separator(filepath: str) -> str:
    """Delimiter from the file extension (.tsv/.tab -> tab, .csv -> comma), else sniffed."""
    ext = os.path.splitext(filepath)[1].lower()
    if ext in (".tsv", ".tab"):
        return "\t"
    if ext == ".csv":
        return ","
    with open(filepath, encoding="utf-8") as fh:
        sample_text = fh.read(2048)
    try:
        return csv.Sniffer().sniff(sample_text, delimiters="\t,;").delimiter
    except csv.Error:
        return "\t"


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Lower-case column names and map ELDA aliases onto engine names."""
    renamed = {}
    for col in df.columns:
        key = str(col).strip().lower()
        renamed[col] = COLUMN_ALIASES.get(key, key)
    df = df.rename(columns=renamed)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise InputValidationError(
            f"Input table is missing required column(s): {', '.join(missing)}. "
            f"Available columns: {list(df.columns)}",
            invariant="required columns present",
        )
    return df


def load_dilution_table(filepath: str) -> Dataset:
    """
    Load a limiting dilution table into a Dataset.

    Parameters
    ----------
    filepath : str
        Path to a delimited file with a header row.

    Returns
    -------
    Dataset

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    InputValidationError
        If the file is empty, lacks required columns or a row violates a
        dataset invariant.
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Input file not found: {filepath}")
    if os.path.getsize(filepath) == 0:
        raise InputValidationError(f"Input file {filepath} is empty.", invariant="non-empty input")

    sep = _detect_separator(filepath)
    df = pd.read_csv(filepath, sep=sep, dtype={"group": str})
    df = normalize_columns(df)
    if df.empty:
        raise InputValidationError(
            f"Input file {filepath} contains only a header and no data.",
            invariant="non-empty input",
        )

    dataset = Dataset.from_dataframe(df)
    logger.info(
        f"Loaded {len(dataset)} rows in {len(dataset.groups)} group(s) from {filepath}"
    )
    return dataset
