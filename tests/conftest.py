"""Shared pytest fixtures for all test modules."""

from pathlib import Path
from typing import Any, Dict, List

import pandas as pd
import pytest

from eldastat.elda import Dataset

DOSES = [50, 40, 30, 20, 10]


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast unit tests")
    config.addinivalue_line("markers", "slow: long-running statistical tests")


def _records(group: str, responded: List[int], tested: int = 10) -> List[Dict[str, Any]]:
    return [
        {"dose": d, "responded": r, "tested": tested, "group": group}
        for d, r in zip(DOSES, responded)
    ]


@pytest.fixture
def ab_records() -> List[Dict[str, Any]]:
    """Two clearly different groups: A responds far more often than B."""
    return _records("A", [10, 10, 10, 8, 6]) + _records("B", [4, 3, 1, 0, 0])


@pytest.fixture
def ab_dataset(ab_records) -> Dataset:
    return Dataset.from_records(ab_records)


@pytest.fixture
def three_group_records() -> List[Dict[str, Any]]:
    """Mock, irradiated + inhibitor and irradiated + vehicle sphere-formation assay."""
    return (
        _records("GSC8-11_mock_DMSOctrl", [10, 10, 10, 10, 8])
        + _records("GSC8-11_2Gyx3_ICM2.5uM", [4, 3, 1, 0, 0])
        + _records("GSC8-11_2Gyx3_DMSOctrl", [6, 7, 0, 4, 1])
    )


@pytest.fixture
def three_group_dataset(three_group_records) -> Dataset:
    return Dataset.from_records(three_group_records)


@pytest.fixture
def single_group_dataset() -> Dataset:
    return Dataset.from_records(_records("A", [9, 7, 6, 4, 2]))


@pytest.fixture
def full_response_dataset() -> Dataset:
    """Group 'all' responds in every well at every dose."""
    return Dataset.from_records(
        _records("all", [10, 10, 10, 10, 10]) + _records("some", [7, 6, 4, 3, 1])
    )


@pytest.fixture
def zero_response_dataset() -> Dataset:
    """Group 'none' responds in no well at any dose."""
    return Dataset.from_records(
        _records("none", [0, 0, 0, 0, 0]) + _records("some", [7, 6, 4, 3, 1])
    )


@pytest.fixture
def three_group_frame(three_group_records) -> pd.DataFrame:
    """Three-group data with the classic ELDA column names."""
    df = pd.DataFrame(three_group_records)
    return df.rename(columns={"dose": "cells", "responded": "positive"})


@pytest.fixture
def write_table(tmp_path):
    """Factory writing a DataFrame to a delimited file under tmp_path."""

    def _write(df: pd.DataFrame, name: str = "elda.tsv", sep: str = "\t") -> Path:
        path = tmp_path / name
        df.to_csv(path, sep=sep, index=False)
        return path

    return _write
