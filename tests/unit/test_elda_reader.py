"""Unit tests for the delimited dilution-table reader."""

from __future__ import annotations

import pandas as pd
import pytest

from eldastat.elda.errors import InputValidationError
from eldastat.reader import _detect_separator, load_dilution_table, normalize_columns


@pytest.mark.unit
class TestDetectSeparator:
    @pytest.mark.parametrize(
        "name, expected", [("x.tsv", "\t"), ("x.tab", "\t"), ("x.csv", ",")]
    )
    def test_by_extension(self, tmp_path, name, expected):
        path = tmp_path / name
        path.write_text("dose;responded\n1;2\n")
        assert _detect_separator(str(path)) == expected

    def test_sniffed_for_txt(self, tmp_path):
        path = tmp_path / "data.txt"
        path.write_text("cells,positive,tested,group\n10,1,5,A\n20,3,5,A\n")
        assert _detect_separator(str(path)) == ","


@pytest.mark.unit
class TestNormalizeColumns:
    def test_classic_names_mapped(self, three_group_frame):
        df = normalize_columns(three_group_frame)
        assert {"dose", "responded", "tested", "group"} <= set(df.columns)

    def test_case_and_whitespace_ignored(self):
        df = pd.DataFrame(columns=[" Cells", "POSITIVE ", "Tested", "Group"])
        assert list(normalize_columns(df).columns) == ["dose", "responded", "tested", "group"]

    def test_missing_column_reported(self):
        df = pd.DataFrame(columns=["cells", "positive", "group"])
        with pytest.raises(InputValidationError, match="tested"):
            normalize_columns(df)


@pytest.mark.unit
class TestLoadDilutionTable:
    def test_tsv_with_classic_names(self, three_group_frame, write_table):
        path = write_table(three_group_frame, "elda.tsv")
        dataset = load_dilution_table(str(path))
        assert len(dataset) == 15
        assert dataset.groups[0] == "GSC8-11_mock_DMSOctrl"

    def test_csv(self, ab_records, write_table):
        path = write_table(pd.DataFrame(ab_records), "elda.csv", sep=",")
        dataset = load_dilution_table(str(path))
        assert dataset.groups == ("A", "B")
        assert dataset.responded.sum() == 52

    def test_numeric_group_labels_kept_as_text(self, write_table):
        df = pd.DataFrame(
            {"cells": [10, 20], "positive": [1, 2], "tested": [5, 5], "group": ["01", "01"]}
        )
        dataset = load_dilution_table(str(write_table(df)))
        assert dataset.groups == ("01",)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_dilution_table(str(tmp_path / "absent.tsv"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.tsv"
        path.write_text("")
        with pytest.raises(InputValidationError, match="empty"):
            load_dilution_table(str(path))

    def test_header_only(self, tmp_path):
        path = tmp_path / "header.tsv"
        path.write_text("cells\tpositive\ttested\tgroup\n")
        with pytest.raises(InputValidationError, match="no data"):
            load_dilution_table(str(path))

    def test_invalid_row(self, tmp_path):
        path = tmp_path / "bad.tsv"
        path.write_text("cells\tpositive\ttested\tgroup\n10\t6\t5\tA\n")
        with pytest.raises(InputValidationError) as exc_info:
            load_dilution_table(str(path))
        assert exc_info.value.invariant == "responded <= tested"
