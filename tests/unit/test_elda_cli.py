"""Tests for the eldastat command-line interface."""

from __future__ import annotations

import json
import logging

import pandas as pd
import pytest

from eldastat.cli import build_config, create_parser, main


@pytest.fixture
def ab_table(ab_records, write_table):
    df = pd.DataFrame(ab_records).rename(columns={"dose": "cells", "responded": "positive"})
    return write_table(df, "ab.tsv")


@pytest.fixture(autouse=True)
def _restore_logger():
    """main() sets the package logger level and may attach a file handler."""
    logger = logging.getLogger("eldastat")
    level, handlers = logger.level, list(logger.handlers)
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
            logger.removeHandler(handler)
    logger.setLevel(level)


@pytest.mark.unit
class TestArgumentParsing:
    def test_defaults_leave_config_untouched(self):
        args = create_parser().parse_args(["data.tsv"])
        assert args.input_file == "data.tsv"
        assert args.bias_reduced is None
        assert args.confidence is None
        assert args.log_level == "INFO"

    def test_observed_flag(self):
        args = create_parser().parse_args(["data.tsv", "--observed"])
        assert args.bias_reduced is False

    def test_bias_flags_are_exclusive(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["data.tsv", "--observed", "--bias-reduced"])

    def test_cli_overrides_config(self):
        args = create_parser().parse_args(
            [
                "data.tsv",
                "--confidence",
                "0.9",
                "--observed",
                "--interval-method",
                "wald",
                "--workers",
                "2",
                "--pairwise-correction",
                "fdr",
            ]
        )
        cfg = build_config(args, {"confidence_level": 0.99, "tol": 1e-6})
        assert cfg.confidence_level == 0.9
        assert cfg.bias_reduced is False
        assert cfg.interval_method == "wald"
        assert cfg.workers == 2
        assert cfg.pairwise_correction == "fdr"
        assert cfg.tol == 1e-6


@pytest.mark.unit
class TestMain:
    def test_writes_result_tables(self, ab_table, tmp_path):
        out = tmp_path / "results"
        main([str(ab_table), "--output-dir", str(out), "--interval-method", "wald"])

        estimates = pd.read_csv(out / "frequency_estimates.tsv", sep="\t")
        assert estimates["group"].tolist() == ["A", "B"]
        assert (estimates["lower"] <= estimates["estimate"]).all()
        assert (estimates["estimate"] <= estimates["upper"]).all()

        tests = pd.read_csv(out / "tests.tsv", sep="\t")
        assert "overall" in tests["test"].tolist()

        pairwise = pd.read_csv(out / "pairwise_tests.tsv", sep="\t")
        assert len(pairwise) == 1

    def test_logs_estimates(self, ab_table, caplog):
        with caplog.at_level(logging.INFO, logger="eldastat"):
            main([str(ab_table), "--interval-method", "wald"])
        assert "1/(stem cell frequency)" in caplog.text
        assert "overall" in caplog.text

    def test_config_file(self, ab_table, tmp_path):
        cfg_path = tmp_path / "cfg.json"
        cfg_path.write_text(json.dumps({"interval_method": "wald", "bias_reduced": False}))
        out = tmp_path / "out"
        main([str(ab_table), "-c", str(cfg_path), "--output-dir", str(out)])
        estimates = pd.read_csv(out / "frequency_estimates.tsv", sep="\t")
        assert set(estimates["method"]) == {"wald"}

    def test_log_file(self, ab_table, tmp_path):
        log_path = tmp_path / "logs" / "run.log"
        main([str(ab_table), "--interval-method", "wald", "--log-file", str(log_path)])
        assert log_path.exists()
        assert "ELDA analysis complete" in log_path.read_text()

    def test_missing_input_exits(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main([str(tmp_path / "missing.tsv")])
        assert exc_info.value.code == 1

    def test_invalid_data_exits(self, tmp_path, caplog):
        path = tmp_path / "bad.tsv"
        path.write_text("cells\tpositive\ttested\tgroup\n10\t1\t5\tA\n10\t2\t5\tA\n")
        with pytest.raises(SystemExit) as exc_info:
            main([str(path)])
        assert exc_info.value.code == 1
        assert "DegenerateDoseError" in caplog.text

    def test_invalid_config_exits(self, ab_table, tmp_path):
        cfg_path = tmp_path / "cfg.json"
        cfg_path.write_text(json.dumps({"confidence_level": 2.0}))
        with pytest.raises(SystemExit) as exc_info:
            main([str(ab_table), "-c", str(cfg_path)])
        assert exc_info.value.code == 1

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "eldastat" in capsys.readouterr().out
