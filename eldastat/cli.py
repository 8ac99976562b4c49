# File: eldastat/cli.py
# Location: eldastat/eldastat/cli.py
"""Command-line interface for eldastat."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import load_config
from .elda import ELDAConfig, ELDAEngine, ELDAError, ELDAResult
from .reader import load_dilution_table
from .version import __version__

logger = logging.getLogger("eldastat")

LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


def create_parser() -> argparse.ArgumentParser:
    """Create and return the argument parser for the eldastat CLI."""
    parser = argparse.ArgumentParser(
        description="eldastat: Extreme limiting dilution analysis of stem cell frequencies."
    )

    # General Options
    general_group = parser.add_argument_group("General Options")
    general_group.add_argument(
        "--version",
        action="version",
        version=f"eldastat {__version__}",
        help="Show the current version and exit",
    )
    general_group.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN", "ERROR"],
        default="INFO",
        help="Set the logging level",
    )
    general_group.add_argument(
        "--log-file", help="Path to a file to write logs to (in addition to stderr)."
    )
    general_group.add_argument(
        "-c",
        "--config",
        help="Path to configuration file (JSON)",
        default=None,
    )

    # Core Input/Output
    io_group = parser.add_argument_group("Core Input/Output")
    io_group.add_argument(
        "input_file",
        help="Tab- or comma-delimited table with columns dose (or cells), "
        "responded (or positive), tested and group",
    )
    io_group.add_argument(
        "--output-dir",
        default=None,
        help="Directory to write frequency_estimates.tsv, tests.tsv and pairwise_tests.tsv",
    )

    # Estimation
    est_group = parser.add_argument_group("Estimation")
    est_group.add_argument(
        "--confidence",
        type=float,
        default=None,
        help="Confidence level for frequency intervals (default from config: 0.95)",
    )
    bias = est_group.add_mutually_exclusive_group()
    bias.add_argument(
        "--bias-reduced",
        dest="bias_reduced",
        action="store_true",
        default=None,
        help="Use bias-reduced (Jeffreys-penalised) estimates (config default)",
    )
    bias.add_argument(
        "--observed",
        dest="bias_reduced",
        action="store_false",
        help="Use plain maximum-likelihood (observed) estimates",
    )
    est_group.add_argument(
        "--interval-method",
        choices=["profile", "wald"],
        default=None,
        help="Confidence interval construction (default from config: profile)",
    )

    # Pairwise
    pair_group = parser.add_argument_group("Pairwise Comparisons")
    pair_group.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker processes for pairwise tests (1 = sequential, -1 = all CPUs)",
    )
    pair_group.add_argument(
        "--pairwise-correction",
        choices=["none", "fdr", "bonferroni"],
        default=None,
        help="Multiple testing correction of pairwise p-values",
    )
    return parser


def build_config(args: argparse.Namespace, cfg: Dict[str, Any]) -> ELDAConfig:
    """Merge CLI arguments over the loaded configuration dict (CLI wins)."""
    merged = dict(cfg)
    overrides = {
        "confidence_level": args.confidence,
        "bias_reduced": args.bias_reduced,
        "interval_method": args.interval_method,
        "workers": args.workers,
        "pairwise_correction": args.pairwise_correction,
    }
    for key, value in overrides.items():
        if value is not None:
            merged[key] = value
    return ELDAConfig.from_dict(merged)


def log_result(result: ELDAResult) -> None:
    """Log the estimates and test results."""
    logger.info("Confidence intervals for 1/(stem cell frequency):")
    for est in result.estimates.values():
        logger.info(
            f"  {est.group}: {est.estimate:.2f} [{est.lower:.2f}, {est.upper:.2f}]"
        )
    logger.info(f"Estimated log-dose slope: {result.slope:.3f} (SE {result.slope_se:.3f})")
    for test in result.tests.values():
        logger.info(
            f"  {test.name}: chisq={test.statistic:.2f}, df={test.df}, p={test.p_value:.3g}"
        )
    for name, reason in result.skipped_tests.items():
        logger.info(f"  {name}: not computed ({reason})")
    for comp in result.pairwise:
        logger.info(
            f"  {comp.group1} vs {comp.group2}: chisq={comp.result.statistic:.2f}, "
            f"df={comp.result.df}, p={comp.result.p_value:.3g}"
        )


def write_result(result: ELDAResult, output_dir: str) -> List[Path]:
    """Write the result bundle as tab-separated tables."""
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    tables = {
        "frequency_estimates.tsv": result.estimates_frame(),
        "tests.tsv": result.tests_frame(),
        "pairwise_tests.tsv": result.pairwise_frame(),
    }
    written = []
    for filename, df in tables.items():
        path = out / filename
        df.to_csv(path, sep="\t", index=False)
        written.append(path)
        logger.debug(f"Wrote {path}")
    return written


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the eldastat CLI."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    parser = create_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    logging.getLogger("eldastat").setLevel(LOG_LEVEL_MAP[args.log_level])

    # If a log file is specified, add a file handler
    if args.log_file:
        log_file_path = Path(args.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        fh = logging.FileHandler(args.log_file)
        fh.setLevel(LOG_LEVEL_MAP[args.log_level])
        fh.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            )
        )
        logger.addHandler(fh)
        logger.debug(f"Logging to file enabled: {args.log_file}")

    logger.debug(f"CLI arguments: {args}")

    try:
        cfg: Dict[str, Any] = load_config(args.config)
        config = build_config(args, cfg)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)
    logger.debug(f"Configuration: {config}")

    try:
        dataset = load_dilution_table(args.input_file)
        result = ELDAEngine(config).run(dataset)
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)
    except ELDAError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)

    log_result(result)

    if args.output_dir:
        written = write_result(result, args.output_dir)
        logger.info(f"Results written to {', '.join(str(p) for p in written)}")


if __name__ == "__main__":
    main()
