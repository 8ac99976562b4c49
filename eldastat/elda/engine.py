# File: eldastat/elda/engine.py
# Location: eldastat/eldastat/elda/engine.py
"""
ELDAEngine: orchestrator for a complete limiting dilution analysis.

Pipeline
--------
1. Build the NULL / SINGLE_HIT / FULL designs (fails fast on an
   unidentifiable dataset).
2. Fit all three models with the configured estimation mode.
3. Estimate per-group frequencies from the SINGLE_HIT fit.
4. Run the full-dataset tests. A test with no degrees of freedom is
   omitted from ``ELDAResult.tests`` and its reason recorded in
   ``ELDAResult.skipped_tests``; every other failure propagates.
5. Run the pairwise overall tests when there are at least two groups.

Every step returns a new value; the engine holds nothing but its config,
so running it twice on the same data gives identical results.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import pandas as pd

from eldastat.elda.base import Dataset, ELDAConfig, ELDAResult, FittedModel, TestResult
from eldastat.elda.design import DesignKind, build_designs
from eldastat.elda.errors import DegenerateDFError
from eldastat.elda.fitting import fit
from eldastat.elda.frequency import estimate
from eldastat.elda.hypothesis import (
    GOODNESS_OF_FIT,
    OVERALL,
    OVERDISPERSION,
    SINGLE_HIT_VALIDITY,
    UNIT_SLOPE,
    UNIT_SLOPE_SCORE,
    goodness_of_fit_test,
    overall_test,
    overdispersion_test,
    single_hit_validity_test,
    slope_estimate,
    unit_slope_score_test,
    unit_slope_test,
)
from eldastat.elda.pairwise import compare_pairs

logger = logging.getLogger("eldastat")


class ELDAEngine:
    """
    Runs the estimation and test battery on one dataset.

    Usage
    -----
    >>> engine = ELDAEngine(ELDAConfig(confidence_level=0.95))
    >>> result = engine.run(dataset)
    >>> result.estimates["A"].estimate

    Parameters
    ----------
    config : ELDAConfig, optional
        Runtime configuration. Defaults to ELDAConfig().
    """

    def __init__(self, config: ELDAConfig | None = None) -> None:
        self._config = config or ELDAConfig()

    @property
    def config(self) -> ELDAConfig:
        return self._config

    def fit_models(self, dataset: Dataset) -> dict[DesignKind, FittedModel]:
        """Fit the NULL, SINGLE_HIT and FULL models."""
        designs = build_designs(dataset)
        return {
            kind: fit(
                design,
                dataset,
                self._config.bias_reduced,
                max_iter=self._config.max_iter,
                tol=self._config.tol,
            )
            for kind, design in designs.items()
        }

    def run_tests(
        self, fits: Mapping[DesignKind, FittedModel]
    ) -> tuple[dict[str, TestResult], dict[str, str]]:
        """
        Run the full-dataset test battery.

        Returns
        -------
        tuple
            (tests by name, skip reasons by name for tests without df)
        """
        null = fits[DesignKind.NULL]
        single_hit = fits[DesignKind.SINGLE_HIT]
        full = fits[DesignKind.FULL]

        battery: list[tuple[str, Callable[[], TestResult]]] = [
            (OVERALL, lambda: overall_test(null, single_hit)),
            (SINGLE_HIT_VALIDITY, lambda: single_hit_validity_test(single_hit, full)),
            (GOODNESS_OF_FIT, lambda: goodness_of_fit_test(single_hit)),
            (OVERDISPERSION, lambda: overdispersion_test(single_hit)),
            (
                UNIT_SLOPE,
                lambda: unit_slope_test(
                    single_hit, max_iter=self._config.max_iter, tol=self._config.tol
                ),
            ),
            (
                UNIT_SLOPE_SCORE,
                lambda: unit_slope_score_test(
                    single_hit, max_iter=self._config.max_iter, tol=self._config.tol
                ),
            ),
        ]

        tests: dict[str, TestResult] = {}
        skipped: dict[str, str] = {}
        for name, run_test in battery:
            try:
                tests[name] = run_test()
            except DegenerateDFError as e:
                logger.warning(f"Test '{name}' omitted: {e}")
                skipped[name] = str(e)
        return tests, skipped

    def run(self, dataset: Dataset) -> ELDAResult:
        """
        Run the complete analysis on one dataset.

        Raises
        ------
        InsufficientGroupsError, DegenerateDoseError
            Before any fitting, if the designs are not identifiable.
        ConvergenceError
            If any fit (including profile and pairwise refits) fails.
        """
        cfg = self._config
        logger.info(
            f"ELDA analysis: {len(dataset)} observations in {len(dataset.groups)} group(s) "
            f"(bias_reduced={cfg.bias_reduced}, intervals={cfg.interval_method}, "
            f"confidence={cfg.confidence_level})"
        )

        fits = self.fit_models(dataset)
        single_hit = fits[DesignKind.SINGLE_HIT]

        estimates = estimate(
            single_hit,
            cfg.confidence_level,
            cfg.interval_method,
            max_iter=cfg.max_iter,
            tol=cfg.tol,
        )
        tests, skipped = self.run_tests(fits)
        slope, slope_se = slope_estimate(single_hit)

        pairwise = compare_pairs(dataset, cfg) if len(dataset.groups) >= 2 else []

        overall = tests.get(OVERALL)
        if overall is not None:
            logger.info(
                f"Overall test: chisq={overall.statistic:.2f}, df={overall.df}, "
                f"p={overall.p_value:.3g}"
            )
        logger.info(
            f"ELDA analysis complete: {len(estimates)} estimates, {len(tests)} tests "
            f"({len(skipped)} skipped), {len(pairwise)} pairwise comparisons"
        )

        return ELDAResult(
            groups=dataset.groups,
            estimates=estimates,
            tests=tests,
            skipped_tests=skipped,
            pairwise=pairwise,
            slope=slope,
            slope_se=slope_se,
            config=cfg,
        )


def as_dataset(data: Dataset | pd.DataFrame | Iterable[Mapping[str, Any]]) -> Dataset:
    """Coerce a Dataset, DataFrame or iterable of records into a Dataset."""
    if isinstance(data, Dataset):
        return data
    if isinstance(data, pd.DataFrame):
        return Dataset.from_dataframe(data)
    return Dataset.from_records(data)


def run_elda(
    data: Dataset | pd.DataFrame | Iterable[Mapping[str, Any]],
    config: ELDAConfig | None = None,
) -> ELDAResult:
    """Convenience wrapper: ``ELDAEngine(config).run(as_dataset(data))``."""
    return ELDAEngine(config).run(as_dataset(data))
