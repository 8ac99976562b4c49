# File: eldastat/elda/pairwise.py
# Location: eldastat/eldastat/elda/pairwise.py
"""
Pairwise comparison of responding-unit frequencies.

For every unordered pair of groups (i < j in order of first appearance)
the dataset is restricted to the two groups and the overall likelihood-ratio
test (NULL vs SINGLE_HIT) is rerun on the subset. Validity, goodness-of-fit
and overdispersion are full-dataset diagnostics only and are not repeated.

Pairs are independent. With ``ELDAConfig.workers != 1`` they are dispatched
to a ProcessPoolExecutor; ``executor.map`` returns results in submission
order, so the output order never depends on completion order.
"""

from __future__ import annotations

import concurrent.futures
import logging
import os
from dataclasses import replace

from eldastat.elda.base import Dataset, ELDAConfig, PairwiseComparison
from eldastat.elda.correction import apply_correction
from eldastat.elda.design import DesignKind, build_design
from eldastat.elda.fitting import fit
from eldastat.elda.hypothesis import overall_test

logger = logging.getLogger("eldastat")


def group_pairs(groups: tuple[str, ...] | list[str]) -> list[tuple[str, str]]:
    """All unordered pairs, first index before second, no self pairs."""
    return [(groups[i], groups[j]) for i in range(len(groups)) for j in range(i + 1, len(groups))]


def compare_pair(
    dataset: Dataset,
    group1: str,
    group2: str,
    bias_reduced: bool = True,
    *,
    max_iter: int = 100,
    tol: float = 1e-8,
) -> PairwiseComparison:
    """
    Overall frequency-difference test restricted to two groups.

    The statistic does not depend on which of the two groups is the
    reference level; only the group1/group2 labels follow the arguments.
    """
    subset = dataset.subset((group1, group2))
    null = fit(
        build_design(subset, DesignKind.NULL), subset, bias_reduced, max_iter=max_iter, tol=tol
    )
    single_hit = fit(
        build_design(subset, DesignKind.SINGLE_HIT),
        subset,
        bias_reduced,
        max_iter=max_iter,
        tol=tol,
    )
    result = overall_test(null, single_hit)
    logger.debug(
        f"Pair {group1} vs {group2}: chisq={result.statistic:.4f}, df={result.df}, "
        f"p={result.p_value:.4g}"
    )
    return PairwiseComparison(group1=group1, group2=group2, result=result)


def _worker_initializer() -> None:
    """Set BLAS thread counts to 1 in worker processes to prevent oversubscription."""
    os.environ["OPENBLAS_NUM_THREADS"] = "1"
    os.environ["MKL_NUM_THREADS"] = "1"
    os.environ["OMP_NUM_THREADS"] = "1"


def _run_pair_worker(args: tuple[Dataset, str, str, ELDAConfig]) -> PairwiseComparison:
    """Process a single group pair in a subprocess worker."""
    subset, group1, group2, config = args
    return compare_pair(
        subset,
        group1,
        group2,
        config.bias_reduced,
        max_iter=config.max_iter,
        tol=config.tol,
    )


def compare_pairs(dataset: Dataset, config: ELDAConfig | None = None) -> list[PairwiseComparison]:
    """
    Run the overall test on every pair of groups.

    Parameters
    ----------
    dataset : Dataset
    config : ELDAConfig, optional
        ``bias_reduced``, ``max_iter``, ``tol``, ``workers`` and
        ``pairwise_correction`` are used. Defaults to ELDAConfig().

    Returns
    -------
    list of PairwiseComparison
        Stable pair order; empty for fewer than two groups.
    """
    config = config or ELDAConfig()
    pairs = group_pairs(dataset.groups)
    if not pairs:
        return []

    # Each task owns its restricted copy of the data
    args_list = [(dataset.subset(pair), pair[0], pair[1], config) for pair in pairs]

    n_workers = config.workers
    if n_workers != 1 and len(pairs) > 1:
        actual_workers = (os.cpu_count() or 1) if n_workers == -1 else n_workers
        actual_workers = max(1, min(actual_workers, len(pairs)))
        logger.info(
            f"Parallel pairwise comparisons: {actual_workers} workers for {len(pairs)} pairs"
        )
        with concurrent.futures.ProcessPoolExecutor(
            max_workers=actual_workers,
            initializer=_worker_initializer,
        ) as executor:
            comparisons = list(executor.map(_run_pair_worker, args_list))
    else:
        comparisons = [_run_pair_worker(args) for args in args_list]

    if config.pairwise_correction != "none":
        corrected = apply_correction(
            [c.result.p_value for c in comparisons], config.pairwise_correction
        )
        comparisons = [
            replace(c, corrected_p_value=float(p))
            for c, p in zip(comparisons, corrected, strict=True)
        ]

    return comparisons
