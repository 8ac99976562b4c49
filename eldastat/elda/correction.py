# File: eldastat/elda/correction.py
# Location: eldastat/eldastat/elda/correction.py
"""
Multiple testing correction for pairwise group comparisons.

Thin wrapper around statsmodels ``multipletests``. This module is
leaf-level: it imports only numpy and statsmodels.
"""

from __future__ import annotations

import logging

import numpy as np
import statsmodels.stats.multitest as smm

logger = logging.getLogger("eldastat")

_METHODS = {"fdr": "fdr_bh", "bonferroni": "bonferroni"}


def apply_correction(
    pvals: list[float] | np.ndarray,
    method: str = "fdr",
) -> np.ndarray:
    """
    Apply multiple testing correction to a sequence of p-values.

    Parameters
    ----------
    pvals : list of float or np.ndarray
        Raw p-values to correct. Must be in [0, 1].
    method : str
        "fdr" (Benjamini-Hochberg), "bonferroni", or "none" (returns a copy
        of the raw p-values).

    Returns
    -------
    np.ndarray
        Corrected p-values in the same order as input.

    Raises
    ------
    ValueError
        For an unknown method name.
    """
    pvals_array = np.asarray(pvals, dtype=float)

    if method == "none" or len(pvals_array) == 0:
        return pvals_array.copy()

    if method not in _METHODS:
        raise ValueError(
            f"Unknown correction method '{method}'. Available: none, {', '.join(_METHODS)}"
        )

    corrected: np.ndarray = smm.multipletests(pvals_array, method=_METHODS[method])[1]
    logger.debug(f"Applied {method} correction to {len(pvals_array)} p-values")
    return corrected
