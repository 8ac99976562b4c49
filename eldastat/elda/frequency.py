# File: eldastat/elda/frequency.py
# Location: eldastat/eldastat/elda/frequency.py
"""
Per-group responding-unit frequency estimates with confidence intervals.

Estimates come from the single-hit model with the log-dose slope fixed at
1 (``fit_unit_slope``), where each group's coefficient is its log-rate of
responding units per cell. The free-slope fit is kept for the hypothesis
tests; it only supplies the counts and the estimation mode here.

The reported estimate is ``1 / exp(log-rate)``, the number of cells needed
to contain one responding unit. Because this map is decreasing, the upper
log-rate bound becomes the lower frequency bound; bounds are always
reported in ascending order.

Interval methods
----------------
wald
    log-rate +/- z * SE, SE from the fitted covariance.
profile
    Values of the log-rate where twice the drop of the profile
    log-likelihood (penalised when the fit is bias-reduced) equals
    ``chi2.ppf(confidence_level, 1)``. The other groups' log-rates are
    refitted at every trial value.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy.optimize import brentq
from scipy.stats import chi2, norm

from eldastat.elda.base import INTERVAL_METHODS, FittedModel, FrequencyEstimate
from eldastat.elda.design import DesignKind, group_rate_contrasts, rate_column
from eldastat.elda.errors import ConvergenceError
from eldastat.elda.fitting import fit_counts, fit_unit_slope

logger = logging.getLogger("eldastat")

# Bracketing walks outward in SE multiples 1, 2, 4, ... up to 2**_MAX_DOUBLINGS
_MAX_DOUBLINGS = 12


def group_log_rates(fitted: FittedModel) -> tuple[np.ndarray, np.ndarray]:
    """
    Group log-rates and their covariance from a single-hit fit.

    Returns
    -------
    tuple
        (log_rates shape (k,), covariance shape (k, k)) in group order.
    """
    design = fitted.design
    if design.coding in ("group_rate", "unit_slope"):
        idx = [design.column_index(rate_column(g)) for g in design.groups]
        return fitted.coefficients[idx], fitted.covariance[np.ix_(idx, idx)]
    contrasts = group_rate_contrasts(design)
    return contrasts @ fitted.coefficients, contrasts @ fitted.covariance @ contrasts.T


def _wald_bounds(log_rate: float, se: float, confidence_level: float) -> tuple[float, float]:
    z = float(norm.ppf(0.5 + confidence_level / 2.0))
    return log_rate - z * se, log_rate + z * se


def _profile_bounds(
    rate_fit: FittedModel,
    group: str,
    log_rate: float,
    se: float,
    confidence_level: float,
    max_iter: int,
    tol: float,
) -> tuple[float, float]:
    """Solve for both profile-likelihood bounds of one group's log-rate."""
    column = rate_column(group)
    threshold = rate_fit.penalized_log_likelihood - float(chi2.ppf(confidence_level, 1)) / 2.0
    scale = se if np.isfinite(se) and se > 0 else 1.0

    def excess(value: float) -> float:
        constrained = fit_counts(
            rate_fit.design,
            rate_fit.responded,
            rate_fit.tested,
            rate_fit.bias_reduced,
            max_iter=max_iter,
            tol=tol,
            fixed={column: value},
        )
        return constrained.penalized_log_likelihood - threshold

    bounds = []
    for direction in (-1.0, 1.0):
        inner = log_rate
        outer = None
        for k in range(_MAX_DOUBLINGS + 1):
            candidate = log_rate + direction * scale * 2.0**k
            if excess(candidate) < 0:
                outer = candidate
                break
            inner = candidate
        if outer is None:
            side = "lower" if direction < 0 else "upper"
            raise ConvergenceError(
                f"profile[{group}]",
                rate_fit.coefficients,
                float("nan"),
                _MAX_DOUBLINGS + 1,
                reason=f"{side} profile-likelihood bound could not be bracketed",
            )
        root = brentq(excess, min(inner, outer), max(inner, outer), xtol=1e-9)
        bounds.append(float(root))
    return bounds[0], bounds[1]


def estimate(
    fitted_single_hit: FittedModel,
    confidence_level: float = 0.95,
    method: str = "profile",
    *,
    max_iter: int = 100,
    tol: float = 1e-8,
) -> dict[str, FrequencyEstimate]:
    """
    Estimate 1/(responding unit frequency) per group.

    Parameters
    ----------
    fitted_single_hit : FittedModel
        Fit of the SINGLE_HIT design; its counts and estimation mode are
        refitted with the log-dose slope fixed at 1.
    confidence_level : float
        Interval coverage, strictly between 0 and 1. Default: 0.95.
    method : str
        "profile" (default) or "wald".
    max_iter, tol : optional
        Passed to the unit-slope refit and the constrained refits of the
        profile method.

    Returns
    -------
    dict
        Group label -> FrequencyEstimate, in group order.

    Raises
    ------
    ValueError
        For a non single-hit fit, an invalid confidence level or method.
    ConvergenceError
        If a constrained refit fails or a profile bound cannot be bracketed.
    """
    if fitted_single_hit.design.kind != DesignKind.SINGLE_HIT:
        raise ValueError(
            f"Frequencies need a single_hit fit, got {fitted_single_hit.design.kind.value}"
        )
    if not 0.0 < confidence_level < 1.0:
        raise ValueError(
            f"confidence_level must lie strictly between 0 and 1, got {confidence_level}"
        )
    if method not in INTERVAL_METHODS:
        raise ValueError(f"Unknown interval method '{method}'. Available: {INTERVAL_METHODS}")

    rate_fit = fit_unit_slope(fitted_single_hit, max_iter=max_iter, tol=tol)
    log_rates, cov = group_log_rates(rate_fit)
    ses = np.sqrt(np.clip(np.diag(cov), 0.0, None))

    estimates: dict[str, FrequencyEstimate] = {}
    for group, log_rate, se in zip(rate_fit.design.groups, log_rates, ses, strict=True):
        if method == "wald":
            lo, hi = _wald_bounds(float(log_rate), float(se), confidence_level)
        else:
            lo, hi = _profile_bounds(
                rate_fit, group, float(log_rate), float(se), confidence_level, max_iter, tol
            )
        value = float(np.exp(-log_rate))
        bound_a, bound_b = float(np.exp(-hi)), float(np.exp(-lo))
        estimates[group] = FrequencyEstimate(
            group=group,
            estimate=value,
            lower=min(bound_a, bound_b),
            upper=max(bound_a, bound_b),
            method=method,
        )
        logger.debug(
            f"Group {group}: 1/frequency={value:.4g} "
            f"[{estimates[group].lower:.4g}, {estimates[group].upper:.4g}] ({method})"
        )
    return estimates
