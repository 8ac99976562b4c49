# File: eldastat/elda/hypothesis.py
# Location: eldastat/eldastat/elda/hypothesis.py
"""
Chi-square tests on the nested ELDA models.

+----------------------+----------------------------------+---------+
| test                 | statistic                        | df      |
+======================+==================================+=========+
| overall              | 2 (logLik(SH) - logLik(NULL))    | k - 1   |
| single_hit_validity  | 2 (logLik(FULL) - logLik(SH))    | k - 1   |
| goodness_of_fit      | deviance(SH)                     | n - p   |
| overdispersion       | Pearson chi-square of SH         | n - p   |
| unit_slope           | 2 (logLik(SH) - logLik(SH, b=1)) | 1       |
| unit_slope_score     | efficient score at SH, b=1       | 1       |
+----------------------+----------------------------------+---------+

Likelihood-ratio statistics use the unpenalised log-likelihood of each fit.
Bias-reduced fits do not maximise that likelihood exactly, so a nested
difference can come out marginally negative; it is floored at zero.

Degrees of freedom are taken from the parameter counts of the fits, so a
single-group dataset (where SINGLE_HIT and FULL coincide with NULL) raises
DegenerateDFError instead of reporting a p-value of 1 on zero df.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy.stats import chi2

from eldastat.elda.base import FittedModel, TestResult
from eldastat.elda.design import LOG_DOSE, DesignKind, group_rate_design
from eldastat.elda.errors import DegenerateDFError
from eldastat.elda.fitting import fit_unit_slope, score_and_information

logger = logging.getLogger("eldastat")

OVERALL = "overall"
SINGLE_HIT_VALIDITY = "single_hit_validity"
GOODNESS_OF_FIT = "goodness_of_fit"
OVERDISPERSION = "overdispersion"
UNIT_SLOPE = "unit_slope"
UNIT_SLOPE_SCORE = "unit_slope_score"


def chi_square_result(name: str, statistic: float, df: int) -> TestResult:
    """
    Build a TestResult from a chi-square statistic.

    Raises
    ------
    DegenerateDFError
        If ``df`` <= 0.
    """
    if df <= 0:
        raise DegenerateDFError(name, df)
    statistic = max(0.0, float(statistic))
    p_value = float(chi2.sf(statistic, df))
    logger.debug(f"{name}: chisq={statistic:.4f}, df={df}, p={p_value:.4g}")
    return TestResult(name=name, statistic=statistic, df=int(df), p_value=p_value)


def likelihood_ratio_test(name: str, reduced: FittedModel, extended: FittedModel) -> TestResult:
    """Likelihood-ratio test of ``reduced`` nested within ``extended``."""
    df = extended.n_parameters - reduced.n_parameters
    statistic = 2.0 * (extended.log_likelihood - reduced.log_likelihood)
    return chi_square_result(name, statistic, df)


def overall_test(null: FittedModel, single_hit: FittedModel) -> TestResult:
    """Test for any difference in frequency between groups."""
    return likelihood_ratio_test(OVERALL, null, single_hit)


def single_hit_validity_test(single_hit: FittedModel, full: FittedModel) -> TestResult:
    """Test for parallel log-dose slopes across groups."""
    return likelihood_ratio_test(SINGLE_HIT_VALIDITY, single_hit, full)


def goodness_of_fit_test(single_hit: FittedModel) -> TestResult:
    """Residual deviance of the single-hit model against chi-square(n - p)."""
    return chi_square_result(GOODNESS_OF_FIT, single_hit.deviance, single_hit.df_residual)


def pearson_statistic(fitted: FittedModel) -> float:
    """Sum of squared Pearson residuals over all observations."""
    pi = fitted.fitted
    m = fitted.tested
    expected = m * pi
    variance = m * pi * (1.0 - pi)
    return float(np.sum((fitted.responded - expected) ** 2 / variance))


def overdispersion_test(single_hit: FittedModel) -> TestResult:
    """Pearson chi-square of the single-hit model against chi-square(n - p)."""
    return chi_square_result(OVERDISPERSION, pearson_statistic(single_hit), single_hit.df_residual)


def unit_slope_test(
    single_hit: FittedModel, *, max_iter: int = 100, tol: float = 1e-8
) -> TestResult:
    """
    Likelihood-ratio test that the common log-dose slope equals 1.

    Under single-hit kinetics the expected number of responding units is
    proportional to dose, i.e. the cloglog slope on log(dose) is exactly 1.
    The reduced model is the single-hit fit refitted with the slope held at 1.
    """
    if single_hit.design.kind != DesignKind.SINGLE_HIT:
        raise ValueError(f"unit_slope test needs a single_hit fit, got {single_hit.design.name}")
    reduced = fit_unit_slope(single_hit, max_iter=max_iter, tol=tol)
    return likelihood_ratio_test(UNIT_SLOPE, reduced, single_hit)


def unit_slope_score_test(
    single_hit: FittedModel, *, max_iter: int = 100, tol: float = 1e-8
) -> TestResult:
    """
    Score test that the common log-dose slope equals 1.

    Only the slope-1 model is fitted. The statistic is the efficient score
    for the slope at that fit,

        (U_s - I_sn I_nn^-1 U_n)^2 / (I_ss - I_sn I_nn^-1 I_ns)

    with ``n`` the group log-rates, on 1 df. With plain maximum likelihood
    ``U_n`` is zero and this is the usual Rao score statistic; it agrees
    with ``unit_slope_test`` to first order.
    """
    if single_hit.design.kind != DesignKind.SINGLE_HIT:
        raise ValueError(
            f"unit_slope_score test needs a single_hit fit, got {single_hit.design.name}"
        )
    reduced = fit_unit_slope(single_hit, max_iter=max_iter, tol=tol)
    extended = group_rate_design(single_hit.design)
    score, info = score_and_information(
        extended.matrix, reduced.responded, reduced.tested, reduced.fitted
    )
    s = extended.column_index(LOG_DOSE)
    rest = [i for i in range(extended.n_parameters) if i != s]
    coupling = np.linalg.solve(info[np.ix_(rest, rest)], info[rest, s])
    efficient_score = score[s] - coupling @ score[rest]
    efficient_info = info[s, s] - coupling @ info[rest, s]
    return chi_square_result(UNIT_SLOPE_SCORE, efficient_score**2 / efficient_info, 1)


def slope_estimate(single_hit: FittedModel) -> tuple[float, float]:
    """Estimated common log-dose slope and its standard error."""
    idx = single_hit.design.column_index(LOG_DOSE)
    return float(single_hit.coefficients[idx]), float(single_hit.standard_errors[idx])
