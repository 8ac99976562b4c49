# File: eldastat/elda/fitting.py
# Location: eldastat/eldastat/elda/fitting.py
"""
Complementary log-log binomial GLM fitter with optional bias reduction.

Model
-----
    P(respond) = 1 - exp(-exp(eta)),   eta = X @ beta (+ offset)

Fitted by Fisher scoring written as iteratively reweighted least squares.
With ``t = exp(eta)`` and ``m`` wells tested, the cloglog quantities are

    pi      = 1 - exp(-t)
    d mu/d eta = m t exp(-t)
    w       = m t^2 / (exp(t) - 1)          (working weight)
    w' / w  = 2 - t / pi                    (d log w / d eta)

Bias reduction
--------------
``bias_reduced=True`` maximises the Jeffreys-prior penalised likelihood
``l(beta) + 0.5 log|X'WX|``. Its exact gradient is the ordinary score plus
``0.5 * sum_i h_i (w'_i / w_i) x_i`` with ``h`` the hat-matrix diagonal, so
adding ``0.5 * q_i (w'_i / w_i)`` to the working response (``q_i = x_i' I^-1
x_i = h_i / w_i``) turns the IRLS step into a scoring step on the penalised
likelihood. Estimates stay finite under separation (all-positive or
all-negative dose rows), which is common in sparse dilution data.

The update direction is an ascent direction of the objective; step-halving
(Heinze & Schemper) keeps every accepted iteration monotone.

Fixed coefficients
------------------
``fixed`` pins named columns to given values. They are moved into the
offset while the bias-reduction penalty is still computed from the full
design, which is what profile penalised-likelihood intervals require. A
design may also carry its own offset (log-dose in the unit-slope model).

Separation
----------
Without bias reduction an all-positive or all-negative group (or, with a
group-specific slope, a group whose responses switch from none to all at
some dose) has no finite maximum-likelihood estimate. The counts are
checked with a linear program before iterating; a separated fit raises
ConvergenceError naming the groups instead of returning estimates pinned
to the probability clamp.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

import numpy as np
from scipy.optimize import linprog
from scipy.special import xlogy
from scipy.stats import binom

from eldastat.elda.base import Dataset, FittedModel
from eldastat.elda.design import DesignKind, DesignSpec, unit_slope_design
from eldastat.elda.errors import ConvergenceError

logger = logging.getLogger("eldastat")

# Fitted probabilities are kept inside [eps, 1 - eps]
_PROB_EPS = 1e-10
_ETA_MIN = float(np.log(-np.log1p(-_PROB_EPS)))
_ETA_MAX = float(np.log(-np.log(_PROB_EPS)))

_MAX_HALVINGS = 10

# Linear-program optimum and row movement below this count as zero
_SEPARATION_TOL = 1e-7


def _cloglog_terms(
    eta: np.ndarray, tested: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Evaluate the cloglog mean function and IRLS weights.

    Returns
    -------
    tuple
        (clamped eta, t = exp(eta), pi, d mu / d eta, working weight)
    """
    eta = np.clip(eta, _ETA_MIN, _ETA_MAX)
    t = np.exp(eta)
    pi = -np.expm1(-t)
    mu_eta = tested * t * np.exp(-t)
    weights = tested * t * t / np.expm1(t)
    return eta, t, pi, mu_eta, weights


def cloglog_inverse(eta: np.ndarray) -> np.ndarray:
    """Response probability for a linear predictor, clamped away from 0 and 1."""
    eta = np.clip(np.asarray(eta, dtype=float), _ETA_MIN, _ETA_MAX)
    return -np.expm1(-np.exp(eta))


def binomial_log_likelihood(responded: np.ndarray, tested: np.ndarray, pi: np.ndarray) -> float:
    """Binomial log-likelihood, binomial coefficients included."""
    return float(np.sum(binom.logpmf(responded, tested, pi)))


def binomial_deviance(responded: np.ndarray, tested: np.ndarray, pi: np.ndarray) -> float:
    """Residual deviance of fitted probabilities against the saturated model."""
    mu = tested * pi
    failures = tested - responded
    dev = 2.0 * (xlogy(responded, responded / mu) + xlogy(failures, failures / (tested - mu)))
    return float(np.sum(dev))


def _information(matrix: np.ndarray, weights: np.ndarray) -> np.ndarray:
    return matrix.T @ (weights[:, None] * matrix)


def _penalty(matrix: np.ndarray, weights: np.ndarray) -> float:
    """0.5 * log|X'WX|, or -inf when the information matrix is singular."""
    sign, logdet = np.linalg.slogdet(_information(matrix, weights))
    if sign <= 0:
        return -np.inf
    return 0.5 * float(logdet)


def _start_eta(responded: np.ndarray, tested: np.ndarray) -> np.ndarray:
    """Starting linear predictor from shrunken empirical proportions."""
    pi0 = (responded + 0.5) / (tested + 1.0)
    return np.log(-np.log1p(-pi0))


def fit(
    design: DesignSpec,
    dataset: Dataset,
    bias_reduced: bool = True,
    *,
    max_iter: int = 100,
    tol: float = 1e-8,
    fixed: Mapping[str, float] | None = None,
) -> FittedModel:
    """
    Fit a cloglog binomial GLM for one design.

    Parameters
    ----------
    design : DesignSpec
        Model matrix built from ``dataset``.
    dataset : Dataset
        Source of the response (``responded``) and trial (``tested``) counts.
    bias_reduced : bool
        Maximise the Jeffreys-prior penalised likelihood instead of the
        plain likelihood. Default: True.
    max_iter : int
        Iteration budget. Default: 100.
    tol : float
        Convergence when every coefficient change is below
        ``tol * (1 + |beta|)``. Default: 1e-8.
    fixed : mapping of str to float, optional
        Column names whose coefficients are held at the given values.

    Returns
    -------
    FittedModel

    Raises
    ------
    ConvergenceError
        If the weighted normal equations become singular or ``max_iter``
        iterations pass without convergence. Without bias reduction it is
        also raised for separated groups, listed in ``error.groups``.
    """
    return fit_counts(
        design,
        dataset.responded,
        dataset.tested,
        bias_reduced,
        max_iter=max_iter,
        tol=tol,
        fixed=fixed,
    )


def fit_counts(
    design: DesignSpec,
    responded: np.ndarray,
    tested: np.ndarray,
    bias_reduced: bool = True,
    *,
    max_iter: int = 100,
    tol: float = 1e-8,
    fixed: Mapping[str, float] | None = None,
) -> FittedModel:
    """
    Fit a cloglog binomial GLM from response and trial count arrays.

    Same contract as ``fit()``; used directly when refitting a model whose
    counts are already held by a FittedModel (profile likelihood, unit-slope
    model).
    """
    y = np.asarray(responded, dtype=float)
    m = np.asarray(tested, dtype=float)
    full = design.matrix
    if full.shape[0] != y.shape[0]:
        raise ValueError(
            f"Design has {full.shape[0]} rows but {y.shape[0]} observations were given"
        )

    fixed = dict(fixed or {})
    p = design.n_parameters
    fixed_idx = np.array([design.column_index(c) for c in fixed], dtype=int)
    free_mask = np.ones(p, dtype=bool)
    free_mask[fixed_idx] = False
    free = full[:, free_mask]
    fixed_values = np.array([float(v) for v in fixed.values()])
    offset = np.zeros(full.shape[0]) if design.offset is None else design.offset.copy()
    if len(fixed):
        offset = offset + full[:, fixed_idx] @ fixed_values

    model_name = design.name
    if fixed:
        model_name += "|" + ",".join(f"{k}={v:.6g}" for k, v in fixed.items())

    def objective(beta_free: np.ndarray) -> float:
        _eta, _t, pi, _d, w = _cloglog_terms(offset + free @ beta_free, m)
        ll = binomial_log_likelihood(y, m, pi)
        if bias_reduced:
            ll += _penalty(full, w)
        return ll

    if not bias_reduced and free.shape[1]:
        separated = _separated_groups(free, y, m, design.labels)
        if separated is not None:
            raise ConvergenceError(
                model_name,
                None,
                float("inf"),
                0,
                reason=(
                    f"data are separated in group(s) {', '.join(separated)}; no finite "
                    "maximum-likelihood estimate exists, use bias-reduced estimation"
                ),
                groups=separated,
            )

    beta: np.ndarray | None = None
    achieved = np.inf
    converged = False
    iteration = 0

    if free.shape[1] == 0:
        # Every coefficient is fixed: the offset alone gives the fitted values
        beta = np.zeros(0)
        eta = offset
        achieved = 0.0
        converged = True
    else:
        eta = _start_eta(y, m)
        obj = -np.inf
        for iteration in range(1, max_iter + 1):
            eta_c, t, pi, mu_eta, w = _cloglog_terms(eta, m)
            z = eta_c - offset + (y - m * pi) / mu_eta

            if bias_reduced:
                try:
                    inv_info = np.linalg.inv(_information(full, w))
                except np.linalg.LinAlgError:
                    raise ConvergenceError(
                        model_name,
                        _expand(beta, free_mask, fixed_idx, fixed_values),
                        achieved,
                        iteration,
                        reason="singular information matrix",
                    ) from None
                q = np.sum((full @ inv_info) * full, axis=1)
                z = z + 0.5 * q * (2.0 - t / pi)

            xtw = free.T * w
            try:
                beta_new = np.linalg.solve(xtw @ free, xtw @ z)
            except np.linalg.LinAlgError:
                raise ConvergenceError(
                    model_name,
                    _expand(beta, free_mask, fixed_idx, fixed_values),
                    achieved,
                    iteration,
                    reason="singular weighted normal equations",
                ) from None

            if beta is None:
                obj_new = objective(beta_new)
            else:
                step = beta_new - beta
                obj_new = objective(beta_new)
                for _halving in range(_MAX_HALVINGS):
                    if obj_new >= obj:
                        break
                    step *= 0.5
                    beta_new = beta + step
                    obj_new = objective(beta_new)
                achieved = float(np.max(np.abs(step) / (1.0 + np.abs(beta_new)), initial=0.0))
                converged = achieved <= tol

            beta = beta_new
            obj = obj_new
            eta = offset + free @ beta
            if converged:
                break

    if not converged or beta is None:
        raise ConvergenceError(
            model_name,
            _expand(beta, free_mask, fixed_idx, fixed_values),
            achieved,
            iteration,
        )

    _eta, _t, pi, _d, w = _cloglog_terms(eta, m)
    try:
        cov_free = np.linalg.inv(_information(free, w)) if free.shape[1] else np.zeros((0, 0))
    except np.linalg.LinAlgError:
        raise ConvergenceError(
            model_name,
            _expand(beta, free_mask, fixed_idx, fixed_values),
            achieved,
            iteration,
            reason="singular information matrix at the estimate",
        ) from None
    covariance = np.zeros((p, p))
    covariance[np.ix_(free_mask, free_mask)] = cov_free

    log_lik = binomial_log_likelihood(y, m, pi)
    penalized = log_lik + _penalty(full, w) if bias_reduced else log_lik
    deviance = binomial_deviance(y, m, pi)

    logger.debug(
        f"Fit {model_name}: converged in {iteration} iterations "
        f"(logLik={log_lik:.4f}, deviance={deviance:.4f}, bias_reduced={bias_reduced})"
    )

    return FittedModel(
        design=design,
        coefficients=_expand(beta, free_mask, fixed_idx, fixed_values),
        covariance=covariance,
        log_likelihood=log_lik,
        penalized_log_likelihood=penalized,
        deviance=deviance,
        df_residual=int(full.shape[0] - free.shape[1]),
        fitted=pi,
        responded=y.copy(),
        tested=m.copy(),
        iterations=iteration,
        bias_reduced=bias_reduced,
        fixed=fixed,
    )


def fit_unit_slope(
    single_hit: FittedModel, *, max_iter: int = 100, tol: float = 1e-8
) -> FittedModel:
    """
    Refit a single-hit model with the log-dose slope fixed at 1.

    Uses the same counts and estimation mode as ``single_hit``; the result
    is in unit-slope coding, one log-rate coefficient per group.
    """
    if single_hit.design.kind != DesignKind.SINGLE_HIT:
        raise ValueError(f"Unit-slope refit needs a single_hit fit, got {single_hit.design.name}")
    return fit_counts(
        unit_slope_design(single_hit.design),
        single_hit.responded,
        single_hit.tested,
        single_hit.bias_reduced,
        max_iter=max_iter,
        tol=tol,
    )


def score_and_information(
    matrix: np.ndarray, responded: np.ndarray, tested: np.ndarray, pi: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """
    Log-likelihood score and expected information at fitted probabilities.

    Parameters
    ----------
    matrix : np.ndarray, shape (n, p)
        Design whose coefficients the score is taken with respect to.
    responded, tested : np.ndarray, shape (n,)
    pi : np.ndarray, shape (n,)
        Fitted probabilities, e.g. from a restricted fit.

    Returns
    -------
    tuple
        (score shape (p,), information shape (p, p))
    """
    eta = np.log(-np.log1p(-np.asarray(pi, dtype=float)))
    _eta, _t, pi_c, mu_eta, w = _cloglog_terms(eta, tested)
    score = matrix.T @ ((responded - tested * pi_c) * w / mu_eta)
    return score, _information(matrix, w)


def _separated_groups(
    free: np.ndarray, responded: np.ndarray, tested: np.ndarray, labels: tuple[str, ...]
) -> tuple[str, ...] | None:
    """
    Detect (quasi-)separation of the free coefficients.

    Looks for a direction ``d`` with ``x_i' d >= 0`` on every row with a
    response and ``x_i' d <= 0`` on every row with a non-response (Konis'
    linear program). Moving along such a direction never lowers the
    likelihood, so no finite maximum exists when one is found.

    Returns
    -------
    tuple of str or None
        Groups of the rows the direction moves, or None without separation.
    """
    responding = responded > 0
    failing = responded < tested
    gain = free[responding & ~failing].sum(axis=0) - free[failing & ~responding].sum(axis=0)
    constraints = np.vstack([-free[responding], free[failing]])
    res = linprog(
        -gain,
        A_ub=constraints,
        b_ub=np.zeros(constraints.shape[0]),
        bounds=[(-1.0, 1.0)] * free.shape[1],
        method="highs",
    )
    if res.status != 0 or -res.fun <= _SEPARATION_TOL:
        return None
    moved = np.abs(free @ res.x) > _SEPARATION_TOL
    return tuple(dict.fromkeys(lab for lab, hit in zip(labels, moved) if hit))


def _expand(
    beta_free: np.ndarray | None,
    free_mask: np.ndarray,
    fixed_idx: np.ndarray,
    fixed_values: np.ndarray,
) -> np.ndarray | None:
    """Full coefficient vector with fixed values inserted."""
    if beta_free is None:
        return None
    coefs = np.zeros(free_mask.shape[0])
    coefs[free_mask] = beta_free
    coefs[fixed_idx] = fixed_values
    return coefs
