# File: eldastat/elda/base.py
# Location: eldastat/eldastat/elda/base.py
"""
Core data model for the ELDA engine.

Defines the immutable input records (Observation, Dataset), the runtime
configuration (ELDAConfig), and the value objects passed between the
engine components (FittedModel, FrequencyEstimate, TestResult,
PairwiseComparison, ELDAResult).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from eldastat.elda.errors import InputValidationError

if TYPE_CHECKING:
    from eldastat.elda.design import DesignSpec

logger = logging.getLogger("eldastat")

REQUIRED_COLUMNS = ("dose", "responded", "tested", "group")

INTERVAL_METHODS = ("wald", "profile")
CORRECTION_METHODS = ("none", "fdr", "bonferroni")


@dataclass(frozen=True)
class Observation:
    """
    One row of a limiting dilution assay.

    Fields
    ------
    dose : float
        Number of cells plated per well. Strictly positive.
    responded : int
        Number of wells with a positive response.
    tested : int
        Number of wells tested at this dose.
    group : str
        Experimental group label.
    """

    dose: float
    responded: int
    tested: int
    group: str


def _as_count(value: Any, column: str, row: int) -> int:
    """Coerce an integer-valued cell to int, rejecting fractional or non-numeric values."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InputValidationError(
            f"Row {row}: column '{column}' must be an integer, got {value!r}",
            invariant=f"{column} is an integer",
            row=row,
        ) from None
    if not math.isfinite(number) or number != int(number):
        raise InputValidationError(
            f"Row {row}: column '{column}' must be an integer, got {value!r}",
            invariant=f"{column} is an integer",
            row=row,
        )
    return int(number)


def _as_dose(value: Any, row: int) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InputValidationError(
            f"Row {row}: column 'dose' must be numeric, got {value!r}",
            invariant="dose > 0",
            row=row,
        ) from None


def _validate_observation(obs: Observation, row: int) -> None:
    """Check the per-row invariants, naming the first one violated."""
    if not isinstance(obs.group, str) or not obs.group.strip():
        raise InputValidationError(
            f"Row {row}: group label must be a non-empty string, got {obs.group!r}",
            invariant="group is a non-empty label",
            row=row,
        )
    if not math.isfinite(obs.dose) or obs.dose <= 0:
        raise InputValidationError(
            f"Row {row}: dose must be a positive finite number, got {obs.dose}",
            invariant="dose > 0",
            row=row,
        )
    if obs.tested <= 0:
        raise InputValidationError(
            f"Row {row}: tested must be positive, got {obs.tested}",
            invariant="tested > 0",
            row=row,
        )
    if obs.responded < 0:
        raise InputValidationError(
            f"Row {row}: responded must be non-negative, got {obs.responded}",
            invariant="0 <= responded",
            row=row,
        )
    if obs.responded > obs.tested:
        raise InputValidationError(
            f"Row {row}: responded ({obs.responded}) exceeds tested ({obs.tested})",
            invariant="responded <= tested",
            row=row,
        )


@dataclass(frozen=True)
class Dataset:
    """
    Ordered, validated collection of Observations.

    Group order is the order of first appearance; the first group is the
    reference level of every treatment-coded design and pairwise
    comparisons follow this order.
    """

    observations: tuple[Observation, ...]

    def __post_init__(self) -> None:
        obs = tuple(self.observations)
        object.__setattr__(self, "observations", obs)
        for i, o in enumerate(obs):
            _validate_observation(o, i)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> Dataset:
        """
        Build a Dataset from mappings with dose/responded/tested/group keys.

        Raises
        ------
        InputValidationError
            If a key is missing or a value violates a row invariant.
        """
        observations = []
        for i, rec in enumerate(records):
            missing = [c for c in REQUIRED_COLUMNS if c not in rec]
            if missing:
                raise InputValidationError(
                    f"Row {i}: missing field(s) {', '.join(missing)}",
                    invariant="required columns present",
                    row=i,
                )
            group = rec["group"]
            if group is None or (isinstance(group, float) and math.isnan(group)):
                raise InputValidationError(
                    f"Row {i}: group label is missing",
                    invariant="group is a non-empty label",
                    row=i,
                )
            observations.append(
                Observation(
                    dose=_as_dose(rec["dose"], i),
                    responded=_as_count(rec["responded"], "responded", i),
                    tested=_as_count(rec["tested"], "tested", i),
                    group=group if isinstance(group, str) else str(group),
                )
            )
        return cls(tuple(observations))

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> Dataset:
        """Build a Dataset from a DataFrame with the four required columns."""
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise InputValidationError(
                f"Input table is missing required column(s): {', '.join(missing)}. "
                f"Available columns: {list(df.columns)}",
                invariant="required columns present",
            )
        return cls.from_records(df[list(REQUIRED_COLUMNS)].to_dict("records"))

    def __len__(self) -> int:
        return len(self.observations)

    @property
    def groups(self) -> tuple[str, ...]:
        """Distinct group labels in order of first appearance."""
        return tuple(dict.fromkeys(o.group for o in self.observations))

    @property
    def doses(self) -> np.ndarray:
        return np.array([o.dose for o in self.observations], dtype=float)

    @property
    def log_doses(self) -> np.ndarray:
        return np.log(self.doses)

    @property
    def responded(self) -> np.ndarray:
        return np.array([o.responded for o in self.observations], dtype=float)

    @property
    def tested(self) -> np.ndarray:
        return np.array([o.tested for o in self.observations], dtype=float)

    @property
    def group_labels(self) -> tuple[str, ...]:
        """Group label per observation."""
        return tuple(o.group for o in self.observations)

    def subset(self, groups: Sequence[str]) -> Dataset:
        """Return a new Dataset holding only the observations of ``groups``."""
        keep = set(groups)
        unknown = keep.difference(self.groups)
        if unknown:
            raise KeyError(f"Unknown group(s): {sorted(unknown)}")
        return Dataset(tuple(o for o in self.observations if o.group in keep))

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {"dose": o.dose, "responded": o.responded, "tested": o.tested, "group": o.group}
                for o in self.observations
            ],
            columns=list(REQUIRED_COLUMNS),
        )


@dataclass(frozen=True)
class ELDAConfig:
    """
    Configuration for the ELDA engine.

    Fields
    ------
    confidence_level : float
        Coverage of the frequency confidence intervals. Default: 0.95.
    bias_reduced : bool
        Fit with the Jeffreys-prior (Firth-type) penalty. Default: True.
        False gives plain maximum likelihood ("observed" estimates).
    interval_method : str
        "profile" (profile likelihood, default) or "wald".
    """

    confidence_level: float = 0.95
    bias_reduced: bool = True
    interval_method: str = "profile"

    max_iter: int = 100
    """Maximum IRLS iterations per fit before ConvergenceError."""

    tol: float = 1e-8
    """Convergence tolerance on coefficient change (absolute + relative)."""

    workers: int = 1
    """Worker processes for pairwise comparisons. 1 = sequential, -1 = os.cpu_count()."""

    pairwise_correction: str = "none"
    """Multiple-testing correction of pairwise p-values: "none", "fdr" or "bonferroni"."""

    def __post_init__(self) -> None:
        if not 0.0 < self.confidence_level < 1.0:
            raise ValueError(
                f"confidence_level must lie strictly between 0 and 1, got {self.confidence_level}"
            )
        if self.interval_method not in INTERVAL_METHODS:
            raise ValueError(
                f"interval_method must be one of {', '.join(INTERVAL_METHODS)}, "
                f"got '{self.interval_method}'"
            )
        if self.pairwise_correction not in CORRECTION_METHODS:
            raise ValueError(
                f"pairwise_correction must be one of {', '.join(CORRECTION_METHODS)}, "
                f"got '{self.pairwise_correction}'"
            )
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be at least 1, got {self.max_iter}")
        if self.tol <= 0:
            raise ValueError(f"tol must be positive, got {self.tol}")
        if self.workers == 0 or self.workers < -1:
            raise ValueError(f"workers must be -1 or a positive integer, got {self.workers}")

    @classmethod
    def from_dict(cls, cfg: Mapping[str, Any]) -> ELDAConfig:
        """
        Build a config from a loaded configuration dict.

        Unknown keys are ignored so the same dict can carry CLI-only options.
        Values set to None fall back to the dataclass default.
        """
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in cfg.items() if k in known and v is not None}
        return cls(**kwargs)


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    Result of one cloglog binomial GLM fit.

    Fields
    ------
    design : DesignSpec
        Design the model was fitted on.
    coefficients : np.ndarray, shape (p,)
        Coefficient estimates, fixed coefficients included.
    covariance : np.ndarray, shape (p, p)
        Inverse expected information at the estimate. Rows and columns of
        fixed coefficients are zero.
    log_likelihood : float
        Binomial log-likelihood at the estimate.
    penalized_log_likelihood : float
        log_likelihood + 0.5 log|X'WX| for bias-reduced fits; equal to
        log_likelihood otherwise.
    deviance : float
        Residual deviance against the saturated model.
    df_residual : int
        n_observations - number of estimated coefficients.
    fitted : np.ndarray, shape (n,)
        Fitted response probabilities.
    responded, tested : np.ndarray, shape (n,)
        Copies of the response counts the model was fitted to.
    """

    design: DesignSpec
    coefficients: np.ndarray
    covariance: np.ndarray
    log_likelihood: float
    penalized_log_likelihood: float
    deviance: float
    df_residual: int
    fitted: np.ndarray
    responded: np.ndarray
    tested: np.ndarray
    iterations: int
    bias_reduced: bool
    fixed: Mapping[str, float] = field(default_factory=dict)

    @property
    def n_observations(self) -> int:
        return int(self.fitted.shape[0])

    @property
    def n_parameters(self) -> int:
        """Number of estimated (non-fixed) coefficients."""
        return len(self.design.column_names) - len(self.fixed)

    @property
    def standard_errors(self) -> np.ndarray:
        return np.sqrt(np.clip(np.diag(self.covariance), 0.0, None))

    def coefficient(self, column: str) -> float:
        """Coefficient value for a named design column."""
        return float(self.coefficients[self.design.column_index(column)])


@dataclass(frozen=True)
class FrequencyEstimate:
    """
    Per-group estimate of 1/(responding unit frequency).

    ``estimate`` is the number of cells needed to contain one responding
    unit; ``lower`` and ``upper`` are always in ascending order.
    """

    group: str
    estimate: float
    lower: float
    upper: float
    method: str

    @property
    def frequency(self) -> float:
        """Responding-unit frequency, i.e. 1 / estimate."""
        return 1.0 / self.estimate


@dataclass(frozen=True)
class TestResult:
    """
    Chi-square test outcome.

    Fields
    ------
    name : str
        Test identifier ("overall", "single_hit_validity", "goodness_of_fit",
        "overdispersion", "unit_slope", "unit_slope_score").
    statistic : float
        Chi-square statistic, >= 0.
    df : int
        Degrees of freedom, >= 1.
    p_value : float
        Upper-tail chi-square probability.
    """

    __test__ = False  # not a pytest test class

    name: str
    statistic: float
    df: int
    p_value: float


@dataclass(frozen=True)
class PairwiseComparison:
    """Overall test restricted to two groups."""

    group1: str
    group2: str
    result: TestResult
    corrected_p_value: float | None = None


@dataclass(frozen=True)
class ELDAResult:
    """
    Result bundle handed to reporting collaborators.

    Holds numbers only: no rounding, no formatting, no layout.
    """

    groups: tuple[str, ...]
    estimates: dict[str, FrequencyEstimate]
    tests: dict[str, TestResult]
    skipped_tests: dict[str, str]
    pairwise: list[PairwiseComparison]
    slope: float
    slope_se: float
    config: ELDAConfig

    @property
    def overall(self) -> TestResult | None:
        return self.tests.get("overall")

    def estimates_frame(self) -> pd.DataFrame:
        """One row per group: group, lower, estimate, upper, method."""
        return pd.DataFrame(
            [
                {
                    "group": e.group,
                    "lower": e.lower,
                    "estimate": e.estimate,
                    "upper": e.upper,
                    "method": e.method,
                }
                for e in self.estimates.values()
            ],
            columns=["group", "lower", "estimate", "upper", "method"],
        )

    def tests_frame(self) -> pd.DataFrame:
        """One row per full-dataset test that was computed."""
        return pd.DataFrame(
            [
                {"test": t.name, "chisq": t.statistic, "df": t.df, "p_value": t.p_value}
                for t in self.tests.values()
            ],
            columns=["test", "chisq", "df", "p_value"],
        )

    def pairwise_frame(self) -> pd.DataFrame:
        """One row per group pair in stable pair order."""
        return pd.DataFrame(
            [
                {
                    "group1": c.group1,
                    "group2": c.group2,
                    "chisq": c.result.statistic,
                    "df": c.result.df,
                    "p_value": c.result.p_value,
                    "corrected_p_value": c.corrected_p_value,
                }
                for c in self.pairwise
            ],
            columns=["group1", "group2", "chisq", "df", "p_value", "corrected_p_value"],
        )
