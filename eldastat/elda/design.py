# File: eldastat/elda/design.py
# Location: eldastat/eldastat/elda/design.py
"""
Design matrix construction for the three nested ELDA models.

    NULL        intercept + log(dose)
    SINGLE_HIT  intercept + log(dose) + group indicators (treatment coding)
    FULL        SINGLE_HIT + group x log(dose) interactions

The reference level is the first group in order of appearance. All three
designs share the observation ordering of the Dataset they were built
from, so fitted values and residuals line up row by row.

``unit_slope_design()`` drops the log-dose column and carries log(dose) as a
fixed offset instead: the single-hit model proper, where the expected
number of responding units is proportional to dose. Frequencies are
estimated from it.

``group_rate_design()`` re-expresses a SINGLE_HIT design with one indicator
per group and no global intercept. Both codings span the same column space
(the transformation has unit determinant), so the likelihood and the
Jeffreys penalty are identical and the group coefficients are the group
log-rates directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np

from eldastat.elda.base import Dataset
from eldastat.elda.errors import DegenerateDoseError, InsufficientGroupsError

logger = logging.getLogger("eldastat")

INTERCEPT = "(Intercept)"
LOG_DOSE = "log_dose"


class DesignKind(str, Enum):
    """Which linear-predictor terms a design includes."""

    NULL = "null"
    SINGLE_HIT = "single_hit"
    FULL = "full"


def group_column(group: str) -> str:
    return f"group[{group}]"


def interaction_column(group: str) -> str:
    return f"log_dose:group[{group}]"


def rate_column(group: str) -> str:
    return f"log_rate[{group}]"


@dataclass(frozen=True, eq=False)
class DesignSpec:
    """
    One model matrix plus the metadata needed to interpret its columns.

    Fields
    ------
    kind : DesignKind
    matrix : np.ndarray, shape (n_observations, n_parameters)
    column_names : tuple of str
    groups : tuple of str
        Group levels; ``groups[0]`` is the reference level.
    labels : tuple of str
        Group label of each row.
    coding : str
        "treatment" (intercept + k-1 indicators), "group_rate" (one
        indicator per group, no intercept) or "unit_slope" (group_rate
        without the log-dose column).
    offset : np.ndarray or None
        Fixed term added to the linear predictor of every row.
    """

    kind: DesignKind
    matrix: np.ndarray
    column_names: tuple[str, ...]
    groups: tuple[str, ...]
    labels: tuple[str, ...]
    coding: str = "treatment"
    offset: np.ndarray | None = None

    @property
    def name(self) -> str:
        if self.coding == "treatment":
            return self.kind.value
        return f"{self.kind.value}[{self.coding}]"

    @property
    def reference_group(self) -> str:
        return self.groups[0]

    @property
    def n_observations(self) -> int:
        return int(self.matrix.shape[0])

    @property
    def n_parameters(self) -> int:
        return int(self.matrix.shape[1])

    def column_index(self, column: str) -> int:
        try:
            return self.column_names.index(column)
        except ValueError:
            raise KeyError(
                f"Column '{column}' not in {self.name} design: {list(self.column_names)}"
            ) from None


def check_identifiable(dataset: Dataset) -> None:
    """
    Verify that every group has at least two distinct dose levels.

    Raises
    ------
    InsufficientGroupsError
        If the dataset holds no groups at all.
    DegenerateDoseError
        For the first group (in appearance order) with a single dose level.
    """
    groups = dataset.groups
    if len(groups) < 1:
        raise InsufficientGroupsError(len(groups))
    for group in groups:
        doses = {o.dose for o in dataset.observations if o.group == group and o.tested > 0}
        if len(doses) < 2:
            raise DegenerateDoseError(group, len(doses))


def build_design(dataset: Dataset, kind: DesignKind) -> DesignSpec:
    """
    Build the model matrix of one nested model.

    Parameters
    ----------
    dataset : Dataset
    kind : DesignKind

    Returns
    -------
    DesignSpec
    """
    check_identifiable(dataset)
    kind = DesignKind(kind)

    groups = dataset.groups
    labels = dataset.group_labels
    log_dose = dataset.log_doses
    n = len(dataset)

    columns = [np.ones(n), log_dose]
    names = [INTERCEPT, LOG_DOSE]

    if kind in (DesignKind.SINGLE_HIT, DesignKind.FULL):
        for g in groups[1:]:
            columns.append(np.array([lab == g for lab in labels], dtype=float))
            names.append(group_column(g))

    if kind == DesignKind.FULL:
        for g in groups[1:]:
            indicator = np.array([lab == g for lab in labels], dtype=float)
            columns.append(indicator * log_dose)
            names.append(interaction_column(g))

    matrix = np.column_stack(columns)
    logger.debug(f"Built {kind.value} design: {n} observations x {len(names)} columns")
    return DesignSpec(
        kind=kind,
        matrix=matrix,
        column_names=tuple(names),
        groups=groups,
        labels=labels,
    )


def build_designs(dataset: Dataset) -> dict[DesignKind, DesignSpec]:
    """Build the NULL, SINGLE_HIT and FULL designs over the same observations."""
    return {kind: build_design(dataset, kind) for kind in DesignKind}


def group_rate_design(design: DesignSpec) -> DesignSpec:
    """
    Re-express a treatment-coded SINGLE_HIT design in group-rate coding.

    Columns are ``log_rate[g]`` for every group followed by ``log_dose``.
    """
    if design.kind != DesignKind.SINGLE_HIT:
        raise ValueError(f"Group-rate coding needs a single_hit design, got {design.kind.value}")
    if design.coding == "group_rate":
        return design
    if design.coding != "treatment":
        raise ValueError(f"Cannot re-express a {design.coding} design in group-rate coding")

    log_dose = design.matrix[:, design.column_index(LOG_DOSE)]
    columns = [
        np.array([lab == g for lab in design.labels], dtype=float) for g in design.groups
    ]
    columns.append(log_dose)
    names = [rate_column(g) for g in design.groups] + [LOG_DOSE]
    return DesignSpec(
        kind=design.kind,
        matrix=np.column_stack(columns),
        column_names=tuple(names),
        groups=design.groups,
        labels=design.labels,
        coding="group_rate",
    )


def group_rate_contrasts(design: DesignSpec) -> np.ndarray:
    """
    Contrast matrix mapping treatment-coded SINGLE_HIT coefficients to group log-rates.

    Returns
    -------
    np.ndarray, shape (n_groups, n_parameters)
        Row g selects intercept (+ group[g] for non-reference groups).
    """
    if design.kind != DesignKind.SINGLE_HIT or design.coding != "treatment":
        raise ValueError("Contrasts are defined for treatment-coded single_hit designs only")
    contrasts = np.zeros((len(design.groups), design.n_parameters))
    contrasts[:, design.column_index(INTERCEPT)] = 1.0
    for i, g in enumerate(design.groups[1:], start=1):
        contrasts[i, design.column_index(group_column(g))] = 1.0
    return contrasts


def unit_slope_design(design: DesignSpec) -> DesignSpec:
    """
    Single-hit design with the log-dose slope fixed at 1.

    Columns are ``log_rate[g]`` for every group; log(dose) enters as an
    offset, so ``exp(log_rate[g])`` is the responding-unit frequency of
    group g.
    """
    if design.kind != DesignKind.SINGLE_HIT:
        raise ValueError(f"Unit-slope coding needs a single_hit design, got {design.kind.value}")
    if design.coding == "unit_slope":
        return design

    rate = group_rate_design(design)
    slope_idx = rate.column_index(LOG_DOSE)
    keep = [i for i in range(rate.n_parameters) if i != slope_idx]
    return DesignSpec(
        kind=design.kind,
        matrix=rate.matrix[:, keep],
        column_names=tuple(rate.column_names[i] for i in keep),
        groups=design.groups,
        labels=design.labels,
        coding="unit_slope",
        offset=rate.matrix[:, slope_idx].copy(),
    )
