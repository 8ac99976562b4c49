"""
Unit tests for design matrix construction.

Checks column layout and nesting of the NULL, SINGLE_HIT and FULL
designs, identifiability failures, and the group-rate and unit-slope
reparametrisations.
"""

from __future__ import annotations

import numpy as np
import pytest

from eldastat.elda.base import Dataset
from eldastat.elda.design import (
    INTERCEPT,
    LOG_DOSE,
    DesignKind,
    build_design,
    build_designs,
    check_identifiable,
    group_column,
    group_rate_contrasts,
    group_rate_design,
    interaction_column,
    rate_column,
    unit_slope_design,
)
from eldastat.elda.errors import DegenerateDoseError, DesignError, InsufficientGroupsError


@pytest.mark.unit
class TestBuildDesign:
    """Column layout of the three nested designs."""

    def test_null_design(self, ab_dataset):
        design = build_design(ab_dataset, DesignKind.NULL)
        assert design.column_names == (INTERCEPT, LOG_DOSE)
        assert design.matrix.shape == (10, 2)
        np.testing.assert_allclose(design.matrix[:, 0], 1.0)
        np.testing.assert_allclose(design.matrix[:, 1], np.log(ab_dataset.doses))

    def test_single_hit_design_uses_first_group_as_reference(self, three_group_dataset):
        design = build_design(three_group_dataset, DesignKind.SINGLE_HIT)
        groups = three_group_dataset.groups
        assert design.reference_group == groups[0]
        assert design.column_names == (
            INTERCEPT,
            LOG_DOSE,
            group_column(groups[1]),
            group_column(groups[2]),
        )
        indicator = design.matrix[:, design.column_index(group_column(groups[1]))]
        np.testing.assert_array_equal(indicator, [0] * 5 + [1] * 5 + [0] * 5)

    def test_full_design_adds_interactions(self, ab_dataset):
        design = build_design(ab_dataset, DesignKind.FULL)
        assert design.n_parameters == 4
        col = design.matrix[:, design.column_index(interaction_column("B"))]
        expected = np.where(np.arange(10) >= 5, np.log(ab_dataset.doses), 0.0)
        np.testing.assert_allclose(col, expected)

    def test_designs_are_nested(self, three_group_dataset):
        designs = build_designs(three_group_dataset)
        assert set(designs) == set(DesignKind)
        null = designs[DesignKind.NULL]
        single_hit = designs[DesignKind.SINGLE_HIT]
        full = designs[DesignKind.FULL]
        assert null.n_parameters < single_hit.n_parameters < full.n_parameters
        # Each smaller design's columns are a prefix of the larger one
        assert full.column_names[: single_hit.n_parameters] == single_hit.column_names
        assert single_hit.column_names[: null.n_parameters] == null.column_names
        assert null.n_observations == single_hit.n_observations == full.n_observations

    def test_single_group_single_hit_equals_null(self, single_group_dataset):
        null = build_design(single_group_dataset, DesignKind.NULL)
        single_hit = build_design(single_group_dataset, DesignKind.SINGLE_HIT)
        assert single_hit.column_names == null.column_names

    def test_kind_accepts_string_value(self, ab_dataset):
        design = build_design(ab_dataset, "single_hit")
        assert design.kind is DesignKind.SINGLE_HIT
        assert design.name == "single_hit"

    def test_column_index_unknown_raises(self, ab_dataset):
        design = build_design(ab_dataset, DesignKind.NULL)
        with pytest.raises(KeyError, match="not in null design"):
            design.column_index(group_column("B"))


@pytest.mark.unit
class TestIdentifiability:
    """Designs refuse data that cannot identify every parameter."""

    def test_empty_dataset_raises(self):
        with pytest.raises(InsufficientGroupsError) as exc_info:
            check_identifiable(Dataset(()))
        assert exc_info.value.n_groups == 0

    def test_single_dose_group_raises(self, ab_records):
        records = ab_records + [
            {"dose": 20, "responded": 3, "tested": 10, "group": "C"},
            {"dose": 20, "responded": 5, "tested": 10, "group": "C"},
        ]
        with pytest.raises(DegenerateDoseError) as exc_info:
            build_design(Dataset.from_records(records), DesignKind.NULL)
        assert exc_info.value.group == "C"
        assert exc_info.value.n_doses == 1
        assert isinstance(exc_info.value, DesignError)


@pytest.mark.unit
class TestGroupRateCoding:
    """Cell-means reparametrisation of the single-hit design."""

    def test_group_rate_columns(self, three_group_dataset):
        design = build_design(three_group_dataset, DesignKind.SINGLE_HIT)
        rate = group_rate_design(design)
        groups = three_group_dataset.groups
        assert rate.coding == "group_rate"
        assert rate.name == "single_hit[group_rate]"
        assert rate.column_names == tuple(rate_column(g) for g in groups) + (LOG_DOSE,)
        # Exactly one group indicator per row
        np.testing.assert_allclose(rate.matrix[:, :3].sum(axis=1), 1.0)

    def test_same_column_space(self, three_group_dataset):
        design = build_design(three_group_dataset, DesignKind.SINGLE_HIT)
        rate = group_rate_design(design)
        stacked = np.column_stack([design.matrix, rate.matrix])
        assert np.linalg.matrix_rank(stacked) == design.n_parameters

    def test_group_rate_is_idempotent(self, ab_dataset):
        rate = group_rate_design(build_design(ab_dataset, DesignKind.SINGLE_HIT))
        assert group_rate_design(rate) is rate

    def test_group_rate_rejects_other_kinds(self, ab_dataset):
        with pytest.raises(ValueError, match="single_hit"):
            group_rate_design(build_design(ab_dataset, DesignKind.FULL))

    def test_contrasts_map_coefficients_to_log_rates(self, three_group_dataset):
        design = build_design(three_group_dataset, DesignKind.SINGLE_HIT)
        contrasts = group_rate_contrasts(design)
        assert contrasts.shape == (3, 4)
        beta = np.array([-3.0, 1.0, -1.5, -0.5])
        np.testing.assert_allclose(contrasts @ beta, [-3.0, -4.5, -3.5])


@pytest.mark.unit
class TestUnitSlopeCoding:
    """Group-rate design with the log-dose column moved into the offset."""

    def test_columns_and_offset(self, three_group_dataset):
        design = unit_slope_design(build_design(three_group_dataset, DesignKind.SINGLE_HIT))
        assert design.coding == "unit_slope"
        assert design.name == "single_hit[unit_slope]"
        assert design.column_names == tuple(rate_column(g) for g in three_group_dataset.groups)
        assert LOG_DOSE not in design.column_names
        np.testing.assert_allclose(design.offset, np.log(three_group_dataset.doses))
        np.testing.assert_allclose(design.matrix.sum(axis=1), 1.0)

    def test_from_group_rate_coding(self, ab_dataset):
        treatment = build_design(ab_dataset, DesignKind.SINGLE_HIT)
        via_rate = unit_slope_design(group_rate_design(treatment))
        direct = unit_slope_design(treatment)
        np.testing.assert_array_equal(via_rate.matrix, direct.matrix)
        np.testing.assert_array_equal(via_rate.offset, direct.offset)

    def test_is_idempotent(self, ab_dataset):
        design = unit_slope_design(build_design(ab_dataset, DesignKind.SINGLE_HIT))
        assert unit_slope_design(design) is design

    def test_single_group_has_one_column(self, single_group_dataset):
        design = unit_slope_design(build_design(single_group_dataset, DesignKind.SINGLE_HIT))
        assert design.matrix.shape == (5, 1)

    def test_rejects_other_kinds(self, ab_dataset):
        with pytest.raises(ValueError, match="single_hit"):
            unit_slope_design(build_design(ab_dataset, DesignKind.NULL))

    def test_cannot_return_to_group_rate(self, ab_dataset):
        design = unit_slope_design(build_design(ab_dataset, DesignKind.SINGLE_HIT))
        with pytest.raises(ValueError, match="unit_slope"):
            group_rate_design(design)

    def test_treatment_designs_have_no_offset(self, ab_dataset):
        for design in build_designs(ab_dataset).values():
            assert design.offset is None
