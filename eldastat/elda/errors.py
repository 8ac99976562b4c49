# File: eldastat/elda/errors.py
# Location: eldastat/eldastat/elda/errors.py
"""
Exception taxonomy for the ELDA engine.

Every error carries a ``details`` dict with enough context (group, model,
test) to diagnose the failure without re-running the analysis. All classes
define ``__reduce__`` so they survive pickling across ProcessPoolExecutor
boundaries used by the pairwise comparator.
"""

from __future__ import annotations

from typing import Any

import numpy as np


class ELDAError(Exception):
    """Base exception for all ELDA engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize ELDA error.

        Parameters
        ----------
        message : str
            Error message
        details : dict, optional
            Additional error details
        """
        super().__init__(message)
        self.details = details or {}

    def __reduce__(self):
        """Custom pickling to handle multiprocessing correctly."""
        return (self.__class__, (str(self), self.details))


class InputValidationError(ELDAError):
    """Raised when the input table violates a dataset invariant."""

    def __init__(self, message: str, invariant: str, row: int | None = None):
        """Initialize input validation error."""
        super().__init__(message, {"invariant": invariant, "row": row})
        self.invariant = invariant
        self.row = row

    def __reduce__(self):
        """Custom pickling to handle multiprocessing correctly."""
        return (self.__class__, (str(self), self.invariant, self.row))


class DesignError(ELDAError):
    """Base class for unidentifiable design matrices."""


class InsufficientGroupsError(DesignError):
    """Raised when the dataset holds too few groups to build a design."""

    def __init__(self, n_groups: int, required: int = 1):
        """Initialize insufficient groups error."""
        message = f"At least {required} group(s) required, dataset has {n_groups}"
        super().__init__(message, {"n_groups": n_groups, "required": required})
        self.n_groups = n_groups
        self.required = required

    def __reduce__(self):
        """Custom pickling to handle multiprocessing correctly."""
        return (self.__class__, (self.n_groups, self.required))


class DegenerateDoseError(DesignError):
    """Raised when a group has fewer than two distinct dose levels."""

    def __init__(self, group: str, n_doses: int):
        """Initialize degenerate dose error."""
        message = (
            f"Group '{group}' has {n_doses} distinct dose level(s); at least 2 are "
            "needed to estimate its frequency and log-dose interaction"
        )
        super().__init__(message, {"group": group, "n_doses": n_doses})
        self.group = group
        self.n_doses = n_doses

    def __reduce__(self):
        """Custom pickling to handle multiprocessing correctly."""
        return (self.__class__, (self.group, self.n_doses))


class ConvergenceError(ELDAError):
    """
    Raised when iteratively reweighted least squares does not converge.

    The last coefficient vector and achieved tolerance are kept for
    diagnostics only; they are never treated as a fitted model. ``groups``
    names the separated groups when no finite maximum-likelihood estimate
    exists.
    """

    def __init__(
        self,
        model: str,
        coefficients: np.ndarray | None,
        tolerance: float,
        iterations: int,
        reason: str = "iteration limit reached",
        groups: tuple[str, ...] = (),
    ):
        """Initialize convergence error."""
        message = (
            f"Model '{model}' failed to converge after {iterations} iterations "
            f"({reason}; achieved tolerance {tolerance:.3g})"
        )
        coefs = None if coefficients is None else np.asarray(coefficients, dtype=float).copy()
        super().__init__(
            message,
            {
                "model": model,
                "coefficients": coefs,
                "tolerance": tolerance,
                "iterations": iterations,
                "reason": reason,
                "groups": tuple(groups),
            },
        )
        self.model = model
        self.coefficients = coefs
        self.tolerance = tolerance
        self.iterations = iterations
        self.reason = reason
        self.groups = tuple(groups)

    def __reduce__(self):
        """Custom pickling to handle multiprocessing correctly."""
        return (
            self.__class__,
            (
                self.model,
                self.coefficients,
                self.tolerance,
                self.iterations,
                self.reason,
                self.groups,
            ),
        )


class DegenerateDFError(ELDAError):
    """Raised when a test has zero or negative degrees of freedom."""

    def __init__(self, test: str, df: int):
        """Initialize degenerate degrees-of-freedom error."""
        message = f"Test '{test}' has {df} degrees of freedom; the test is undefined"
        super().__init__(message, {"test": test, "df": df})
        self.test = test
        self.df = df

    def __reduce__(self):
        """Custom pickling to handle multiprocessing correctly."""
        return (self.__class__, (self.test, self.df))
