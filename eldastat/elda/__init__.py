# File: eldastat/elda/__init__.py
# Location: eldastat/eldastat/elda/__init__.py
"""
eldastat.elda: extreme limiting dilution analysis engine.

Fits complementary log-log binomial GLMs to dilution-assay counts,
estimates per-group responding-unit frequencies and compares them across
groups with nested likelihood-ratio tests.

Public API
----------
Observation, Dataset : Validated input records
ELDAConfig           : Configuration dataclass (confidence level, bias reduction, ...)
ELDAEngine           : Orchestrator: designs, fits, estimates, tests, pairwise
ELDAResult           : Result bundle returned by ELDAEngine.run()
run_elda             : Convenience function accepting records or a DataFrame
"""

from eldastat.elda.base import (
    Dataset,
    ELDAConfig,
    ELDAResult,
    FittedModel,
    FrequencyEstimate,
    Observation,
    PairwiseComparison,
    TestResult,
)
from eldastat.elda.engine import ELDAEngine, run_elda
from eldastat.elda.errors import (
    ConvergenceError,
    DegenerateDFError,
    DegenerateDoseError,
    DesignError,
    ELDAError,
    InputValidationError,
    InsufficientGroupsError,
)

__all__ = [
    "ConvergenceError",
    "Dataset",
    "DegenerateDFError",
    "DegenerateDoseError",
    "DesignError",
    "ELDAConfig",
    "ELDAEngine",
    "ELDAError",
    "ELDAResult",
    "FittedModel",
    "FrequencyEstimate",
    "InputValidationError",
    "InsufficientGroupsError",
    "Observation",
    "PairwiseComparison",
    "TestResult",
    "run_elda",
]
