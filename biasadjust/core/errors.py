"""Error and warning kinds raised by the estimator core.

Precondition failures subclass ``ValueError`` so callers that already catch
``ValueError`` keep working. Statistical degeneracies that a method can recover
from are warnings or dedicated exception types the suite knows how to isolate.
"""

from __future__ import annotations

import numpy as np

__all__ = [
    "CalibrationNonConvergence",
    "CalibrationWarning",
    "InsufficientStrataCoverage",
    "InvalidProbability",
    "RECOVERABLE_ERRORS",
    "ReplicateCountMismatch",
    "StratumMismatch",
]


class InvalidProbability(ValueError):
    """Inclusion or cell probability outside its admissible range."""


class StratumMismatch(ValueError):
    """Sample stratum key (or posterior cell) absent from the poststratum table."""


class ReplicateCountMismatch(ValueError):
    """Replicate vectors of two periods cannot be paired."""


class CalibrationNonConvergence(np.linalg.LinAlgError):
    """Calibration equations have no (numerically) unique solution."""


class InsufficientStrataCoverage(UserWarning):
    """Sampled strata cover less of the population than the configured threshold."""


class CalibrationWarning(UserWarning):
    """Calibration fell back to base weights or missed its totals."""


# Kinds the estimator suite isolates per method instead of aborting the run.
RECOVERABLE_ERRORS: tuple[type[Exception], ...] = (
    CalibrationNonConvergence,
    StratumMismatch,
    ReplicateCountMismatch,
    np.linalg.LinAlgError,
)
