"""Base classes and resampling configuration.

This module defines the abstract estimator interface shared by the five
bias-adjustment strategies, the immutable per-period output record, the
auxiliary inputs every strategy reads, and the resampling configuration.
"""

# biasadjust/estimators/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from biasadjust.core import bootstrap as bt
from biasadjust.core.inference import normalize_ci_level

if TYPE_CHECKING:  # import-only typing
    from collections.abc import Mapping

    from numpy.typing import NDArray

    from biasadjust.core.frame import PeriodSample
    from biasadjust.core.strata import PoststratumTable

__all__ = [
    "AuxiliaryInputs",
    "BaseEstimator",
    "EstimatorOutput",
    "Provenance",
    "ResampleConfig",
    "normalize_ci_level",
]

# Tolerance for the [0, 1] range check of point estimates.
_RANGE_TOL = 1e-9


class Provenance:
    """Quality flag attached to every reported number.

    ``EXACT``: computed as specified. ``PARTIAL``: computed after a documented
    degeneracy (dropped strata, uncovered cells, calibration fallback).
    ``DIAGNOSTIC_ONLY``: an approximation usable for diagnostics only, such as
    a distributional fit obtained by resampling instead of unit weights.
    """

    EXACT = "exact"
    PARTIAL = "partial"
    DIAGNOSTIC_ONLY = "diagnostic-only"

    ALL = (EXACT, PARTIAL, DIAGNOSTIC_ONLY)


def _readonly(arr: Any) -> NDArray[np.float64] | None:
    if arr is None:
        return None
    out = np.array(arr, dtype=np.float64, copy=True)
    out.setflags(write=False)
    return out


# ---------------------------------------------------------------------
# Results container, estimator-agnostic
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class EstimatorOutput:
    """Immutable result of one estimator for one period.

    Weighting methods fill ``weights`` (aligned with ``unit_ids``) and ``se``.
    Resampling methods fill ``draws`` and, when they resample sampled units,
    ``probabilities``. ``extra`` holds method-specific diagnostics as a read-only
    mapping.
    """

    method: str
    period: int
    estimate: float
    interval: tuple[float, float]
    interval_kind: str
    n_sample: int
    se: float | None = None
    unit_ids: NDArray | None = None
    weights: NDArray[np.float64] | None = None
    probabilities: NDArray[np.float64] | None = None
    draws: NDArray[np.float64] | None = None
    provenance: str = Provenance.EXACT
    notes: tuple[str, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        lo, hi = self.interval
        return (
            f"EstimatorOutput({self.method}, period={self.period}, "
            f"estimate={self.estimate:.4f}, interval=({lo:.4f}, {hi:.4f}), {self.provenance})"
        )

    def __post_init__(self) -> None:
        object.__setattr__(self, "estimate", float(self.estimate))
        object.__setattr__(self, "interval", (float(self.interval[0]), float(self.interval[1])))
        object.__setattr__(self, "weights", _readonly(self.weights))
        object.__setattr__(self, "probabilities", _readonly(self.probabilities))
        object.__setattr__(self, "draws", _readonly(self.draws))
        if self.unit_ids is not None:
            ids = np.array(self.unit_ids, copy=True)
            ids.setflags(write=False)
            object.__setattr__(self, "unit_ids", ids)
        object.__setattr__(self, "notes", tuple(self.notes))
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))
        self.validate()

    def validate(self) -> None:
        """Validate the output contract.

        - The point estimate is finite and lies in [0, 1] (binary outcome).
        - Analytic outputs carry ``se``; resampling outputs carry ``draws``.
        - Unit-level vectors are aligned with ``unit_ids``.
        """
        if not np.isfinite(self.estimate):
            raise ValueError(f"{self.method}: point estimate is not finite.")
        if self.estimate < -_RANGE_TOL or self.estimate > 1.0 + _RANGE_TOL:
            raise ValueError(f"{self.method}: point estimate {self.estimate} outside [0, 1].")
        if self.interval_kind not in {"analytic", "resampling"}:
            raise ValueError("interval_kind must be 'analytic' or 'resampling'.")
        if self.interval_kind == "analytic" and self.se is None:
            raise ValueError(f"{self.method}: analytic outputs require se.")
        if self.interval_kind == "resampling" and self.draws is None:
            raise ValueError(f"{self.method}: resampling outputs require draws.")
        if self.provenance not in Provenance.ALL:
            raise ValueError(f"unknown provenance {self.provenance!r}.")
        for label in ("weights", "probabilities"):
            vec = getattr(self, label)
            if vec is None:
                continue
            if self.unit_ids is None or vec.shape[0] != self.unit_ids.shape[0]:
                raise ValueError(f"{self.method}: {label} must align with unit_ids.")

    @property
    def has_unit_weights(self) -> bool:
        return self.weights is not None

    def weight_series(self) -> pd.Series | None:
        """Unit weights indexed by unit id (None for weight-less methods)."""
        if self.weights is None:
            return None
        return pd.Series(self.weights, index=pd.Index(self.unit_ids, name="unit_id"), name="weight")


@dataclass(frozen=True)
class AuxiliaryInputs:
    """Population-side inputs shared by all estimators for one period.

    ``totals`` is the calibration total vector (count as ``"(Intercept)"``).
    ``posterior`` is the externally fitted S x C matrix of cell probabilities
    for this period, required only by the MRP strategy.
    """

    table: PoststratumTable
    totals: pd.Series | None = None
    posterior: Any = None
    alignment: Any = None


@dataclass(frozen=True)
class ResampleConfig:
    """Resampling configuration shared by the replicate-based estimators.

    Notes
    -----
    - Replications: default is 1000.
    - ``subsample_size``: number of units drawn (with replacement) per replicate.
    - Reproducibility: ``seed`` initializes a ``SeedSequence`` that is spawned
      into one independent generator per replicate. Reusing the seed across the
      two periods keeps their replicate vectors aligned.
    - ``n_jobs``: worker threads; ``None`` reads ``BIASADJUST_N_JOBS``.

    """

    n_boot: int = bt.DEFAULT_BOOTSTRAP_ITERATIONS
    seed: int | None = None
    subsample_size: int = 300
    n_jobs: int | None = None
    batch_size: int = 100

    def __post_init__(self) -> None:
        if int(self.n_boot) < 2:
            raise ValueError("n_boot must be >= 2.")
        if int(self.subsample_size) < 1:
            raise ValueError("subsample_size must be >= 1.")
        if self.n_jobs is not None and int(self.n_jobs) < 1:
            raise ValueError("n_jobs must be >= 1.")


class BaseEstimator(ABC):
    """Common interface of the bias-adjustment strategies.

    Subclasses set ``name`` and ``interval_kind`` and implement
    :meth:`estimate`. Estimators hold configuration only; every call builds a
    fresh :class:`EstimatorOutput` from its arguments.
    """

    name: str = "base"
    interval_kind: str = "analytic"

    def __init__(self, *, ci_level: float = 0.95) -> None:
        self.ci_level = normalize_ci_level(ci_level)

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        return f"{type(self).__name__}(ci_level={self.ci_level})"

    @abstractmethod
    def estimate(
        self, sample: PeriodSample, inputs: AuxiliaryInputs,
    ) -> EstimatorOutput:  # pragma: no cover - abstract
        """Estimate the population mean of ``sample``'s period."""
        ...

    def supports_unit_weights(self) -> bool:
        """True when outputs carry unit-level weights."""
        return self.interval_kind == "analytic"

    def _output(self, sample: PeriodSample, **kwargs: Any) -> EstimatorOutput:
        kwargs.setdefault("interval_kind", self.interval_kind)
        se = kwargs.get("se")
        if kwargs["interval_kind"] == "analytic" and se is not None and not np.isfinite(se):
            kwargs["provenance"] = Provenance.PARTIAL
            kwargs["notes"] = (
                *kwargs.get("notes", ()),
                f"standard error undefined with {sample.n} sampled unit(s); interval is NaN",
            )
        return EstimatorOutput(
            method=self.name,
            period=sample.period,
            n_sample=sample.n,
            **kwargs,
        )
