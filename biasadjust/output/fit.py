"""Auxiliary-fit diagnostics.

Compares the binned relative-frequency distribution of an auxiliary covariate in
the population with that of the raw sample and of the adjusted sample. Bin edges
are equal-width over the population range and shared by all three
distributions; empty bins stay in the vectors with value 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from biasadjust.core import bootstrap as bt
from biasadjust.estimators.base import Provenance

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from biasadjust.core.frame import SurveyFrame
    from biasadjust.estimators.base import EstimatorOutput

__all__ = [
    "AuxiliaryFit",
    "auxiliary_fit",
    "bin_edges",
    "mean_absolute_error",
    "relative_frequency",
    "resampled_frequency",
    "supports_fit",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_BINS: int = 50


def bin_edges(values: NDArray[np.float64], n_bins: int = DEFAULT_BINS) -> NDArray[np.float64]:
    """Equal-width edges spanning the range of ``values``."""
    if int(n_bins) < 1:
        raise ValueError("n_bins must be >= 1.")
    x = np.asarray(values, dtype=np.float64)
    if x.size == 0 or not np.all(np.isfinite(x)):
        raise ValueError("bin edges need a non-empty finite reference vector.")
    lo, hi = float(np.min(x)), float(np.max(x))
    if lo == hi:
        lo, hi = lo - 0.5, hi + 0.5
    return np.linspace(lo, hi, int(n_bins) + 1)


def relative_frequency(
    values: NDArray[np.float64],
    edges: NDArray[np.float64],
    weights: NDArray[np.float64] | None = None,
) -> NDArray[np.float64]:
    """(Weighted) share of ``values`` per bin; values beyond the edges go to the end bins."""
    x = np.clip(np.asarray(values, dtype=np.float64), edges[0], edges[-1])
    counts, _ = np.histogram(x, bins=edges, weights=weights)
    total = float(np.sum(counts))
    if total == 0.0:
        return np.zeros(edges.shape[0] - 1)
    return counts / total


def resampled_frequency(
    values: NDArray[np.float64],
    probabilities: NDArray[np.float64],
    edges: NDArray[np.float64],
    *,
    size: int,
    n_rep: int = 200,
    seed: int | None = None,
) -> NDArray[np.float64]:
    """Average relative frequency over ``n_rep`` probability-weighted resamples."""
    x = np.asarray(values, dtype=np.float64)
    p = np.asarray(probabilities, dtype=np.float64)
    if x.shape != p.shape:
        raise ValueError("values and probabilities must have equal length.")
    acc = np.zeros(edges.shape[0] - 1)
    for ss in bt.seed_sequence(seed).spawn(int(n_rep)):
        rng = np.random.default_rng(ss)
        idx = rng.choice(x.shape[0], size=int(size), replace=True, p=p)
        acc += relative_frequency(x[idx], edges)
    return acc / float(n_rep)


def mean_absolute_error(a: NDArray[np.float64], b: NDArray[np.float64]) -> float:
    """Bin-by-bin mean absolute difference of two relative-frequency vectors."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError("frequency vectors must share their bins.")
    return float(np.mean(np.abs(a - b)))


def supports_fit(output: EstimatorOutput) -> bool:
    """True when ``output`` carries unit weights or resampling probabilities."""
    return output.weights is not None or output.probabilities is not None


@dataclass(frozen=True)
class AuxiliaryFit:
    """Distributional fit of one auxiliary for one method and period."""

    auxiliary: str
    method: str
    period: int
    edges: NDArray[np.float64]
    population: NDArray[np.float64]
    sample: NDArray[np.float64]
    adjusted: NDArray[np.float64]
    mae_sample: float
    mae_adjusted: float
    provenance: str

    @property
    def improvement(self) -> float:
        """Reduction in MAE achieved by the adjustment (positive is better)."""
        return self.mae_sample - self.mae_adjusted

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "bin_lower": self.edges[:-1],
                "bin_upper": self.edges[1:],
                "population": self.population,
                "sample": self.sample,
                "adjusted": self.adjusted,
            },
        )


def auxiliary_fit(
    frame: SurveyFrame,
    output: EstimatorOutput,
    auxiliary: str,
    *,
    n_bins: int = DEFAULT_BINS,
    n_rep: int = 200,
    size: int | None = None,
    seed: int | None = None,
) -> AuxiliaryFit:
    """Fit diagnostics of ``auxiliary`` for one estimator output.

    Weighting methods are evaluated with their unit weights (provenance
    ``exact``). Resampling methods that expose unit probabilities are evaluated
    by averaging ``n_rep`` resamples of ``size`` units (default: the
    estimator's subsample size); the result is ``diagnostic-only``.

    Raises
    ------
    ValueError
        ``output`` has neither unit weights nor resampling probabilities (MRP).

    """
    if not supports_fit(output):
        raise ValueError(
            f"{output.method} provides neither unit weights nor resampling probabilities; "
            "auxiliary-fit diagnostics do not apply.",
        )
    pop = frame.population_aux([auxiliary])[auxiliary].to_numpy(dtype=np.float64)
    edges = bin_edges(pop, n_bins)
    pop_freq = relative_frequency(pop, edges)

    sample_vals = frame.sample(output.period).aux[auxiliary].to_numpy(dtype=np.float64)
    sample_freq = relative_frequency(sample_vals, edges)

    ids = frame.data[frame.schema.unit_id]
    rows = pd.Index(ids).get_indexer(pd.Index(output.unit_ids))
    if np.any(rows < 0):
        raise ValueError(f"{output.method}: output refers to unit ids absent from the frame.")
    unit_vals = frame.data[auxiliary].to_numpy(dtype=np.float64)[rows]

    if output.weights is not None:
        adjusted = relative_frequency(unit_vals, edges, weights=output.weights)
        provenance = Provenance.EXACT
    else:
        m = int(size if size is not None else output.extra.get("subsample_size", unit_vals.shape[0]))
        adjusted = resampled_frequency(
            unit_vals, output.probabilities, edges, size=m, n_rep=n_rep, seed=seed,
        )
        provenance = Provenance.DIAGNOSTIC_ONLY

    fit = AuxiliaryFit(
        auxiliary=auxiliary,
        method=output.method,
        period=output.period,
        edges=edges,
        population=pop_freq,
        sample=sample_freq,
        adjusted=adjusted,
        mae_sample=mean_absolute_error(pop_freq, sample_freq),
        mae_adjusted=mean_absolute_error(pop_freq, adjusted),
        provenance=provenance,
    )
    LOGGER.debug(
        "fit %s/%s period %d: mae sample=%.5f adjusted=%.5f",
        output.method, auxiliary, output.period, fit.mae_sample, fit.mae_adjusted,
    )
    return fit
