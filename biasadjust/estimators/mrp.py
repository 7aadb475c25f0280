"""Multilevel regression and poststratification (MRP), poststratification step.

The hierarchical model is fitted elsewhere; this estimator consumes its posterior
sample of cell-level occupancy probabilities (S draws x C cells, columns in the
poststratum table's cell order) and aggregates every draw by population cell
frequency.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from biasadjust.core import bootstrap as bt
from biasadjust.core.errors import InvalidProbability, StratumMismatch
from biasadjust.core.inference import percentile_interval
from biasadjust.estimators.base import AuxiliaryInputs, BaseEstimator, EstimatorOutput, Provenance

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from biasadjust.core.frame import PeriodSample
    from biasadjust.core.strata import PoststratumTable

__all__ = ["MultilevelPoststratification", "align_posterior"]

LOGGER = logging.getLogger(__name__)


def align_posterior(posterior: Any, table: PoststratumTable) -> NDArray[np.float64]:
    """Return the posterior as an (S, C) array in table cell order.

    A ``DataFrame`` is reindexed by its column labels (cell labels such as
    ``"1|3|0"``); a plain array must already have one column per cell.
    """
    if posterior is None:
        raise ValueError("MRP requires a posterior sample in AuxiliaryInputs.posterior.")
    if isinstance(posterior, pd.DataFrame):
        labels = table.labels
        cols = [str(c) for c in posterior.columns]
        missing = [lab for lab in labels if lab not in cols]
        if missing:
            raise StratumMismatch(f"posterior lacks {len(missing)} table cells, e.g. {missing[:3]}.")
        extra = [c for c in cols if c not in labels]
        if extra:
            raise StratumMismatch(f"posterior has {len(extra)} cells unknown to the table, e.g. {extra[:3]}.")
        arr = posterior.set_axis(cols, axis=1).loc[:, labels].to_numpy(dtype=np.float64)
    else:
        arr = np.asarray(posterior, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr.reshape(1, -1)
        if arr.ndim != 2:
            raise ValueError("posterior must be 2-D (draws x cells).")
        if arr.shape[1] != table.n_cells:
            raise StratumMismatch(
                f"posterior has {arr.shape[1]} cell columns; the table has {table.n_cells} cells.",
            )
    if arr.shape[0] < 2:
        raise ValueError("posterior must contain at least 2 draws.")
    if not np.all(np.isfinite(arr)) or np.any(arr < 0.0) or np.any(arr > 1.0):
        raise InvalidProbability("posterior cell probabilities must lie in [0, 1].")
    return arr


class MultilevelPoststratification(BaseEstimator):
    """Population-frequency-weighted aggregation of posterior cell probabilities.

    ``freq_floor`` raises every cell frequency to at least that value before
    weighting (0 keeps observed counts, so empty cells carry no weight). No unit
    weights exist for this method; auxiliary-fit diagnostics do not apply.
    """

    name = "mrp"
    interval_kind = "resampling"

    def __init__(self, *, freq_floor: int = 0, ci_level: float = 0.95) -> None:
        super().__init__(ci_level=ci_level)
        if int(freq_floor) < 0:
            raise ValueError("freq_floor must be >= 0.")
        self.freq_floor = int(freq_floor)

    def supports_unit_weights(self) -> bool:
        return False

    def estimate(self, sample: PeriodSample, inputs: AuxiliaryInputs) -> EstimatorOutput:
        table = inputs.table
        draws_by_cell = align_posterior(inputs.posterior, table)
        freq = table.frequencies(self.freq_floor)
        draws = draws_by_cell @ freq / float(np.sum(freq))
        est = float(np.mean(draws))
        LOGGER.debug(
            "mrp period %d: estimate=%.4f from %d posterior draws",
            sample.period, est, draws.shape[0],
        )
        return self._output(
            sample,
            estimate=est,
            interval=percentile_interval(draws, self.ci_level),
            se=bt.bootstrap_se(draws),
            draws=draws,
            provenance=Provenance.EXACT,
            notes=("no unit-level weights; auxiliary-fit diagnostics not available",),
            extra={
                "n_draws": int(draws.shape[0]),
                "cell_means": pd.Series(draws_by_cell.mean(axis=0), index=table.labels),
                "alignment": inputs.alignment,
            },
        )
