"""Weighted subsampling estimator.

Each replicate draws ``subsample_size`` sampled units with replacement, unit
probabilities driven by the population share of their stratum, and records the
mean outcome of the draw. The point estimate is the mean of the replicate means
and the interval their empirical percentiles. No unit weights are produced;
the resampling probabilities are returned for diagnostics instead.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from biasadjust.core import bootstrap as bt
from biasadjust.core.errors import StratumMismatch
from biasadjust.core.inference import percentile_interval
from biasadjust.estimators.base import (
    AuxiliaryInputs,
    BaseEstimator,
    EstimatorOutput,
    Provenance,
    ResampleConfig,
)
from biasadjust.estimators.poststrat import stratum_shares

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from biasadjust.core.frame import PeriodSample

__all__ = ["WeightedSubsampling", "resampling_probabilities", "subsample_sensitivity"]

LOGGER = logging.getLogger(__name__)

_PROBABILITY_RULES = ("stratum", "unit")


def resampling_probabilities(
    cells: NDArray[np.int64],
    share: NDArray[np.float64],
    rule: str = "stratum",
) -> NDArray[np.float64]:
    """Normalized per-unit resampling probabilities.

    ``rule="stratum"`` gives every sampled stratum a total probability equal to
    its population share (unit probability ``share_s / n_s``), renormalized over
    sampled strata. ``rule="unit"`` makes each unit's probability proportional
    to its stratum's population share. Unmatched units (cell -1) get zero.
    """
    if rule not in _PROBABILITY_RULES:
        raise ValueError(f"rule must be one of {_PROBABILITY_RULES}; got {rule!r}.")
    cells = np.asarray(cells, dtype=np.int64)
    share = np.asarray(share, dtype=np.float64)
    matched = cells >= 0
    raw = np.where(matched, share, 0.0)
    if rule == "stratum" and matched.any():
        n_s = np.bincount(cells[matched])
        raw = raw.copy()
        raw[matched] = raw[matched] / n_s[cells[matched]]
    total = float(np.sum(raw))
    if total <= 0.0:
        raise StratumMismatch("no sampled unit carries a positive stratum share.")
    return raw / total


class WeightedSubsampling(BaseEstimator):
    """Bootstrap of stratum-share-weighted subsamples.

    Parameters
    ----------
    config : ResampleConfig
        Replicate count, subsample size, seed and worker settings.
    probability : {"stratum", "unit"}
        Resampling probability rule, see :func:`resampling_probabilities`.

    """

    name = "subsampling"
    interval_kind = "resampling"

    def __init__(
        self,
        config: ResampleConfig | None = None,
        *,
        probability: str = "stratum",
        ci_level: float = 0.95,
    ) -> None:
        super().__init__(ci_level=ci_level)
        if probability not in _PROBABILITY_RULES:
            raise ValueError(f"probability must be one of {_PROBABILITY_RULES}; got {probability!r}.")
        self.config = ResampleConfig() if config is None else config
        self.probability = probability

    def supports_unit_weights(self) -> bool:
        return False

    def estimate(self, sample: PeriodSample, inputs: AuxiliaryInputs) -> EstimatorOutput:
        if sample.n == 0:
            raise ValueError("subsampling requires a non-empty sample.")
        cells, share = stratum_shares(inputs.table, sample)
        probs = resampling_probabilities(cells, share, self.probability)
        y = sample.y
        m = int(self.config.subsample_size)

        def _replicate(rng: np.random.Generator) -> float:
            idx = rng.choice(y.shape[0], size=m, replace=True, p=probs)
            return float(np.mean(y[idx]))

        draws, entropy = bt.run_replicates(
            _replicate,
            self.config.n_boot,
            seed=self.config.seed,
            n_jobs=self.config.n_jobs,
            batch_size=self.config.batch_size,
        )
        est = float(np.mean(draws))
        n_unmatched = int(np.sum(cells < 0))
        notes: tuple[str, ...] = ()
        provenance = Provenance.EXACT
        if n_unmatched:
            notes = (f"{n_unmatched} sampled units outside population strata never resampled",)
            provenance = Provenance.PARTIAL
        LOGGER.debug(
            "subsampling period %d: estimate=%.4f size=%d B=%d",
            sample.period, est, m, draws.shape[0],
        )
        return self._output(
            sample,
            estimate=est,
            interval=percentile_interval(draws, self.ci_level),
            se=bt.bootstrap_se(draws),
            unit_ids=sample.unit_ids,
            probabilities=probs,
            draws=draws,
            provenance=provenance,
            notes=notes,
            extra={
                "subsample_size": m,
                "n_boot": int(draws.shape[0]),
                "probability_rule": self.probability,
                "alignment": entropy,
            },
        )


def subsample_sensitivity(
    sample: PeriodSample,
    inputs: AuxiliaryInputs,
    sizes: Sequence[int] = (100, 200, 400, 800, 1600, 3200),
    *,
    config: ResampleConfig | None = None,
    probability: str = "stratum",
    ci_level: float = 0.95,
) -> pd.DataFrame:
    """Estimate and interval width of the subsampling estimator across sizes.

    The same seed is reused for every size, so widths are comparable.
    """
    base = ResampleConfig() if config is None else config
    if base.seed is None:
        base = replace(base, seed=int(bt.seed_sequence(None).entropy))
    rows = []
    for size in sizes:
        est = WeightedSubsampling(
            replace(base, subsample_size=int(size)),
            probability=probability,
            ci_level=ci_level,
        ).estimate(sample, inputs)
        lo, hi = est.interval
        rows.append(
            {"subsample_size": int(size), "estimate": est.estimate, "lower": lo, "upper": hi, "width": hi - lo},
        )
    return pd.DataFrame(rows)
