"""Quasi-randomisation (inverse inclusion probability) estimator."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from biasadjust.core.errors import InvalidProbability
from biasadjust.core.inference import kish_effective_size, linearized_mean_se, normal_interval
from biasadjust.estimators.base import AuxiliaryInputs, BaseEstimator, EstimatorOutput

if TYPE_CHECKING:
    from biasadjust.core.frame import PeriodSample

__all__ = ["QuasiRandomisation"]

LOGGER = logging.getLogger(__name__)


class QuasiRandomisation(BaseEstimator):
    """Hájek-type weighted mean with weights ``1 / pi``.

    The inclusion probabilities are estimated upstream and consumed as given.
    The standard error linearizes the ratio mean under a weights-only design
    (no clusters, no design strata, with-replacement approximation).
    """

    name = "quasi_randomisation"
    interval_kind = "analytic"

    def estimate(self, sample: PeriodSample, inputs: AuxiliaryInputs | None = None) -> EstimatorOutput:
        pi = np.asarray(sample.inclusion, dtype=np.float64)
        if sample.n == 0:
            raise ValueError("quasi-randomisation requires a non-empty sample.")
        bad = ~np.isfinite(pi) | (pi <= 0.0) | (pi > 1.0)
        if bad.any():
            raise InvalidProbability(
                f"{int(bad.sum())} inclusion probabilities outside (0, 1] in period {sample.period}.",
            )
        w = 1.0 / pi
        y = sample.y
        est = float(np.sum(w * y) / np.sum(w))
        se = linearized_mean_se(y, w)
        LOGGER.debug("quasi-randomisation period %d: estimate=%.4f se=%.4f", sample.period, est, se)
        return self._output(
            sample,
            estimate=est,
            se=se,
            interval=normal_interval(est, se, self.ci_level),
            unit_ids=sample.unit_ids,
            weights=w,
            extra={
                "weight_total": float(np.sum(w)),
                "effective_n": kish_effective_size(w),
            },
        )
