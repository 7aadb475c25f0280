"""Poststratification estimator.

Each sampled unit in stratum ``s`` receives weight ``N_s / n_s``, i.e. the
population-share / sample-share ratio scaled so the weights of a fully covered
sample add up to the population size.

Coverage policy ("partial" poststratification): population strata without
sampled units are not imputed. Under ``coverage="zero"`` they contribute zero
to the estimate (the weighted total is divided by the full population size);
under ``coverage="redistribute"`` the estimate is normalized by the covered
population instead, spreading the missing share proportionally.
"""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING

import numpy as np

from biasadjust.core.errors import InsufficientStrataCoverage, StratumMismatch
from biasadjust.core.inference import kish_effective_size, linearized_mean_se, normal_interval
from biasadjust.estimators.base import AuxiliaryInputs, BaseEstimator, EstimatorOutput, Provenance

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from biasadjust.core.frame import PeriodSample
    from biasadjust.core.strata import PoststratumTable

__all__ = ["Poststratification", "stratum_shares"]

LOGGER = logging.getLogger(__name__)

_COVERAGE_POLICIES = ("zero", "redistribute")
_UNMATCHED_POLICIES = ("drop", "raise")


def stratum_shares(
    table: PoststratumTable, sample: PeriodSample,
) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
    """Cell position and population share of every sampled unit.

    Units whose key is not a population cell get position -1 and share 0.
    """
    cells = table.cell_of(sample.aux)
    share = np.where(cells >= 0, table.share[np.maximum(cells, 0)], 0.0)
    return cells, share.astype(np.float64)


class Poststratification(BaseEstimator):
    """Poststratified mean with a stratum-residual linearization SE.

    Parameters
    ----------
    coverage : {"zero", "redistribute"}
        Treatment of population strata without sampled units.
    unmatched : {"drop", "raise"}
        Sampled units whose stratum key is not in the population table are
        dropped (result flagged partial) or raise ``StratumMismatch``.
    min_coverage : float
        Warn with ``InsufficientStrataCoverage`` when the covered share of the
        population falls below this value.
    freq_floor : int
        Lower bound applied to cell frequencies (0 keeps them as counted).

    Notes
    -----
    A stratum with a single sampled unit still gets a weight but contributes
    no within-stratum variance, so the SE understates uncertainty there.

    """

    name = "poststratification"
    interval_kind = "analytic"

    def __init__(
        self,
        *,
        coverage: str = "zero",
        unmatched: str = "drop",
        min_coverage: float = 0.95,
        freq_floor: int = 0,
        ci_level: float = 0.95,
    ) -> None:
        super().__init__(ci_level=ci_level)
        if coverage not in _COVERAGE_POLICIES:
            raise ValueError(f"coverage must be one of {_COVERAGE_POLICIES}; got {coverage!r}.")
        if unmatched not in _UNMATCHED_POLICIES:
            raise ValueError(f"unmatched must be one of {_UNMATCHED_POLICIES}; got {unmatched!r}.")
        if not (0.0 <= float(min_coverage) <= 1.0):
            raise ValueError("min_coverage must lie in [0, 1].")
        if int(freq_floor) < 0:
            raise ValueError("freq_floor must be >= 0.")
        self.coverage = coverage
        self.unmatched = unmatched
        self.min_coverage = float(min_coverage)
        self.freq_floor = int(freq_floor)

    def estimate(self, sample: PeriodSample, inputs: AuxiliaryInputs) -> EstimatorOutput:
        table = inputs.table
        cells = table.cell_of(sample.aux)
        matched = cells >= 0
        notes: list[str] = []
        provenance = Provenance.EXACT

        n_unmatched = int(np.sum(~matched))
        if n_unmatched:
            msg = f"{n_unmatched} sampled units fall in strata absent from the population table"
            if self.unmatched == "raise":
                raise StratumMismatch(msg + ".")
            LOGGER.debug("%s; dropping them (period %d).", msg, sample.period)
            notes.append(msg + "; dropped")
            provenance = Provenance.PARTIAL

        cells_m = cells[matched]
        y = sample.y[matched]
        if y.shape[0] == 0:
            raise StratumMismatch("no sampled unit matches a population stratum.")

        freq = table.frequencies(self.freq_floor)
        n_s = np.bincount(cells_m, minlength=table.n_cells).astype(np.float64)
        covered = n_s > 0
        w = freq[cells_m] / n_s[cells_m]

        coverage = float(np.sum(table.frequency[covered]) / table.population_size)
        n_uncovered = int(np.sum(~covered & (table.frequency > 0)))
        if n_uncovered:
            notes.append(f"{n_uncovered} population strata have no sampled units")
            provenance = Provenance.PARTIAL
        if coverage < self.min_coverage:
            warnings.warn(
                f"{self.name} (period {sample.period}): sampled strata cover "
                f"{coverage:.1%} of the population (threshold {self.min_coverage:.0%}).",
                InsufficientStrataCoverage,
                stacklevel=2,
            )

        if self.coverage == "zero":
            denom = float(np.sum(freq))
        else:
            denom = float(np.sum(freq[covered]))
        if denom <= 0.0:
            raise StratumMismatch("sampled strata carry no population frequency.")

        est = float(np.sum(w * y) / denom)
        stratum_mean = np.bincount(cells_m, weights=y, minlength=table.n_cells) / np.maximum(n_s, 1.0)
        resid = y - stratum_mean[cells_m]
        se = linearized_mean_se(y, w, residuals=resid, denominator=denom)
        singletons = int(np.sum(n_s == 1))
        if singletons:
            notes.append(f"{singletons} strata hold a single sampled unit (no within-stratum variance)")

        LOGGER.debug(
            "poststratification period %d: estimate=%.4f se=%.4f coverage=%.3f",
            sample.period, est, se, coverage,
        )
        return self._output(
            sample,
            estimate=est,
            se=se,
            interval=normal_interval(est, se, self.ci_level),
            unit_ids=sample.unit_ids[matched],
            weights=w,
            provenance=provenance,
            notes=tuple(notes),
            extra={
                "coverage": coverage,
                "coverage_policy": self.coverage,
                "covered_strata": int(np.sum(covered)),
                "singleton_strata": singletons,
                "dropped_units": n_unmatched,
                "weight_total": float(np.sum(w)),
                "effective_n": kish_effective_size(w),
            },
        )
