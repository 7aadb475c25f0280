"""Calibration (superpopulation / GREG) estimator.

Uniform base weights ``d = N / n`` are adjusted with the chi-square-distance
linear calibration of Deville and Särndal (1992)::

    w = d * (1 + X @ lam),   lam = (X' D X)^{-1} (t - X' d)

so that the weighted sample totals of the intercept and every calibration
auxiliary reproduce the known population totals ``t``.
"""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg as sla

from biasadjust.core.errors import CalibrationNonConvergence, CalibrationWarning
from biasadjust.core.frame import INTERCEPT
from biasadjust.core.inference import kish_effective_size, linearized_mean_se, normal_interval
from biasadjust.estimators.base import AuxiliaryInputs, BaseEstimator, EstimatorOutput, Provenance

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from biasadjust.core.frame import PeriodSample

__all__ = ["Calibration", "linear_calibration"]

LOGGER = logging.getLogger(__name__)

# Reciprocal condition number below which the calibration system is treated as singular.
_RCOND_MIN = 1e-12


def linear_calibration(
    X: NDArray[np.float64],
    d: NDArray[np.float64],
    totals: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Return linear calibration weights for design ``X`` and base weights ``d``.

    Raises
    ------
    CalibrationNonConvergence
        The calibration system is singular or numerically ill-conditioned
        (e.g. collinear auxiliaries, or fewer units than constraints).

    """
    X = np.asarray(X, dtype=np.float64)
    d = np.asarray(d, dtype=np.float64).reshape(-1)
    t = np.asarray(totals, dtype=np.float64).reshape(-1)
    n, p = X.shape
    if t.shape[0] != p:
        raise ValueError(f"totals has {t.shape[0]} entries; design has {p} columns.")
    if n < p:
        raise CalibrationNonConvergence(f"{n} units cannot satisfy {p} calibration constraints.")
    T = (X * d[:, None]).T @ X
    # scale-free conditioning check on the correlation form of T
    scale = np.sqrt(np.clip(np.diag(T), 0.0, None))
    if np.any(scale <= 0.0):
        raise CalibrationNonConvergence("a calibration variable is identically zero in the sample.")
    Tn = T / np.outer(scale, scale)
    rcond = 1.0 / np.linalg.cond(Tn)
    if not np.isfinite(rcond) or rcond < _RCOND_MIN:
        raise CalibrationNonConvergence(
            f"calibration system is singular (rcond={rcond:.3g}); auxiliaries may be collinear.",
        )
    try:
        lam = sla.solve(T, t - X.T @ d, assume_a="pos")
    except (np.linalg.LinAlgError, ValueError) as exc:
        raise CalibrationNonConvergence(f"calibration solve failed: {exc}") from exc
    return d * (1.0 + X @ lam)


class Calibration(BaseEstimator):
    """Calibrated-weight mean with a GREG linearization SE.

    Parameters
    ----------
    variables : sequence of str, optional
        Calibration auxiliaries; defaults to every auxiliary with a known total.
    on_failure : {"fallback", "raise"}
        On ``CalibrationNonConvergence`` either warn and keep the uncalibrated
        base weights (result flagged partial) or propagate the error.
    total_tol : float
        Relative tolerance of the post-hoc weight-sum and totals checks.

    """

    name = "calibration"
    interval_kind = "analytic"

    def __init__(
        self,
        *,
        variables: Sequence[str] | None = None,
        on_failure: str = "fallback",
        total_tol: float = 1e-6,
        ci_level: float = 0.95,
    ) -> None:
        super().__init__(ci_level=ci_level)
        if on_failure not in {"fallback", "raise"}:
            raise ValueError("on_failure must be 'fallback' or 'raise'.")
        self.variables = None if variables is None else tuple(variables)
        self.on_failure = on_failure
        self.total_tol = float(total_tol)

    def _design(self, sample: PeriodSample, totals) -> tuple[list[str], NDArray, NDArray]:
        if totals is None:
            raise ValueError("calibration requires population totals in AuxiliaryInputs.totals.")
        if INTERCEPT not in totals.index:
            raise ValueError(f"population totals must include the count as {INTERCEPT!r}.")
        if self.variables is None:
            names = [c for c in totals.index if c != INTERCEPT and c in sample.aux.columns]
        else:
            names = list(self.variables)
            missing = [c for c in names if c not in totals.index or c not in sample.aux.columns]
            if missing:
                raise ValueError(f"calibration variables lack totals or sample values: {missing}")
        X = np.column_stack(
            [np.ones(sample.n), sample.aux.loc[:, names].to_numpy(dtype=np.float64)],
        )
        t = totals.loc[[INTERCEPT, *names]].to_numpy(dtype=np.float64)
        return names, X, t

    def estimate(self, sample: PeriodSample, inputs: AuxiliaryInputs) -> EstimatorOutput:
        if sample.n == 0:
            raise ValueError("calibration requires a non-empty sample.")
        names, X, t = self._design(sample, inputs.totals)
        N = float(t[0])
        d = np.full(sample.n, N / sample.n)
        notes: list[str] = []
        provenance = Provenance.EXACT
        try:
            w = linear_calibration(X, d, t)
            calibrated = True
        except CalibrationNonConvergence as exc:
            if self.on_failure == "raise":
                raise
            warnings.warn(
                f"{self.name} (period {sample.period}) did not converge ({exc}); "
                "using uncalibrated base weights.",
                CalibrationWarning,
                stacklevel=2,
            )
            w = d
            calibrated = False
            notes.append("calibration failed; uncalibrated base weights used")
            provenance = Provenance.PARTIAL

        weight_total = float(np.sum(w))
        achieved = X.T @ w
        total_dev = float(np.max(np.abs(achieved - t) / np.maximum(np.abs(t), 1.0)))
        if calibrated and abs(weight_total - N) > self.total_tol * N:
            warnings.warn(
                f"{self.name}: calibrated weights sum to {weight_total:.6g}, population size is {N:.6g}.",
                CalibrationWarning,
                stacklevel=2,
            )
        n_negative = int(np.sum(w < 0.0))
        if n_negative:
            notes.append(f"{n_negative} calibrated weights are negative")

        y = sample.y
        est = float(np.sum(w * y) / weight_total)
        if est < 0.0 or est > 1.0:
            notes.append(f"raw calibrated mean {est:.4f} clipped to [0, 1]")
            provenance = Provenance.PARTIAL
            est = min(max(est, 0.0), 1.0)

        # GREG residuals from the base-weighted regression of y on the design
        XtD = (X * d[:, None]).T
        beta = np.linalg.lstsq(XtD @ X, XtD @ y, rcond=None)[0]
        resid = y - X @ beta
        se = linearized_mean_se(y, w, residuals=resid, denominator=weight_total)

        LOGGER.debug(
            "calibration period %d: estimate=%.4f se=%.4f calibrated=%s",
            sample.period, est, se, calibrated,
        )
        return self._output(
            sample,
            estimate=est,
            se=se,
            interval=normal_interval(est, se, self.ci_level),
            unit_ids=sample.unit_ids,
            weights=w,
            provenance=provenance,
            notes=tuple(notes),
            extra={
                "variables": tuple(names),
                "calibrated": calibrated,
                "weight_total": weight_total,
                "total_deviation": total_dev,
                "negative_weights": n_negative,
                "effective_n": kish_effective_size(w),
            },
        )
