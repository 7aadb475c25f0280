"""Interval estimation for period means and two-period trends.

Analytic methods carry a linearization standard error and get normal-theory
intervals; resampling methods carry a replicate vector and get percentile
intervals. Trends combine two period outputs of the same method.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from scipy import stats

from biasadjust.core import bootstrap as bt
from biasadjust.core.errors import ReplicateCountMismatch

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from biasadjust.estimators.base import EstimatorOutput

__all__ = [
    "TREND_POLICIES",
    "Trend",
    "kish_effective_size",
    "linearized_mean_se",
    "normal_interval",
    "normalize_ci_level",
    "percentile_interval",
    "trend",
    "z_critical",
]

LOGGER = logging.getLogger(__name__)

TREND_POLICIES = ("paired", "independent")


def normalize_ci_level(level: float | None, *, default: float = 0.95) -> float:
    """Normalize confidence level to a probability (0, 1)."""
    if not (0.0 < float(default) < 1.0):
        raise ValueError("default confidence level must lie in (0, 1)")
    if level is None:
        coerced = float(default)
    else:
        coerced = float(level)
        # Accept percentage-style inputs (e.g., 90 for 90%)
        if coerced > 1.0:
            coerced /= 100.0
    if not (0.0 < coerced < 1.0):
        raise ValueError("ci_level must be in (0, 1); supply e.g. 0.95 or 95")
    return coerced


def z_critical(ci_level: float = 0.95) -> float:
    """Two-sided standard-normal critical value (1.959964 at 95%)."""
    level = normalize_ci_level(ci_level)
    return float(stats.norm.ppf(0.5 + level / 2.0))


def normal_interval(estimate: float, se: float, ci_level: float = 0.95) -> tuple[float, float]:
    half = z_critical(ci_level) * float(se)
    return float(estimate) - half, float(estimate) + half


def percentile_interval(draws: NDArray[np.float64], ci_level: float = 0.95) -> tuple[float, float]:
    """Empirical (alpha/2, 1 - alpha/2) percentiles of ``draws``."""
    arr = np.asarray(draws, dtype=np.float64).reshape(-1)
    if arr.size < 2:
        raise ValueError("percentile interval requires at least 2 draws.")
    if not np.isfinite(arr).all():
        raise ValueError("percentile interval requires finite draws.")
    alpha = 1.0 - normalize_ci_level(ci_level)
    lo, hi = np.percentile(arr, [100.0 * alpha / 2.0, 100.0 * (1.0 - alpha / 2.0)])
    return float(lo), float(hi)


def linearized_mean_se(
    y: NDArray[np.float64],
    w: NDArray[np.float64],
    *,
    residuals: NDArray[np.float64] | None = None,
    denominator: float | None = None,
) -> float:
    """Linearization SE of a weighted mean under with-replacement sampling.

    Uses ``var = n/(n-1) * sum(z_i**2)`` with ``z_i = w_i * e_i / D``. By default
    ``e_i = y_i - ybar_w`` and ``D = sum(w)`` (ratio mean). Estimators pass
    stratum or regression residuals and their own denominator.
    """
    y = np.asarray(y, dtype=np.float64).reshape(-1)
    w = np.asarray(w, dtype=np.float64).reshape(-1)
    n = y.shape[0]
    if w.shape[0] != n:
        raise ValueError("y and w must have equal length.")
    if n < 2:
        return float("nan")
    D = float(np.sum(w)) if denominator is None else float(denominator)
    if D <= 0.0:
        raise ValueError("weight total must be positive.")
    if residuals is None:
        e = y - float(np.sum(w * y)) / float(np.sum(w))
    else:
        e = np.asarray(residuals, dtype=np.float64).reshape(-1)
    z = w * e / D
    var = n / (n - 1.0) * float(np.sum(z * z))
    return float(np.sqrt(max(var, 0.0)))


def kish_effective_size(w: NDArray[np.float64]) -> float:
    """Kish effective sample size ``(sum w)^2 / sum w^2``."""
    w = np.asarray(w, dtype=np.float64)
    ss = float(np.sum(w * w))
    return float(np.sum(w)) ** 2 / ss if ss > 0.0 else 0.0


@dataclass(frozen=True)
class Trend:
    """Period-2 minus period-1 difference of one method's estimates."""

    method: str
    estimate: float
    interval: tuple[float, float]
    se: float | None
    kind: str
    policy: str | None
    provenance: str


def _check_pair(out1: EstimatorOutput, out2: EstimatorOutput) -> None:
    if out1.method != out2.method:
        raise ValueError(f"trend requires one method; got {out1.method!r} and {out2.method!r}.")
    if (out1.period, out2.period) != (1, 2):
        raise ValueError("trend requires the period-1 output first and the period-2 output second.")
    if out1.interval_kind != out2.interval_kind:
        raise ValueError("cannot combine analytic and resampling outputs in one trend.")


def _paired_difference(out1: EstimatorOutput, out2: EstimatorOutput) -> NDArray[np.float64]:
    d1 = np.asarray(out1.draws, dtype=np.float64)
    d2 = np.asarray(out2.draws, dtype=np.float64)
    if d1.shape != d2.shape:
        raise ReplicateCountMismatch(
            f"{out1.method}: period replicate counts differ ({d1.shape[0]} vs {d2.shape[0]}).",
        )
    a1 = out1.extra.get("alignment")
    a2 = out2.extra.get("alignment")
    if a1 is None or a2 is None:
        raise ReplicateCountMismatch(
            f"{out1.method}: replicate vectors carry no alignment token, so they cannot be "
            "paired; fit both periods jointly and pass an alignment token, or use "
            "policy='independent'.",
        )
    if a1 != a2:
        raise ReplicateCountMismatch(
            f"{out1.method}: replicate vectors come from differently seeded runs; "
            "reuse one seed for both periods or use policy='independent'.",
        )
    return d2 - d1


def trend(
    out1: EstimatorOutput,
    out2: EstimatorOutput,
    *,
    policy: str = "paired",
    ci_level: float = 0.95,
) -> Trend:
    """Combine two period outputs into a trend with its interval.

    Analytic outputs: ``se = sqrt(se1**2 + se2**2)`` (independent period
    samples) and a normal interval around the difference. Resampling outputs
    with ``policy="paired"``: percentiles of the element-wise replicate
    difference; both outputs must carry the same ``extra["alignment"]`` token
    or ``ReplicateCountMismatch`` is raised. With ``policy="independent"``: the
    replicate variances are summed and a normal interval is used. The point
    estimate is always the difference of the two point estimates. A trend whose
    standard error is undefined is flagged ``partial``.
    """
    _check_pair(out1, out2)
    if policy not in TREND_POLICIES:
        raise ValueError(f"policy must be one of {TREND_POLICIES}; got {policy!r}.")
    delta = float(out2.estimate) - float(out1.estimate)
    provenance = "exact" if out1.provenance == out2.provenance == "exact" else "partial"

    if out1.interval_kind == "analytic":
        se = float(np.sqrt(float(out1.se) ** 2 + float(out2.se) ** 2))
        if not np.isfinite(se):
            provenance = "partial"
        return Trend(
            method=out1.method,
            estimate=delta,
            interval=normal_interval(delta, se, ci_level),
            se=se,
            kind="analytic",
            policy=None,
            provenance=provenance,
        )

    if policy == "paired":
        diff = _paired_difference(out1, out2)
        return Trend(
            method=out1.method,
            estimate=delta,
            interval=percentile_interval(diff, ci_level),
            se=bt.bootstrap_se(diff),
            kind="resampling",
            policy=policy,
            provenance=provenance,
        )
    se = float(np.sqrt(bt.bootstrap_se(out1.draws) ** 2 + bt.bootstrap_se(out2.draws) ** 2))
    return Trend(
        method=out1.method,
        estimate=delta,
        interval=normal_interval(delta, se, ci_level),
        se=se,
        kind="resampling",
        policy=policy,
        provenance=provenance,
    )
