"""Run a set of estimators over both periods.

The suite builds the poststratum table and calibration totals once, calls each
estimator per period, forms per-method trends and computes auxiliary-fit
diagnostics. Statistical degeneracies of one method (see
``core.errors.RECOVERABLE_ERRORS``) are logged and recorded so that the other
methods still complete; precondition errors propagate.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from biasadjust.core import bootstrap as bt
from biasadjust.core import strata
from biasadjust.core.errors import RECOVERABLE_ERRORS
from biasadjust.core.frame import PERIODS
from biasadjust.core.inference import TREND_POLICIES, Trend, normalize_ci_level, trend
from biasadjust.estimators.base import AuxiliaryInputs, BaseEstimator, EstimatorOutput, ResampleConfig
from biasadjust.estimators.calibration import Calibration
from biasadjust.estimators.mrp import MultilevelPoststratification
from biasadjust.estimators.poststrat import Poststratification
from biasadjust.estimators.quasi import QuasiRandomisation
from biasadjust.estimators.subsample import WeightedSubsampling
from biasadjust.output.fit import DEFAULT_BINS, AuxiliaryFit, auxiliary_fit, supports_fit

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from biasadjust.core.frame import SurveyFrame

__all__ = [
    "EstimatorSuite",
    "SuiteConfig",
    "SuiteResult",
    "default_estimators",
]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SuiteConfig:
    """Settings shared by every method of a suite run."""

    ci_level: float = 0.95
    trend_policy: str = "paired"
    diagnostics: bool = True
    fit_auxiliaries: tuple[str, ...] | None = None
    n_bins: int = DEFAULT_BINS
    fit_repetitions: int = 200
    fit_seed: int | None = None
    full_grid: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "ci_level", normalize_ci_level(self.ci_level))
        if self.trend_policy not in TREND_POLICIES:
            raise ValueError(f"trend_policy must be one of {TREND_POLICIES}.")
        if self.fit_auxiliaries is not None:
            object.__setattr__(self, "fit_auxiliaries", tuple(self.fit_auxiliaries))


@dataclass(frozen=True)
class SuiteResult:
    """Outputs of a suite run keyed by method name (and period)."""

    table: strata.PoststratumTable
    outputs: dict[tuple[str, int], EstimatorOutput] = field(default_factory=dict)
    trends: dict[str, Trend] = field(default_factory=dict)
    fits: list[AuxiliaryFit] = field(default_factory=list)
    failures: dict[tuple[str, Any], str] = field(default_factory=dict)

    @property
    def methods(self) -> list[str]:
        seen: list[str] = []
        for method, _ in self.outputs:
            if method not in seen:
                seen.append(method)
        return seen

    def output(self, method: str, period: int) -> EstimatorOutput:
        try:
            return self.outputs[(method, int(period))]
        except KeyError:
            reason = self.failures.get((method, int(period)), "not run")
            raise KeyError(f"no output for {method!r} period {period}: {reason}") from None


def default_estimators(
    config: ResampleConfig | None = None,
    *,
    include_mrp: bool = True,
    ci_level: float = 0.95,
) -> list[BaseEstimator]:
    """The five strategies with default settings."""
    out: list[BaseEstimator] = [
        QuasiRandomisation(ci_level=ci_level),
        Poststratification(ci_level=ci_level),
        Calibration(ci_level=ci_level),
        WeightedSubsampling(config, ci_level=ci_level),
    ]
    if include_mrp:
        out.append(MultilevelPoststratification(ci_level=ci_level))
    return out


def _pin_seed(estimator: BaseEstimator) -> BaseEstimator:
    """Fix an unseeded resampling config so both periods share replicate streams."""
    config = getattr(estimator, "config", None)
    if isinstance(config, ResampleConfig) and config.seed is None:
        pinned = copy.copy(estimator)
        pinned.config = replace(config, seed=int(bt.seed_sequence(None).entropy))
        return pinned
    return estimator


class EstimatorSuite:
    """Apply several estimators to one frame and both periods."""

    def __init__(
        self,
        estimators: Sequence[BaseEstimator] | None = None,
        config: SuiteConfig | None = None,
    ) -> None:
        self.config = SuiteConfig() if config is None else config
        self.estimators = list(
            default_estimators(ci_level=self.config.ci_level) if estimators is None else estimators,
        )
        names = [e.name for e in self.estimators]
        if len(set(names)) != len(names):
            raise ValueError(f"estimator names must be unique; got {names}.")

    def run(
        self,
        frame: SurveyFrame,
        spec: strata.AuxiliarySpec,
        *,
        posterior: Mapping[int, Any] | None = None,
        posterior_alignment: Any = None,
    ) -> SuiteResult:
        """Estimate every method for both periods, then trends and diagnostics.

        ``posterior`` maps each period to the external MRP posterior sample
        (draws x cells, table cell order). ``posterior_alignment`` marks both
        periods' draws as coming from one joint fit, enabling paired trends;
        without it a paired MRP trend is recorded as a ``ReplicateCountMismatch``
        failure.
        """
        cfg = self.config
        table = strata.build(frame.population_aux(spec.names), spec, full_grid=cfg.full_grid)
        totals = frame.population_totals()
        result = SuiteResult(table=table)
        posterior = {} if posterior is None else dict(posterior)

        for estimator in self.estimators:
            est = _pin_seed(estimator)
            for period in PERIODS:
                inputs = AuxiliaryInputs(
                    table=table,
                    totals=totals,
                    posterior=posterior.get(period),
                    alignment=posterior_alignment,
                )
                try:
                    result.outputs[(est.name, period)] = est.estimate(frame.sample(period), inputs)
                except RECOVERABLE_ERRORS as exc:
                    LOGGER.warning("%s failed for period %d: %s", est.name, period, exc)
                    result.failures[(est.name, period)] = f"{type(exc).__name__}: {exc}"

            if all((est.name, p) in result.outputs for p in PERIODS):
                try:
                    result.trends[est.name] = trend(
                        result.outputs[(est.name, 1)],
                        result.outputs[(est.name, 2)],
                        policy=cfg.trend_policy,
                        ci_level=cfg.ci_level,
                    )
                except RECOVERABLE_ERRORS as exc:
                    LOGGER.warning("%s trend failed: %s", est.name, exc)
                    result.failures[(est.name, "trend")] = f"{type(exc).__name__}: {exc}"

        if cfg.diagnostics:
            auxiliaries = cfg.fit_auxiliaries or frame.schema.auxiliaries
            for (method, period), out in result.outputs.items():
                if not supports_fit(out):
                    LOGGER.debug("skipping fit diagnostics for %s (no weights or probabilities).", method)
                    continue
                for name in auxiliaries:
                    result.fits.append(
                        auxiliary_fit(
                            frame,
                            out,
                            name,
                            n_bins=cfg.n_bins,
                            n_rep=cfg.fit_repetitions,
                            seed=cfg.fit_seed,
                        ),
                    )
        return result
