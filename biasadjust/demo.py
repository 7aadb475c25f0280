"""Demonstration of the biasadjust estimator suite.

Simulates a grid-cell population with opposite sampling bias in two periods,
runs every adjustment strategy, and prints estimates, trends and
auxiliary-fit scores. Run with ``python -m biasadjust.demo``.
"""

from __future__ import annotations

import logging
from typing import Callable

import numpy as np

from .core import strata
from .core.errors import RECOVERABLE_ERRORS
from .estimators import (
    AuxiliaryInputs,
    EstimatorSuite,
    ResampleConfig,
    SuiteConfig,
    default_estimators,
    subsample_sensitivity,
)
from .output import render, summarize
from .sim.montecarlo import beta_posterior, simulate_frame, synthetic_spec

_LOGGER = logging.getLogger(__name__)
SOFT_FAILURE_EXCEPTIONS: tuple[type[Exception], ...] = (*RECOVERABLE_ERRORS, RuntimeError)


def _run_demo_block(label: str, func: Callable[[], None]) -> None:
    """Execute a demonstration function, logging any soft failures."""
    try:
        func()
    except SOFT_FAILURE_EXCEPTIONS as exc:
        _LOGGER.debug("%s demo failed: %s", label, exc)
        print(f"\n[{label} demo failed: {exc}]")


def demo_suite() -> None:
    """Run all five strategies on a synthetic population."""
    print("\n" + "=" * 70)
    print(" 1. ESTIMATOR SUITE")
    print("=" * 70)
    frame = simulate_frame(seed=42)
    spec = synthetic_spec(with_urban=True)
    table = strata.build(frame.population_aux(spec.names), spec)
    posterior = {p: beta_posterior(frame, table, p, n_draws=1000, seed=7) for p in (1, 2)}
    suite = EstimatorSuite(
        default_estimators(ResampleConfig(n_boot=1000, seed=2024, subsample_size=300)),
        SuiteConfig(fit_auxiliaries=("elev", "temp"), fit_seed=11),
    )
    result = suite.run(frame, spec, posterior=posterior, posterior_alignment="joint-fit")
    truth = {p: frame.population_mean(p) for p in (1, 2)}
    print(f"True means: period 1 = {truth[1]:.4f}, period 2 = {truth[2]:.4f}")
    print(f"Raw sample means: {frame.sample(1).mean():.4f}, {frame.sample(2).mean():.4f}")
    print(summarize(result, truth))


def demo_sensitivity() -> None:
    """Subsampling interval width across subsample sizes."""
    print("\n" + "=" * 70)
    print(" 2. SUBSAMPLE-SIZE SENSITIVITY")
    print("=" * 70)
    frame = simulate_frame(seed=42)
    spec = synthetic_spec()
    table = strata.build(frame.population_aux(spec.names), spec)
    df = subsample_sensitivity(
        frame.sample(1),
        AuxiliaryInputs(table=table),
        config=ResampleConfig(n_boot=1000, seed=3),
    )
    print(render(df))
    print(f"Widths non-increasing: {bool(np.all(np.diff(df['width']) <= 0))}")


def run_all_demos() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    _run_demo_block("suite", demo_suite)
    _run_demo_block("sensitivity", demo_sensitivity)


if __name__ == "__main__":
    run_all_demos()
