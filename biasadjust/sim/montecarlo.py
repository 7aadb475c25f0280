"""Synthetic populations and Monte Carlo checks.

Provides a grid-cell population with two-period occupancy, a stratum-driven
biased sampling design with opposite bias in the two periods, and a conjugate
Beta posterior that stands in for an externally fitted MRP model.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from biasadjust.core.frame import FrameSchema, SurveyFrame
from biasadjust.core.strata import TERCILE_PROBS, AuxiliaryRule, AuxiliarySpec, PoststratumTable

__all__ = [
    "SYNTHETIC_SCHEMA",
    "beta_posterior",
    "simulate_frame",
    "simulate_population",
    "synthetic_spec",
]

SYNTHETIC_SCHEMA = FrameSchema(
    auxiliaries=("elev", "temp", "rain", "urban", "forest"),
    unit_id="id",
    outcome=("occ1", "occ2"),
    sampled=("sampled1", "sampled2"),
    inclusion=("pi1", "pi2"),
)


def synthetic_spec(*, with_urban: bool = False) -> AuxiliarySpec:
    """Stratification of the synthetic population (elevation terciles drive the bias)."""
    rules = [AuxiliaryRule("elev", "tercile")]
    if with_urban:
        rules.append(AuxiliaryRule("urban", "binary"))
    return AuxiliarySpec(tuple(rules))


def _biased_sample(
    rng: np.random.Generator, effort: np.ndarray, n_sample: int,
) -> tuple[np.ndarray, np.ndarray]:
    p = effort / effort.sum()
    idx = rng.choice(effort.shape[0], size=n_sample, replace=False, p=p)
    sampled = np.zeros(effort.shape[0], dtype=np.int8)
    sampled[idx] = 1
    # first-order approximation of the inclusion probability
    pi = np.where(sampled == 1, np.minimum(1.0, n_sample * p), np.nan)
    return sampled, pi


def simulate_population(
    n_units: int = 10_000,
    n_sample: int = 500,
    *,
    trend: float = 0.15,
    bias_ratio: float = 4.0,
    seed: int | None = 42,
) -> pd.DataFrame:
    """Simulate a population table with biased period samples.

    Occupancy probability is ``0.02 + 0.6 * elev`` in period 1 (population mean
    close to 0.32) and ``trend`` higher in period 2. Period 1 oversamples high
    elevation (sampling effort ``bias_ratio ** (tercile - 1)``), period 2
    oversamples low elevation, so raw sample means are biased in opposite
    directions.
    """
    if n_sample > n_units:
        raise ValueError("n_sample cannot exceed n_units.")
    rng = np.random.default_rng(seed)
    elev = rng.uniform(0.0, 1.0, n_units)
    temp = rng.normal(10.0, 3.0, n_units) - 4.0 * elev
    rain = rng.gamma(2.0, 400.0, n_units)
    urban = np.where(rng.random(n_units) < 0.2, rng.beta(2.0, 5.0, n_units), 0.0)
    forest = np.where(rng.random(n_units) < 0.3, rng.beta(2.0, 2.0, n_units), 0.0)

    p1 = 0.02 + 0.6 * elev
    p2 = np.clip(p1 + trend, 0.0, 1.0)
    occ1 = (rng.random(n_units) < p1).astype(np.int8)
    occ2 = (rng.random(n_units) < p2).astype(np.int8)

    breaks = np.quantile(elev, TERCILE_PROBS)
    tercile = np.searchsorted(breaks, elev, side="left") + 1
    sampled1, pi1 = _biased_sample(rng, bias_ratio ** (tercile - 1.0), n_sample)
    sampled2, pi2 = _biased_sample(rng, bias_ratio ** (3.0 - tercile), n_sample)

    return pd.DataFrame(
        {
            "id": np.arange(n_units),
            "occ1": occ1,
            "occ2": occ2,
            "sampled1": sampled1,
            "sampled2": sampled2,
            "pi1": pi1,
            "pi2": pi2,
            "elev": elev,
            "temp": temp,
            "rain": rain,
            "urban": urban,
            "forest": forest,
        },
    )


def simulate_frame(**kwargs) -> SurveyFrame:
    """:func:`simulate_population` wrapped in a validated :class:`SurveyFrame`."""
    return SurveyFrame.from_dataframe(simulate_population(**kwargs), SYNTHETIC_SCHEMA)


def beta_posterior(
    frame: SurveyFrame,
    table: PoststratumTable,
    period: int,
    *,
    n_draws: int = 1000,
    prior_strength: float = 2.0,
    seed: int | None = None,
) -> pd.DataFrame:
    """Posterior draws of cell occupancy from a partially pooled Beta model.

    Each cell gets a ``Beta(k + a, n - k + b)`` posterior with the prior centred
    on the overall sample mean (``a + b = prior_strength``), so empty cells fall
    back to that mean. Columns are the table's cell labels.
    """
    if prior_strength <= 0.0:
        raise ValueError("prior_strength must be positive.")
    sample = frame.sample(period)
    cells = table.cell_of(sample.aux)
    keep = cells >= 0
    n_c = np.bincount(cells[keep], minlength=table.n_cells).astype(np.float64)
    k_c = np.bincount(cells[keep], weights=sample.y[keep], minlength=table.n_cells)
    centre = float(np.clip(sample.mean(), 0.01, 0.99))
    a = k_c + prior_strength * centre
    b = n_c - k_c + prior_strength * (1.0 - centre)
    rng = np.random.default_rng(seed)
    draws = rng.beta(a, b, size=(int(n_draws), table.n_cells))
    return pd.DataFrame(draws, columns=table.labels)
