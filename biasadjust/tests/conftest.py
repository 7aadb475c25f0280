from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest


def _ensure_repo_root() -> None:
    """Ensure the repository root is on sys.path.

    The package lives one level below the repository root, so running pytest
    from inside ``biasadjust/`` without an install would otherwise fail to
    import it.
    """

    repo_root = Path(__file__).resolve().parents[2]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root()

from biasadjust.core.frame import FrameSchema, SurveyFrame  # noqa: E402
from biasadjust.core import strata  # noqa: E402
from biasadjust.sim.montecarlo import simulate_frame, synthetic_spec  # noqa: E402

TOY_SCHEMA = FrameSchema(auxiliaries=("x", "z"))


def toy_population(n: int = 600, n_sample: int = 120, *, seed: int = 0) -> pd.DataFrame:
    """Small population with uniform sampling in both periods."""
    rng = np.random.default_rng(seed)
    x = rng.uniform(0.0, 1.0, n)
    z = np.where(rng.random(n) < 0.4, rng.uniform(0.1, 1.0, n), 0.0)
    occ1 = (rng.random(n) < 0.2 + 0.5 * x).astype(int)
    occ2 = (rng.random(n) < 0.3 + 0.5 * x).astype(int)
    s1 = np.zeros(n, dtype=int)
    s2 = np.zeros(n, dtype=int)
    s1[rng.choice(n, n_sample, replace=False)] = 1
    s2[rng.choice(n, n_sample, replace=False)] = 1
    pi = n_sample / n
    return pd.DataFrame(
        {
            "id": np.arange(n),
            "occ1": occ1,
            "occ2": occ2,
            "sampled1": s1,
            "sampled2": s2,
            "pi1": np.where(s1 == 1, pi, np.nan),
            "pi2": np.where(s2 == 1, pi, np.nan),
            "x": x,
            "z": z,
        },
    )


@pytest.fixture
def toy_df() -> pd.DataFrame:
    return toy_population()


@pytest.fixture
def toy_frame(toy_df) -> SurveyFrame:
    return SurveyFrame.from_dataframe(toy_df, TOY_SCHEMA)


@pytest.fixture(scope="module")
def synthetic_frame() -> SurveyFrame:
    return simulate_frame(seed=42)


@pytest.fixture(scope="module")
def synthetic_table(synthetic_frame) -> strata.PoststratumTable:
    spec = synthetic_spec()
    return strata.build(synthetic_frame.population_aux(spec.names), spec)
