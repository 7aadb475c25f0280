"""Seeded replicate generation and bootstrap summaries.

Replicates are independent: each one receives its own ``numpy.random.Generator``
spawned from a single ``SeedSequence``, so results are bit-identical for a given
seed regardless of worker count or completion order. Replicate values are
written to their slot as workers finish and reduced only after every batch has
completed.
"""

from __future__ import annotations

import logging
import multiprocessing
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

__all__ = [
    "DEFAULT_BOOTSTRAP_ITERATIONS",
    "bootstrap_se",
    "default_n_jobs",
    "run_replicates",
    "seed_sequence",
]

LOGGER = logging.getLogger(__name__)

# Default bootstrap replications
DEFAULT_BOOTSTRAP_ITERATIONS: int = 1000

_ENV_N_JOBS = "BIASADJUST_N_JOBS"


def default_n_jobs() -> int:
    """Worker count: ``BIASADJUST_N_JOBS`` if set, else ``min(cpu_count, 4)``."""
    raw = str(os.environ.get(_ENV_N_JOBS, "")).strip()
    if raw:
        try:
            n = int(raw)
        except ValueError:
            LOGGER.warning("Ignoring non-integer %s=%r.", _ENV_N_JOBS, raw)
        else:
            return max(1, n)
    return max(1, min(multiprocessing.cpu_count(), 4))


def seed_sequence(seed: int | np.random.SeedSequence | None) -> np.random.SeedSequence:
    """Normalize ``seed`` to a ``SeedSequence`` whose entropy identifies the run."""
    if isinstance(seed, np.random.SeedSequence):
        return seed
    return np.random.SeedSequence(seed)


def run_replicates(
    func: Callable[[np.random.Generator], float],
    n_rep: int,
    *,
    seed: int | np.random.SeedSequence | None = None,
    n_jobs: int | None = None,
    batch_size: int = 100,
) -> tuple[NDArray[np.float64], int]:
    """Evaluate ``func`` once per replicate with an independent generator.

    Returns
    -------
    draws : (n_rep,) array
        Replicate values in replicate order.
    entropy : int
        Entropy of the root seed sequence; equal entropies mean aligned draws.

    """
    B = int(n_rep)
    if B < 1:
        raise ValueError(f"n_rep must be >= 1; got {n_rep}.")
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1.")
    root = seed_sequence(seed)
    children = root.spawn(B)
    draws = np.empty(B, dtype=np.float64)

    def _batch(start: int, stop: int) -> tuple[int, NDArray[np.float64]]:
        vals = np.empty(stop - start, dtype=np.float64)
        for j, ss in enumerate(children[start:stop]):
            vals[j] = float(func(np.random.default_rng(ss)))
        return start, vals

    bounds = [(i, min(i + batch_size, B)) for i in range(0, B, batch_size)]
    workers = default_n_jobs() if n_jobs is None else max(1, int(n_jobs))
    if workers == 1 or len(bounds) == 1:
        for lo, hi in bounds:
            _, vals = _batch(lo, hi)
            draws[lo:hi] = vals
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(_batch, lo, hi) for lo, hi in bounds]
            for future in as_completed(futures):
                start, vals = future.result()
                draws[start : start + vals.shape[0]] = vals
    LOGGER.debug("Completed %d replicates on %d worker(s).", B, workers)
    return draws, int(root.entropy)


def bootstrap_se(draws: NDArray[np.float64]) -> float:
    """Bootstrap standard error of a replicate vector.

    Strict: requires at least 2 draws, rejects non-finite values and uses
    ``ddof=1``.
    """
    arr = np.asarray(draws, dtype=np.float64).reshape(-1)
    B = arr.shape[0]
    if B < 2:
        raise ValueError(f"bootstrap_se requires at least 2 draws; got B={B}.")
    if not np.isfinite(arr).all():
        bad = np.flatnonzero(~np.isfinite(arr))[:10].tolist()
        raise ValueError(
            "Non-finite bootstrap draws detected (showing up to 10 indices): "
            f"{bad}. This indicates numerical failure or an upstream bug.",
        )
    return float(np.std(arr, ddof=1))
