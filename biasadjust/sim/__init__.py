# biasadjust/sim/__init__.py
"""Synthetic data for demonstrations and tests."""
from .montecarlo import SYNTHETIC_SCHEMA, beta_posterior, simulate_frame, simulate_population, synthetic_spec

__all__ = [
    "SYNTHETIC_SCHEMA",
    "beta_posterior",
    "simulate_frame",
    "simulate_population",
    "synthetic_spec",
]
