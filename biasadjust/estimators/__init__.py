"""Estimator exports with lazy loading.

Public estimator classes and result containers. Uses lazy imports to avoid
circular dependencies between the suite and the diagnostics module.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "AuxiliaryInputs",
    "BaseEstimator",
    "Calibration",
    "EstimatorOutput",
    "EstimatorSuite",
    "MultilevelPoststratification",
    "Poststratification",
    "Provenance",
    "QuasiRandomisation",
    "ResampleConfig",
    "SuiteConfig",
    "SuiteResult",
    "WeightedSubsampling",
    "default_estimators",
    "subsample_sensitivity",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "AuxiliaryInputs": ("biasadjust.estimators.base", "AuxiliaryInputs"),
    "BaseEstimator": ("biasadjust.estimators.base", "BaseEstimator"),
    "EstimatorOutput": ("biasadjust.estimators.base", "EstimatorOutput"),
    "Provenance": ("biasadjust.estimators.base", "Provenance"),
    "ResampleConfig": ("biasadjust.estimators.base", "ResampleConfig"),
    "QuasiRandomisation": ("biasadjust.estimators.quasi", "QuasiRandomisation"),
    "Poststratification": ("biasadjust.estimators.poststrat", "Poststratification"),
    "Calibration": ("biasadjust.estimators.calibration", "Calibration"),
    "WeightedSubsampling": ("biasadjust.estimators.subsample", "WeightedSubsampling"),
    "subsample_sensitivity": ("biasadjust.estimators.subsample", "subsample_sensitivity"),
    "MultilevelPoststratification": ("biasadjust.estimators.mrp", "MultilevelPoststratification"),
    "EstimatorSuite": ("biasadjust.estimators.suite", "EstimatorSuite"),
    "SuiteConfig": ("biasadjust.estimators.suite", "SuiteConfig"),
    "SuiteResult": ("biasadjust.estimators.suite", "SuiteResult"),
    "default_estimators": ("biasadjust.estimators.suite", "default_estimators"),
}


def __getattr__(name: str) -> Any:
    """Lazily import estimator classes and shared containers."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module 'biasadjust.estimators' has no attribute '{name}'")


def __dir__() -> list[str]:
    """Expose lazily loaded attributes to ``dir()``."""
    return sorted(set(globals()) | set(__all__))
