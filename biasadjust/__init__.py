"""biasadjust: bias-adjusted occupancy estimation from non-probability samples.

This package estimates a population mean (species occupancy) and its two-period
trend from a biased sample using interchangeable adjustment strategies
(quasi-randomisation, poststratification, calibration, weighted subsampling and
MRP poststratification), and scores how well each strategy restores the
population distribution of auxiliary covariates.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

__all__ = [
    "AuxiliaryInputs",
    "AuxiliaryRule",
    "AuxiliarySpec",
    "BaseEstimator",
    "Calibration",
    "EstimatorOutput",
    "EstimatorSuite",
    "FrameSchema",
    "MultilevelPoststratification",
    "Poststratification",
    "Provenance",
    "QuasiRandomisation",
    "ResampleConfig",
    "SuiteConfig",
    "SurveyFrame",
    "WeightedSubsampling",
    "auxiliary_fit",
    "build_table",
    "summarize",
    "trend",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "FrameSchema": ("biasadjust.core.frame", "FrameSchema"),
    "SurveyFrame": ("biasadjust.core.frame", "SurveyFrame"),
    "AuxiliaryRule": ("biasadjust.core.strata", "AuxiliaryRule"),
    "AuxiliarySpec": ("biasadjust.core.strata", "AuxiliarySpec"),
    "build_table": ("biasadjust.core.strata", "build"),
    "trend": ("biasadjust.core.inference", "trend"),
    "AuxiliaryInputs": ("biasadjust.estimators.base", "AuxiliaryInputs"),
    "BaseEstimator": ("biasadjust.estimators.base", "BaseEstimator"),
    "EstimatorOutput": ("biasadjust.estimators.base", "EstimatorOutput"),
    "Provenance": ("biasadjust.estimators.base", "Provenance"),
    "ResampleConfig": ("biasadjust.estimators.base", "ResampleConfig"),
    "QuasiRandomisation": ("biasadjust.estimators.quasi", "QuasiRandomisation"),
    "Poststratification": ("biasadjust.estimators.poststrat", "Poststratification"),
    "Calibration": ("biasadjust.estimators.calibration", "Calibration"),
    "WeightedSubsampling": ("biasadjust.estimators.subsample", "WeightedSubsampling"),
    "MultilevelPoststratification": ("biasadjust.estimators.mrp", "MultilevelPoststratification"),
    "EstimatorSuite": ("biasadjust.estimators.suite", "EstimatorSuite"),
    "SuiteConfig": ("biasadjust.estimators.suite", "SuiteConfig"),
    "auxiliary_fit": ("biasadjust.output.fit", "auxiliary_fit"),
    "summarize": ("biasadjust.output.summary", "summarize"),
}


def __getattr__(name: str) -> Any:
    """Lazily import public estimators and utilities on first access."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module 'biasadjust' has no attribute '{name}'")


def __dir__() -> list[str]:
    """Ensure dir() exposes lazily imported names."""
    return sorted(set(globals()) | set(__all__))
