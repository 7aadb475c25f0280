# biasadjust/output/__init__.py
"""Diagnostics and summary output for estimator results."""
from .fit import AuxiliaryFit, auxiliary_fit, mean_absolute_error
from .summary import estimates_table, fit_table, render, summarize, trends_table

__all__ = [
    "AuxiliaryFit",
    "auxiliary_fit",
    "estimates_table",
    "fit_table",
    "mean_absolute_error",
    "render",
    "summarize",
    "trends_table",
]
