# biasadjust/core/__init__.py
"""Core computational modules for biasadjust."""
from . import bootstrap, errors, frame, inference, strata

__all__ = ["bootstrap", "errors", "frame", "inference", "strata"]
