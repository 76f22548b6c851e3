"""wqsreg: Weighted Quantile Sum regression.

This package estimates a weighted mixture index from correlated exposures via
bootstrap-based constrained optimization and tests its association with an
outcome through a generalized linear model.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

__all__ = [
    "WQS",
    "ConvergenceCode",
    "DegenerateFitError",
    "EmptyDatasetError",
    "InputError",
    "NoViableBootstrapsError",
    "WQSConfig",
    "WQSError",
    "WQSResult",
    "fit_wqs",
    "wqs_summary",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "WQS": ("wqsreg.estimators.wqs", "WQS"),
    "fit_wqs": ("wqsreg.estimators.wqs", "fit_wqs"),
    "WQSConfig": ("wqsreg.estimators.base", "WQSConfig"),
    "WQSResult": ("wqsreg.estimators.base", "WQSResult"),
    "ConvergenceCode": ("wqsreg.core.optimize", "ConvergenceCode"),
    "WQSError": ("wqsreg.core.errors", "WQSError"),
    "InputError": ("wqsreg.core.errors", "InputError"),
    "EmptyDatasetError": ("wqsreg.core.errors", "EmptyDatasetError"),
    "NoViableBootstrapsError": ("wqsreg.core.errors", "NoViableBootstrapsError"),
    "DegenerateFitError": ("wqsreg.core.errors", "DegenerateFitError"),
    "wqs_summary": ("wqsreg.output.summary", "wqs_summary"),
}


def __getattr__(name: str) -> Any:
    """Lazily import public estimators and utilities on first access."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    msg = f"module 'wqsreg' has no attribute '{name}'"
    raise AttributeError(msg)


def __dir__() -> list[str]:
    """Ensure dir() exposes lazily imported names."""
    return sorted(set(globals()) | set(__all__))
