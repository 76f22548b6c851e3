"""Estimator exports with lazy loading.

Public estimator classes and result containers. Uses lazy imports to avoid
circular dependencies.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "WQS",
    "BaseEstimator",
    "FinalModelFit",
    "WQSConfig",
    "WQSResult",
    "fit_final_model",
    "fit_wqs",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseEstimator": ("wqsreg.estimators.base", "BaseEstimator"),
    "WQSConfig": ("wqsreg.estimators.base", "WQSConfig"),
    "WQSResult": ("wqsreg.estimators.base", "WQSResult"),
    "FinalModelFit": ("wqsreg.estimators.final", "FinalModelFit"),
    "fit_final_model": ("wqsreg.estimators.final", "fit_final_model"),
    "WQS": ("wqsreg.estimators.wqs", "WQS"),
    "fit_wqs": ("wqsreg.estimators.wqs", "fit_wqs"),
}


def __getattr__(name: str) -> Any:
    """Lazily import estimator classes and shared containers."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
