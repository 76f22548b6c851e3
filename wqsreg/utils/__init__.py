# wqsreg/utils/__init__.py
"""Utility functions module."""
from .formula import FormulaParser
from .quantiles import quantile_transform
from .split import split_by_labels, split_data

__all__ = [
    "FormulaParser",
    "quantile_transform",
    "split_by_labels",
    "split_data",
]
