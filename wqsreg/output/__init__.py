# wqsreg/output/__init__.py
"""Output module for WQS results."""
from .summary import coef_table, wqs_summary

__all__ = [
    "coef_table",
    "wqs_summary",
]
