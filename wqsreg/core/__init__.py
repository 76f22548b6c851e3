# wqsreg/core/__init__.py
"""Core computational modules for wqsreg."""
from . import aggregate, bootstrap, errors, glm, optimize, solvers

__all__ = ["aggregate", "bootstrap", "errors", "glm", "optimize", "solvers"]
