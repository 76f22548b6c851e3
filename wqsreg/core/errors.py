"""Exception taxonomy for WQS estimation.

Input problems are reported before any computation; per-iteration solver
failures are never raised (they are recorded in the bootstrap audit table).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import pandas as pd

__all__ = [
    "DegenerateFitError",
    "EmptyDatasetError",
    "InputError",
    "NoViableBootstrapsError",
    "WQSError",
]


class WQSError(Exception):
    """Base class for all errors raised by wqsreg."""


class InputError(WQSError, ValueError):
    """Malformed arguments or data detected before estimation starts."""


class EmptyDatasetError(InputError):
    """No observations left to work with."""


class NoViableBootstrapsError(WQSError, RuntimeError):
    """Every bootstrap iteration failed or had the wrong mixture-effect sign.

    The full audit table is attached so callers can inspect the exclusions.
    """

    def __init__(self, direction: str, table: pd.DataFrame | None = None) -> None:
        self.direction = direction
        self.table = table
        n_rows = 0 if table is None else int(table.shape[0])
        msg = (
            f"There are no {direction} b1 in the bootstrapped models "
            f"({n_rows} iterations inspected); the data do not support a "
            f"{direction} mixture effect."
        )
        super().__init__(msg)

    def __reduce__(self) -> tuple[Any, ...]:
        return (type(self), (self.direction, self.table))


class DegenerateFitError(WQSError, RuntimeError):
    """The final GLM is singular or rank-deficient."""
