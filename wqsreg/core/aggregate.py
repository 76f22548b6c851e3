"""Bootstrap audit table and sign-filtered weight averaging."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from .errors import InputError, NoViableBootstrapsError
from .optimize import ConvergenceCode, normalize_direction

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .optimize import OptimizationOutcome

LOGGER = logging.getLogger(__name__)

__all__ = ["aggregate_weights", "outcome_table", "select_viable"]


def outcome_table(
    outcomes: Sequence[OptimizationOutcome],
    mix_names: Sequence[str],
) -> pd.DataFrame:
    """One row per iteration: weights, ``b1``, ``p_val`` and ``conv``.

    Rows are ordered by iteration index regardless of the order in which
    ``outcomes`` arrive.
    """
    names = [str(m) for m in mix_names]
    if not outcomes:
        msg = "No bootstrap outcomes to tabulate."
        raise InputError(msg)
    ordered = sorted(outcomes, key=lambda o: o.iteration)
    iters = [o.iteration for o in ordered]
    if len(set(iters)) != len(iters):
        msg = "Duplicate iteration indices in bootstrap outcomes."
        raise InputError(msg)
    W = np.vstack([o.weights.reindex(names).to_numpy(dtype=np.float64) for o in ordered])
    table = pd.DataFrame(W, columns=names, index=pd.Index(iters, name="iteration"))
    table["b1"] = [float(o.b1) for o in ordered]
    table["p_val"] = [float(o.p_value) for o in ordered]
    table["conv"] = np.array([int(o.conv) for o in ordered], dtype=np.int64)
    return table


def select_viable(table: pd.DataFrame, direction: str) -> pd.Series:
    """Boolean mask of iterations that converged with b1 of the requested sign."""
    d = normalize_direction(direction)
    b1 = pd.to_numeric(table["b1"], errors="coerce")
    ok = table["conv"].astype(int) != int(ConvergenceCode.FAILED)
    # NaN compares False on both sides
    signed = b1 > 0 if d == "positive" else b1 < 0
    return ok & signed


def aggregate_weights(
    table: pd.DataFrame,
    mix_names: Sequence[str],
    direction: str,
) -> pd.Series:
    """Mean weight per component over the viable iterations.

    Raises
    ------
    NoViableBootstrapsError
        When no iteration converged with the requested sign.

    """
    d = normalize_direction(direction)
    names = [str(m) for m in mix_names]
    missing = [m for m in names if m not in table.columns]
    if missing:
        msg = f"Audit table lacks weight columns: {missing}"
        raise InputError(msg)
    mask = select_viable(table, d)
    n_keep = int(mask.sum())
    if n_keep == 0:
        raise NoViableBootstrapsError(d, table)
    LOGGER.info("Averaging weights over %d of %d bootstrap iterations", n_keep, table.shape[0])
    wbar = table.loc[mask, names].mean(axis=0)
    wbar.name = "mean_weight"
    return wbar.astype(np.float64)
