"""Quantile ranking of mixture components.

Each component is replaced by its quantile rank 0..q-1: breaks are the
(de-duplicated) sample quantiles at 0, 1/q, ..., 1 with the outer edges
opened to -inf/+inf, and intervals are right-closed. Ties can merge bins,
in which case fewer than ``q`` distinct ranks appear.
"""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from wqsreg.core.errors import InputError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

LOGGER = logging.getLogger(__name__)

__all__ = ["normalize_q", "quantile_breaks", "quantile_ranks", "quantile_transform"]


def normalize_q(q: int | str | None) -> int | None:
    """Validate the number of quantiles; ``None``/"none" disables ranking."""
    if q is None or (isinstance(q, str) and q.strip().lower() == "none"):
        return None
    if isinstance(q, (bool, np.bool_)) or not isinstance(q, (int, np.integer)):
        msg = f"q must be an integer >= 2 or None; got {q!r}."
        raise InputError(msg)
    if int(q) < 2:
        msg = f"q must be an integer >= 2 or None; got {q!r}."
        raise InputError(msg)
    return int(q)


def quantile_breaks(x: NDArray[np.float64], q: int) -> NDArray[np.float64]:
    """Unique sample quantiles (linear interpolation) with open outer edges."""
    probs = np.linspace(0.0, 1.0, q + 1)
    br = np.unique(np.quantile(np.asarray(x, dtype=np.float64), probs))
    if br.shape[0] == 1:
        return np.array([-np.inf, br[0]])
    br[0] = -np.inf
    br[-1] = np.inf
    return br


def quantile_ranks(x: NDArray[np.float64], breaks: NDArray[np.float64]) -> NDArray[np.int64]:
    """Rank of each value in the right-closed intervals defined by ``breaks``."""
    # value equal to an interior break falls in the interval it closes
    codes = np.searchsorted(breaks, np.asarray(x, dtype=np.float64), side="left") - 1
    return np.clip(codes, 0, breaks.shape[0] - 2).astype(np.int64)


def quantile_transform(
    df: pd.DataFrame,
    mix_names: Sequence[str],
    q: int | str | None,
) -> tuple[pd.DataFrame, list[str], dict[str, NDArray[np.float64]]]:
    """Add quantile-ranked copies ``<name>_q`` of the mixture columns.

    Returns the augmented frame (input untouched), the ranked column names and
    the breaks used per component. With ``q=None`` the raw columns are used
    as-is and no breaks are reported.
    """
    qq = normalize_q(q)
    names = [str(m) for m in mix_names]
    if qq is None:
        return df.copy(), names, {}
    if df.shape[0] == 0:
        msg = "Cannot rank mixture components of an empty frame."
        raise InputError(msg)
    out = df.copy()
    q_names: list[str] = []
    cutpoints: dict[str, NDArray[np.float64]] = {}
    collapsed: list[str] = []
    for m in names:
        x = out[m].to_numpy(dtype=np.float64)
        if not np.all(np.isfinite(x)):
            msg = f"Mixture component '{m}' has non-finite values."
            raise InputError(msg)
        br = quantile_breaks(x, qq)
        qn = f"{m}_q"
        out[qn] = quantile_ranks(x, br).astype(np.float64)
        q_names.append(qn)
        cutpoints[m] = br
        if br.shape[0] - 1 < qq:
            collapsed.append(m)
    if collapsed:
        warnings.warn(
            f"Tied values merged quantile bins for {collapsed}; fewer than q={qq} "
            "distinct ranks are used for these components.",
            UserWarning,
            stacklevel=2,
        )
    LOGGER.debug("Quantile-ranked %d components into %d bins", len(names), qq)
    return out, q_names, cutpoints
