"""Training/validation splitting."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from wqsreg.core.bootstrap import SPLIT_STREAM, stream_rng
from wqsreg.core.errors import EmptyDatasetError, InputError

LOGGER = logging.getLogger(__name__)

__all__ = ["split_by_labels", "split_data"]


def split_data(
    df: pd.DataFrame,
    validation: float,
    *,
    seed_entropy: int,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Randomly hold out ``round(n * validation)`` rows for validation.

    ``validation == 0`` returns the full frame for both roles. Row order
    within each part follows the input frame.
    """
    v = float(validation)
    if not (0.0 <= v < 1.0):
        msg = f"validation must lie in [0, 1); got {validation!r}."
        raise InputError(msg)
    n = int(df.shape[0])
    if n == 0:
        msg = "Cannot split an empty frame."
        raise EmptyDatasetError(msg)
    if v == 0.0:
        return df, df
    # numpy rounds half to even like R's round()
    n_valid = int(np.round(n * v))
    rng = stream_rng(seed_entropy, SPLIT_STREAM)
    pos = np.sort(rng.choice(n, size=n_valid, replace=False))
    mask = np.zeros(n, dtype=bool)
    mask[pos] = True
    data_t, data_v = df.loc[~mask], df.loc[mask]
    if data_t.shape[0] == 0 or data_v.shape[0] == 0:
        msg = (
            f"Split of {n} rows with validation={v} leaves "
            f"{data_t.shape[0]} training and {data_v.shape[0]} validation rows."
        )
        raise EmptyDatasetError(msg)
    LOGGER.info("Split %d rows: %d training, %d validation", n, data_t.shape[0], data_v.shape[0])
    return data_t, data_v


def split_by_labels(df: pd.DataFrame, valid_var: str) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Split on a 0/1 column (1 = validation); both labels must be present."""
    if valid_var not in df.columns:
        msg = f"Validation label column '{valid_var}' not found."
        raise InputError(msg)
    labels = pd.to_numeric(df[valid_var], errors="coerce")
    values = set(np.unique(labels.to_numpy(dtype=np.float64)).tolist())
    if values != {0.0, 1.0}:
        msg = "valid_var values must be 0 and 1"
        raise InputError(msg)
    data_t = df.loc[labels == 0]
    data_v = df.loc[labels == 1]
    LOGGER.info("Label split: %d training, %d validation", data_t.shape[0], data_v.shape[0])
    return data_t, data_v
