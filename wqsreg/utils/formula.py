"""Formula parser for wqsreg.

Patsy-based parsing of the outcome formula ``y ~ covariates`` plus the
bookkeeping WQS needs around it: mixture columns, an optional validation
label column, and joint removal of incomplete rows.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd
import patsy

from wqsreg.core.errors import EmptyDatasetError, InputError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from collections.abc import Sequence

LOGGER = logging.getLogger(__name__)

# R-style empty right-hand side
_NULL_PAT = re.compile(r"\bNULL\b")
# gwqs writes the index explicitly as ``y ~ wqs + covs``
_WQS_TERM_PAT = re.compile(r"(?<![\w.])wqs(?![\w.(])")
# design and ranked-column names written by the fitters
INDEX_COLUMNS = ("const", "wqs", "wqs_sq")


def _cleanup_rhs(rhs: str) -> str:
    """Drop empty additive terms left after removing tokens; "1" when nothing is left."""
    s = re.sub(r"\s*\+\s*", " + ", rhs)
    s = re.sub(r"(?:\s*\+\s*){2,}", " + ", s)
    s = s.strip()
    s = re.sub(r"^\+\s*", "", s)
    s = re.sub(r"\s*\+$", "", s)
    return s if s else "1"


def reserved_columns(mix_names: Sequence[str]) -> set[str]:
    """Column names a covariate may not take: index terms and ``<mixture>_q``."""
    return set(INDEX_COLUMNS) | {f"{m}_q" for m in mix_names}


class FormulaParser:
    """Prepare a WQS model frame from a formula and a DataFrame.

    The right-hand side describes covariates only; the mixture enters through
    the WQS index. ``y ~ NULL``, ``y ~ 1`` and ``y ~ wqs`` all mean "no
    covariates". Incomplete rows (in the outcome, covariates, mixture or
    validation-label column) are dropped jointly, and the original index
    labels are kept as row keys.
    """

    def __init__(self, data: pd.DataFrame) -> None:
        if not isinstance(data, pd.DataFrame):
            msg = f"data must be a pandas DataFrame; got {type(data).__name__}."
            raise InputError(msg)
        if data.index.has_duplicates:
            msg = "Input DataFrame index must be unique for deterministic row mapping."
            raise InputError(msg)
        self.data = data

    def _check_mixture(self, mix_names: Sequence[str]) -> list[str]:
        if isinstance(mix_names, str):
            mix_names = [mix_names]
        names = [str(m) for m in mix_names]
        if not names:
            msg = "At least one mixture component name is required."
            raise InputError(msg)
        if len(set(names)) != len(names):
            msg = "Mixture component names must be unique."
            raise InputError(msg)
        missing = [m for m in names if m not in self.data.columns]
        if missing:
            msg = f"Mixture components not found in data: {missing}"
            raise InputError(msg)
        bad = [
            m for m in names
            if pd.api.types.is_bool_dtype(self.data[m])
            or not pd.api.types.is_numeric_dtype(self.data[m])
        ]
        if bad:
            msg = f"Mixture components must be numeric: {bad}"
            raise InputError(msg)
        return names

    def parse(
        self,
        formula: str,
        mix_names: Sequence[str],
        *,
        valid_var: str | None = None,
    ) -> dict[str, Any]:
        """Parse ``formula`` and build the complete-case model frame.

        Returns dict with keys: frame, y_name, cov_names, mix_names,
        valid_var, n_dropped.
        """
        if not isinstance(formula, str) or "~" not in formula:
            msg = "Formula must be a string containing '~'."
            raise InputError(msg)
        lhs, rhs_raw = [s.strip() for s in formula.split("~", 1)]
        if not lhs:
            msg = "Formula has an empty left-hand side."
            raise InputError(msg)
        mixture = self._check_mixture(mix_names)

        rhs = _NULL_PAT.sub("1", rhs_raw) if rhs_raw else "1"
        rhs = _cleanup_rhs(_WQS_TERM_PAT.sub("", rhs))

        extra_cols = list(mixture)
        if valid_var is not None:
            if valid_var not in self.data.columns:
                msg = f"Validation label column '{valid_var}' not found in data."
                raise InputError(msg)
            if valid_var in mixture:
                msg = "valid_var cannot be a mixture component."
                raise InputError(msg)
            extra_cols.append(valid_var)

        # mixture/label NAs first so patsy sees the same rows
        base = self.data.dropna(subset=extra_cols)
        if base.shape[0] == 0:
            msg = "No complete rows remain after removing missing values."
            raise EmptyDatasetError(msg)

        na = patsy.NAAction(on_NA="drop")
        try:
            y_design, x_design = patsy.dmatrices(
                f"{lhs} ~ {rhs}", base, NA_action=na, return_type="dataframe",
            )
        except patsy.PatsyError as exc:
            msg = f"Could not parse formula {formula!r}: {exc}"
            raise InputError(msg) from exc
        if y_design.shape[1] != 1:
            msg = (
                f"Outcome '{lhs}' expands to {y_design.shape[1]} columns; supply a "
                "single numeric outcome (code binary outcomes as 0/1)."
            )
            raise InputError(msg)
        # the intercept is re-added by the fitters; dropping it here keeps
        # treatment coding for categorical covariates
        x_design = x_design.drop(columns=["Intercept"], errors="ignore")
        kept_idx = y_design.index
        if len(kept_idx) == 0:
            msg = "No complete rows remain after removing missing values."
            raise EmptyDatasetError(msg)

        y_name = str(y_design.columns[0])
        cov_names = [str(c) for c in x_design.columns]
        reserved = set(mixture) | {y_name}
        if valid_var is not None:
            reserved.add(valid_var)
        clash = sorted(set(cov_names) & reserved)
        if clash:
            msg = f"Mixture, outcome or label columns appear among the covariates: {clash}"
            raise InputError(msg)
        taken = sorted(set(cov_names) & reserved_columns(mixture))
        if taken:
            msg = f"Covariate names clash with columns built by the fit: {taken}"
            raise InputError(msg)

        frame = pd.DataFrame(index=kept_idx)
        frame[y_name] = y_design.iloc[:, 0].astype(np.float64)
        for c in cov_names:
            frame[c] = x_design[c].astype(np.float64)
        for m in mixture:
            frame[m] = base.loc[kept_idx, m].astype(np.float64)
        if valid_var is not None:
            frame[valid_var] = base.loc[kept_idx, valid_var]

        n_dropped = int(self.data.shape[0] - frame.shape[0])
        if n_dropped:
            LOGGER.info("Dropped %d incomplete rows (%d remain)", n_dropped, frame.shape[0])
        return {
            "frame": frame,
            "y_name": y_name,
            "cov_names": cov_names,
            "mix_names": mixture,
            "valid_var": valid_var,
            "n_dropped": n_dropped,
        }
