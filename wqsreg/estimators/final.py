"""Final model fit on the validation set.

Given aggregate weights, the WQS index is built on the validation rows and
the outcome is regressed on it (plus covariates) with statsmodels GLM. An
optional quadratic term is tested against the linear model by a deviance
(chi-square) comparison.
"""

# wqsreg/estimators/final.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from wqsreg.core import glm
from wqsreg.core.errors import DegenerateFitError, InputError

if TYPE_CHECKING:
    from collections.abc import Sequence

LOGGER = logging.getLogger(__name__)

__all__ = [
    "FinalModelFit",
    "adjusted_outcome",
    "fit_final_model",
    "model_comparison",
    "wqs_index",
]

_FIT_ERRORS: tuple[type[Exception], ...] = (
    np.linalg.LinAlgError,
    ValueError,
    FloatingPointError,
    PerfectSeparationError,
)


@dataclass
class FinalModelFit:
    """Validation-set GLM fit, index and adjusted outcome."""

    fit: Any
    wqs: pd.Series
    y_adj: pd.Series
    fit_2: Any | None = None
    aov: pd.DataFrame | None = None


def wqs_index(Q: pd.DataFrame, weights: pd.Series | Sequence[float]) -> pd.Series:
    """WQS index ``Q @ w`` over the rows of ``Q``.

    Columns of ``Q`` are matched to ``weights`` by position, so ranked columns
    (``<name>_q``) pair with weights labelled by the original names.
    """
    w = np.asarray(weights, dtype=np.float64).reshape(-1)
    if Q.shape[1] != w.shape[0]:
        msg = f"{w.shape[0]} weights supplied for {Q.shape[1]} mixture columns."
        raise InputError(msg)
    vals = Q.to_numpy(dtype=np.float64) @ w
    return pd.Series(vals, index=Q.index, name="wqs")


def _design(
    data: pd.DataFrame, cov_names: Sequence[str], index_cols: dict[str, pd.Series],
) -> pd.DataFrame:
    X = pd.DataFrame({"const": np.ones(data.shape[0])}, index=data.index)
    for name, col in index_cols.items():
        X[name] = col.to_numpy(dtype=np.float64)
    for c in cov_names:
        X[c] = data[c].to_numpy(dtype=np.float64)
    return X


def _fit(y: pd.Series, X: pd.DataFrame, family: str, label: str) -> Any:
    if glm.column_rank(X.to_numpy(dtype=np.float64)) < X.shape[1]:
        msg = f"{label} design is rank-deficient (columns: {list(X.columns)})."
        raise DegenerateFitError(msg)
    try:
        return glm.fit_glm(y, X, family)
    except _FIT_ERRORS as exc:
        msg = f"{label} GLM fit failed: {exc}"
        raise DegenerateFitError(msg) from exc


def adjusted_outcome(
    data: pd.DataFrame, y_name: str, cov_names: Sequence[str], family: str,
) -> pd.Series:
    """Outcome with covariate effects removed.

    No covariates: the outcome itself. Gaussian: mean(y) plus the residuals
    of ``y ~ covariates``. Binomial: Pearson residuals of ``y ~ covariates``.
    """
    y = data[y_name].astype(np.float64)
    if not cov_names:
        return y.rename("y_adj")
    X = _design(data, cov_names, {})
    res = _fit(y, X, family, "Covariate-only")
    if family == "gaussian":
        vals = float(np.mean(y)) + np.asarray(res.resid_response, dtype=np.float64)
    else:
        vals = np.asarray(res.resid_pearson, dtype=np.float64)
    return pd.Series(vals, index=data.index, name="y_adj")


def model_comparison(fit1: Any, fit2: Any, family: str) -> pd.DataFrame:
    """Deviance comparison of nested GLMs (chi-square test).

    For gaussian the deviance difference is scaled by the larger model's
    dispersion; binomial dispersion is fixed at 1.
    """
    df1, df2 = float(fit1.df_resid), float(fit2.df_resid)
    dev1, dev2 = float(fit1.deviance), float(fit2.deviance)
    df_diff = df1 - df2
    dev_diff = dev1 - dev2
    scale = float(fit2.scale) if family == "gaussian" else 1.0
    if df_diff > 0 and scale > 0:
        p_value = float(stats.chi2.sf(dev_diff / scale, df_diff))
    else:
        p_value = float("nan")
    return pd.DataFrame(
        {
            "df_resid": [df1, df2],
            "deviance": [dev1, dev2],
            "df_diff": [np.nan, df_diff],
            "dev_diff": [np.nan, dev_diff],
            "p_value": [np.nan, p_value],
        },
        index=pd.Index(["wqs", "wqs + wqs_sq"], name="model"),
    )


def fit_final_model(  # noqa: PLR0913
    data_v: pd.DataFrame,
    y_name: str,
    q_names: Sequence[str],
    cov_names: Sequence[str],
    weights: pd.Series | Sequence[float],
    family: str,
    quadratic: bool = False,
) -> FinalModelFit:
    """Fit ``y ~ wqs + covariates`` (and optionally ``+ wqs_sq``) on ``data_v``.

    Raises
    ------
    DegenerateFitError
        When the index has zero variance or the design is rank-deficient.

    """
    fam = glm.normalize_family(family)
    if data_v.shape[0] == 0:
        msg = "Validation set is empty."
        raise InputError(msg)
    wqs = wqs_index(data_v[list(q_names)], weights)
    if float(np.ptp(wqs.to_numpy())) == 0.0:
        msg = "WQS index has zero variance in the validation set."
        raise DegenerateFitError(msg)
    y = data_v[y_name].astype(np.float64)

    X = _design(data_v, cov_names, {"wqs": wqs})
    fit = _fit(y, X, fam, "Final")
    LOGGER.info(
        "Final %s fit: b1=%.6g (p=%.4g) on %d rows",
        fam, float(fit.params["wqs"]), float(fit.pvalues["wqs"]), data_v.shape[0],
    )

    fit_2 = None
    aov = None
    if quadratic:
        X2 = _design(data_v, cov_names, {"wqs": wqs, "wqs_sq": wqs**2})
        fit_2 = _fit(y, X2, fam, "Quadratic")
        aov = model_comparison(fit, fit_2, fam)

    y_adj = adjusted_outcome(data_v, y_name, cov_names, fam)
    return FinalModelFit(fit=fit, wqs=wqs, y_adj=y_adj, fit_2=fit_2, aov=aov)
