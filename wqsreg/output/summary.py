"""Summary tables for WQS results.

Plain-text rendering of the final weights, the validation-set GLM
coefficients and, when fitted, the quadratic model comparison.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, cast

import numpy as np
import pandas as pd
from tabulate import tabulate

if TYPE_CHECKING:
    from wqsreg.estimators.base import WQSResult

__all__ = ["coef_table", "wqs_summary"]


def coef_table(fit) -> pd.DataFrame:
    """Estimate, standard error, test statistic and p-value of a statsmodels fit."""
    return pd.DataFrame(
        {
            "Estimate": fit.params,
            "Std. Error": fit.bse,
            "z/t": fit.tvalues,
            "p-value": fit.pvalues,
        },
    )


def _fmt(val: object, fmt: str) -> str:
    if isinstance(val, (float, np.floating)):
        return "" if np.isnan(val) else format(float(val), fmt)
    return str(val)


def _render(df: pd.DataFrame, fmt: str, tablefmt: str, *, index: bool = True) -> str:
    rows = []
    for label, row in df.iterrows():
        cells = [_fmt(v, fmt) for v in row.tolist()]
        rows.append([str(label), *cells] if index else cells)
    headers = ([""] if index else []) + [str(c) for c in df.columns]
    return cast("str", tabulate(rows, headers=headers, tablefmt=tablefmt, stralign="right"))


def wqs_summary(
    result: WQSResult,
    *,
    coef_format: str = ".6g",
    tablefmt: str = "simple",
) -> str:
    """Render the weights, coefficient and comparison tables of ``result``."""
    parts = ["Final weights", _render(result.final_weights, coef_format, tablefmt, index=False)]

    parts += ["", "Validation-set GLM", _render(coef_table(result.fit), coef_format, tablefmt)]

    if result.fit_2 is not None:
        parts += ["", "Quadratic model", _render(coef_table(result.fit_2), coef_format, tablefmt)]
    if result.aov is not None:
        parts += ["", "Model comparison (chi-square)", _render(result.aov, coef_format, tablefmt)]

    info = dict(result.model_info)
    info["Viable"] = result.extra.get("n_viable")
    info["Failed"] = result.extra.get("n_failed")
    footer = [[k, "" if v is None else str(v)] for k, v in info.items()]
    parts += ["", cast("str", tabulate(footer, tablefmt=tablefmt))]
    return "\n".join(parts)
