"""Weighted Quantile Sum regression.

Pipeline: quantile-rank the mixture, split into training and validation
sets, estimate weights on B bootstrap resamples of the training set, average
the weights of the resamples whose mixture effect has the hypothesized sign,
and test the resulting index on the validation set.
"""

# wqsreg/estimators/wqs.py
from __future__ import annotations

import logging
import warnings
from dataclasses import replace
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from wqsreg.core import bootstrap as bt
from wqsreg.core.aggregate import aggregate_weights, outcome_table, select_viable
from wqsreg.core.errors import EmptyDatasetError, InputError
from wqsreg.core.optimize import ConvergenceCode, WeightOptimizer
from wqsreg.estimators.base import BaseEstimator, WQSConfig, WQSResult
from wqsreg.estimators.final import fit_final_model
from wqsreg.utils.formula import FormulaParser, reserved_columns
from wqsreg.utils.quantiles import quantile_transform
from wqsreg.utils.split import split_by_labels, split_data

if TYPE_CHECKING:
    from collections.abc import Sequence

    from wqsreg.core.solvers import NonlinearSolver

LOGGER = logging.getLogger(__name__)

__all__ = ["WQS", "fit_wqs"]


class WQS(BaseEstimator):
    """WQS regression on a prepared, complete-case frame.

    Parameters
    ----------
    data : DataFrame
        Outcome, covariate design columns and mixture columns, without
        missing values. The index provides the row keys.
    y_name : str
        Outcome column.
    mix_names : sequence of str
        Mixture component columns.
    cov_names : sequence of str, optional
        Covariate columns (no intercept column).
    valid_var : str, optional
        0/1 column marking validation rows.

    Use :meth:`from_formula` to build the frame from a formula.

    """

    def __init__(  # noqa: PLR0913
        self,
        data: pd.DataFrame,
        *,
        y_name: str,
        mix_names: Sequence[str],
        cov_names: Sequence[str] | None = None,
        valid_var: str | None = None,
    ) -> None:
        super().__init__()
        self.y_name = str(y_name)
        self.mix_names = [str(m) for m in mix_names]
        self.cov_names = [] if cov_names is None else [str(c) for c in cov_names]
        self.valid_var = valid_var
        needed = [self.y_name, *self.mix_names, *self.cov_names]
        if valid_var is not None:
            needed.append(valid_var)
        missing = [c for c in needed if c not in data.columns]
        if missing:
            msg = f"Columns not found in data: {missing}"
            raise InputError(msg)
        taken = sorted(set(self.cov_names) & reserved_columns(self.mix_names))
        if taken:
            msg = f"Covariate names clash with columns built by the fit: {taken}"
            raise InputError(msg)
        if data.index.has_duplicates:
            msg = "Input DataFrame index must be unique for deterministic row mapping."
            raise InputError(msg)
        if data.shape[0] == 0:
            msg = "No observations to fit."
            raise EmptyDatasetError(msg)
        if data[needed].isna().to_numpy().any():
            msg = "data contains missing values; use from_formula or drop incomplete rows."
            raise InputError(msg)
        self.data = data
        self.formula: str | None = None
        self.n_dropped = 0

    @classmethod
    def from_formula(
        cls,
        formula: str,
        data: pd.DataFrame,
        *,
        mix_names: Sequence[str],
        valid_var: str | None = None,
    ) -> WQS:
        """Build a WQS model from ``y ~ covariates`` and the mixture names."""
        parser = FormulaParser(data)
        parsed = parser.parse(formula, mix_names, valid_var=valid_var)
        model = cls(
            parsed["frame"],
            y_name=parsed["y_name"],
            mix_names=parsed["mix_names"],
            cov_names=parsed["cov_names"],
            valid_var=parsed["valid_var"],
        )
        model.formula = formula
        model.n_dropped = int(parsed["n_dropped"])
        return model

    # -- pipeline stages -----------------------------------------------
    def _split(
        self, df: pd.DataFrame, cfg: WQSConfig, seed_entropy: int,
    ) -> tuple[pd.DataFrame, pd.DataFrame]:
        label = cfg.valid_var if cfg.valid_var is not None else self.valid_var
        if label is not None:
            if cfg.validation is not None:
                msg = "Specify at most one of validation and valid_var."
                raise InputError(msg)
            data_t, data_v = split_by_labels(df, label)
        else:
            data_t, data_v = split_data(
                df, cfg.effective_validation, seed_entropy=seed_entropy,
            )
        if data_t.shape[0] == 0 or data_v.shape[0] == 0:
            msg = "Training or validation set is empty."
            raise EmptyDatasetError(msg)
        return data_t, data_v

    def _optimizer(self, data_t: pd.DataFrame, q_names: list[str], cfg: WQSConfig) -> WeightOptimizer:
        C = data_t[self.cov_names].to_numpy(dtype=np.float64) if self.cov_names else None
        return WeightOptimizer(
            data_t[self.y_name].to_numpy(dtype=np.float64),
            data_t[q_names].to_numpy(dtype=np.float64),
            C,
            mix_names=self.mix_names,
            family=cfg.family,
            direction=cfg.direction,
            sign_constrained=cfg.sign_constrained,
            solver=cfg.solver,
            max_iter=cfg.max_iter,
            tol=cfg.tol,
            init_weights=cfg.init_weights,
        )

    def fit(self, config: WQSConfig | None = None, **overrides: Any) -> WQSResult:
        """Run the full WQS pipeline and return :class:`WQSResult`.

        Keyword overrides are applied to ``config`` with
        :func:`dataclasses.replace`.
        """
        cfg = WQSConfig() if config is None else config
        if overrides:
            cfg = replace(cfg, **overrides)
        seed_entropy = bt.resolve_seed(cfg.seed)

        df, q_names, cutpoints = quantile_transform(self.data, self.mix_names, cfg.q)
        data_t, data_v = self._split(df, cfg, seed_entropy)
        optimizer = self._optimizer(data_t, q_names, cfg)

        index_b = bt.draw_bootstrap_indices(data_t.index, cfg.n_boot, seed_entropy=seed_entropy)
        positions = [data_t.index.get_indexer(keys) for keys in index_b]

        def task(k: int):
            return optimizer.optimize(positions[k], iteration=k)

        LOGGER.info(
            "Estimating weights on %d bootstrap samples of %d training rows",
            cfg.n_boot, data_t.shape[0],
        )
        outcomes = bt.run_bootstrap(task, cfg.n_boot, n_jobs=cfg.n_jobs)
        table = outcome_table(outcomes, self.mix_names)

        n_failed = int((table["conv"] == int(ConvergenceCode.FAILED)).sum())
        if n_failed > cfg.n_boot / 2:
            warnings.warn(
                f"{n_failed} of {cfg.n_boot} bootstrap optimizations failed to converge.",
                RuntimeWarning,
                stacklevel=2,
            )
        mean_w = aggregate_weights(table, self.mix_names, cfg.direction)

        final = fit_final_model(
            data_v,
            self.y_name,
            q_names,
            self.cov_names,
            mean_w,
            cfg.family,
            quadratic=cfg.quadratic,
        )

        final_weights = (
            pd.DataFrame({"mix_name": mean_w.index, "mean_weight": mean_w.to_numpy()})
            .sort_values("mean_weight", ascending=False, kind="mergesort")
            .reset_index(drop=True)
        )
        n_viable = int(select_viable(table, cfg.direction).sum())
        result = WQSResult(
            fit=final.fit,
            conv=table["conv"].copy(),
            boot_table=table,
            y_adj=final.y_adj,
            wqs=final.wqs,
            index_b=index_b,
            data_t=data_t,
            data_v=data_v,
            final_weights=final_weights,
            fit_2=final.fit_2,
            aov=final.aov,
            q_names=q_names,
            cov_names=list(self.cov_names),
            cutpoints=cutpoints,
            model_info={
                "Estimator": "WQS",
                "Family": cfg.family,
                "Direction": cfg.direction,
                "Q": cfg.q,
                "B": cfg.n_boot,
                "NTrain": int(data_t.shape[0]),
                "NValid": int(data_v.shape[0]),
            },
            extra={
                "seed_entropy": seed_entropy,
                "mean_weights": mean_w,
                "n_viable": n_viable,
                "n_failed": n_failed,
                "messages": [o.message for o in outcomes],
                "n_dropped": self.n_dropped,
                "formula": self.formula,
                "config": cfg,
                "y_name": self.y_name,
            },
        )
        self._results = result
        return result


def fit_wqs(  # noqa: PLR0913
    formula: str,
    mix_names: Sequence[str],
    data: pd.DataFrame,
    *,
    q: int | str | None = 4,
    validation: float | None = None,
    valid_var: str | None = None,
    n_boot: int = bt.DEFAULT_BOOTSTRAP_ITERATIONS,
    direction: str = "positive",
    sign_constrained: bool = False,
    family: str = "gaussian",
    seed: int | None = None,
    quadratic: bool = False,
    n_jobs: int | None = None,
    solver: str | NonlinearSolver = "slsqp",
    max_iter: int = 500,
    tol: float = 1e-8,
    init_weights: Sequence[float] | None = None,
) -> WQSResult:
    """Fit a WQS regression from a formula.

    Examples
    --------
    >>> res = fit_wqs("y ~ age", ["x1", "x2", "x3"], df, q=4, n_boot=50, seed=1)
    >>> res.final_weights.head()

    """
    cfg = WQSConfig(
        q=q,
        validation=validation,
        valid_var=valid_var,
        n_boot=n_boot,
        direction=direction,
        sign_constrained=sign_constrained,
        family=family,
        seed=seed,
        quadratic=quadratic,
        n_jobs=n_jobs,
        solver=solver,
        max_iter=max_iter,
        tol=tol,
        init_weights=init_weights,
    )
    model = WQS.from_formula(formula, data, mix_names=mix_names, valid_var=valid_var)
    return model.fit(config=cfg)
