"""Base classes, run configuration and result container.

This module defines the abstract base estimator, the WQS configuration
dataclass, and the standardized WQS results container.
"""

# wqsreg/estimators/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from wqsreg.core import bootstrap as bt
from wqsreg.core import glm
from wqsreg.core.errors import InputError
from wqsreg.core.optimize import normalize_direction
from wqsreg.core.solvers import SOLVERS, NonlinearSolver
from wqsreg.utils.quantiles import normalize_q

if TYPE_CHECKING:  # import-only typing
    from collections.abc import Sequence

    import pandas as pd
    from numpy.typing import NDArray

__all__ = [
    "DEFAULT_VALIDATION",
    "BaseEstimator",
    "WQSConfig",
    "WQSResult",
]

# Held-out share used when neither ``validation`` nor ``valid_var`` is given
DEFAULT_VALIDATION: float = 0.6


# ---------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class WQSConfig:
    """Options of one WQS run, validated on construction.

    Notes
    -----
    - Quantiles: ``q`` is an integer >= 2, or ``None``/"none" to use raw
      component values.
    - Splitting: give at most one of ``validation`` (held-out share in
      [0, 1)) and ``valid_var`` (0/1 column, 1 = validation). With neither,
      60% of the rows are held out.
    - Direction: ``direction`` selects the sign of b1 kept when averaging
      weights; ``sign_constrained`` additionally bounds b1 during each solve.
    - Parallelism: ``n_jobs=None`` reads ``WQSREG_N_JOBS`` or uses
      ``min(cpu_count, 4)``. Results do not depend on ``n_jobs``.

    Reproducibility:
        * ``seed`` fixes the split and every bootstrap resample. Without a
          seed, fresh entropy is drawn and recorded on the result.

    """

    q: int | str | None = 4
    validation: float | None = None
    valid_var: str | None = None
    n_boot: int = bt.DEFAULT_BOOTSTRAP_ITERATIONS
    direction: str = "positive"
    sign_constrained: bool = False
    family: str = "gaussian"
    seed: int | None = None
    quadratic: bool = False
    n_jobs: int | None = None
    solver: str | NonlinearSolver = "slsqp"
    max_iter: int = 500
    tol: float = 1e-8
    init_weights: Sequence[float] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "q", normalize_q(self.q))
        object.__setattr__(self, "direction", normalize_direction(self.direction))
        try:
            fam = glm.normalize_family(self.family)
        except ValueError as exc:
            raise InputError(str(exc)) from exc
        object.__setattr__(self, "family", fam)

        if self.validation is not None and self.valid_var is not None:
            msg = "Specify at most one of validation and valid_var."
            raise InputError(msg)
        if self.validation is not None:
            v = float(self.validation)
            if not (0.0 <= v < 1.0):
                msg = f"validation must lie in [0, 1); got {self.validation!r}."
                raise InputError(msg)
            object.__setattr__(self, "validation", v)

        n_boot = self.n_boot
        if isinstance(n_boot, bool) or int(n_boot) != n_boot or int(n_boot) < 1:
            msg = f"n_boot must be a positive integer; got {n_boot!r}."
            raise InputError(msg)
        object.__setattr__(self, "n_boot", int(n_boot))

        if self.n_jobs is not None and (isinstance(self.n_jobs, bool) or int(self.n_jobs) < 1):
            msg = f"n_jobs must be a positive integer or None; got {self.n_jobs!r}."
            raise InputError(msg)
        if not isinstance(self.solver, NonlinearSolver):
            key = str(self.solver).strip().lower().replace("_", "-")
            if key not in SOLVERS:
                msg = f"Unknown solver {self.solver!r}; allowed: {', '.join(sorted(SOLVERS))}."
                raise InputError(msg)
        if int(self.max_iter) < 1 or not (float(self.tol) > 0.0):
            msg = "max_iter must be >= 1 and tol must be positive."
            raise InputError(msg)
        if self.init_weights is not None:
            w = np.asarray(self.init_weights, dtype=np.float64).reshape(-1)
            if w.size == 0 or not np.all(np.isfinite(w)) or np.any(w < 0.0) or w.sum() <= 0.0:
                msg = "init_weights must be non-negative with a positive sum."
                raise InputError(msg)
            object.__setattr__(self, "init_weights", tuple(float(x) for x in w))
        object.__setattr__(self, "sign_constrained", bool(self.sign_constrained))
        object.__setattr__(self, "quadratic", bool(self.quadratic))

    @property
    def effective_validation(self) -> float | None:
        """Held-out share actually used (``None`` when splitting by label)."""
        if self.valid_var is not None:
            return None
        return DEFAULT_VALIDATION if self.validation is None else float(self.validation)


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------
@dataclass
class WQSResult:
    """Container for a fitted WQS regression.

    ``fit`` is the statsmodels GLM of the outcome on the index (and
    covariates) in the validation set; ``boot_table`` is the per-iteration
    audit table of weights, b1, p-value and convergence code.
    """

    fit: Any
    conv: pd.Series
    boot_table: pd.DataFrame
    y_adj: pd.Series
    wqs: pd.Series
    index_b: list[NDArray[Any]]
    data_t: pd.DataFrame
    data_v: pd.DataFrame
    final_weights: pd.DataFrame
    fit_2: Any | None = None
    aov: pd.DataFrame | None = None
    q_names: list[str] = field(default_factory=list)
    cov_names: list[str] = field(default_factory=list)
    cutpoints: dict[str, NDArray[np.float64]] = field(default_factory=dict)
    model_info: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    """Dictionary for run diagnostics (seed entropy, counts, solver messages)."""

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        head = ", ".join(f"{k}={v}" for k, v in self.model_info.items())
        return f"WQSResult(c={self.final_weights.shape[0]}, {head})"

    @property
    def wb1pm(self) -> pd.DataFrame:
        """Alias of :attr:`boot_table` under the name gwqs uses."""
        return self.boot_table

    @property
    def weights(self) -> pd.Series:
        """Aggregate weights in mixture order."""
        return self.extra["mean_weights"]

    @property
    def params(self) -> pd.Series:
        return self.fit.params

    def summary(self, **kwargs: Any) -> str:
        """Plain-text tables of the final weights and model coefficients."""
        from wqsreg.output.summary import wqs_summary

        return wqs_summary(self, **kwargs)


class BaseEstimator(ABC):
    """Abstract base class for `wqsreg` estimators."""

    def __init__(self) -> None:
        self._results: WQSResult | None = None

    @abstractmethod
    def fit(self, *args: Any, **kwargs: Any) -> WQSResult:  # pragma: no cover - abstract
        """Fit the estimator and return WQSResult (abstract)."""
        ...

    # -- convenience accessors ----------------------------------------
    @property
    def results(self) -> WQSResult:
        if self._results is None:
            msg = "Model has not been fitted yet. Call .fit() first."
            raise RuntimeError(msg)
        return self._results

    @property
    def params(self) -> pd.Series:
        return self.results.params
