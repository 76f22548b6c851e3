"""Constrained weight estimation for one bootstrap sample.

For a resample of the training data the optimizer minimizes the GLM negative
log-likelihood of

    y ~ g^-1(b0 + b1 * (Q w) + C gamma)

jointly over (b0, b1, w, gamma) with w on the unit simplex and, optionally,
b1 restricted to the hypothesized sign. The mixture coefficient and its
p-value are then obtained by refitting the GLM on the estimated index.

Solver non-convergence is never raised; it is reported through
:class:`ConvergenceCode` so the aggregator can exclude the iteration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from . import glm
from .errors import InputError
from .solvers import NonlinearSolver, SolverOutcome, SolverStatus, get_solver

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

LOGGER = logging.getLogger(__name__)

__all__ = [
    "DIRECTIONS",
    "ConvergenceCode",
    "OptimizationOutcome",
    "WeightOptimizer",
    "convergence_code",
    "normalize_direction",
    "project_to_simplex",
    "validate_training_data",
]

DIRECTIONS: tuple[str, ...] = ("positive", "negative")

# Tolerance on simplex/bound feasibility of a reported solution
FEASIBILITY_TOL: float = 1e-6

# Errors from the post-solve GLM refit that mark an iteration as failed
_REFIT_ERRORS: tuple[type[Exception], ...] = (
    np.linalg.LinAlgError,
    ValueError,
    FloatingPointError,
    PerfectSeparationError,
)


class ConvergenceCode(IntEnum):
    """Per-iteration solver status (0 = converged, 1 = with warning, 2 = failed)."""

    CONVERGED = 0
    CONVERGED_WITH_WARNING = 1
    FAILED = 2


@dataclass(frozen=True)
class OptimizationOutcome:
    """Weights, mixture coefficient, p-value and convergence code of one iteration."""

    iteration: int
    weights: pd.Series
    b1: float
    p_value: float
    conv: ConvergenceCode
    message: str = ""
    n_iter: int = 0


def normalize_direction(direction: str) -> str:
    """Validate the hypothesized sign of the mixture effect."""
    d = str(direction).strip().lower()
    aliases = {"pos": "positive", "+": "positive", "neg": "negative", "-": "negative"}
    d = aliases.get(d, d)
    if d not in DIRECTIONS:
        msg = f"direction must be one of {set(DIRECTIONS)}; got {direction!r}."
        raise InputError(msg)
    return d


def convergence_code(outcome: SolverOutcome, *, tol: float = FEASIBILITY_TOL) -> ConvergenceCode:
    """Map a solver termination status onto :class:`ConvergenceCode`.

    Success with constraints satisfied to ``tol`` is CONVERGED; an iteration
    cap, or success with a constraint residual above ``tol``, is
    CONVERGED_WITH_WARNING; anything else is FAILED.
    """
    if outcome.status is SolverStatus.FAILED:
        return ConvergenceCode.FAILED
    viol = float(outcome.constraint_violation)
    if not np.isfinite(viol):
        return ConvergenceCode.FAILED
    if outcome.status is SolverStatus.SUCCESS and viol <= tol:
        return ConvergenceCode.CONVERGED
    return ConvergenceCode.CONVERGED_WITH_WARNING


def project_to_simplex(w: NDArray[np.float64]) -> NDArray[np.float64] | None:
    """Clip at zero and renormalize; ``None`` when no mass is left."""
    v = np.asarray(w, dtype=np.float64).reshape(-1)
    if not np.all(np.isfinite(v)):
        return None
    v = np.clip(v, 0.0, None)
    s = float(np.sum(v))
    if s <= 0.0:
        return None
    return v / s


def validate_training_data(
    y: NDArray[np.float64],
    Q: NDArray[np.float64],
    C: NDArray[np.float64],
    family: str,
) -> None:
    """Fail fast on training data that no iteration could fit."""
    if y.shape[0] == 0:
        msg = "Training set is empty."
        raise InputError(msg)
    for label, arr in (("outcome", y), ("mixture", Q), ("covariate", C)):
        if arr.size and not np.all(np.isfinite(arr)):
            msg = f"Non-finite {label} values in the training set."
            raise InputError(msg)
    if np.ptp(y) == 0.0:
        msg = (
            "All outcome values in the training set are identical; the mixture "
            "effect is not identifiable."
        )
        raise InputError(msg)
    if family == "binomial" and not np.all(np.isin(y, (0.0, 1.0))):
        msg = "binomial family requires a 0/1 outcome."
        raise InputError(msg)
    if Q.shape[1] == 0:
        msg = "At least one mixture component is required."
        raise InputError(msg)
    if np.all(np.ptp(Q, axis=0) == 0.0):
        msg = (
            "Every mixture component is constant in the training set; the WQS "
            "index would be constant (singular design)."
        )
        raise InputError(msg)
    base = np.column_stack([np.ones(y.shape[0]), C]) if C.shape[1] else np.ones((y.shape[0], 1))
    if glm.column_rank(base) < base.shape[1]:
        msg = (
            "Covariate design matrix (with intercept) is rank-deficient in the "
            "training set; drop collinear covariates."
        )
        raise InputError(msg)


class WeightOptimizer:
    """Solve the constrained WQS problem on bootstrap resamples of one training set.

    Parameters
    ----------
    y : array, shape (n,)
        Outcome.
    Q : array, shape (n, c)
        Quantile-ranked (or raw) mixture components.
    C : array, shape (n, k)
        Covariates without intercept (k may be 0).
    mix_names : sequence of str
        Labels for the weight vector (original mixture names).
    family : {"gaussian", "binomial"}
    direction : {"positive", "negative"}
        Hypothesized sign of b1; only used as a bound when ``sign_constrained``.
    sign_constrained : bool
        Restrict b1 to ``direction`` during the solve.
    solver : str or NonlinearSolver
        Solver name understood by :func:`get_solver` or an instance.
    init_weights : sequence of float, optional
        Starting weights; uniform when omitted.

    """

    def __init__(  # noqa: PLR0913
        self,
        y: NDArray[np.float64],
        Q: NDArray[np.float64],
        C: NDArray[np.float64] | None,
        *,
        mix_names: Sequence[str],
        family: str = "gaussian",
        direction: str = "positive",
        sign_constrained: bool = False,
        solver: str | NonlinearSolver = "slsqp",
        max_iter: int = 500,
        tol: float = 1e-8,
        init_weights: Sequence[float] | None = None,
    ) -> None:
        self.y = np.asarray(y, dtype=np.float64).reshape(-1)
        self.Q = np.asarray(Q, dtype=np.float64)
        n = self.y.shape[0]
        self.C = (
            np.zeros((n, 0), dtype=np.float64)
            if C is None
            else np.asarray(C, dtype=np.float64).reshape(n, -1)
        )
        if self.Q.ndim != 2 or self.Q.shape[0] != n:
            msg = "Q must be a 2-D array with one row per observation."
            raise InputError(msg)
        self.mix_names = [str(m) for m in mix_names]
        if len(self.mix_names) != self.Q.shape[1]:
            msg = "mix_names must match the number of mixture columns."
            raise InputError(msg)
        self.family = glm.normalize_family(family)
        self.direction = normalize_direction(direction)
        self.sign_constrained = bool(sign_constrained)
        self.solver = (
            solver
            if isinstance(solver, NonlinearSolver)
            else get_solver(solver, max_iter=max_iter, tol=tol)
        )
        validate_training_data(self.y, self.Q, self.C, self.family)
        self.w0 = self._initial_weights(init_weights)

    # -- setup ---------------------------------------------------------
    def _initial_weights(self, init_weights: Sequence[float] | None) -> NDArray[np.float64]:
        c = self.Q.shape[1]
        if init_weights is None:
            return np.full(c, 1.0 / c, dtype=np.float64)
        w = np.asarray(init_weights, dtype=np.float64).reshape(-1)
        if w.shape[0] != c:
            msg = f"init_weights has {w.shape[0]} entries; expected {c}."
            raise InputError(msg)
        if not np.all(np.isfinite(w)) or np.any(w < 0.0) or float(np.sum(w)) <= 0.0:
            msg = "init_weights must be non-negative with a positive sum."
            raise InputError(msg)
        return w / float(np.sum(w))

    @property
    def n_params(self) -> int:
        return 2 + self.Q.shape[1] + self.C.shape[1]

    def bounds(self) -> list[tuple[float | None, float | None]]:
        """Box bounds for (b0, b1, w, gamma)."""
        b1_bound: tuple[float | None, float | None] = (None, None)
        if self.sign_constrained:
            b1_bound = (0.0, None) if self.direction == "positive" else (None, 0.0)
        c, k = self.Q.shape[1], self.C.shape[1]
        return [(None, None), b1_bound, *([(0.0, 1.0)] * c), *([(None, None)] * k)]

    def constraints(self) -> list[dict[str, Any]]:
        """Equality constraint sum(w) = 1."""
        c = self.Q.shape[1]
        grad = np.zeros((1, self.n_params), dtype=np.float64)
        grad[0, 2 : 2 + c] = 1.0
        return [
            {
                "type": "eq",
                "fun": lambda th: np.array([np.sum(th[2 : 2 + c]) - 1.0]),
                "jac": lambda th: grad,
            },
        ]

    def initial_parameters(
        self, y: NDArray[np.float64], Q: NDArray[np.float64], C: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Uniform weights plus link-scale coefficients fitted on the uniform index."""
        idx0 = Q @ self.w0
        k = C.shape[1]
        if self.family == "gaussian":
            D = np.column_stack([np.ones(y.shape[0]), idx0, C])
            coef = np.linalg.lstsq(D, y, rcond=None)[0]
            b0, b1, gamma = float(coef[0]), float(coef[1]), coef[2:]
        else:
            p = float(np.clip(np.mean(y), 1e-6, 1.0 - 1e-6))
            b0, b1, gamma = float(np.log(p / (1.0 - p))), 0.0, np.zeros(k)
        if self.sign_constrained:
            b1 = max(b1, 0.0) if self.direction == "positive" else min(b1, 0.0)
        return np.concatenate([[b0, b1], self.w0, np.asarray(gamma, dtype=np.float64)])

    # -- objective -----------------------------------------------------
    def _objective(self, y, Q, C):
        c = Q.shape[1]
        family = self.family

        def unpack(th):
            b0, b1 = th[0], th[1]
            w = th[2 : 2 + c]
            gamma = th[2 + c :]
            idx = Q @ w
            eta = b0 + b1 * idx
            if gamma.size:
                eta = eta + C @ gamma
            return b1, idx, eta

        def fun(th: NDArray[np.float64]) -> float:
            _, _, eta = unpack(th)
            return glm.mean_negloglik(eta, y, family)

        def jac(th: NDArray[np.float64]) -> NDArray[np.float64]:
            b1, idx, eta = unpack(th)
            r = glm.mean_negloglik_grad(eta, y, family)
            return np.concatenate([[np.sum(r), r @ idx], b1 * (Q.T @ r), C.T @ r])

        return fun, jac

    # -- per-iteration entry point --------------------------------------
    def optimize(self, positions: NDArray[np.int64] | None = None, iteration: int = 0) -> OptimizationOutcome:
        """Estimate weights on the rows at ``positions`` (all rows when ``None``)."""
        if positions is None:
            y, Q, C = self.y, self.Q, self.C
        else:
            pos = np.asarray(positions, dtype=np.int64)
            y, Q, C = self.y[pos], self.Q[pos], self.C[pos]

        fun, jac = self._objective(y, Q, C)
        theta0 = self.initial_parameters(y, Q, C)
        solved = self.solver.solve(fun, self.bounds(), self.constraints(), theta0, jac=jac)
        conv = convergence_code(solved)
        message = solved.message

        c = Q.shape[1]
        w = project_to_simplex(solved.x[2 : 2 + c])
        if w is None:
            w = self.w0.copy()
            conv = ConvergenceCode.FAILED
            message = f"no feasible weights recovered ({message})"

        b1, p_val = self._refit(y, Q, C, w)
        if not np.isfinite(b1):
            conv = ConvergenceCode.FAILED
            message = f"GLM refit failed ({message})"

        LOGGER.debug(
            "iteration %d: conv=%d b1=%.6g p=%.4g nit=%d (%s)",
            iteration, int(conv), b1, p_val, solved.n_iter, message,
        )
        return OptimizationOutcome(
            iteration=int(iteration),
            weights=pd.Series(w, index=self.mix_names, dtype=np.float64),
            b1=float(b1),
            p_value=float(p_val),
            conv=conv,
            message=message,
            n_iter=solved.n_iter,
        )

    def _refit(
        self,
        y: NDArray[np.float64],
        Q: NDArray[np.float64],
        C: NDArray[np.float64],
        w: NDArray[np.float64],
    ) -> tuple[float, float]:
        """Refit ``y ~ wqs + covariates`` and return (b1, two-sided p-value)."""
        idx = Q @ w
        if np.ptp(idx) == 0.0:
            return float("nan"), float("nan")
        cols = {"const": np.ones(y.shape[0]), "wqs": idx}
        for j in range(C.shape[1]):
            cols[f"cov{j}"] = C[:, j]
        X = pd.DataFrame(cols)
        try:
            res = glm.fit_glm(y, X, self.family)
        except _REFIT_ERRORS as exc:
            LOGGER.debug("GLM refit failed: %s", exc)
            return float("nan"), float("nan")
        b1 = float(res.params["wqs"])
        p_val = float(res.pvalues["wqs"])
        return b1, p_val
