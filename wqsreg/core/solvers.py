"""Nonlinear programming solvers behind a common interface.

The weight optimizer only talks to :class:`NonlinearSolver`, so the
underlying method (SQP, interior point) can be swapped without touching the
estimation logic. Solver trouble is reported through :class:`SolverStatus`,
never raised.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

import numpy as np
from scipy.optimize import BFGS, Bounds, NonlinearConstraint, minimize

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

LOGGER = logging.getLogger(__name__)

__all__ = [
    "SOLVERS",
    "NonlinearSolver",
    "SLSQPSolver",
    "SolverOutcome",
    "SolverStatus",
    "TrustConstrSolver",
    "constraint_violation",
    "get_solver",
]

Objective = Callable[["NDArray[np.float64]"], float]
Gradient = Callable[["NDArray[np.float64]"], "NDArray[np.float64]"]
BoundPair = tuple["float | None", "float | None"]

# Numerical failures that terminate a solve without aborting the caller
_SOLVER_ERRORS: tuple[type[Exception], ...] = (
    ValueError,
    FloatingPointError,
    ArithmeticError,
    np.linalg.LinAlgError,
)


class SolverStatus(str, Enum):
    """Termination status reported by a solver."""

    SUCCESS = "success"
    MAX_ITER = "max_iter"
    FAILED = "failed"


@dataclass(frozen=True)
class SolverOutcome:
    """Result of one constrained solve."""

    x: NDArray[np.float64]
    status: SolverStatus
    message: str = ""
    n_iter: int = 0
    constraint_violation: float = float("nan")


def constraint_violation(
    x: NDArray[np.float64],
    bounds: Sequence[BoundPair],
    constraints: Sequence[dict[str, Any]],
) -> float:
    """Largest violation of bounds, equality and inequality constraints at ``x``."""
    xv = np.asarray(x, dtype=np.float64).reshape(-1)
    if not np.all(np.isfinite(xv)):
        return float("inf")
    worst = 0.0
    for val, (lo, hi) in zip(xv, bounds):
        if lo is not None:
            worst = max(worst, float(lo) - float(val))
        if hi is not None:
            worst = max(worst, float(val) - float(hi))
    for con in constraints:
        f = np.atleast_1d(np.asarray(con["fun"](xv), dtype=np.float64))
        if con["type"] == "eq":
            worst = max(worst, float(np.max(np.abs(f))) if f.size else 0.0)
        elif con["type"] == "ineq":
            worst = max(worst, float(np.max(-f)) if f.size else 0.0)
        else:
            msg = f"Unknown constraint type: {con['type']!r}"
            raise ValueError(msg)
    return max(worst, 0.0)


class NonlinearSolver(ABC):
    """Minimize a smooth objective under box bounds and (in)equality constraints.

    Constraints follow the SciPy dictionary convention: ``{"type": "eq"|"ineq",
    "fun": f, "jac": g}`` meaning ``f(x) == 0`` or ``f(x) >= 0``.
    """

    name: str = "abstract"

    def __init__(self, *, max_iter: int = 500, tol: float = 1e-8) -> None:
        if int(max_iter) < 1:
            msg = "max_iter must be >= 1"
            raise ValueError(msg)
        if not (float(tol) > 0.0):
            msg = "tol must be positive"
            raise ValueError(msg)
        self.max_iter = int(max_iter)
        self.tol = float(tol)

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"{type(self).__name__}(max_iter={self.max_iter}, tol={self.tol})"

    @abstractmethod
    def _minimize(
        self,
        objective: Objective,
        bounds: Sequence[BoundPair],
        constraints: Sequence[dict[str, Any]],
        initial: NDArray[np.float64],
        jac: Gradient | None,
    ) -> SolverOutcome:
        """Run the underlying method; may raise numerical errors."""

    def solve(
        self,
        objective: Objective,
        bounds: Sequence[BoundPair],
        constraints: Sequence[dict[str, Any]],
        initial: NDArray[np.float64],
        *,
        jac: Gradient | None = None,
    ) -> SolverOutcome:
        """Solve and return ``(solution, status)`` packed in a :class:`SolverOutcome`."""
        x0 = np.asarray(initial, dtype=np.float64).reshape(-1)
        if len(bounds) != x0.shape[0]:
            raise ValueError(
                f"bounds has {len(bounds)} entries but initial has {x0.shape[0]}.",
            )
        for con in constraints:
            if con.get("type") not in {"eq", "ineq"}:
                msg = f"Unknown constraint type: {con.get('type')!r}"
                raise ValueError(msg)
        try:
            out = self._minimize(objective, bounds, constraints, x0, jac)
        except _SOLVER_ERRORS as exc:
            LOGGER.debug("%s raised during solve: %s", self.name, exc)
            return SolverOutcome(
                x=x0.copy(),
                status=SolverStatus.FAILED,
                message=f"{type(exc).__name__}: {exc}",
            )
        if not np.all(np.isfinite(out.x)):
            return SolverOutcome(
                x=out.x,
                status=SolverStatus.FAILED,
                message=f"non-finite solution ({out.message})",
                n_iter=out.n_iter,
                constraint_violation=float("inf"),
            )
        return out


class SLSQPSolver(NonlinearSolver):
    """Sequential least-squares quadratic programming (SciPy SLSQP)."""

    name = "slsqp"

    # SLSQP exit mode for "Iteration limit reached"
    _ITER_LIMIT_STATUS = 9

    def _minimize(self, objective, bounds, constraints, initial, jac):
        res = minimize(
            objective,
            initial,
            jac=jac,
            method="SLSQP",
            bounds=list(bounds),
            constraints=list(constraints),
            options={"maxiter": self.max_iter, "ftol": self.tol},
        )
        x = np.asarray(res.x, dtype=np.float64)
        if bool(res.success):
            status = SolverStatus.SUCCESS
        elif int(res.status) == self._ITER_LIMIT_STATUS:
            status = SolverStatus.MAX_ITER
        else:
            status = SolverStatus.FAILED
        viol = constraint_violation(x, bounds, constraints) if np.all(np.isfinite(x)) else float("inf")
        return SolverOutcome(
            x=x,
            status=status,
            message=str(res.message),
            n_iter=int(getattr(res, "nit", 0) or 0),
            constraint_violation=viol,
        )


class TrustConstrSolver(NonlinearSolver):
    """Trust-region interior point method (SciPy ``trust-constr``)."""

    name = "trust-constr"

    def _minimize(self, objective, bounds, constraints, initial, jac):
        lo = np.array([-np.inf if b[0] is None else float(b[0]) for b in bounds])
        hi = np.array([np.inf if b[1] is None else float(b[1]) for b in bounds])
        nl_cons = []
        for con in constraints:
            if con["type"] == "eq":
                lb, ub = 0.0, 0.0
            elif con["type"] == "ineq":
                lb, ub = 0.0, np.inf
            else:
                msg = f"Unknown constraint type: {con['type']!r}"
                raise ValueError(msg)
            nl_cons.append(
                NonlinearConstraint(
                    con["fun"], lb, ub, jac=con.get("jac", "2-point"), hess=BFGS(),
                ),
            )
        # interior point needs a strictly interior start on bounded coordinates
        x0 = np.clip(initial, lo, hi)
        res = minimize(
            objective,
            x0,
            jac=jac if jac is not None else "2-point",
            hess=BFGS(),
            method="trust-constr",
            bounds=Bounds(lo, hi),
            constraints=nl_cons,
            options={"maxiter": self.max_iter, "gtol": self.tol, "xtol": self.tol},
        )
        x = np.asarray(res.x, dtype=np.float64)
        # trust-constr: 0 = iteration cap, 1 = gtol, 2 = xtol, 3 = callback
        code = int(res.status)
        if code in (1, 2):
            status = SolverStatus.SUCCESS
        elif code == 0:
            status = SolverStatus.MAX_ITER
        else:
            status = SolverStatus.FAILED
        viol = constraint_violation(x, bounds, constraints) if np.all(np.isfinite(x)) else float("inf")
        return SolverOutcome(
            x=x,
            status=status,
            message=str(res.message),
            n_iter=int(getattr(res, "nit", 0) or 0),
            constraint_violation=viol,
        )


SOLVERS: dict[str, type[NonlinearSolver]] = {
    "slsqp": SLSQPSolver,
    "sqp": SLSQPSolver,
    "trust-constr": TrustConstrSolver,
    "interior-point": TrustConstrSolver,
}


def get_solver(name: str | NonlinearSolver, **options: Any) -> NonlinearSolver:
    """Return a solver instance by name (or pass an instance through)."""
    if isinstance(name, NonlinearSolver):
        return name
    key = str(name).strip().lower().replace("_", "-")
    if key not in SOLVERS:
        allowed = ", ".join(sorted(SOLVERS))
        msg = f"Unknown solver {name!r}; allowed: {allowed}."
        raise ValueError(msg)
    return SOLVERS[key](**options)
