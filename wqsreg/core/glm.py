"""GLM families, likelihoods and statsmodels fitting helpers.

Only the two families used by WQS regression are supported: gaussian with
identity link and binomial with logit link.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg as sla
import statsmodels.api as sm

if TYPE_CHECKING:
    import pandas as pd
    from numpy.typing import NDArray

LOGGER = logging.getLogger(__name__)

__all__ = [
    "FAMILIES",
    "column_rank",
    "fit_glm",
    "mean_negloglik",
    "mean_negloglik_grad",
    "normalize_family",
    "sm_family",
]

FAMILIES: tuple[str, ...] = ("gaussian", "binomial")


def normalize_family(family: str) -> str:
    """Validate and canonicalize a family name."""
    fam = str(family).strip().lower()
    if fam not in FAMILIES:
        msg = f"family must be one of {set(FAMILIES)}; got {family!r}."
        raise ValueError(msg)
    return fam


def sm_family(family: str) -> sm.families.Family:
    """Return the statsmodels family object with its canonical link."""
    fam = normalize_family(family)
    if fam == "gaussian":
        return sm.families.Gaussian(link=sm.families.links.Identity())
    return sm.families.Binomial(link=sm.families.links.Logit())


def mean_negloglik(eta: NDArray[np.float64], y: NDArray[np.float64], family: str) -> float:
    """Mean negative log-likelihood (up to constants) at linear predictor ``eta``.

    gaussian: 0.5 * mean((y - eta)^2); binomial: mean(log(1 + e^eta) - y * eta).
    """
    if family == "gaussian":
        r = y - eta
        return float(0.5 * np.mean(r * r))
    return float(np.mean(np.logaddexp(0.0, eta) - y * eta))


def mean_negloglik_grad(
    eta: NDArray[np.float64], y: NDArray[np.float64], family: str,
) -> NDArray[np.float64]:
    """Derivative of :func:`mean_negloglik` with respect to each ``eta_i``."""
    n = float(eta.shape[0])
    if family == "gaussian":
        return (eta - y) / n
    # logistic mean computed without overflow
    mu = np.exp(-np.logaddexp(0.0, -eta))
    return (mu - y) / n


def column_rank(X: NDArray[np.float64]) -> int:
    """Numerical column rank via pivoted QR with R's lm.fit tolerance (1e-7 * max|diag R|)."""
    A = np.asarray(X, dtype=np.float64)
    if A.ndim != 2 or A.shape[1] == 0:
        return 0
    _Q, R, _P = sla.qr(A, mode="economic", pivoting=True)
    d = np.abs(np.diag(R))
    if d.size == 0 or float(np.max(d)) == 0.0:
        return 0
    tol = 1e-7 * float(np.max(d))
    return int(np.sum(d > tol))


def fit_glm(
    y: NDArray[np.float64] | pd.Series,
    X: pd.DataFrame,
    family: str,
) -> sm.genmod.generalized_linear_model.GLMResultsWrapper:
    """Fit ``y ~ X`` (X already contains the constant) by IRLS."""
    model = sm.GLM(y, X, family=sm_family(family))
    return model.fit()
