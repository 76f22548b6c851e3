import pytest
import numpy as np
import pandas as pd
from wqsreg import fit_wqs
from wqsreg.core.errors import EmptyDatasetError, InputError, NoViableBootstrapsError
from wqsreg.core.solvers import NonlinearSolver, SolverOutcome, SolverStatus


# Helper to generate data
def make_data(n=120, seed=42):
    rng = np.random.default_rng(seed)
    X = rng.lognormal(size=(n, 3))
    df = pd.DataFrame(X, columns=["x1", "x2", "x3"])
    df["z"] = rng.standard_normal(n)
    df["y"] = np.log(df["x1"]) + 0.5 * df["z"] + rng.standard_normal(n)
    return df


def test_constant_outcome_rejected():
    df = make_data().assign(y=1.0)
    with pytest.raises(InputError, match="identical"):
        fit_wqs("y ~ z", ["x1", "x2", "x3"], df, n_boot=2, seed=1, n_jobs=1)

def test_binomial_requires_binary_outcome():
    with pytest.raises(InputError, match="0/1"):
        fit_wqs("y ~ z", ["x1", "x2", "x3"], make_data(), family="binomial", n_boot=2, seed=1)

def test_collinear_covariates_rejected():
    df = make_data()
    df["z2"] = 3.0 * df["z"]
    with pytest.raises(InputError, match="rank-deficient"):
        fit_wqs("y ~ z + z2", ["x1", "x2", "x3"], df, n_boot=2, seed=1, n_jobs=1)

def test_all_rows_incomplete():
    df = make_data().assign(z=np.nan)
    with pytest.raises(EmptyDatasetError):
        fit_wqs("y ~ z", ["x1", "x2", "x3"], df, n_boot=2, seed=1)

def test_incomplete_rows_are_dropped():
    df = make_data()
    df.loc[:9, "x2"] = np.nan
    res = fit_wqs("y ~ z", ["x1", "x2", "x3"], df, validation=0.0, n_boot=2, seed=1, n_jobs=1)
    assert res.data_t.shape[0] == 110
    assert res.extra["n_dropped"] == 10

def test_single_component_mixture():
    df = make_data()
    res = fit_wqs("y ~ z", ["x1"], df, n_boot=2, seed=3, n_jobs=1)
    np.testing.assert_allclose(res.boot_table["x1"].to_numpy(), 1.0)

class _StuckSolver(NonlinearSolver):
    name = "stuck"

    def _minimize(self, objective, bounds, constraints, initial, jac):
        return SolverOutcome(x=initial, status=SolverStatus.FAILED, message="stuck")


def test_all_iterations_failing_warns_and_raises():
    df = make_data()
    with pytest.warns(RuntimeWarning, match="failed to converge"):
        with pytest.raises(NoViableBootstrapsError) as err:
            fit_wqs("y ~ z", ["x1", "x2", "x3"], df, n_boot=3, seed=1, n_jobs=1, solver=_StuckSolver())
    assert (err.value.table["conv"] == 2).all()
