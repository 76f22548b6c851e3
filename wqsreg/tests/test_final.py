import pytest
import numpy as np
import pandas as pd
from wqsreg.core.errors import DegenerateFitError, InputError
from wqsreg.estimators import final as fm


@pytest.fixture
def data_v():
    rng = np.random.default_rng(77)
    n = 150
    Q = rng.integers(0, 4, size=(n, 3)).astype(float)
    z = rng.standard_normal(n)
    idx = Q @ np.array([0.7, 0.3, 0.0])
    y = 2.0 + 1.5 * idx + 0.5 * z + 0.3 * rng.standard_normal(n)
    df = pd.DataFrame(Q, columns=["a_q", "b_q", "c_q"], index=np.arange(100, 100 + n))
    df["z"] = z
    df["y"] = y
    return df


W = pd.Series([0.7, 0.3, 0.0], index=["a", "b", "c"])


def test_wqs_index_matches_product(data_v):
    s = fm.wqs_index(data_v[["a_q", "b_q", "c_q"]], W)
    np.testing.assert_allclose(s.to_numpy(), data_v[["a_q", "b_q", "c_q"]].to_numpy() @ W.to_numpy())
    assert s.index.equals(data_v.index)
    with pytest.raises(InputError):
        fm.wqs_index(data_v[["a_q", "b_q"]], W)

def test_gaussian_final_fit(data_v):
    res = fm.fit_final_model(data_v, "y", ["a_q", "b_q", "c_q"], ["z"], W, "gaussian")
    assert list(res.fit.params.index) == ["const", "wqs", "z"]
    assert res.fit.params["wqs"] == pytest.approx(1.5, abs=0.1)
    assert res.fit_2 is None and res.aov is None
    # mean(y) plus covariate-only residuals
    assert res.y_adj.mean() == pytest.approx(data_v["y"].mean())
    assert res.y_adj.index.equals(data_v.index)

def test_adjusted_outcome_without_covariates(data_v):
    res = fm.fit_final_model(data_v, "y", ["a_q", "b_q", "c_q"], [], W, "gaussian")
    np.testing.assert_allclose(res.y_adj.to_numpy(), data_v["y"].to_numpy())

def test_quadratic_comparison(data_v):
    res = fm.fit_final_model(data_v, "y", ["a_q", "b_q", "c_q"], ["z"], W, "gaussian", quadratic=True)
    assert "wqs_sq" in res.fit_2.params.index
    aov = res.aov
    assert list(aov.columns) == ["df_resid", "deviance", "df_diff", "dev_diff", "p_value"]
    assert aov.shape == (2, 5)
    assert aov["df_diff"].iloc[1] == pytest.approx(1.0)
    assert aov["dev_diff"].iloc[1] >= 0.0
    assert 0.0 <= aov["p_value"].iloc[1] <= 1.0

def test_binomial_final_fit(data_v):
    rng = np.random.default_rng(5)
    eta = -1.0 + 0.8 * fm.wqs_index(data_v[["a_q", "b_q", "c_q"]], W).to_numpy()
    data_v = data_v.assign(yb=rng.binomial(1, 1 / (1 + np.exp(-eta))).astype(float))
    res = fm.fit_final_model(data_v, "yb", ["a_q", "b_q", "c_q"], ["z"], W, "binomial")
    assert np.isfinite(res.fit.params["wqs"])
    assert res.y_adj.shape[0] == data_v.shape[0]

def test_zero_variance_index(data_v):
    df = data_v.assign(c_q=1.0)
    with pytest.raises(DegenerateFitError, match="zero variance"):
        fm.fit_final_model(df, "y", ["a_q", "b_q", "c_q"], [], [0.0, 0.0, 1.0], "gaussian")

def test_rank_deficient_design(data_v):
    df = data_v.assign(z=data_v["a_q"] * 2.0)
    with pytest.raises(DegenerateFitError, match="rank-deficient"):
        fm.fit_final_model(df, "y", ["a_q", "b_q", "c_q"], ["z"], [1.0, 0.0, 0.0], "gaussian")
