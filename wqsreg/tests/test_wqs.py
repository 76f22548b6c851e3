import pytest
import numpy as np
import pandas as pd
from wqsreg import WQS, WQSConfig, fit_wqs
from wqsreg.core.errors import InputError, NoViableBootstrapsError
from wqsreg.estimators import wqs as wqs_mod
from wqsreg.sim.montecarlo import simulate_wqs_data


@pytest.fixture(scope="module")
def sim():
    df, names, w_true = simulate_wqs_data(n_obs=200, n_mix=4, b1=1.0, n_cov=1, seed=2023)
    return df, names, w_true


def test_end_to_end_gaussian(sim):
    df, names, _ = sim
    res = fit_wqs("y ~ z1", names, df, q=4, n_boot=5, seed=123, n_jobs=1)
    assert res.boot_table.shape[0] == 5
    assert res.wb1pm is res.boot_table
    assert set(res.conv) <= {0, 1, 2}
    w = res.boot_table[names].to_numpy()
    assert np.all(w >= 0)
    np.testing.assert_allclose(w.sum(axis=1), 1.0, atol=1e-6)
    assert res.final_weights["mean_weight"].sum() == pytest.approx(1.0)
    assert res.final_weights["mean_weight"].is_monotonic_decreasing
    assert res.q_names == [f"{m}_q" for m in names]
    assert res.cov_names == ["z1"]
    assert res.data_v.shape[0] == 120
    assert res.data_t.shape[0] == 80
    assert len(res.index_b) == 5
    assert all(set(keys) <= set(res.data_t.index) for keys in res.index_b)
    assert "wqs" in res.fit.params.index

def test_reproducible_for_fixed_seed(sim):
    df, names, _ = sim
    a = fit_wqs("y ~ z1", names, df, n_boot=5, seed=99, n_jobs=1)
    b = fit_wqs("y ~ z1", names, df, n_boot=5, seed=99, n_jobs=1)
    pd.testing.assert_frame_equal(a.boot_table, b.boot_table)
    pd.testing.assert_frame_equal(a.final_weights, b.final_weights)
    pd.testing.assert_series_equal(a.fit.params, b.fit.params)

def test_identical_across_worker_counts(sim):
    df, names, _ = sim
    serial = fit_wqs("y ~ z1", names, df, n_boot=6, seed=7, n_jobs=1)
    threaded = fit_wqs("y ~ z1", names, df, n_boot=6, seed=7, n_jobs=3)
    pd.testing.assert_frame_equal(serial.boot_table, threaded.boot_table)
    pd.testing.assert_series_equal(serial.weights, threaded.weights)
    pd.testing.assert_series_equal(serial.fit.params, threaded.fit.params)

def test_unseeded_run_can_be_replayed(sim):
    df, names, _ = sim
    first = fit_wqs("y ~ NULL", names, df, n_boot=3, n_jobs=1)
    entropy = first.extra["seed_entropy"]
    replay = fit_wqs("y ~ NULL", names, df, n_boot=3, seed=entropy, n_jobs=1)
    pd.testing.assert_frame_equal(first.boot_table, replay.boot_table)

def test_raw_values_index(sim):
    df, names, _ = sim
    res = fit_wqs("y ~ NULL", names, df, q=None, n_boot=4, seed=1, n_jobs=1)
    assert res.q_names == names
    assert res.cutpoints == {}
    expected = res.data_v[names].to_numpy() @ res.weights.to_numpy()
    np.testing.assert_allclose(res.wqs.to_numpy(), expected)

def test_zero_validation_uses_all_rows(sim):
    df, names, _ = sim
    res = fit_wqs("y ~ z1", names, df, validation=0.0, n_boot=3, seed=4, n_jobs=1)
    assert res.data_t.shape[0] == 200
    assert res.data_v.index.equals(res.data_t.index)

def test_label_split(sim):
    df, names, _ = sim
    df = df.assign(v=np.tile([0, 1], 100))
    res = fit_wqs("y ~ z1", names, df, valid_var="v", n_boot=3, seed=4, n_jobs=1)
    assert (res.data_v["v"] == 1).all()
    assert (res.data_t["v"] == 0).all()

def test_validation_and_label_are_exclusive(sim):
    df, names, _ = sim
    df = df.assign(v=np.tile([0, 1], 100))
    with pytest.raises(InputError, match="at most one"):
        fit_wqs("y ~ z1", names, df, validation=0.5, valid_var="v")

def test_wrong_direction_raises_before_final_fit(sim, monkeypatch):
    df, names, _ = sim

    def _fail(*args, **kwargs):
        raise AssertionError("final model must not be fitted")

    monkeypatch.setattr(wqs_mod, "fit_final_model", _fail)
    with pytest.raises(NoViableBootstrapsError, match="no negative b1") as err:
        fit_wqs("y ~ z1", names, df, n_boot=4, seed=3, direction="negative", n_jobs=1)
    assert err.value.table.shape[0] == 4

def test_quadratic_term(sim):
    df, names, _ = sim
    res = fit_wqs("y ~ z1", names, df, n_boot=3, seed=5, quadratic=True, n_jobs=1)
    assert res.fit_2 is not None
    assert res.aov.shape == (2, 5)
    assert res.aov.loc["wqs + wqs_sq", "df_diff"] == 1.0

def test_covariate_cannot_replace_squared_index(sim):
    df, names, _ = sim
    renamed = df.rename(columns={"z1": "wqs_sq"})
    with pytest.raises(InputError, match="clash"):
        fit_wqs("y ~ wqs_sq", names, renamed, quadratic=True, n_boot=3, seed=1)
    with pytest.raises(InputError, match="clash"):
        WQS(renamed, y_name="y", mix_names=names, cov_names=["wqs_sq"])

def test_binomial_family():
    df, names, _ = simulate_wqs_data(n_obs=300, n_mix=3, b1=1.5, family="binomial", seed=8)
    res = fit_wqs("y ~ 1", names, df, family="binomial", n_boot=4, seed=8, n_jobs=1)
    assert res.model_info["Family"] == "binomial"
    assert res.weights.sum() == pytest.approx(1.0)

def test_estimator_form_matches_function(sim):
    df, names, _ = sim
    cfg = WQSConfig(n_boot=4, seed=21, n_jobs=1)
    model = WQS.from_formula("y ~ z1", df, mix_names=names)
    res = model.fit(config=cfg)
    assert model.results is res
    ref = fit_wqs("y ~ z1", names, df, n_boot=4, seed=21, n_jobs=1)
    pd.testing.assert_frame_equal(res.boot_table, ref.boot_table)
    # keyword overrides derive a new configuration
    res2 = model.fit(config=cfg, n_boot=2)
    assert res2.boot_table.shape[0] == 2

def test_unfitted_model_has_no_results(sim):
    df, names, _ = sim
    with pytest.raises(RuntimeError, match="not been fitted"):
        _ = WQS.from_formula("y ~ z1", df, mix_names=names).results

def test_summary_text(sim):
    df, names, _ = sim
    res = fit_wqs("y ~ z1", names, df, n_boot=3, seed=2, quadratic=True, n_jobs=1)
    text = res.summary()
    assert "Final weights" in text
    assert "Model comparison" in text
    for m in names:
        assert m in text
