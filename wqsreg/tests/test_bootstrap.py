import pytest
import numpy as np
from wqsreg.core import bootstrap as bt
from wqsreg.core.errors import EmptyDatasetError, InputError


def test_resamples_shape_and_membership():
    keys = np.array([10, 20, 30, 40, 50])
    draws = bt.draw_bootstrap_indices(keys, 7, seed_entropy=123)
    assert len(draws) == 7
    for d in draws:
        assert d.shape == (5,)
        assert set(d) <= set(keys)

def test_resamples_are_pure_function_of_seed_and_iteration():
    keys = np.arange(50)
    a = bt.draw_bootstrap_indices(keys, 5, seed_entropy=9)
    b = bt.draw_bootstrap_indices(keys, 3, seed_entropy=9)
    for k in range(3):
        np.testing.assert_array_equal(a[k], b[k])
    # iteration k uses its own stream
    expected = keys[bt.iteration_rng(9, 4).integers(0, 50, size=50)]
    np.testing.assert_array_equal(a[4], expected)
    assert not np.array_equal(a[0], a[1])

def test_keys_not_mutated():
    keys = np.arange(20)
    before = keys.copy()
    bt.draw_bootstrap_indices(keys, 3, seed_entropy=0)
    np.testing.assert_array_equal(keys, before)

def test_empty_keys():
    with pytest.raises(EmptyDatasetError):
        bt.draw_bootstrap_indices(np.array([]), 3, seed_entropy=0)

@pytest.mark.parametrize("bad", [0, -2, 1.5, True])
def test_invalid_n_boot(bad):
    with pytest.raises(InputError, match="n_boot"):
        bt.draw_bootstrap_indices(np.arange(4), bad, seed_entropy=0)

def test_resolve_seed():
    assert bt.resolve_seed(42) == 42
    drawn = bt.resolve_seed(None)
    assert isinstance(drawn, int) and drawn >= 0
    with pytest.raises(InputError):
        bt.resolve_seed(-1)
    with pytest.raises(InputError):
        bt.resolve_seed("7")

def test_split_and_bootstrap_streams_differ():
    a = bt.stream_rng(5, bt.SPLIT_STREAM).random(4)
    b = bt.iteration_rng(5, 0).random(4)
    assert not np.allclose(a, b)

def test_run_bootstrap_orders_by_iteration():
    def task(k):
        return k * k

    serial = bt.run_bootstrap(task, 25, n_jobs=1)
    threaded = bt.run_bootstrap(task, 25, n_jobs=4)
    assert serial == [k * k for k in range(25)]
    assert threaded == serial

def test_run_bootstrap_propagates_task_errors():
    def task(k):
        if k == 3:
            raise KeyError("boom")
        return k

    with pytest.raises(KeyError):
        bt.run_bootstrap(task, 5, n_jobs=2)

def test_n_jobs_from_environment(monkeypatch):
    monkeypatch.setenv("WQSREG_N_JOBS", "3")
    assert bt.default_n_jobs() == 3
    monkeypatch.setenv("WQSREG_N_JOBS", "many")
    assert 1 <= bt.default_n_jobs() <= 4

def test_invalid_n_jobs():
    with pytest.raises(InputError, match="n_jobs"):
        bt.run_bootstrap(lambda k: k, 3, n_jobs=0)
