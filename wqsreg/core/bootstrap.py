"""Nonparametric bootstrap sampling and parallel execution.

Each bootstrap iteration draws a resample of training row keys with
replacement. Random streams are derived per iteration from the global seed,
so results do not depend on scheduling order or on the number of workers.
"""

from __future__ import annotations

import logging
import multiprocessing
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, Any, Callable, TypeVar

import numpy as np

from .errors import EmptyDatasetError, InputError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

LOGGER = logging.getLogger(__name__)

__all__ = [
    "BOOTSTRAP_STREAM",
    "DEFAULT_BOOTSTRAP_ITERATIONS",
    "SPLIT_STREAM",
    "default_n_jobs",
    "draw_bootstrap_indices",
    "iteration_rng",
    "resolve_seed",
    "run_bootstrap",
    "stream_rng",
]

# Default bootstrap replications (gwqs default b = 100)
DEFAULT_BOOTSTRAP_ITERATIONS: int = 100

# Spawn-key prefixes separating independent random streams
BOOTSTRAP_STREAM: int = 0
SPLIT_STREAM: int = 1

_T = TypeVar("_T")


def resolve_seed(seed: int | None) -> int:
    """Return the integer entropy that seeds every random stream of a run.

    A supplied seed is returned unchanged. Without a seed, fresh OS entropy is
    drawn; recording the returned value is enough to replay the run.
    """
    if seed is None:
        return int(np.random.SeedSequence().entropy)
    if isinstance(seed, (bool, np.bool_)) or not isinstance(seed, (int, np.integer)):
        msg = f"seed must be an integer or None; got {seed!r}."
        raise InputError(msg)
    if int(seed) < 0:
        msg = "seed must be non-negative."
        raise InputError(msg)
    return int(seed)


def stream_rng(seed_entropy: int, *key: int) -> np.random.Generator:
    """Build a Generator for the stream identified by ``key`` under ``seed_entropy``."""
    ss = np.random.SeedSequence(int(seed_entropy), spawn_key=tuple(int(k) for k in key))
    return np.random.default_rng(ss)


def iteration_rng(seed_entropy: int, k: int) -> np.random.Generator:
    """Generator for bootstrap iteration ``k``: a pure function of (seed, k)."""
    return stream_rng(seed_entropy, BOOTSTRAP_STREAM, k)


def draw_bootstrap_indices(
    row_keys: Sequence[Any] | NDArray[Any],
    n_boot: int,
    *,
    seed_entropy: int,
) -> list[NDArray[Any]]:
    """Draw ``n_boot`` resamples of ``row_keys`` with replacement.

    Parameters
    ----------
    row_keys
        Stable row identifiers of the training set (typically the DataFrame
        index). Not modified.
    n_boot
        Number of resamples (B >= 1).
    seed_entropy
        Integer entropy from :func:`resolve_seed`.

    Returns
    -------
    list of ndarray
        ``n_boot`` arrays, each of length ``len(row_keys)``.

    """
    keys = np.asarray(row_keys)
    n = int(keys.shape[0])
    if n == 0:
        msg = "Cannot bootstrap an empty training set."
        raise EmptyDatasetError(msg)
    if isinstance(n_boot, bool) or int(n_boot) != n_boot or int(n_boot) < 1:
        msg = f"n_boot must be a positive integer; got {n_boot!r}."
        raise InputError(msg)
    out: list[NDArray[Any]] = []
    for k in range(int(n_boot)):
        rng = iteration_rng(seed_entropy, k)
        pos = rng.integers(0, n, size=n)
        out.append(keys[pos])
    return out


def default_n_jobs() -> int:
    """Resolve the worker count from ``WQSREG_N_JOBS`` or the CPU count."""
    raw = str(os.environ.get("WQSREG_N_JOBS", "")).strip()
    if raw:
        try:
            val = int(raw)
        except ValueError:
            LOGGER.debug("Ignoring non-integer WQSREG_N_JOBS=%r", raw)
        else:
            if val >= 1:
                return val
            LOGGER.debug("Ignoring non-positive WQSREG_N_JOBS=%r", raw)
    return min(multiprocessing.cpu_count(), 4)


def run_bootstrap(
    task: Callable[[int], _T],
    n_boot: int,
    *,
    n_jobs: int | None = None,
) -> list[_T]:
    """Run ``task(k)`` for k = 0..n_boot-1 and return results ordered by k.

    Tasks run on a thread pool bounded by ``n_jobs``; ``n_jobs=1`` runs them
    serially. Each task must only read shared inputs and return its own
    result, so ordering by ``k`` makes the output independent of scheduling.
    """
    B = int(n_boot)
    if B < 1:
        msg = f"n_boot must be a positive integer; got {n_boot!r}."
        raise InputError(msg)
    workers = default_n_jobs() if n_jobs is None else int(n_jobs)
    if workers < 1:
        msg = f"n_jobs must be >= 1; got {n_jobs!r}."
        raise InputError(msg)
    workers = min(workers, B)

    if workers == 1:
        return [task(k) for k in range(B)]

    results: list[_T | None] = [None] * B
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(task, k): k for k in range(B)}
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    LOGGER.debug("Completed %d bootstrap tasks on %d workers", B, workers)
    return results  # type: ignore[return-value]
