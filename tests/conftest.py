"""Shared test configuration and cluster fixtures for partyframe."""

from __future__ import annotations

import os
from pathlib import Path

import numpy as np
import polars as pl
import pytest

_ENV_FULL = "PARTYFRAME_RUN_FULL_TESTS"
_BASE_DIR = Path(__file__).resolve().parent
_SLOW_DIRS = {
    _BASE_DIR / "integration",
}

GROUP_SIZES = {"a": 80, "b": 70, "c": 60, "d": 40, "e": 30, "f": 15, "g": 5}


def pytest_collection_modifyitems(items):
    """Skip suites that start worker processes unless the full-test environment variable is set."""
    if os.environ.get(_ENV_FULL):
        return

    skip_marker = pytest.mark.skip(
        reason=(f"Skipped to keep the default CI test run fast. Set {_ENV_FULL}=1 to execute the full test battery.")
    )

    for item in items:
        path = Path(str(item.fspath)).resolve()
        if any(path.is_relative_to(slow_dir) for slow_dir in _SLOW_DIRS):
            item.add_marker(skip_marker)


@pytest.fixture(scope="session")
def dask_client():
    pytest.importorskip("distributed")
    from distributed import Client, LocalCluster

    cluster = LocalCluster(n_workers=4, threads_per_worker=1, processes=False, dashboard_address=":0")
    client = Client(cluster)
    yield client
    client.close()
    cluster.close()


@pytest.fixture(scope="session")
def cluster(dask_client):
    from partyframe.dask import create_cluster

    cl = create_cluster(4, client=dask_client)
    yield cl
    cl.close()


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def grouped_data(rng):
    """300 rows in 7 groups of sizes 80, 70, 60, 40, 30, 15, 5, shuffled.

    ``x`` is the source row number, so order can be checked after a round trip.
    """
    keys = np.repeat(list(GROUP_SIZES), list(GROUP_SIZES.values()))
    rng.shuffle(keys)
    n = len(keys)
    return pl.DataFrame({"g": keys, "x": np.arange(n), "y": rng.standard_normal(n)})


@pytest.fixture
def plain_data(rng):
    n = 103
    return pl.DataFrame({"x": np.arange(n), "y": rng.standard_normal(n), "k": rng.integers(0, 10, size=n)})
