"""Bring shard contents back to the control process."""

from __future__ import annotations

import logging

import polars as pl

from partyframe.core.dataframe import concat_shards
from partyframe.core.operation import Operation
from partyframe.core.parallel import parallel_map

log = logging.getLogger("partyframe.frame.collect")


def fetch_shards(frame, operation=None):
    """Fetch each shard's value (or ``operation`` applied to it), in shard order.

    Parameters
    ----------
    frame : PartyFrame
        Frame to read.
    operation : Operation or None
        When given, evaluated against each shard on its node and only the
        result is sent back. The shard binding is left unchanged.

    Returns
    -------
    list
        One value per shard.
    """
    cluster = frame.cluster
    cluster.check_open()

    if operation is None:

        def _fetch(shard):
            return cluster.node(shard.node).fetch(shard.name)

    else:

        def _fetch(shard):
            return cluster.node(shard.node).evaluate(operation, shard.name, None)

    return parallel_map(_fetch, [(s,) for s in frame.shards], n_jobs=max(frame.n_shards, 1))


def collect(frame):
    """Gather every shard into one local polars DataFrame.

    Shards are concatenated in shard order, which is the order they were
    created in. This is not a global row order: the same rows partitioned
    differently can come back in a different order. Remote bindings are not
    modified. If any node fails nothing is returned.

    Parameters
    ----------
    frame : PartyFrame
        Frame to collect.

    Returns
    -------
    pl.DataFrame
        All shards stacked vertically; empty when the frame has no shards.
        Shards that hold a Series contribute a single column, and shards
        holding any other value contribute one row of a ``value`` column.
    """
    values = fetch_shards(frame)
    log.debug("collected %d shards", len(values))
    return concat_shards(values)


def pull(frame, column):
    """Gather a single column as a local polars Series.

    Only the column travels back from each node.

    Parameters
    ----------
    frame : PartyFrame
        Frame to read.
    column : str
        Column name.

    Returns
    -------
    pl.Series
        The column's values in shard order.
    """
    values = fetch_shards(frame, Operation.method("get_column", column))
    if not values:
        return pl.Series(column, [])
    return concat_shards(values).to_series()
