"""Ship shards from the control process to their nodes."""

from __future__ import annotations

import logging

import numpy as np
import polars as pl

from partyframe.core.dataframe import unused_column_name
from partyframe.core.parallel import parallel_map
from partyframe.dask._utils import new_binding_name

from .shards import ShardDescriptor

log = logging.getLogger("partyframe.frame.distribute")

_SHARD_COL = "__partyframe_shard__"


def split_shards(data, row_to_shard):
    """Split a frame into its non-empty shards, in ascending shard order.

    Rows keep their relative source order within every shard.

    Parameters
    ----------
    data : pl.DataFrame
        Local data.
    row_to_shard : ndarray of shape (n_rows,)
        Shard index for each row.

    Returns
    -------
    list of (int, pl.DataFrame)
        ``(shard_index, rows)`` for every shard holding at least one row.
    """
    row_to_shard = np.asarray(row_to_shard, dtype=np.int64)
    if len(row_to_shard) != data.height:
        raise ValueError(f"row_to_shard has {len(row_to_shard)} entries for {data.height} rows.")
    if data.height == 0:
        return []

    shard_col = unused_column_name(_SHARD_COL, data.columns)
    tagged = data.with_columns(pl.Series(shard_col, row_to_shard))
    parts = tagged.partition_by(shard_col, maintain_order=True, as_dict=True)
    return [(int(key[0]), parts[key].drop(shard_col)) for key in sorted(parts)]


def distribute(data, row_to_shard, cluster, shard_nodes):
    """Send every non-empty shard to its node under a fresh binding name.

    Sends to different nodes run concurrently; shards that share a node are
    sent one after another by that node's channel. If any send fails, the
    bindings this call already created are removed (best effort) and the
    original error is raised.

    Parameters
    ----------
    data : pl.DataFrame
        Local data.
    row_to_shard : ndarray of shape (n_rows,)
        Shard index for each row, as returned by
        :func:`~partyframe.frame.partition.partition_rows`.
    cluster : Cluster
        Target cluster.
    shard_nodes : list of int
        Node index for each shard index.

    Returns
    -------
    list of ShardDescriptor
        One descriptor per non-empty shard, in ascending shard order.
    """
    cluster.check_open()
    shards = split_shards(data, row_to_shard)
    if not shards:
        return []

    plan = [(shard_nodes[idx], new_binding_name(), rows) for idx, rows in shards]
    log.debug("distributing %d rows as %d shards over %d nodes", data.height, len(plan), cluster.n_nodes)

    sent = [None] * len(plan)

    def _send(i, node, name, rows):
        n_rows = cluster.node(node).bind(name, rows)
        sent[i] = (node, name)
        return ShardDescriptor(node, name, n_rows)

    try:
        return parallel_map(_send, [(i, *p) for i, p in enumerate(plan)], n_jobs=len(plan))
    except Exception:
        _discard(cluster, [s for s in sent if s is not None])
        raise


def _discard(cluster, placed):
    for node, name in placed:
        try:
            cluster.node(node).remove([name])
        except Exception:
            log.warning("Could not remove binding %s from node %d after a failed distribute", name, node, exc_info=True)
