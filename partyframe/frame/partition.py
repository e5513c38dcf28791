"""Row-to-shard assignment with grouping-key locality."""

from __future__ import annotations

import heapq
import logging
import numbers

import numpy as np
import polars as pl

from partyframe.core.dataframe import unused_column_name
from partyframe.core.errors import PartitionError

log = logging.getLogger("partyframe.frame.partition")

_ROW_INDEX = "__partyframe_row__"


def partition_rows(data, n_shards, by=None, method="block"):
    """Assign every row of a local frame to a shard.

    Without grouping keys rows are split evenly; with grouping keys every
    row sharing a key value lands in the same shard and whole groups are
    packed greedily: groups are taken largest first and each one goes to the
    shard with the fewest rows so far. The greedy packing is a heuristic
    whose cost grows with the number of groups, not with the number of rows.

    Parameters
    ----------
    data : pl.DataFrame
        Local data to partition.
    n_shards : int
        Number of shards, at least 1.
    by : str or list of str, optional
        Grouping key column(s). Null key values form a group of their own.
    method : {"block", "round_robin"}, default "block"
        Split used when ``by`` is not given. ``"block"`` gives contiguous
        runs of rows whose sizes differ by at most one; ``"round_robin"``
        deals rows out one at a time.

    Returns
    -------
    ndarray of shape (n_rows,)
        ``int64`` shard index for each row.

    Raises
    ------
    PartitionError
        If ``n_shards`` is not a positive integer, a key column is missing,
        or ``method`` is unknown.
    """
    n_shards = validate_shard_count(n_shards)
    keys = normalize_keys(by)
    n_rows = data.height

    missing = [k for k in keys if k not in data.columns]
    if missing:
        raise PartitionError(f"Grouping columns not found in data: {missing}")

    if n_rows == 0:
        return np.empty(0, dtype=np.int64)

    if keys:
        return _partition_grouped(data, n_shards, keys)

    if method == "block":
        return np.arange(n_rows, dtype=np.int64) * n_shards // n_rows
    if method == "round_robin":
        return np.arange(n_rows, dtype=np.int64) % n_shards
    raise PartitionError(f"Unknown partition method {method!r}. Choose 'block' or 'round_robin'.")


def _partition_grouped(data, n_shards, keys):
    row_col = unused_column_name(_ROW_INDEX, keys)
    groups = (
        data.select(keys)
        .with_row_index(row_col)
        .group_by(keys, maintain_order=True)
        .agg(pl.col(row_col))
    )
    row_lists = groups.get_column(row_col).to_list()
    sizes = [len(rows) for rows in row_lists]

    group_to_shard = greedy_pack(sizes, n_shards)

    row_to_shard = np.empty(data.height, dtype=np.int64)
    for rows, shard in zip(row_lists, group_to_shard, strict=True):
        row_to_shard[rows] = shard

    log.debug("packed %d groups into %d shards", len(sizes), n_shards)
    return row_to_shard


def greedy_pack(sizes, n_bins):
    """Assign items to bins, largest first, each to the least-loaded bin.

    Ties are broken deterministically: equal-sized items keep their input
    order, and equally loaded bins are filled lowest index first.

    Parameters
    ----------
    sizes : sequence of int
        Size of each item.
    n_bins : int
        Number of bins.

    Returns
    -------
    ndarray of shape (len(sizes),)
        Bin index for each item.
    """
    sizes = np.asarray(sizes, dtype=np.int64)
    assignment = np.empty(len(sizes), dtype=np.int64)
    heap = [(0, b) for b in range(n_bins)]
    # stable sort on the negated size keeps first-appearance order for ties
    for item in np.argsort(-sizes, kind="stable"):
        load, b = heapq.heappop(heap)
        assignment[item] = b
        heapq.heappush(heap, (load + int(sizes[item]), b))
    return assignment


def assign_nodes(n_shards, n_nodes, node_assignment=None):
    """Map every shard index to a node index.

    Parameters
    ----------
    n_shards : int
        Number of shards.
    n_nodes : int
        Number of nodes in the cluster.
    node_assignment : callable, optional
        ``node_assignment(shard_index, n_nodes) -> int``. Defaults to
        ``shard_index % n_nodes``.

    Returns
    -------
    list of int
        Node index for each shard.
    """
    if node_assignment is None:
        return [s % n_nodes for s in range(n_shards)]

    nodes = []
    for s in range(n_shards):
        node = node_assignment(s, n_nodes)
        if isinstance(node, bool) or not isinstance(node, numbers.Integral) or not 0 <= node < n_nodes:
            raise PartitionError(f"node_assignment mapped shard {s} to {node!r}; expected an int in [0, {n_nodes}).")
        nodes.append(int(node))
    return nodes


def validate_shard_count(n_shards):
    """Return ``n_shards`` as an int, or raise :class:`PartitionError`."""
    if isinstance(n_shards, bool) or not isinstance(n_shards, numbers.Integral):
        raise PartitionError(f"n_shards must be an integer, got {type(n_shards).__name__}.")
    if n_shards < 1:
        raise PartitionError(f"n_shards must be at least 1, got {n_shards}.")
    return int(n_shards)


def normalize_keys(by):
    """Return grouping keys as a tuple of column names."""
    if by is None:
        return ()
    if isinstance(by, str):
        return (by,)
    return tuple(by)
