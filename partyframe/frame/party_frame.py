"""The distributed data frame handle and the ways to create one."""

from __future__ import annotations

import logging
import warnings

import polars as pl

from partyframe.core.dataframe import to_polars
from partyframe.core.format import format_party_frame, format_party_frame_summary, format_shard_table
from partyframe.core.operation import Operation
from partyframe.dask import NodeChannel, resolve_cluster

from .collect import collect, fetch_shards, pull
from .dispatch import dispatch
from .distribute import distribute
from .partition import assign_nodes, normalize_keys, partition_rows
from .shards import ShardDescriptor

log = logging.getLogger("partyframe.frame")


class PartyFrame:
    """A data frame split into shards that live on the nodes of a cluster.

    A party frame is an immutable description of remote state: which node
    holds each shard, under which binding name, and how many rows it had
    when last observed. Transformations return a new frame; the old one
    keeps pointing at the old bindings and stays valid.

    Holding a party frame keeps its cluster alive.

    Parameters
    ----------
    cluster : Cluster
        Cluster the shards live on.
    shards : sequence of ShardDescriptor
        Shards in order.
    group_keys : sequence of str, default ()
        Columns the frame is grouped by for :meth:`agg`.
    partition_keys : sequence of str or None, default None
        Columns the rows were co-located by when partitioned. ``()`` means
        partitioned without keys; ``None`` means unknown.
    """

    def __init__(self, cluster, shards, group_keys=(), partition_keys=None):
        self._cluster = cluster
        self._shards = tuple(ShardDescriptor(*s) for s in shards)
        self._group_keys = normalize_keys(group_keys)
        self._partition_keys = None if partition_keys is None else normalize_keys(partition_keys)

    def replace(self, **changes):
        """Return a copy of this frame with some fields replaced."""
        fields = {
            "cluster": self._cluster,
            "shards": self._shards,
            "group_keys": self._group_keys,
            "partition_keys": self._partition_keys,
        }
        fields.update(changes)
        return type(self)(**fields)

    @property
    def cluster(self):
        return self._cluster

    @property
    def shards(self):
        return self._shards

    @property
    def group_keys(self):
        return self._group_keys

    @property
    def partition_keys(self):
        return self._partition_keys

    @property
    def n_nodes(self):
        return self._cluster.n_nodes

    @property
    def n_shards(self):
        return len(self._shards)

    @property
    def shard_rows(self):
        """Row count of each shard, as last reported by the nodes."""
        return tuple(s.n_rows for s in self._shards)

    @property
    def n_rows(self):
        return sum(self.shard_rows)

    def __repr__(self):
        return format_party_frame(self)

    def summary(self):
        """Return a multi-line description including a per-shard table."""
        return format_party_frame_summary(self)

    def shard_table(self):
        """Return a table of node, binding name and row count per shard."""
        return format_shard_table(self._shards)

    def dispatch(self, operation, name=None, group_keys=None):
        """Apply an operation to every shard. See :func:`~partyframe.frame.dispatch.dispatch`."""
        return dispatch(self, operation, name=name, group_keys=group_keys)

    def collect(self):
        """Gather all shards locally. See :func:`~partyframe.frame.collect.collect`."""
        return collect(self)

    def pull(self, column):
        """Gather one column locally as a Series."""
        return pull(self, column)

    def filter(self, *predicates, **constraints):
        """Keep rows matching the predicates, shard by shard."""
        return self.dispatch(Operation.method("filter", *predicates, **constraints))

    def with_columns(self, *exprs, **named_exprs):
        """Add or replace columns, shard by shard."""
        return self.dispatch(Operation.method("with_columns", *exprs, **named_exprs))

    mutate = with_columns

    def select(self, *exprs, **named_exprs):
        """Select columns, shard by shard."""
        return self.dispatch(Operation.method("select", *exprs, **named_exprs))

    def rename(self, mapping):
        """Rename columns; grouping and partition keys follow the rename."""
        keys = tuple(mapping.get(k, k) for k in self._group_keys)
        renamed = self.dispatch(Operation.method("rename", mapping), group_keys=keys)
        if self._partition_keys:
            renamed = renamed.replace(partition_keys=tuple(mapping.get(k, k) for k in self._partition_keys))
        return renamed

    def sort(self, by, *more_by, descending=False):
        """Sort rows within each shard. There is no global order across shards."""
        return self.dispatch(Operation.method("sort", by, *more_by, descending=descending, maintain_order=True))

    def unique(self, subset=None):
        """Drop duplicate rows within each shard, keeping the first occurrence."""
        return self.dispatch(Operation.method("unique", subset=subset, keep="first", maintain_order=True))

    def group_by(self, *keys):
        """Record grouping keys for :meth:`agg`. Nothing is sent to the nodes.

        Grouped results are only correct when every group lives on a single
        shard, which holds when the keys include all the columns the frame
        was partitioned by. A warning is emitted otherwise.
        """
        keys = normalize_keys(keys[0] if len(keys) == 1 and not isinstance(keys[0], str) else keys)
        if self._partition_keys is not None and self.n_shards > 1:
            if not self._partition_keys or not set(self._partition_keys) <= set(keys):
                warnings.warn(
                    f"Grouping by {list(keys)} but the frame was partitioned by {list(self._partition_keys)}; "
                    "groups may span shards and per-shard aggregates will be partial.",
                    UserWarning,
                    stacklevel=2,
                )
        return self.replace(group_keys=keys)

    def ungroup(self):
        return self.replace(group_keys=())

    def agg(self, *exprs, **named_exprs):
        """Aggregate each shard, per group when grouping keys are set.

        Returns one row per group (or one row per shard when ungrouped).
        The result is no longer grouped.
        """
        if self._group_keys:
            operation = Operation(_grouped_agg, list(self._group_keys), *exprs, **named_exprs)
        else:
            operation = Operation.method("select", *exprs, **named_exprs)
        return self.dispatch(operation, group_keys=())

    summarise = agg

    def head(self, n=5):
        """Fetch the first ``n`` rows, reading shards in order until enough are found.

        Only the needed rows are transferred; the shards are not modified.
        """
        if n < 0:
            raise ValueError(f"n must be non-negative, got {n}.")
        parts = []
        remaining = n
        for shard in self._shards:
            if remaining == 0:
                break
            if shard.n_rows == 0:
                continue
            part = self._cluster.node(shard.node).evaluate(Operation.method("head", remaining), shard.name, None)
            parts.append(part)
            remaining -= part.height
        if not parts:
            return pl.DataFrame()
        return pl.concat(parts, how="vertical_relaxed")

    def compute(self, name):
        """Rebind every shard under ``name`` so it can be found by name later.

        The result can be re-attached with :func:`party_frame`. Requires at
        most one shard per node.
        """
        return self.dispatch(Operation(_identity), name=name)

    def release(self):
        """Drop this frame's bindings from the nodes.

        Any other frame pointing at the same bindings becomes unusable.
        """
        self._cluster.check_open()
        by_node = {}
        for s in self._shards:
            by_node.setdefault(s.node, []).append(s.name)
        for node, names in by_node.items():
            self._cluster.node(node).remove(names)
        log.debug("released %d bindings on %d nodes", self.n_shards, len(by_node))

    def shard_values(self, operation=None):
        """Return each shard's value, or ``operation`` applied to it, as a list."""
        if operation is not None:
            operation = Operation.coerce(operation)
        return fetch_shards(self, operation)


def _grouped_agg(shard, keys, *exprs, **named_exprs):
    return shard.group_by(keys, maintain_order=True).agg(*exprs, **named_exprs)


def _identity(shard):
    return shard


def partition(data, by=None, cluster=None, n_shards=None, node_assignment=None, method="block"):
    """Split a local data frame across a cluster.

    Parameters
    ----------
    data : DataFrame
        Local data; anything :func:`~partyframe.core.dataframe.to_polars`
        accepts.
    by : str or list of str, optional
        Grouping keys. All rows sharing a key value are placed on the same
        shard, and the returned frame is grouped by these keys.
    cluster : Cluster, optional
        Target cluster. Defaults to :func:`~partyframe.dask.get_default_cluster`.
    n_shards : int, optional
        Number of shards. Defaults to one per node.
    node_assignment : callable, optional
        ``node_assignment(shard_index, n_nodes) -> int``. Defaults to
        ``shard_index % n_nodes``.
    method : {"block", "round_robin"}, default "block"
        Split used when ``by`` is not given.

    Returns
    -------
    PartyFrame
        Frame with one shard per non-empty shard index, in index order.
    """
    data = to_polars(data)
    cluster = resolve_cluster(cluster)
    if n_shards is None:
        n_shards = cluster.n_nodes

    row_to_shard = partition_rows(data, n_shards, by=by, method=method)
    shard_nodes = assign_nodes(n_shards, cluster.n_nodes, node_assignment)
    shards = distribute(data, row_to_shard, cluster, shard_nodes)

    keys = normalize_keys(by)
    log.info("partitioned %d rows into %d shards on %d nodes", data.height, len(shards), cluster.n_nodes)
    return PartyFrame(cluster, shards, group_keys=keys, partition_keys=keys)


def party_frame(name, cluster=None, group_keys=()):
    """Wrap a binding that already exists on every node as a party frame.

    Nothing is copied: the binding, populated by other means (for example
    :func:`~partyframe.dask.cluster_assign_expr`), becomes shard ``i`` on
    node ``i``.

    Parameters
    ----------
    name : str
        Binding name present on every node.
    cluster : Cluster, optional
        Cluster holding the binding. Defaults to the default cluster.
    group_keys : sequence of str, default ()
        Grouping keys to attach.

    Returns
    -------
    PartyFrame
        One shard per node. Partition keys are unknown.
    """
    cluster = resolve_cluster(cluster)
    n_rows = cluster.broadcast(NodeChannel.row_count, [(name,)] * cluster.n_nodes)
    shards = [ShardDescriptor(i, name, n) for i, n in enumerate(n_rows)]
    return PartyFrame(cluster, shards, group_keys=group_keys, partition_keys=None)
