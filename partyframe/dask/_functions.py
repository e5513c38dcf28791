"""Helpers that act on every node of a cluster at once."""

from __future__ import annotations

import logging

from partyframe.core.operation import Operation

from ._channel import NodeChannel
from ._utils import split_evenly

log = logging.getLogger("partyframe.dask.functions")


def cluster_assign_each(cluster, name, values):
    """Bind a different value on each node.

    Node ``i`` receives ``values[i]`` under ``name``. Useful for handing
    nodes private inputs, such as distinct file paths, outside of
    partitioning.

    Parameters
    ----------
    cluster : Cluster
        Target cluster.
    name : str
        Binding name.
    values : sequence
        One value per node.

    Returns
    -------
    Cluster
        The cluster, for chaining.
    """
    cluster.check_open()
    values = list(values)
    if len(values) != cluster.n_nodes:
        raise ValueError(f"values must have one entry per node ({cluster.n_nodes}), got {len(values)}.")
    cluster.broadcast(NodeChannel.bind, [(name, v) for v in values])
    return cluster


def cluster_copy(cluster, name, value):
    """Bind the same value under ``name`` on every node."""
    return cluster_assign_each(cluster, name, [value] * cluster.n_nodes)


def cluster_assign_partition(cluster, name, values):
    """Split a sequence across nodes and bind one piece per node.

    The sequence is cut into ``n_nodes`` contiguous pieces whose lengths
    differ by at most one; node ``i`` receives piece ``i``.

    Parameters
    ----------
    cluster : Cluster
        Target cluster.
    name : str
        Binding name.
    values : sequence
        Sliceable sequence to split.

    Returns
    -------
    Cluster
        The cluster, for chaining.
    """
    return cluster_assign_each(cluster, name, split_evenly(values, cluster.n_nodes))


def cluster_assign_expr(cluster, name, expr, **kwargs):
    """Evaluate an expression once on every node and bind the result.

    Parameters
    ----------
    cluster : Cluster
        Target cluster.
    name : str
        Binding name for the result.
    expr : Operation, callable, or str
        Evaluated without a shard. Keyword arguments are captured into the
        operation when ``expr`` is not already an :class:`Operation`.

    Returns
    -------
    Cluster
        The cluster, for chaining.
    """
    operation = expr if isinstance(expr, Operation) else Operation(expr, **kwargs)
    cluster.broadcast(NodeChannel.evaluate, [(operation, None, name)] * _n(cluster))
    return cluster


def cluster_call(cluster, expr, *args, **kwargs):
    """Evaluate an expression on every node and return the values.

    Returns
    -------
    list
        One result per node, in node order.
    """
    operation = expr if isinstance(expr, Operation) else Operation(expr, *args, **kwargs)
    return cluster.broadcast(NodeChannel.evaluate, [(operation, None, None)] * _n(cluster))


def cluster_library(cluster, module, alias=None):
    """Make a module available in every node's evaluation namespace.

    Idempotent: loading a module that is already bound does nothing.

    Parameters
    ----------
    cluster : Cluster
        Target cluster.
    module : str
        Importable module name, e.g. ``"numpy"``.
    alias : str or None
        Name to bind the module under. Defaults to the last dotted
        component, so ``"numpy.linalg"`` is bound as ``linalg``.

    Returns
    -------
    Cluster
        The cluster, for chaining.
    """
    if alias is None:
        alias = module.rsplit(".", 1)[-1]
    log.debug("loading %s as %s on %d nodes", module, alias, _n(cluster))
    cluster.broadcast(NodeChannel.import_module, [(module, alias)] * _n(cluster))
    return cluster


def cluster_rm(cluster, names):
    """Remove bindings from every node. Missing names are ignored."""
    if isinstance(names, str):
        names = [names]
    cluster.broadcast(NodeChannel.remove, [(list(names),)] * _n(cluster))
    return cluster


def cluster_ls(cluster):
    """Return the data binding names held on each node, in node order."""
    return cluster.broadcast(NodeChannel.list_bindings)


def _n(cluster):
    cluster.check_open()
    return cluster.n_nodes
