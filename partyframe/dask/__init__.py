"""Dask distributed backend: nodes, clusters, and cluster-wide helpers."""

from ._channel import NodeChannel
from ._cluster import Cluster, create_cluster, get_default_cluster, resolve_cluster, set_default_cluster, use_cluster
from ._functions import (
    cluster_assign_each,
    cluster_assign_expr,
    cluster_assign_partition,
    cluster_call,
    cluster_copy,
    cluster_library,
    cluster_ls,
    cluster_rm,
)
from ._utils import default_node_count, default_timeout
from .monitor import monitor_cluster

__all__ = [
    "Cluster",
    "NodeChannel",
    "cluster_assign_each",
    "cluster_assign_expr",
    "cluster_assign_partition",
    "cluster_call",
    "cluster_copy",
    "cluster_library",
    "cluster_ls",
    "cluster_rm",
    "create_cluster",
    "default_node_count",
    "default_timeout",
    "get_default_cluster",
    "monitor_cluster",
    "resolve_cluster",
    "set_default_cluster",
    "use_cluster",
]
