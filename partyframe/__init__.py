"""Partitioned data frames over a pool of Dask worker processes."""

from partyframe.core.errors import (
    ClusterLifecycleError,
    EvaluationError,
    NodeUnavailable,
    PartitionError,
    PartyFrameError,
)
from partyframe.core.operation import Operation
from partyframe.dask import (
    Cluster,
    cluster_assign_each,
    cluster_assign_expr,
    cluster_assign_partition,
    cluster_call,
    cluster_copy,
    cluster_library,
    cluster_ls,
    cluster_rm,
    create_cluster,
    get_default_cluster,
    monitor_cluster,
    set_default_cluster,
    use_cluster,
)
from partyframe.frame import (
    PartyFrame,
    ShardDescriptor,
    collect,
    dispatch,
    partition,
    partition_rows,
    party_frame,
    pull,
)

__all__ = [
    "Cluster",
    "ClusterLifecycleError",
    "EvaluationError",
    "NodeUnavailable",
    "Operation",
    "PartitionError",
    "PartyFrame",
    "PartyFrameError",
    "ShardDescriptor",
    "cluster_assign_each",
    "cluster_assign_expr",
    "cluster_assign_partition",
    "cluster_call",
    "cluster_copy",
    "cluster_library",
    "cluster_ls",
    "cluster_rm",
    "collect",
    "create_cluster",
    "dispatch",
    "get_default_cluster",
    "monitor_cluster",
    "partition",
    "partition_rows",
    "party_frame",
    "pull",
    "set_default_cluster",
    "use_cluster",
]
