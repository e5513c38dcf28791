"""Exception hierarchy for cluster, partition, and node failures."""

from __future__ import annotations


class PartyFrameError(Exception):
    """Base class for all partyframe errors."""


class NodeUnavailable(PartyFrameError):
    """A node could not be reached, died, or did not answer in time.

    Parameters
    ----------
    node_index : int
        Index of the node within its cluster.
    message : str
        Description of the transport failure.
    """

    def __init__(self, node_index, message):
        self.node_index = node_index
        self.message = message
        super().__init__(f"node {node_index} unavailable: {message}")

    def __reduce__(self):
        return type(self), (self.node_index, self.message)


class EvaluationError(PartyFrameError):
    """A node raised while evaluating a request.

    Parameters
    ----------
    node_index : int
        Index of the node that reported the error.
    error_type : str
        Class name of the exception raised on the node.
    message : str
        The exception message raised on the node.
    remote_traceback : str, optional
        Formatted traceback captured on the node.
    """

    def __init__(self, node_index, error_type, message, remote_traceback=None):
        self.node_index = node_index
        self.error_type = error_type
        self.message = message
        self.remote_traceback = remote_traceback
        super().__init__(f"node {node_index} failed with {error_type}: {message}")

    def __reduce__(self):
        return type(self), (self.node_index, self.error_type, self.message, self.remote_traceback)


class PartitionError(PartyFrameError, ValueError):
    """Invalid partitioning request (shard count, key columns, node mapping)."""


class ClusterLifecycleError(PartyFrameError):
    """An operation was attempted on a cluster that has been torn down."""
