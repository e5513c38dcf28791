"""Partitioning, dispatch, and collection of party frames."""

from .collect import collect, pull
from .dispatch import dispatch
from .distribute import distribute
from .partition import assign_nodes, greedy_pack, partition_rows
from .party_frame import PartyFrame, partition, party_frame
from .shards import ShardDescriptor

__all__ = [
    "PartyFrame",
    "ShardDescriptor",
    "assign_nodes",
    "collect",
    "dispatch",
    "distribute",
    "greedy_pack",
    "partition",
    "partition_rows",
    "party_frame",
    "pull",
]
