"""Apply an operation to every shard of a party frame, in place on the nodes."""

from __future__ import annotations

import logging
from collections import Counter

from partyframe.core.errors import EvaluationError
from partyframe.core.operation import Operation
from partyframe.core.parallel import parallel_map
from partyframe.dask._utils import new_binding_name

from .shards import ShardDescriptor

log = logging.getLogger("partyframe.frame.dispatch")


def dispatch(frame, operation, name=None, group_keys=None):
    """Evaluate ``operation`` against every shard and rebind the results.

    Every shard is evaluated on its own node, concurrently across nodes.
    Only the new row counts travel back to the control process. The input
    frame is left untouched and stays usable; the returned frame points at
    the new bindings, in the same shard order.

    A failure on any node fails the whole call with an
    :class:`~partyframe.core.errors.EvaluationError` naming that node.
    Nodes that already finished keep their new bindings: there is no
    rollback across nodes, so treat a failed dispatch as not having
    happened and keep using the previous frame.

    Parameters
    ----------
    frame : PartyFrame
        Frame to transform.
    operation : Operation, callable, or str
        The computation. Callables receive the shard as first argument;
        expression strings see the shard as ``df``.
    name : str or None
        Bind every result under this name instead of a fresh one. Only
        allowed when no node holds more than one shard.
    group_keys : sequence of str or None
        Grouping keys of the result. Defaults to the input's keys.

    Returns
    -------
    PartyFrame
        A new frame describing the transformed shards.
    """
    operation = Operation.coerce(operation)
    cluster = frame.cluster
    cluster.check_open()

    if name is not None:
        crowded = [node for node, count in Counter(s.node for s in frame.shards).items() if count > 1]
        if crowded:
            raise ValueError(f"Cannot bind every shard as {name!r}: nodes {sorted(crowded)} hold more than one shard.")

    targets = [name or new_binding_name() for _ in frame.shards]
    log.debug("dispatching %s to %d shards", operation.describe(), len(targets))

    def _apply(shard, target):
        n_rows = cluster.node(shard.node).evaluate(operation, shard.name, target)
        return ShardDescriptor(shard.node, target, n_rows)

    try:
        shards = parallel_map(_apply, list(zip(frame.shards, targets, strict=True)), n_jobs=max(len(targets), 1))
    except EvaluationError as e:
        log.debug("dispatch of %s failed on node %d", operation.describe(), e.node_index)
        raise

    changes = {"shards": shards}
    if group_keys is not None:
        changes["group_keys"] = group_keys
    return frame.replace(**changes)
