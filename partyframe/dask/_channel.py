"""Request/response channel to a single node."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import time

from distributed.scheduler import KilledWorker

from partyframe.core.errors import ClusterLifecycleError, EvaluationError, NodeUnavailable

from . import _node

log = logging.getLogger("partyframe.dask.channel")

_TRANSPORT_ERRORS = (
    OSError,
    TimeoutError,
    asyncio.TimeoutError,
    asyncio.CancelledError,
    concurrent.futures.CancelledError,
    KilledWorker,
)
_WAIT_TIMEOUTS = (TimeoutError, asyncio.TimeoutError, concurrent.futures.TimeoutError)

POLL_INTERVAL = 0.5
SHUTDOWN_LOCK_TIMEOUT = 5.0


class NodeChannel:
    """Sequential request channel to one Dask worker.

    Every request is submitted as a task pinned to the worker's address and
    the channel holds a lock until the reply arrives, so at most one request
    per node is outstanding. Concurrent callers targeting the same node
    queue on the lock.

    While waiting for a reply the channel checks every ``POLL_INTERVAL``
    seconds that the worker is still registered with the scheduler. A pinned
    task whose worker died is never rescheduled by Dask, so this is what
    turns a dead node into :class:`~partyframe.core.errors.NodeUnavailable`.

    Parameters
    ----------
    client : distributed.Client
        Dask distributed client used as the transport.
    address : str
        Worker address this channel talks to.
    index : int
        Position of the node within its cluster.
    token : str
        Identifies the owning cluster's namespace on the worker.
    timeout : float or None, default None
        Seconds to wait for each reply. A request that times out raises
        :class:`~partyframe.core.errors.NodeUnavailable`.
    """

    def __init__(self, client, address, index, token, timeout=None):
        self.client = client
        self.address = address
        self.index = index
        self.token = token
        self.timeout = timeout
        self._lock = threading.Lock()
        self._closed = False

    def __repr__(self):
        state = "closed" if self._closed else "open"
        return f"<NodeChannel {self.index} {self.address} ({state})>"

    @property
    def closed(self):
        return self._closed

    def request(self, handler, *args, lock_timeout=-1):
        """Run a node handler and return its payload.

        Parameters
        ----------
        handler : callable
            One of the enveloped handlers in :mod:`partyframe.dask._node`.
        *args
            Arguments shipped with the request.
        lock_timeout : float, default -1
            Seconds to wait for a previous request to this node to finish.
            ``-1`` waits indefinitely.

        Returns
        -------
        object
            The handler's return value.

        Raises
        ------
        ClusterLifecycleError
            If the channel has been closed.
        NodeUnavailable
            If the worker is gone, the transport fails, or the channel stays
            busy longer than ``lock_timeout``.
        EvaluationError
            If the handler raised on the node, or its arguments or result
            could not be moved between processes.
        """
        if not self._lock.acquire(timeout=lock_timeout):
            raise NodeUnavailable(self.index, f"still busy with a previous request after {lock_timeout}s")
        try:
            if self._closed:
                raise ClusterLifecycleError(f"node {self.index} belongs to a cluster that has been closed.")
            ok, payload = self._round_trip(handler, args)
        finally:
            self._lock.release()

        if not ok:
            error_type, message, remote_tb = payload
            raise EvaluationError(self.index, error_type, message, remote_tb)
        return payload

    def _check_alive(self):
        try:
            alive = self.address in self.client.nthreads()
        except _TRANSPORT_ERRORS as e:
            raise NodeUnavailable(self.index, f"scheduler unreachable ({e})") from e
        if not alive:
            raise NodeUnavailable(self.index, f"worker {self.address} is no longer part of the cluster")

    def _round_trip(self, handler, args):
        self._check_alive()
        future = self.client.submit(
            handler,
            self.token,
            *args,
            workers=[self.address],
            allow_other_workers=False,
            pure=False,
        )
        try:
            return self._wait(future)
        except NodeUnavailable:
            future.cancel()
            raise
        except _TRANSPORT_ERRORS as e:
            future.cancel()
            log.debug("node %d (%s): %s during %s", self.index, self.address, type(e).__name__, handler.__name__)
            raise NodeUnavailable(self.index, f"{type(e).__name__}: {e}") from e
        except Exception as e:
            log.debug("node %d (%s): %s raised outside the handler", self.index, self.address, handler.__name__)
            raise EvaluationError(self.index, type(e).__name__, str(e)) from e
        finally:
            future.release()

    def _wait(self, future):
        """Wait for ``future`` in short polls, re-checking liveness between them."""
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        while True:
            wait_for = POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise NodeUnavailable(self.index, f"no reply within {self.timeout}s")
                wait_for = min(wait_for, remaining)
            try:
                return future.result(timeout=wait_for)
            except _WAIT_TIMEOUTS:
                if future.done():
                    raise
            self._check_alive()

    def ping(self):
        return self.request(_node.node_ping)

    def bind(self, name, value):
        """Bind a value under ``name`` on the node; return its row count."""
        return self.request(_node.node_bind, name, value)

    def evaluate(self, operation, source=None, target=None):
        """Evaluate an operation on the node.

        Returns the row count of the result when ``target`` is given,
        otherwise the result itself.
        """
        return self.request(_node.node_evaluate, operation, source, target)

    def fetch(self, name):
        return self.request(_node.node_fetch, name)

    def row_count(self, name):
        return self.request(_node.node_row_count, name)

    def remove(self, names):
        return self.request(_node.node_remove, list(names))

    def import_module(self, module, alias):
        return self.request(_node.node_import, module, alias)

    def list_bindings(self):
        return self.request(_node.node_list)

    def shutdown(self):
        """Ask the node to drop its namespace and mark the channel closed.

        Does not wait more than ``SHUTDOWN_LOCK_TIMEOUT`` seconds for an
        outstanding request. The channel is closed even when the request
        fails.
        """
        try:
            return self.request(_node.node_shutdown, lock_timeout=SHUTDOWN_LOCK_TIMEOUT)
        finally:
            self._closed = True
