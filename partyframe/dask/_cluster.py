"""Cluster lifecycle and the default-cluster slot."""

from __future__ import annotations

import contextlib
import logging
import threading
import uuid
import weakref
from contextvars import ContextVar

from partyframe.core.errors import ClusterLifecycleError, NodeUnavailable
from partyframe.core.parallel import parallel_map

from ._channel import NodeChannel
from ._utils import default_node_count, default_timeout, get_worker_addresses

log = logging.getLogger("partyframe.dask.cluster")

_default_lock = threading.Lock()
_default_cluster = None
_scoped_cluster: ContextVar[Cluster | None] = ContextVar("partyframe_scoped_cluster", default=None)


class Cluster:
    """A fixed, ordered set of nodes reached through one Dask client.

    The cluster is torn down when it is closed explicitly, when a ``with``
    block around it exits, or when the last reference to it (including the
    ones held by every :class:`~partyframe.frame.PartyFrame` built on it) is
    dropped.

    Parameters
    ----------
    client : distributed.Client
        Dask distributed client.
    addresses : list of str
        Worker addresses, one per node, in node order.
    timeout : float or None, default None
        Per-request timeout in seconds.
    local_cluster : distributed.LocalCluster or None, default None
        Local cluster owned by this object and closed on teardown.
    owns_client : bool, default False
        Whether ``client`` is closed on teardown.
    """

    def __init__(self, client, addresses, timeout=None, local_cluster=None, owns_client=False):
        self.client = client
        self.token = uuid.uuid4().hex
        self.nodes = tuple(
            NodeChannel(client, addr, i, self.token, timeout=timeout) for i, addr in enumerate(addresses)
        )
        self._finalizer = weakref.finalize(
            self, _teardown, self.nodes, client if owns_client else None, local_cluster
        )

    def __repr__(self):
        state = "closed" if self.closed else "open"
        return f"<Cluster {self.n_nodes} nodes ({state})>"

    def __len__(self):
        return len(self.nodes)

    def __getitem__(self, index):
        return self.nodes[index]

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    @property
    def n_nodes(self):
        return len(self.nodes)

    @property
    def closed(self):
        return not self._finalizer.alive

    def check_open(self):
        """Raise :class:`ClusterLifecycleError` if the cluster was torn down."""
        if self.closed:
            raise ClusterLifecycleError("cluster has been closed.")

    def node(self, index):
        """Return the channel for node ``index``."""
        self.check_open()
        if not 0 <= index < self.n_nodes:
            raise IndexError(f"node index {index} out of range for a cluster of {self.n_nodes} nodes.")
        return self.nodes[index]

    def broadcast(self, func, args_list=None):
        """Call ``func(channel, *args)`` on every node concurrently.

        Parameters
        ----------
        func : callable
            Called with a :class:`NodeChannel` followed by that node's args.
        args_list : list of tuple, optional
            Per-node argument tuples. Defaults to no extra arguments.

        Returns
        -------
        list
            Results in node order.
        """
        self.check_open()
        if args_list is None:
            args_list = [()] * self.n_nodes
        if len(args_list) != self.n_nodes:
            raise ValueError(f"Expected {self.n_nodes} argument tuples, got {len(args_list)}.")
        return parallel_map(
            func,
            [(channel, *args) for channel, args in zip(self.nodes, args_list, strict=True)],
            n_jobs=self.n_nodes,
        )

    def close(self):
        """Tear the cluster down. Safe to call more than once."""
        self._finalizer()


def _teardown(nodes, client, local_cluster):
    """Best-effort shutdown; logs failures and never raises."""
    for channel in nodes:
        try:
            channel.shutdown()
        except Exception:
            log.warning("Failed to shut down node %d cleanly", channel.index, exc_info=True)
    _close_quietly(client, local_cluster)
    log.info("Cluster of %d nodes torn down", len(nodes))


def create_cluster(n_nodes=None, client=None, timeout=None, **cluster_kwargs):
    """Start (or attach to) a set of nodes and return a :class:`Cluster`.

    Either every node is live and answering when this returns, or nothing
    is left running and :class:`~partyframe.core.errors.NodeUnavailable` is
    raised.

    Parameters
    ----------
    n_nodes : int or None
        Number of nodes. Defaults to :func:`default_node_count`.
    client : distributed.Client or None
        An existing client to attach to. Its first ``n_nodes`` workers
        (sorted by address) become the nodes; the client itself is left
        open on teardown. If None, a ``LocalCluster`` with single-threaded
        worker processes is started and owned by the cluster.
    timeout : float or None
        Per-request timeout in seconds, also used while waiting for workers
        to start. Defaults to ``PARTYFRAME_TIMEOUT`` when set.
    **cluster_kwargs
        Extra keyword arguments for ``distributed.LocalCluster``.

    Returns
    -------
    Cluster
        A live cluster with ``polars`` loaded as ``pl`` on every node.
    """
    if n_nodes is None:
        n_nodes = default_node_count()
    if isinstance(n_nodes, bool) or not isinstance(n_nodes, int) or n_nodes < 1:
        raise ValueError(f"n_nodes must be a positive integer, got {n_nodes!r}.")
    if timeout is None:
        timeout = default_timeout()

    local_cluster = None
    owns_client = client is None
    if client is None:
        from distributed import Client, LocalCluster

        cluster_kwargs.setdefault("threads_per_worker", 1)
        cluster_kwargs.setdefault("processes", True)
        cluster_kwargs.setdefault("dashboard_address", ":0")
        cluster_kwargs.setdefault("silence_logs", logging.ERROR)
        local_cluster = LocalCluster(n_workers=n_nodes, **cluster_kwargs)
        try:
            client = Client(local_cluster)
        except Exception:
            _close_quietly(local_cluster)
            raise
        try:
            client.wait_for_workers(n_nodes, timeout=timeout)
        except (OSError, TimeoutError) as e:
            n_live = len(get_worker_addresses(client))
            _close_quietly(client, local_cluster)
            raise NodeUnavailable(n_live, f"only {n_live} of {n_nodes} nodes started ({e})") from e
        except Exception:
            _close_quietly(client, local_cluster)
            raise

    addresses = get_worker_addresses(client)
    if len(addresses) < n_nodes:
        if owns_client:
            _close_quietly(client, local_cluster)
        raise NodeUnavailable(len(addresses), f"client has {len(addresses)} workers, {n_nodes} nodes requested")

    cluster = Cluster(
        client,
        addresses[:n_nodes],
        timeout=timeout,
        local_cluster=local_cluster,
        owns_client=owns_client,
    )
    try:
        cluster.broadcast(NodeChannel.ping)
        cluster.broadcast(NodeChannel.import_module, [("polars", "pl")] * n_nodes)
    except Exception:
        cluster.close()
        raise

    log.info("Created cluster with %d nodes", n_nodes)
    return cluster


def _close_quietly(*resources):
    for resource in resources:
        if resource is None:
            continue
        try:
            resource.close()
        except Exception:
            log.warning("Failed to close %s", type(resource).__name__, exc_info=True)


def set_default_cluster(cluster):
    """Set the process-wide cluster used by calls that do not pass one.

    The slot is shared by every thread. A block inside :func:`use_cluster`
    still sees the cluster it installed.

    Parameters
    ----------
    cluster : Cluster or None
        Cluster to use as the default. ``None`` clears the slot.
    """
    global _default_cluster
    if cluster is not None and not isinstance(cluster, Cluster):
        raise TypeError(f"Expected a Cluster or None, got {type(cluster).__name__}.")
    with _default_lock:
        _default_cluster = cluster


def get_default_cluster(create=True):
    """Return the default cluster, creating one if needed.

    A cluster installed by an enclosing :func:`use_cluster` block takes
    precedence over the process-wide default.

    Parameters
    ----------
    create : bool, default True
        When no open default cluster exists, create one with
        :func:`default_node_count` nodes and install it as the process-wide
        default. When False, return ``None`` instead.

    Returns
    -------
    Cluster or None
        The default cluster.
    """
    global _default_cluster
    scoped = _scoped_cluster.get()
    if scoped is not None and not scoped.closed:
        return scoped
    with _default_lock:
        if _default_cluster is not None and not _default_cluster.closed:
            return _default_cluster
        if not create:
            return None
        n_nodes = default_node_count()
        log.info("Initialising default cluster of size %d", n_nodes)
        _default_cluster = create_cluster(n_nodes)
        return _default_cluster


@contextlib.contextmanager
def use_cluster(cluster):
    """Context manager that temporarily installs a default cluster.

    The override applies to the current context only (and to work fanned
    out from it through :func:`~partyframe.core.parallel.parallel_map`).
    The previous default is restored when the block exits, even if an
    exception is raised. The cluster itself is not closed.

    Parameters
    ----------
    cluster : Cluster
        Cluster to use as the default inside the block.
    """
    if not isinstance(cluster, Cluster):
        raise TypeError(f"Expected a Cluster, got {type(cluster).__name__}.")
    token = _scoped_cluster.set(cluster)
    try:
        yield cluster
    finally:
        _scoped_cluster.reset(token)


def resolve_cluster(cluster=None):
    """Return ``cluster`` if given, otherwise the default cluster."""
    if cluster is None:
        cluster = get_default_cluster()
    cluster.check_open()
    return cluster
