"""Shared Dask utilities, constants, and configuration defaults."""

from __future__ import annotations

import os
import uuid

ENV_N_NODES = "PARTYFRAME_N_NODES"
ENV_TIMEOUT = "PARTYFRAME_TIMEOUT"
BINDING_PREFIX = "_pf"


def _env_number(var, cast):
    raw = os.environ.get(var)
    if raw is None or raw.strip() == "":
        return None
    try:
        value = cast(raw)
    except ValueError as e:
        raise ValueError(f"{var} must be a number, got {raw!r}.") from e
    if value <= 0:
        raise ValueError(f"{var} must be positive, got {raw!r}.")
    return value


def default_node_count():
    """Number of nodes used when a cluster is created implicitly.

    Reads ``PARTYFRAME_N_NODES`` when set; otherwise leaves two cores free
    for the control process, keeping at least one node.

    Returns
    -------
    int
        Node count, minimum 1.
    """
    n = _env_number(ENV_N_NODES, int)
    if n is not None:
        return n
    return max((os.cpu_count() or 1) - 2, 1)


def default_timeout():
    """Per-request timeout in seconds, or ``None`` to wait indefinitely.

    Reads ``PARTYFRAME_TIMEOUT`` when set.
    """
    return _env_number(ENV_TIMEOUT, float)


def new_binding_name(prefix=BINDING_PREFIX):
    """Return a fresh remote binding name that cannot collide with user names."""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def get_worker_addresses(client):
    """Return the addresses of every live worker, sorted.

    Uses ``Client.nthreads`` rather than ``scheduler_info`` since the latter
    truncates its worker listing on large clusters.

    Parameters
    ----------
    client : distributed.Client
        Dask distributed client.

    Returns
    -------
    list of str
        Sorted worker addresses.
    """
    return sorted(client.nthreads())


def split_evenly(values, n_pieces):
    """Split a sequence into ``n_pieces`` contiguous pieces of near-equal length.

    Piece sizes differ by at most one and earlier pieces are the larger ones.

    Parameters
    ----------
    values : sequence
        Sliceable sequence (list, tuple, ndarray, Series).
    n_pieces : int
        Number of pieces.

    Returns
    -------
    list
        ``n_pieces`` slices of ``values``; some may be empty.
    """
    n = len(values)
    base, extra = divmod(n, n_pieces)
    pieces = []
    start = 0
    for i in range(n_pieces):
        stop = start + base + (1 if i < extra else 0)
        pieces.append(values[start:stop])
        start = stop
    return pieces
