"""Cluster monitoring utilities for long-running pipelines."""

from __future__ import annotations

import threading


def monitor_cluster(cluster, interval=15, emit=print, per_worker=False):
    """Periodically log node memory for a cluster.

    Parameters
    ----------
    cluster : Cluster
        Cluster to monitor.
    interval : float, default 15
        Seconds between status reports.
    emit : callable, default print
        Function to call with each status line.
    per_worker : bool, default False
        If True, include a per-node memory breakdown.

    Returns
    -------
    callable
        A ``stop()`` function that terminates the monitoring thread.
    """
    cluster.check_open()
    stop_event = threading.Event()

    def _loop():
        while not stop_event.is_set() and not cluster.closed:
            try:
                info = _scheduler_info(cluster.client)
                workers = info.get("workers", {})

                total_mem = 0
                total_used = 0
                node_lines = []
                n_live = 0

                for channel in cluster.nodes:
                    w = workers.get(channel.address)
                    if w is None:
                        node_lines.append(f"    node {channel.index}: unavailable")
                        continue
                    n_live += 1
                    mem_limit = w.get("memory_limit", 0)
                    mem_used = w.get("metrics", {}).get("memory", 0)
                    total_mem += mem_limit
                    total_used += mem_used

                    if per_worker:
                        pct = (mem_used / mem_limit * 100) if mem_limit > 0 else 0
                        node_lines.append(
                            f"    node {channel.index}: {mem_used / 1e9:.1f} / {mem_limit / 1e9:.1f} GB ({pct:.0f}%)"
                        )

                pct_total = (total_used / total_mem * 100) if total_mem > 0 else 0
                emit(
                    f"[monitor] {n_live}/{cluster.n_nodes} nodes | "
                    f"Memory: {total_used / 1e9:.1f} / {total_mem / 1e9:.1f} GB "
                    f"({pct_total:.0f}%)"
                )

                if per_worker or n_live < cluster.n_nodes:
                    for line in node_lines:
                        emit(line)

            except (OSError, KeyError):
                pass

            stop_event.wait(interval)

    thread = threading.Thread(target=_loop, daemon=True)
    thread.start()

    def stop():
        stop_event.set()
        thread.join(timeout=2)

    return stop


def _scheduler_info(client):
    """Full scheduler info; newer releases truncate the worker list unless asked not to."""
    try:
        return client.scheduler_info(n_workers=-1)
    except TypeError:
        return client.scheduler_info()
