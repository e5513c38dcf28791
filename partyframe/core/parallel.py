"""Parallel fan-out utilities for per-node requests."""

from __future__ import annotations

import contextvars
import os
from concurrent.futures import ThreadPoolExecutor, as_completed


def parallel_map(func, args_list, n_jobs=1):
    """Execute func(*args) for each args in args_list, optionally in parallel.

    Uses threads rather than processes because each call spends its time
    waiting on a node's reply; the control process only coordinates.

    ``ContextVar`` values (e.g. the cluster installed by
    :func:`~partyframe.dask.use_cluster`) are propagated to each worker
    thread via :func:`contextvars.copy_context`.

    Every call runs to completion before anything is raised. If one or more
    calls fail, the exception from the lowest index in ``args_list`` is
    re-raised, so the reported failure does not depend on thread timing.

    Parameters
    ----------
    func : callable
        Function to call for each set of arguments.
    args_list : list of tuples
        Arguments for each call.
    n_jobs : int
        1 = sequential (default), -1 = all cores, >1 = that many workers.

    Returns
    -------
    list
        Results in the same order as args_list.
    """
    if not args_list:
        return []

    if n_jobs == 1:
        results = []
        first_error = None
        for args in args_list:
            try:
                results.append(func(*args))
            except Exception as exc:
                if first_error is None:
                    first_error = exc
                results.append(None)
        if first_error is not None:
            raise first_error
        return results

    max_workers = os.cpu_count() if n_jobs == -1 else n_jobs
    max_workers = max(1, min(max_workers, len(args_list)))
    results = [None] * len(args_list)
    errors = {}

    # Each task gets its own snapshot so Context.run() is never called
    # concurrently on the same object (which would raise RuntimeError).
    contexts = [contextvars.copy_context() for _ in args_list]

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_idx = {
            executor.submit(ctx.run, func, *args): i
            for i, (ctx, args) in enumerate(zip(contexts, args_list, strict=True))
        }
        for future in as_completed(future_to_idx):
            idx = future_to_idx[future]
            try:
                results[idx] = future.result()
            except Exception as exc:
                errors[idx] = exc

    if errors:
        raise errors[min(errors)]
    return results
