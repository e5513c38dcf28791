"""Request handlers executed inside node processes.

Each node keeps a private namespace of bindings per cluster; every handler
takes the owning cluster's token as its first argument. Handlers never raise back
through Dask: they return an ``(ok, payload)`` envelope where a failure
payload is ``(error_type, message, traceback)``. This keeps node-side
evaluation errors distinct from transport failures on the control side.
"""

from __future__ import annotations

import functools
import importlib
import threading
import traceback
import types

from distributed import get_worker

from partyframe.core.dataframe import row_count

_NAMESPACES = {}
_LOCK = threading.Lock()


def _namespace(token):
    """Return this node's binding namespace, creating it on first use.

    Keyed by worker address and cluster token, so that in-process clusters
    (``processes=False``) and several clusters attached to one client still
    give each node a private namespace.
    """
    key = (get_worker().address, token)
    with _LOCK:
        return _NAMESPACES.setdefault(key, {})


def _lookup(namespace, name):
    try:
        return namespace[name]
    except KeyError:
        raise NameError(f"binding {name!r} is not defined on this node") from None


def _enveloped(func):
    @functools.wraps(func)
    def wrapper(*args):
        try:
            return True, func(*args)
        except Exception as exc:
            return False, (type(exc).__name__, str(exc), traceback.format_exc())

    return wrapper


@_enveloped
def node_ping(token):
    """Return the address of the worker answering."""
    return get_worker().address


@_enveloped
def node_bind(token, name, value):
    """Bind ``value`` under ``name`` and return its row count."""
    _namespace(token)[name] = value
    return row_count(value)


@_enveloped
def node_evaluate(token, operation, source, target):
    """Evaluate an operation, optionally against a shard binding.

    Parameters
    ----------
    operation : Operation
        The computation to run.
    source : str or None
        Binding holding the shard the operation runs against. ``None`` runs
        the operation without a shard.
    target : str or None
        Binding to store the result under. When given, only the row count
        of the result travels back; when ``None`` the value itself is
        returned.
    """
    namespace = _namespace(token)
    if source is None:
        result = operation.evaluate(namespace)
    else:
        result = operation.evaluate(namespace, _lookup(namespace, source), has_shard=True)

    if target is None:
        return result
    namespace[target] = result
    return row_count(result)


@_enveloped
def node_fetch(token, name):
    """Return the current value of a binding."""
    return _lookup(_namespace(token), name)


@_enveloped
def node_row_count(token, name):
    """Return the row count of an existing binding."""
    return row_count(_lookup(_namespace(token), name))


@_enveloped
def node_remove(token, names):
    """Drop bindings; names that do not exist are ignored."""
    namespace = _namespace(token)
    removed = 0
    for name in names:
        if name in namespace:
            del namespace[name]
            removed += 1
    return removed


@_enveloped
def node_import(token, module, alias):
    """Import ``module`` and bind it as ``alias``.

    Importing an already-bound module is a no-op, so repeated calls are safe.
    """
    namespace = _namespace(token)
    existing = namespace.get(alias)
    if isinstance(existing, types.ModuleType) and existing.__name__ == module:
        return alias
    namespace[alias] = importlib.import_module(module)
    return alias


@_enveloped
def node_list(token):
    """Return the sorted names of the node's data bindings (modules excluded)."""
    return sorted(k for k, v in _namespace(token).items() if not isinstance(v, types.ModuleType))


@_enveloped
def node_shutdown(token):
    """Release every binding held for this node."""
    key = (get_worker().address, token)
    with _LOCK:
        namespace = _NAMESPACES.pop(key, {})
    n = len(namespace)
    namespace.clear()
    return n
