"""Serializable transformation operations shipped to nodes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SHARD_SYMBOL = "df"


@dataclass(frozen=True)
class Operation:
    r"""A computation plus the values it closes over.

    An operation is either a callable or a Python expression string. It is
    pickled together with its captured arguments on every call and only
    turned into something executable on the receiving node.

    - A callable is invoked as ``expr(shard, *args, **kwargs)``. When there
      is no shard (e.g. :func:`~partyframe.dask.cluster_call`) it is invoked
      as ``expr(*args, **kwargs)``.
    - A string is evaluated with ``eval`` in a scope built from the node's
      bindings, then ``kwargs``, then the shard bound as ``df``.

    Parameters
    ----------
    expr : callable or str
        The computation.
    *args
        Positional values passed to a callable. Not allowed for strings.
    **kwargs
        Keyword values passed to a callable, or extra names visible to an
        expression string.

    Examples
    --------
    .. code-block:: python

        Operation(pl.DataFrame.filter, pl.col("x") > 3)
        Operation("df.filter(pl.col('x') > cutoff)", cutoff=3)
    """

    expr: Any
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)

    def __init__(self, expr, *args, **kwargs):
        if not (callable(expr) or isinstance(expr, str)):
            raise TypeError(f"Operation expects a callable or an expression string, got {type(expr).__name__}.")
        if isinstance(expr, str) and args:
            raise ValueError("Expression strings take keyword bindings only, not positional arguments.")
        object.__setattr__(self, "expr", expr)
        object.__setattr__(self, "args", tuple(args))
        object.__setattr__(self, "kwargs", dict(kwargs))

    @classmethod
    def coerce(cls, operation):
        """Wrap a bare callable or string as an :class:`Operation`."""
        if isinstance(operation, cls):
            return operation
        return cls(operation)

    @classmethod
    def method(cls, name, *args, **kwargs):
        """Build an operation that calls ``shard.<name>(*args, **kwargs)``."""
        return cls(_call_method, name, *args, **kwargs)

    def evaluate(self, namespace, shard=None, has_shard=False):
        """Run the operation against a node namespace.

        Parameters
        ----------
        namespace : dict
            The node's private bindings.
        shard : object, optional
            The current value of the shard binding.
        has_shard : bool, default False
            Whether ``shard`` should be passed in; distinguishes a missing
            shard from a shard whose value is ``None``.

        Returns
        -------
        object
            Whatever the computation returns.
        """
        if isinstance(self.expr, str):
            scope = dict(namespace)
            scope.update(self.kwargs)
            if has_shard:
                scope[SHARD_SYMBOL] = shard
            return eval(self.expr, scope)  # noqa: S307
        if has_shard:
            return self.expr(shard, *self.args, **self.kwargs)
        return self.expr(*self.args, **self.kwargs)

    def describe(self):
        """Short human-readable label used in log messages."""
        if isinstance(self.expr, str):
            return repr(self.expr)
        if self.expr is _call_method and self.args:
            return f".{self.args[0]}()"
        return getattr(self.expr, "__qualname__", repr(self.expr))


def _call_method(shard, name, *args, **kwargs):
    """Call a method on the shard by name."""
    return getattr(shard, name)(*args, **kwargs)
