"""Shard bookkeeping records."""

from __future__ import annotations

from typing import NamedTuple


class ShardDescriptor(NamedTuple):
    """Where one shard lives and how large it was when last observed."""

    node: int
    name: str
    n_rows: int
