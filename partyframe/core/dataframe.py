"""DataFrame compatibility layer for pandas/polars interoperability."""

from typing import Any

import narwhals as nw
import polars as pl

DataFrame = Any  # Any object implementing __arrow_c_stream__


def to_polars(df: Any) -> pl.DataFrame:
    """Convert any Arrow-compatible DataFrame to polars.

    Parameters
    ----------
    df : Any
        Input DataFrame. Supports any object implementing the Arrow PyCapsule
        Interface (__arrow_c_stream__), including:
        - polars DataFrame
        - pandas DataFrame (2.0+)
        - duckdb results
        - pyarrow Table

    Returns
    -------
    pl.DataFrame
        Polars DataFrame.

    Raises
    ------
    TypeError
        If input doesn't implement __arrow_c_stream__.
    """
    if isinstance(df, pl.DataFrame):
        return df

    if isinstance(df, pl.Series):
        return df.to_frame()

    # Arrow PyCapsule Interface
    if hasattr(df, "__arrow_c_stream__"):
        return nw.from_arrow(df, backend=pl).to_native()

    msg = f"Expected object implementing '__arrow_c_stream__', got: {type(df).__name__}"
    raise TypeError(msg)


def row_count(value: Any) -> int:
    """Return the number of rows a bound value contributes to a shard.

    Frames and series report their length; any other value (a scalar
    summary, a fitted model) counts as a single row.
    """
    if isinstance(value, pl.DataFrame):
        return value.height
    if isinstance(value, pl.Series):
        return len(value)
    if hasattr(value, "__arrow_c_stream__") and hasattr(value, "__len__"):
        return len(value)
    return 1


def concat_shards(values: list) -> pl.DataFrame:
    """Concatenate per-shard values into one polars DataFrame, in order.

    Parameters
    ----------
    values : list
        One value per shard. DataFrames (or Arrow-compatible frames) are
        stacked vertically, Series are stacked into a single column, and any
        other value becomes one row of a ``value`` column.

    Returns
    -------
    pl.DataFrame
        The combined frame. Empty when ``values`` is empty.
    """
    if not values:
        return pl.DataFrame()

    if all(isinstance(v, pl.Series) for v in values):
        name = values[0].name
        return pl.concat([v.rename(name).to_frame() for v in values], how="vertical_relaxed")

    if all(isinstance(v, pl.DataFrame) or hasattr(v, "__arrow_c_stream__") for v in values):
        frames = [to_polars(v) for v in values]
        return pl.concat(frames, how="vertical_relaxed")

    return pl.DataFrame({"value": values}, strict=False)


def unused_column_name(base: str, columns) -> str:
    """Return ``base``, suffixed with underscores until it is not in ``columns``."""
    taken = set(columns)
    name = base
    while name in taken:
        name += "_"
    return name
