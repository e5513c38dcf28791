"""Shared formatting utilities for party frame and cluster output."""

from prettytable import PrettyTable, TableStyle

WIDTH = 78
THICK_SEP = "=" * WIDTH
THIN_SEP = "-" * WIDTH


def _make_table(headers, rows, align_map):
    """Create a PrettyTable with SINGLE_BORDER style and per-column alignment."""
    t = PrettyTable()
    t.set_style(TableStyle.SINGLE_BORDER)
    t.field_names = headers
    for row in rows:
        t.add_row(row)
    for h in headers:
        t.align[h] = align_map.get(h, "r")
    return str(t)


def format_title(title, subtitle=None):
    """Return title block lines with thick separators."""
    lines = [THICK_SEP, f" {title}"]
    if subtitle is not None:
        lines.append(f" {subtitle}")
    lines.append(THICK_SEP)
    return lines


def format_kv_line(key, value, indent=1):
    """Format a key-value pair with indentation."""
    return f"{' ' * indent}{key}: {value}"


def format_count(n, noun):
    """Format a count with a naively pluralised noun."""
    return f"{n:,} {noun}" if n == 1 else f"{n:,} {noun}s"


def format_row_range(shard_rows):
    """Summarise shard sizes as ``[min--max rows]``.

    Parameters
    ----------
    shard_rows : sequence of int
        Row count of each shard.

    Returns
    -------
    str
        ``"[503--609 rows]"``, ``"[12 rows]"`` when every shard is the same
        size, or ``"[empty]"`` with no shards.
    """
    if len(shard_rows) == 0:
        return "[empty]"
    lo, hi = min(shard_rows), max(shard_rows)
    if lo == hi:
        return f"[{format_count(lo, 'row')}]"
    return f"[{lo:,}--{hi:,} rows]"


def format_shard_table(shards):
    """Build a node/binding/rows table, one line per shard."""
    headers = ["Shard", "Node", "Binding", "Rows"]
    rows = [[str(i), str(s.node), s.name, f"{s.n_rows:,}"] for i, s in enumerate(shards)]
    return _make_table(headers, rows, {"Binding": "l"})


def format_party_frame(frame):
    """Return the short description used for a party frame's repr."""
    lines = [
        f"Source: party frame [{format_count(frame.n_rows, 'row')}]",
    ]
    if frame.group_keys:
        lines.append(f"Groups: {', '.join(frame.group_keys)}")
    lines.append(f"Shards: {frame.n_shards} {format_row_range(frame.shard_rows)}")
    lines.append(f"Nodes: {frame.n_nodes}")
    return "\n".join(lines)


def format_party_frame_summary(frame):
    """Return a full multi-line summary with a per-shard table."""
    lines = format_title("Party Frame", f"{format_count(frame.n_shards, 'shard')} on {frame.n_nodes} nodes")
    lines.append(format_kv_line("Rows", f"{frame.n_rows:,}"))
    lines.append(format_kv_line("Shard sizes", format_row_range(frame.shard_rows)))
    if frame.group_keys:
        lines.append(format_kv_line("Groups", ", ".join(frame.group_keys)))
    if frame.partition_keys:
        lines.append(format_kv_line("Partitioned by", ", ".join(frame.partition_keys)))
    if frame.n_shards:
        lines.extend(["", *format_shard_table(frame.shards).split("\n")])
    lines.append(THICK_SEP)
    return "\n".join(lines)
