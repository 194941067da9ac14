"""Formatting helpers shared by the UI and the headless commands."""

from collections.abc import Sequence


def format_bytes(num_bytes: float) -> str:
    """Format bytes as human-readable string."""
    value = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(value) < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} PB"


def format_percent(value: float) -> str:
    return f"{value:.1f}%"


def format_table(headers: Sequence[str], rows: Sequence[Sequence[object]]) -> list[str]:
    """Render rows as left-aligned columns sized to their widest cell."""
    cells = [[str(c) for c in row] for row in rows]
    widths = [len(h) for h in headers]
    for row in cells:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    def line(values: Sequence[str]) -> str:
        return "  ".join(v.ljust(widths[i]) for i, v in enumerate(values)).rstrip()

    lines = [line(headers), line(["-" * w for w in widths])]
    lines.extend(line(row) for row in cells)
    return lines
