"""Utility functions for vmdeck."""

from vmdeck.utils.files import atomic_write_json, atomic_write_text
from vmdeck.utils.formatting import (
    format_bytes,
    format_percent,
    format_table,
)

__all__ = [
    "atomic_write_json",
    "atomic_write_text",
    "format_bytes",
    "format_percent",
    "format_table",
]
