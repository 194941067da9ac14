"""UI widgets for vmdeck."""

from vmdeck.ui.widgets.dialog import (
    ConfirmDialog,
    InputDialog,
    MessageDialog,
    SelectDialog,
)
from vmdeck.ui.widgets.list_view import ListView
from vmdeck.ui.widgets.snapshot_dialog import SnapshotDialog

__all__ = [
    "ListView",
    "InputDialog",
    "ConfirmDialog",
    "MessageDialog",
    "SelectDialog",
    "SnapshotDialog",
]
