"""Snapshot tree dialog."""

from collections.abc import Callable
from datetime import datetime

from blessed import Terminal
from blessed.keyboard import Keystroke

from vmdeck.actions import Action, ActionResult
from vmdeck.models import VM, SnapshotForest, SnapshotNode
from vmdeck.ui.theme import Theme
from vmdeck.ui.widgets.dialog import CONTINUE, ConfirmDialog, Dialog, InputDialog
from vmdeck.ui.widgets.list_view import ListView

Row = tuple[int, SnapshotNode]


class SnapshotDialog(Dialog):
    """Shows the snapshot forest of one VM and runs snapshot actions."""

    def __init__(
        self,
        term: Terminal,
        theme: Theme,
        vm: VM,
        load_forest: Callable[[], SnapshotForest],
        run: Callable[[Action, dict[str, str]], ActionResult],
    ) -> None:
        super().__init__(term, theme, f"Snapshots - {vm.name}")
        self.vm = vm
        self.load_forest = load_forest
        self.run = run
        self.rows: ListView[Row] = ListView(
            term, theme,
            format_func=self._format_row,
            key_func=lambda row: row[1].snapshot.id if row[1].snapshot else None,
            empty_text="No snapshots yet. Press 'N' to create one.",
        )
        self.name_width = 40
        self.status_message = ""
        self.status_type = "info"
        self.changed = False

    def _reload(self) -> None:
        """Rebuild the tree from the server."""
        self.rows.set_items(list(self.load_forest().walk()))

    @property
    def selected(self) -> SnapshotNode | None:
        row = self.rows.selected_item
        return row[1] if row else None

    def show(self) -> bool:
        """Display dialog and return True if anything changed."""
        self._reload()
        super().show()
        return self.changed

    def size(self) -> tuple[int, int]:
        width = min(self.term.width - 4, 90)
        height = min(self.term.height - 2, 26)
        self.rows.height = height - 8
        self.name_width = width - 32
        return width, height

    def _format_row(self, row: Row) -> str:
        depth, node = row
        indent = "  " * depth
        if node.snapshot is None:
            return self.theme.level(f"{indent}└ {node.label}", "success")
        snap = node.snapshot
        name = f"{indent}{snap.name}"[: self.name_width - 1].ljust(self.name_width)
        return f"{name}{snap.created_at:%Y-%m-%d %H:%M}  {snap.state}"

    def draw(self, x: int, y: int, width: int, height: int) -> None:
        header = " Name".ljust(self.name_width + 1) + "Created".ljust(18) + "State"
        print(self.term.move_xy(x, y) + self.theme.dim(header[:width]), end="")
        print("".join(self.rows.render(x, y + 1, width)), end="")
        status = self.theme.level(self.status_message, self.status_type)
        print(self.term.move_xy(x, y + height - 6) + self.theme.fit(status, width), end="")
        self._footer(
            x, y, width, height,
            self.theme.dim("N: New  Enter: Revert  D: Delete  Shift+D: Delete subtree  Esc: Close"),
        )

    def on_key(self, key: Keystroke) -> object:
        if key.name == "KEY_ESCAPE" or key == "q":
            return None
        if key.name == "KEY_ENTER":
            self._revert()
        elif key in ("n", "N"):
            self._create()
        elif key == "d":
            self._delete(children=False)
        elif key == "D":
            self._delete(children=True)
        else:
            self.rows.handle_key(key.name or str(key))
        return CONTINUE

    def _apply(self, action: Action, params: dict[str, str]) -> None:
        result = self.run(action, params)
        self.status_message = result.message
        self.status_type = result.level
        if result.ok:
            self.changed = True
            self._reload()

    def _create(self) -> None:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        name = InputDialog(
            self.term, self.theme, "Create Snapshot", "Snapshot name:",
            default=f"{self.vm.name}-{stamp}",
            validator=lambda v: "Name required" if not v.strip() else None,
        ).show()
        if not name:
            return
        description = InputDialog(
            self.term, self.theme, "Create Snapshot", "Description (optional):"
        ).show()
        if description is None:
            return
        self._apply(Action.SNAPSHOT_CREATE, {"name": name.strip(), "description": description})

    def _revert(self) -> None:
        node = self.selected
        if node is None or node.snapshot is None:
            self.status_message = "Select a snapshot to revert to"
            self.status_type = "warning"
            return
        confirm = ConfirmDialog(
            self.term, self.theme, "Revert Snapshot",
            f"Revert '{self.vm.name}' to '{node.snapshot.name}'?\nCurrent state will be lost.",
        )
        if confirm.show():
            self._apply(Action.SNAPSHOT_REVERT, {"snapshot": node.snapshot.id})

    def _delete(self, children: bool) -> None:
        node = self.selected
        if node is None or node.snapshot is None:
            self.status_message = "Select a snapshot to delete"
            self.status_type = "warning"
            return
        what = f"'{node.snapshot.name}' and all its children" if children else f"'{node.snapshot.name}'"
        if ConfirmDialog(self.term, self.theme, "Delete Snapshot", f"Delete snapshot {what}?").show():
            self._apply(
                Action.SNAPSHOT_DELETE,
                {"snapshot": node.snapshot.id, "children": "true" if children else "false"},
            )
