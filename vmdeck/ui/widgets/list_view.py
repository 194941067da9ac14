"""Scrollable, selectable list widget."""

from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

from blessed import Terminal

from vmdeck.ui.theme import Theme

T = TypeVar("T")

_MOVES: dict[str, int] = {
    "k": -1,
    "KEY_UP": -1,
    "j": 1,
    "KEY_DOWN": 1,
}


class ListView(Generic[T]):
    """List with a cursor that survives reloads.

    ``key_func`` identifies an item across reloads; when the list is replaced
    the cursor stays on the item with the same key if it is still present.
    """

    def __init__(
        self,
        term: Terminal,
        theme: Theme,
        format_func: Callable[[T], str],
        key_func: Callable[[T], Hashable] | None = None,
        height: int = 10,
        empty_text: str = "(no items)",
    ) -> None:
        self.term = term
        self.theme = theme
        self.format_func = format_func
        self.key_func = key_func
        self.height = height
        self.empty_text = empty_text
        self.items: list[T] = []
        self.selected_index = 0
        self.scroll_offset = 0

    @property
    def selected_item(self) -> T | None:
        if 0 <= self.selected_index < len(self.items):
            return self.items[self.selected_index]
        return None

    def set_items(self, items: list[T]) -> None:
        """Replace the items, keeping the cursor on the same item if possible."""
        previous = self.selected_item
        self.items = items
        if previous is not None and self.key_func is not None:
            key = self.key_func(previous)
            if self.select_where(lambda item: self.key_func(item) == key):
                return
        self.move_to(self.selected_index)

    def select_where(self, predicate: Callable[[T], bool]) -> bool:
        """Move the cursor to the first matching item."""
        for i, item in enumerate(self.items):
            if predicate(item):
                self.move_to(i)
                return True
        return False

    def move_to(self, index: int) -> None:
        self.selected_index = max(0, min(index, len(self.items) - 1))
        if self.selected_index < self.scroll_offset:
            self.scroll_offset = self.selected_index
        elif self.selected_index >= self.scroll_offset + self.height:
            self.scroll_offset = self.selected_index - self.height + 1
        self.scroll_offset = max(0, min(self.scroll_offset, len(self.items) - self.height))

    def render(self, x: int, y: int, width: int) -> list[str]:
        """Render visible rows; the last column shows ↑/↓ when rows are hidden."""
        if not self.items:
            return [self.term.move_xy(x, y) + self.theme.dim(self.empty_text[:width])]

        lines: list[str] = []
        visible = self.items[self.scroll_offset : self.scroll_offset + self.height]
        more_above = self.scroll_offset > 0
        more_below = self.scroll_offset + self.height < len(self.items)

        for i, item in enumerate(visible):
            text = " " + self.theme.fit(self.format_func(item), width - 2)
            if self.scroll_offset + i == self.selected_index:
                text = self.theme.selected(text)
            if i == 0 and more_above:
                indicator = self.theme.dim("↑")
            elif i == len(visible) - 1 and more_below:
                indicator = self.theme.dim("↓")
            else:
                indicator = " "
            lines.append(self.term.move_xy(x, y + i) + text + indicator)

        for i in range(len(visible), self.height):
            lines.append(self.term.move_xy(x, y + i) + " " * width)
        return lines

    def handle_key(self, key: str) -> bool:
        """Handle navigation keys. Returns True if handled."""
        if key in _MOVES:
            self.move_to(self.selected_index + _MOVES[key])
        elif key == "KEY_PGUP":
            self.move_to(self.selected_index - self.height)
        elif key == "KEY_PGDOWN":
            self.move_to(self.selected_index + self.height)
        elif key == "KEY_HOME":
            self.move_to(0)
        elif key == "KEY_END":
            self.move_to(len(self.items) - 1)
        else:
            return False
        return True
