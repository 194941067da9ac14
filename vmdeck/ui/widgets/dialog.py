"""Modal dialogs.

Every dialog draws a titled box centered on the screen and then reads keys
until ``on_key`` returns something other than ``CONTINUE``; that value is
what ``show`` returns.
"""

from collections.abc import Callable

from blessed import Terminal
from blessed.keyboard import Keystroke

from vmdeck.ui.theme import Theme
from vmdeck.ui.widgets.list_view import ListView

CONTINUE = object()


class Dialog:
    """Base dialog: box, layout and key loop."""

    cursor_mode = "hidden_cursor"

    def __init__(self, term: Terminal, theme: Theme, title: str) -> None:
        self.term = term
        self.theme = theme
        self.title = title

    def size(self) -> tuple[int, int]:
        raise NotImplementedError

    def draw(self, x: int, y: int, width: int, height: int) -> None:
        """Paint the body; (x, y) is the first row under the title rule."""
        raise NotImplementedError

    def on_key(self, key: Keystroke) -> object:
        raise NotImplementedError

    def show(self):
        width, height = self.size()
        x, y = self.center_position(width, height)
        with self.term.cbreak(), getattr(self.term, self.cursor_mode)():
            while True:
                self._print_box(x, y, width, height)
                self.draw(x + 2, y + 3, width - 4, height)
                print("", end="", flush=True)
                result = self.on_key(self.term.inkey())
                if result is not CONTINUE:
                    return result

    def _print_box(self, x: int, y: int, width: int, height: int) -> None:
        theme = self.theme
        inner = width - 2
        rows = [
            theme.frame(width, top=True),
            theme.side() + theme.title(f" {self.title} "[:inner].center(inner)) + theme.side(),
            theme.rule(width),
        ]
        rows += [theme.side() + " " * inner + theme.side()] * (height - 4)
        rows.append(theme.frame(width, top=False))
        print("".join(self.term.move_xy(x, y + i) + row for i, row in enumerate(rows)), end="")

    def _footer(self, x: int, y: int, width: int, height: int, text: str, centered: bool = False) -> None:
        """Write ``text`` on the last inner row of the box."""
        text = text[:width].center(width) if centered else text[:width]
        print(self.term.move_xy(x, y + height - 5) + text, end="")

    def center_position(self, width: int, height: int) -> tuple[int, int]:
        return max(0, (self.term.width - width) // 2), max(0, (self.term.height - height) // 2)

    def fitted_width(self, *content: int, minimum: int = 40) -> int:
        """Wide enough for the title and the longest content, within the screen."""
        widest = max([minimum, len(self.title) + 6, *(n + 6 for n in content)])
        return min(widest, max(20, self.term.width - 4))


class MessageDialog(Dialog):
    """Shows text until a key is pressed; long text scrolls with ↑/↓."""

    def __init__(
        self,
        term: Terminal,
        theme: Theme,
        title: str,
        message: str,
        message_type: str = "info",
    ) -> None:
        super().__init__(term, theme, title)
        self.lines = message.splitlines() or [""]
        self.message_type = message_type
        self.visible = min(len(self.lines), max(1, term.height - 8))
        self.offset = 0

    @property
    def scrollable(self) -> bool:
        return len(self.lines) > self.visible

    def size(self) -> tuple[int, int]:
        return self.fitted_width(max(len(line) for line in self.lines)), self.visible + 6

    def draw(self, x: int, y: int, width: int, height: int) -> None:
        single = len(self.lines) == 1
        for i, line in enumerate(self.lines[self.offset: self.offset + self.visible]):
            text = self.theme.fit(line.center(width) if single else line, width)
            print(self.term.move_xy(x, y + i) + self.theme.level(text, self.message_type), end="")
        hint = "↑↓ scroll, any other key closes" if self.scrollable else "Press any key to continue"
        self._footer(x, y, width, height, self.theme.dim(hint.center(width)))

    def on_key(self, key: Keystroke) -> object:
        if not self.scrollable:
            return None
        step = {"KEY_UP": -1, "KEY_DOWN": 1, "KEY_PGUP": -self.visible, "KEY_PGDOWN": self.visible}
        delta = step.get(key.name) or {"k": -1, "j": 1}.get(str(key))
        if delta is None:
            return None
        self.offset = max(0, min(len(self.lines) - self.visible, self.offset + delta))
        return CONTINUE


class ConfirmDialog(Dialog):
    """Yes/No question; Esc counts as no."""

    def __init__(self, term: Terminal, theme: Theme, title: str, message: str) -> None:
        super().__init__(term, theme, title)
        self.lines = message.split("\n")

    def size(self) -> tuple[int, int]:
        return self.fitted_width(max(len(line) for line in self.lines)), len(self.lines) + 6

    def draw(self, x: int, y: int, width: int, height: int) -> None:
        for i, line in enumerate(self.lines):
            print(self.term.move_xy(x, y + i) + line[:width].center(width), end="")
        self._footer(x, y, width, height, self.theme.level("[y]es  [n]o".center(width), "info"))

    def on_key(self, key: Keystroke) -> object:
        answer = str(key).lower()
        if answer == "y":
            return True
        if answer == "n" or key.name == "KEY_ESCAPE":
            return False
        return CONTINUE


class LineEditor:
    """Single-line text buffer with a cursor."""

    _MOTIONS: dict[str, Callable[["LineEditor"], int]] = {
        "KEY_LEFT": lambda e: e.cursor - 1,
        "KEY_RIGHT": lambda e: e.cursor + 1,
        "KEY_HOME": lambda e: 0,
        "KEY_END": lambda e: len(e.text),
    }

    def __init__(self, text: str = "") -> None:
        self.set(text)

    def set(self, text: str) -> None:
        self.text = text
        self.cursor = len(text)

    def handle(self, key: Keystroke) -> bool:
        """Apply an editing key. Returns True if the text changed."""
        before = self.text
        if key.name in self._MOTIONS:
            self.cursor = max(0, min(len(self.text), self._MOTIONS[key.name](self)))
        elif key.name == "KEY_BACKSPACE" and self.cursor > 0:
            self.text = self.text[: self.cursor - 1] + self.text[self.cursor:]
            self.cursor -= 1
        elif key.name == "KEY_DELETE":
            self.text = self.text[: self.cursor] + self.text[self.cursor + 1:]
        elif not key.is_sequence and len(key) == 1 and key.isprintable():
            self.text = self.text[: self.cursor] + str(key) + self.text[self.cursor:]
            self.cursor += 1
        return self.text != before

    def window(self, width: int) -> tuple[str, int]:
        """Visible slice of ``width`` columns and the cursor column inside it."""
        start = max(0, self.cursor - width + 1)
        return self.text[start: start + width], self.cursor - start


class InputDialog(Dialog):
    """Text input; ↑/↓ walk through ``history`` when given."""

    cursor_mode = "normal_cursor"

    def __init__(
        self,
        term: Terminal,
        theme: Theme,
        title: str,
        prompt: str,
        default: str = "",
        validator: Callable[[str], str | None] | None = None,
        history: list[str] | None = None,
    ) -> None:
        super().__init__(term, theme, title)
        self.prompt = prompt
        self.validator = validator
        self.history = history or []
        self.history_index = -1
        self.editor = LineEditor(default)
        self.error_message = ""

    @property
    def value(self) -> str:
        return self.editor.text

    def size(self) -> tuple[int, int]:
        return self.fitted_width(len(self.prompt) + 4, minimum=60), 8

    def draw(self, x: int, y: int, width: int, height: int) -> None:
        print(self.term.move_xy(x, y) + self.prompt[:width], end="")
        visible, column = self.editor.window(width)
        print(self.term.move_xy(x, y + 1) + self.term.reverse(visible.ljust(width)), end="")
        if self.error_message:
            footer = self.theme.level(self.error_message[:width], "error")
        else:
            footer = self.theme.dim("Enter confirm, Esc cancel" + (", ↑↓ history" if self.history else ""))
        self._footer(x, y, width, height, footer)
        print(self.term.move_xy(x + column, y + 1), end="")

    def _recall(self, step: int) -> None:
        self.history_index = max(-1, min(len(self.history) - 1, self.history_index + step))
        self.editor.set(self.history[self.history_index] if self.history_index >= 0 else "")
        self.error_message = ""

    def on_key(self, key: Keystroke) -> object:
        if key.name == "KEY_ESCAPE":
            return None
        if key.name == "KEY_ENTER":
            self.error_message = (self.validator(self.value) if self.validator else None) or ""
            return CONTINUE if self.error_message else self.value
        if key.name in ("KEY_UP", "KEY_DOWN") and self.history:
            self._recall(1 if key.name == "KEY_UP" else -1)
        elif self.editor.handle(key):
            self.error_message = ""
        return CONTINUE


class SelectDialog(Dialog):
    """Pick one of ``(value, label)`` options; returns the value or None."""

    def __init__(
        self,
        term: Terminal,
        theme: Theme,
        title: str,
        options: list[tuple[str, str]],
        selected_index: int = 0,
    ) -> None:
        super().__init__(term, theme, title)
        self.options = options
        self.list = ListView(term, theme, format_func=lambda option: option[1])
        self.list.set_items(options)
        self.list.move_to(selected_index)

    def size(self) -> tuple[int, int]:
        longest = max((len(label) for _, label in self.options), default=10)
        height = min(len(self.options) + 6, max(7, self.term.height - 2))
        self.list.height = height - 6
        self.list.move_to(self.list.selected_index)
        return self.fitted_width(longest + 2), height

    def draw(self, x: int, y: int, width: int, height: int) -> None:
        print("".join(self.list.render(x, y, width)), end="")
        self._footer(x, y, width, height, self.theme.dim("↑↓ select, Enter confirm, Esc cancel"))

    def on_key(self, key: Keystroke) -> object:
        if key.name == "KEY_ESCAPE":
            return None
        if key.name == "KEY_ENTER":
            option = self.list.selected_item
            return option[0] if option else None
        self.list.handle_key(key.name or str(key))
        return CONTINUE
