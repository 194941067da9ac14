"""
Tests for dialog key handling and the line editor.
"""

from unittest.mock import MagicMock

import pytest
from blessed.keyboard import Keystroke

from vmdeck.ui.widgets.dialog import (
    CONTINUE,
    ConfirmDialog,
    InputDialog,
    LineEditor,
    MessageDialog,
    SelectDialog,
)


def key(name):
    """A named special key such as KEY_LEFT."""
    return Keystroke("\x1b[?", code=1, name=name)


def typed(dialog, text):
    for ch in text:
        dialog.on_key(Keystroke(ch))


@pytest.fixture
def term():
    t = MagicMock()
    t.width = 100
    t.height = 40
    return t


@pytest.fixture
def theme():
    return MagicMock()


class TestLineEditor:
    """Editing a single line."""

    def test_insert_in_middle(self):
        editor = LineEditor("web")
        editor.handle(key("KEY_HOME"))
        assert editor.handle(Keystroke("x"))
        assert (editor.text, editor.cursor) == ("xweb", 1)

    def test_backspace_and_delete(self):
        editor = LineEditor("abc")
        assert editor.handle(key("KEY_BACKSPACE"))
        assert editor.text == "ab"
        assert not editor.handle(key("KEY_DELETE"))
        editor.handle(key("KEY_HOME"))
        assert editor.handle(key("KEY_DELETE"))
        assert editor.text == "b"

    def test_motion_clamped(self):
        editor = LineEditor("ab")
        editor.handle(key("KEY_RIGHT"))
        assert editor.cursor == 2
        for _ in range(3):
            editor.handle(key("KEY_LEFT"))
        assert editor.cursor == 0

    def test_window_follows_cursor(self):
        editor = LineEditor("0123456789")
        assert editor.window(4) == ("789", 3)
        editor.handle(key("KEY_HOME"))
        assert editor.window(4) == ("0123", 0)


class TestInputDialog:
    """Value entry, validation and history."""

    def test_enter_returns_value(self, term, theme):
        dialog = InputDialog(term, theme, "Clone", "Name:", default="web")
        typed(dialog, "01")
        assert dialog.on_key(key("KEY_ENTER")) == "web01"

    def test_escape_cancels(self, term, theme):
        assert InputDialog(term, theme, "t", "p").on_key(key("KEY_ESCAPE")) is None

    def test_validator_blocks_until_fixed(self, term, theme):
        dialog = InputDialog(term, theme, "t", "vCPUs:", validator=lambda v: None if v.isdigit() else "digits")
        assert dialog.on_key(key("KEY_ENTER")) is CONTINUE
        assert dialog.error_message == "digits"
        typed(dialog, "4")
        assert dialog.error_message == ""
        assert dialog.on_key(key("KEY_ENTER")) == "4"

    def test_history(self, term, theme):
        dialog = InputDialog(term, theme, "t", "Script:", history=["new.sh", "old.sh"])
        dialog.on_key(key("KEY_UP"))
        dialog.on_key(key("KEY_UP"))
        dialog.on_key(key("KEY_UP"))
        assert dialog.value == "old.sh"
        dialog.on_key(key("KEY_DOWN"))
        dialog.on_key(key("KEY_DOWN"))
        assert dialog.value == ""


class TestChoiceDialogs:
    """Confirm, select and message dialogs."""

    def test_confirm(self, term, theme):
        dialog = ConfirmDialog(term, theme, "Reset", "Reset web01?")
        assert dialog.on_key(Keystroke("Y")) is True
        assert dialog.on_key(Keystroke("n")) is False
        assert dialog.on_key(key("KEY_ESCAPE")) is False
        assert dialog.on_key(Keystroke("x")) is CONTINUE

    def test_select_moves_and_returns_value(self, term, theme):
        dialog = SelectDialog(term, theme, "Clone type", [("true", "Linked"), ("false", "Full")])
        assert dialog.on_key(key("KEY_DOWN")) is CONTINUE
        assert dialog.on_key(key("KEY_ENTER")) == "false"

    def test_select_initial_index_and_cancel(self, term, theme):
        dialog = SelectDialog(term, theme, "Datastore", [("", "Same"), ("p1", "fast")], selected_index=1)
        assert dialog.on_key(Keystroke("k")) is CONTINUE
        assert dialog.on_key(key("KEY_ENTER")) == ""
        assert dialog.on_key(key("KEY_ESCAPE")) is None

    def test_select_empty(self, term, theme):
        assert SelectDialog(term, theme, "Datastore", []).on_key(key("KEY_ENTER")) is None

    def test_message_closes_on_any_key(self, term, theme):
        assert MessageDialog(term, theme, "Done", "Clone finished").on_key(Keystroke("j")) is None

    def test_message_scrolls_long_text(self, term, theme):
        term.height = 10
        dialog = MessageDialog(term, theme, "Events", "\n".join(f"line {i}" for i in range(10)))
        assert dialog.visible == 2
        assert dialog.on_key(key("KEY_PGDOWN")) is CONTINUE
        assert dialog.on_key(Keystroke("j")) is CONTINUE
        assert dialog.offset == 3
        for _ in range(20):
            dialog.on_key(key("KEY_DOWN"))
        assert dialog.offset == 8
        assert dialog.on_key(Keystroke("q")) is None
