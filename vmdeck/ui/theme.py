"""Theme and styling for the TUI."""

from blessed import Terminal

from vmdeck.config import STATE_COLORS, STYLES
from vmdeck.models import VM, VMState

# tl, tr, bl, br, horizontal, vertical, left tee, right tee
BOX = "┌┐└┘─│├┤"

LEVELS = ("error", "success", "warning", "info")


class Theme:
    """Maps text roles and VM states to terminal styles."""

    def __init__(self, term: Terminal, styles: dict[str, str] | None = None) -> None:
        self.term = term
        self.styles = {**STYLES, **(styles or {})}

    def _paint(self, attr: str, text: str) -> str:
        # blessed resolves compound names like bold_red_on_black lazily
        paint = getattr(self.term, attr, None)
        return str(paint(text)) if callable(paint) else text

    def style(self, role: str, text: str) -> str:
        return self._paint(self.styles.get(role, "normal"), text)

    def level(self, text: str, level: str) -> str:
        """Style a status message by level; unknown levels stay plain."""
        return self.style(level, text) if level in LEVELS else text

    def state(self, state: VMState) -> str:
        return self._paint(STATE_COLORS.get(state.name, "white"), state.display_name)

    def power_dot(self, vm: VM) -> str:
        """One-cell power indicator for list rows."""
        if vm.is_running:
            return self._paint(STATE_COLORS["RUNNING"], "●")
        if vm.is_paused:
            return self._paint(STATE_COLORS["PAUSED"], "●")
        return self.dim("○")

    def flag(self, value: bool, yes: str = "yes", no: str = "no") -> str:
        return self.style("success", yes) if value else self.dim(no)

    def header(self, text: str) -> str:
        return self.style("header", text)

    def title(self, text: str) -> str:
        return self.style("title", text)

    def selected(self, text: str) -> str:
        return self.style("selected", text)

    def dim(self, text: str) -> str:
        try:
            return str(self.term.bright_black(text))
        except (TypeError, AttributeError):
            return text

    def key_hint(self, key: str, action: str) -> str:
        """``[k]action`` with the key highlighted."""
        return self.style("key", f"[{key}]") + action

    def frame(self, width: int, top: bool) -> str:
        """Top or bottom border of a ``width`` wide box."""
        left, right = (BOX[0], BOX[1]) if top else (BOX[2], BOX[3])
        return left + BOX[4] * (width - 2) + right

    def rule(self, width: int) -> str:
        """Separator row joining both sides of a box."""
        return BOX[6] + BOX[4] * (width - 2) + BOX[7]

    def side(self) -> str:
        return BOX[5]

    def fit(self, text: str, width: int) -> str:
        """Truncate text containing ANSI codes to a visible width and pad it."""
        if width <= 0:
            return ""
        if self.term.length(text) > width:
            text = self.term.truncate(text, width)
        return text + " " * (width - self.term.length(text))
