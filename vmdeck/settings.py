"""Persisted user settings."""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

from vmdeck.config import DEFAULT_RDP_OPTIONS, HISTORY_SIZE, SETTINGS_FILE
from vmdeck.utils.files import atomic_write_json

logger = logging.getLogger(__name__)


def push_history(history: list[str], value: str, limit: int = HISTORY_SIZE) -> list[str]:
    """Move ``value`` to the front of ``history``, dropping duplicates and overflow."""
    value = value.strip()
    if not value:
        return history
    items = [value] + [item for item in history if item != value]
    del items[limit:]
    history[:] = items
    return history


@dataclass
class Settings:
    """Last-used servers, RDP extras and the script drop-down histories."""

    servers: list[str] = field(default_factory=list)
    rdp_options: list[str] = field(default_factory=lambda: list(DEFAULT_RDP_OPTIONS))
    script_history: list[str] = field(default_factory=list)
    argument_history: list[str] = field(default_factory=list)
    path: Path = field(default=SETTINGS_FILE, repr=False, compare=False)

    @classmethod
    def load(cls, path: Path = SETTINGS_FILE) -> "Settings":
        """Load settings, falling back to defaults when missing or corrupt."""
        settings = cls(path=path)
        if not path.exists():
            return settings
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable settings file %s: %s", path, e)
            return settings
        if not isinstance(data, dict):
            logger.warning("Ignoring settings file %s: not a JSON object", path)
            return settings

        for name in ("servers", "rdp_options", "script_history", "argument_history"):
            value = data.get(name)
            if isinstance(value, list):
                setattr(settings, name, [str(v) for v in value])
        del settings.script_history[HISTORY_SIZE:]
        del settings.argument_history[HISTORY_SIZE:]
        return settings

    def save(self) -> None:
        data = asdict(self)
        data.pop("path")
        atomic_write_json(self.path, data)
        logger.debug("Saved settings to %s", self.path)

    def remember_servers(self, servers: list[str]) -> None:
        self.servers = list(dict.fromkeys(servers))

    def remember_script(self, script: str, arguments: str = "") -> None:
        push_history(self.script_history, script)
        push_history(self.argument_history, arguments)
