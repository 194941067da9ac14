"""Configuration and constants for vmdeck."""

import os
from pathlib import Path


def _xdg_dir(env: str, fallback: str) -> Path:
    value = os.environ.get(env)
    if value:
        return Path(value) / "vmdeck"
    return Path.home() / fallback / "vmdeck"


# Paths
CONFIG_DIR: Path = _xdg_dir("XDG_CONFIG_HOME", ".config")
STATE_DIR: Path = _xdg_dir("XDG_STATE_HOME", ".local/state")
SETTINGS_FILE: Path = CONFIG_DIR / "settings.json"
CREDENTIALS_DIR: Path = CONFIG_DIR / "credentials"
LOG_FILE: Path = STATE_DIR / "vmdeck.log"
SCREENSHOT_DIR: Path = Path.home() / "Pictures" / "vmdeck"
SCRIPT_DIR: Path = CONFIG_DIR / "scripts"

# libvirt connection URI used when nothing else is configured
DEFAULT_URI: str = "qemu:///system"

# Reconfiguration policy
MAX_VCPUS: int = 16
MAX_MEMORY_MB: int = 65536
MIN_MEMORY_MB: int = 128

# Persisted history
HISTORY_SIZE: int = 20

# Clone
CLONE_POLL_INTERVAL: float = 1.0
CLONE_TIMEOUT: float = 3600.0
BACKUP_SUFFIX: str = "-backup"

# Events kept in memory
EVENT_LOG_SIZE: int = 500
RECENT_EVENTS: int = 100

# Remote desktop
RDP_PORT: int = 3389
DEFAULT_RDP_OPTIONS: list[str] = [
    "screen mode id:i:2",
    "session bpp:i:32",
    "prompt for credentials:i:1",
    "authentication level:i:2",
]

# UI settings
REFRESH_INTERVAL_MS: int = 5000
DEFAULT_DOUBLE_CLICK: str = "console"

# VMState name -> terminal color
STATE_COLORS: dict[str, str] = {
    "RUNNING": "green",
    "BLOCKED": "magenta",
    "PAUSED": "yellow",
    "SHUTDOWN": "yellow",
    "SHUTOFF": "red",
    "CRASHED": "bold_red",
    "PMSUSPENDED": "cyan",
    "NOSTATE": "white",
}

# Text role -> blessed formatting attribute
STYLES: dict[str, str] = {
    "header": "bold_cyan",
    "banner": "black_on_cyan",
    "title": "bold",
    "selected": "black_on_white",
    "key": "bold_yellow",
    "error": "bold_red",
    "success": "bold_green",
    "warning": "bold_yellow",
    "info": "cyan",
}

# Key bindings: key -> action name
KEYBINDINGS: dict[str, str] = {
    "s": "start",
    "t": "shutdown",
    "b": "reboot",
    "R": "reset",
    "o": "power_off",
    "z": "suspend",
    "u": "resume",
    "p": "snapshots",
    "c": "console",
    "w": "rdp",
    "e": "reconfigure",
    "i": "mount_iso",
    "I": "eject_iso",
    "x": "run_script",
    "g": "screenshot",
    "l": "clone",
    "n": "guest_info",
    "v": "events",
    "V": "all_events",
    "H": "hosts",
    "D": "datastores",
    "f": "filter",
    "/": "search",
    "r": "refresh",
    "?": "help",
    "q": "quit",
}
