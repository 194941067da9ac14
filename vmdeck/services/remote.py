"""Remote console and remote desktop launchers."""

import logging
import os
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path

from vmdeck.config import RDP_PORT
from vmdeck.exceptions import OperationError, ValidationError
from vmdeck.models import VM

logger = logging.getLogger(__name__)


def console_command(vm: VM) -> tuple[list[str], bool]:
    """Pick the console client for a VM.

    Returns the command and whether it needs the terminal (serial console).
    """
    graphical = vm.graphics_type in ("spice", "vnc")
    has_display = bool(os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"))
    if graphical and has_display and shutil.which("virt-viewer"):
        return ["virt-viewer", "--connect", vm.server, "--uuid", vm.uuid], False
    return ["virsh", "-c", vm.server, "console", vm.uuid], True


def open_console(vm: VM) -> list[str]:
    """Open a console on the VM and return the command used.

    Graphical viewers are detached; the serial console runs in the
    foreground until the user leaves it with Ctrl+].
    """
    if not vm.is_running:
        raise ValidationError(f"VM '{vm.name}' is not running", field="vm")

    cmd, interactive = console_command(vm)
    logger.info("Opening console for %s: %s", vm.name, " ".join(cmd))
    try:
        if interactive:
            subprocess.run(cmd, check=False)
        else:
            subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
    except FileNotFoundError as e:
        raise OperationError("Console", f"{cmd[0]} not found; install virt-viewer or libvirt-clients", cause=e) from e
    return cmd


class RdpLauncher:
    """Writes short-lived .rdp profiles and starts the RDP client.

    Two profiles are kept per VM: one with the address and username, and one
    carrying only the extra settings so it can be opened in the client's
    editor. Both live in a private temp directory removed by ``cleanup``.
    """

    def __init__(self, options: list[str], username: str | None = None) -> None:
        self.options = list(options)
        self.username = username
        self._directory: Path | None = None

    @property
    def directory(self) -> Path:
        if self._directory is None:
            self._directory = Path(tempfile.mkdtemp(prefix="vmdeck-rdp-"))
        return self._directory

    def write_profiles(self, vm: VM, address: str, port: int = RDP_PORT) -> tuple[Path, Path]:
        """Write the connection and settings profiles for a VM."""
        if not address:
            raise ValidationError(f"No IP address known for '{vm.name}'", field="address")

        connection = [f"full address:s:{address}:{port}"]
        if self.username:
            connection.append(f"username:s:{self.username}")
        connection.extend(self.options)

        stem = vm.name.replace(os.sep, "_")
        profile = self.directory / f"{stem}.rdp"
        settings = self.directory / f"{stem}-settings.rdp"
        for path, lines in ((profile, connection), (settings, self.options)):
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8", newline="\r\n") as f:
                f.write("\n".join(lines) + "\n")
        return profile, settings

    def client_command(self, profile: Path, edit: bool = False) -> list[str]:
        if sys.platform == "win32":
            return ["mstsc", "/edit", str(profile)] if edit else ["mstsc", str(profile)]
        if edit:
            raise ValidationError("Editing RDP profiles is only supported with mstsc")
        client = shutil.which("xfreerdp3") or shutil.which("xfreerdp") or "xfreerdp"
        return [client, str(profile)]

    def launch(self, vm: VM, address: str, edit: bool = False) -> list[str]:
        """Start the RDP client detached and return the command used."""
        profile, settings = self.write_profiles(vm, address)
        cmd = self.client_command(settings if edit else profile, edit=edit)
        logger.info("Starting RDP client for %s at %s", vm.name, address)
        try:
            subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise OperationError("RDP", f"{cmd[0]} not found; install FreeRDP", cause=e) from e
        return cmd

    def cleanup(self) -> None:
        """Delete the profile directory."""
        if self._directory is None:
            return
        shutil.rmtree(self._directory, ignore_errors=True)
        logger.debug("Removed RDP profiles in %s", self._directory)
        self._directory = None
