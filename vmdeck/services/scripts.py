"""Run local scripts against a VM."""

import logging
import os
import shlex
import subprocess
from pathlib import Path

from vmdeck.exceptions import OperationError, ValidationError
from vmdeck.models import VM

logger = logging.getLogger(__name__)

SCRIPT_TIMEOUT = 600


def resolve_script(path: str, script_dir: Path | None = None) -> Path:
    """Resolve a script path, relative names against ``script_dir``."""
    if not path.strip():
        raise ValidationError("No script given", field="script")
    script = Path(path).expanduser()
    if not script.is_absolute() and script_dir is not None and not script.exists():
        script = script_dir / script
    if not script.is_file():
        raise ValidationError(f"Script not found: {script}", field="script")
    if not os.access(script, os.X_OK):
        raise ValidationError(f"Script is not executable: {script}", field="script")
    return script


def run_script(
    path: str,
    arguments: str,
    vm: VM,
    address: str | None = None,
    script_dir: Path | None = None,
) -> tuple[int, str]:
    """Run a script with the VM described in its environment.

    Returns the exit code and the combined stdout/stderr.
    """
    script = resolve_script(path, script_dir)
    try:
        argv = [str(script), *shlex.split(arguments)]
    except ValueError as e:
        raise ValidationError(f"Cannot parse arguments: {e}", field="arguments") from e

    env = dict(os.environ)
    env.update({
        "VMDECK_VM_NAME": vm.name,
        "VMDECK_VM_UUID": vm.uuid,
        "VMDECK_SERVER": vm.server,
        "VMDECK_VM_IP": address or "",
    })

    logger.info("Running %s for %s", shlex.join(argv), vm.name)
    try:
        result = subprocess.run(
            argv,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=SCRIPT_TIMEOUT,
        )
    except subprocess.TimeoutExpired as e:
        raise OperationError("Run script", f"timed out after {SCRIPT_TIMEOUT}s", cause=e) from e
    except OSError as e:
        raise OperationError("Run script", str(e), cause=e) from e

    logger.info("%s exited with %d", script.name, result.returncode)
    return result.returncode, result.stdout
