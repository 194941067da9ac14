"""VM actions and the dispatcher that runs them.

Every action is a plain function ``(session, service, vm, params)`` returning
an :class:`ActionResult`; nothing here knows about the terminal UI. The VM is
looked up again by UUID on every dispatch so actions never run against a
stale list row.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from vmdeck.config import BACKUP_SUFFIX, CLONE_POLL_INTERVAL, CLONE_TIMEOUT, MIN_MEMORY_MB
from vmdeck.exceptions import NotConnectedError, OperationError, ValidationError, VMDeckError
from vmdeck.models import VM, VMState
from vmdeck.services import LibvirtService, open_console, run_script
from vmdeck.session import Session

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.+-]*$")


class Action(Enum):
    """Every operation that can be dispatched against a VM."""

    START = "start"
    SHUTDOWN = "shutdown"
    REBOOT = "reboot"
    RESET = "reset"
    POWER_OFF = "power_off"
    SUSPEND = "suspend"
    RESUME = "resume"
    SNAPSHOT_CREATE = "snapshot_create"
    SNAPSHOT_REVERT = "snapshot_revert"
    SNAPSHOT_DELETE = "snapshot_delete"
    CONSOLE = "console"
    RDP = "rdp"
    RECONFIGURE = "reconfigure"
    MOUNT_ISO = "mount_iso"
    EJECT_ISO = "eject_iso"
    RUN_SCRIPT = "run_script"
    SCREENSHOT = "screenshot"
    CLONE = "clone"
    GUEST_INFO = "guest_info"
    EVENTS = "events"

    @classmethod
    def parse(cls, name: str) -> "Action":
        """Parse ``power-off``, ``power_off`` or ``POWER_OFF``."""
        key = name.strip().lower().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown action '{name}'") from None


@dataclass
class ActionResult:
    """Outcome of an action, ready to show to the user."""

    ok: bool
    message: str
    level: str = "info"  # success, info, warning, error
    data: Any = None

    @classmethod
    def success(cls, message: str, data: Any = None) -> "ActionResult":
        return cls(True, message, "success", data)

    @classmethod
    def failure(cls, message: str, level: str = "error", data: Any = None) -> "ActionResult":
        return cls(False, message, level, data)

    @property
    def retry(self) -> bool:
        return isinstance(self.data, dict) and bool(self.data.get("retry"))


Params = dict[str, str]
Handler = Callable[[Session, LibvirtService, VM, Params], ActionResult]


def _flag(params: Params, key: str, default: bool = False) -> bool:
    value = params.get(key)
    if value is None or value == "":
        return default
    if value.lower() in ("1", "true", "yes", "on"):
        return True
    if value.lower() in ("0", "false", "no", "off"):
        return False
    raise ValidationError(f"'{key}' must be true or false, got '{value}'", field=key)


def _required(params: Params, key: str) -> str:
    value = params.get(key, "").strip()
    if not value:
        raise ValidationError(f"'{key}' is required", field=key)
    return value


def _int_param(params: Params, key: str, low: int, high: int) -> int | None:
    value = params.get(key, "").strip()
    if not value:
        return None
    try:
        number = int(value)
    except ValueError:
        raise ValidationError(f"'{key}' must be a number, got '{value}'", field=key) from None
    if not low <= number <= high:
        raise ValidationError(f"'{key}' must be between {low} and {high}", field=key)
    return number


def _valid_name(name: str, field: str = "name") -> str:
    if not NAME_PATTERN.match(name):
        raise ValidationError(
            f"Invalid name '{name}': use letters, digits, '.', '_', '+' or '-'",
            field=field,
        )
    return name


def _require_state(vm: VM, allowed: tuple[VMState, ...], verb: str) -> None:
    if vm.state not in allowed:
        raise ValidationError(
            f"Cannot {verb} '{vm.name}' while it is {vm.state.display_name}",
            field="vm",
        )


def _primary_address(service: LibvirtService, vm: VM) -> str | None:
    for addr in service.guest_addresses(vm.uuid):
        if addr.is_ipv4 and not addr.address.startswith("127."):
            return addr.address
    return None


# Power

def _start(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    _require_state(vm, (VMState.SHUTOFF, VMState.CRASHED, VMState.NOSTATE), "start")
    service.start(vm.uuid)
    return ActionResult.success(f"Powered on {vm.name}")


def _shutdown(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    _require_state(vm, (VMState.RUNNING, VMState.BLOCKED), "shut down")
    service.shutdown(vm.uuid)
    return ActionResult.success(f"Shutdown requested for {vm.name}")


def _reboot(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    _require_state(vm, (VMState.RUNNING, VMState.BLOCKED), "restart")
    service.reboot(vm.uuid)
    return ActionResult.success(f"Restart requested for {vm.name}")


def _reset(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    _require_state(vm, (VMState.RUNNING, VMState.BLOCKED, VMState.PAUSED), "reset")
    service.reset(vm.uuid)
    return ActionResult.success(f"Reset {vm.name}")


def _power_off(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    _require_state(
        vm,
        (VMState.RUNNING, VMState.BLOCKED, VMState.PAUSED, VMState.SHUTDOWN, VMState.PMSUSPENDED),
        "power off",
    )
    service.power_off(vm.uuid)
    return ActionResult.success(f"Powered off {vm.name}")


def _suspend(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    _require_state(vm, (VMState.RUNNING, VMState.BLOCKED), "suspend")
    service.suspend(vm.uuid)
    return ActionResult.success(f"Suspended {vm.name}")


def _resume(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    _require_state(vm, (VMState.PAUSED,), "resume")
    service.resume(vm.uuid)
    return ActionResult.success(f"Resumed {vm.name}")


# Snapshots

def _snapshot_create(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    name = _valid_name(_required(params, "name"))
    snapshot = service.create_snapshot(vm.uuid, name, params.get("description", ""))
    return ActionResult.success(f"Created snapshot '{name}' of {vm.name}", snapshot)


def _snapshot_node(service: LibvirtService, vm: VM, params: Params) -> str:
    snapshot_id = _required(params, "snapshot")
    node = service.snapshot_forest(vm.uuid).find(snapshot_id)
    if node is None or node.snapshot is None:
        raise ValidationError(f"'{vm.name}' has no snapshot '{snapshot_id}'", field="snapshot")
    return snapshot_id


def _snapshot_revert(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    snapshot_id = _snapshot_node(service, vm, params)
    service.revert_snapshot(vm.uuid, snapshot_id)
    return ActionResult.success(f"Reverted {vm.name} to '{snapshot_id}'")


def _snapshot_delete(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    snapshot_id = _snapshot_node(service, vm, params)
    children = _flag(params, "children")
    service.delete_snapshot(vm.uuid, snapshot_id, children=children)
    suffix = " and its children" if children else ""
    return ActionResult.success(f"Deleted snapshot '{snapshot_id}'{suffix} of {vm.name}")


# Remote access

def _console(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    cmd = open_console(vm)
    return ActionResult.success(f"Opened console for {vm.name} ({cmd[0]})", cmd)


def _rdp(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    _require_state(vm, (VMState.RUNNING, VMState.BLOCKED), "connect to")
    address = params.get("address") or _primary_address(service, vm)
    if not address:
        raise ValidationError(
            f"No IP address reported for '{vm.name}'; is the guest agent running?",
            field="address",
        )
    cmd = session.rdp.launch(vm, address, edit=_flag(params, "edit"))
    return ActionResult.success(f"Started RDP session to {vm.name} at {address}", cmd)


# Configuration and media

def _reconfigure(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    vcpus = _int_param(params, "vcpus", 1, session.options.max_vcpus)
    memory_mb = _int_param(params, "memory_mb", MIN_MEMORY_MB, session.options.max_memory_mb)
    if vcpus is None and memory_mb is None:
        raise ValidationError("Nothing to change: give vcpus and/or memory_mb")

    changes: list[str] = []
    if vcpus is not None and vcpus != vm.vcpus:
        service.set_vcpus(vm.uuid, vcpus)
        changes.append(f"{vcpus} vCPUs")
    if memory_mb is not None and memory_mb != vm.memory_mb:
        service.set_memory(vm.uuid, memory_mb)
        changes.append(f"{memory_mb} MB")

    if not changes:
        return ActionResult(True, f"No changes for {vm.name}", "info")
    message = f"Set {vm.name} to {', '.join(changes)}"
    if vm.is_running:
        message += " (applies at next boot)"
    return ActionResult.success(message)


def _mount_iso(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    path = _required(params, "path")
    service.attach_iso(vm.uuid, path)
    return ActionResult.success(f"Mounted {path} on {vm.name}")


def _eject_iso(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    if vm.iso_path is None:
        return ActionResult(True, f"No ISO mounted on {vm.name}", "info")
    service.eject_iso(vm.uuid)
    return ActionResult.success(f"Ejected {vm.iso_path.name} from {vm.name}")


def _run_script(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    script = _required(params, "script")
    arguments = params.get("args", "")
    address = _primary_address(service, vm) if vm.is_running else None
    returncode, output = run_script(script, arguments, vm, address, session.options.script_dir)
    data = {"returncode": returncode, "output": output}
    try:
        session.remember_script(script, arguments)
    except OperationError as e:
        logger.warning("%s", e)
        if returncode == 0:
            return ActionResult(True, f"Script finished for {vm.name}; {e}", "warning", data)
    if returncode != 0:
        return ActionResult.failure(f"Script exited with {returncode}", data=data)
    return ActionResult.success(f"Script finished for {vm.name}", data)


def _screenshot(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    path = service.screenshot(vm.uuid, session.options.screenshot_dir)
    return ActionResult.success(f"Saved {path}", path)


# Clone

def _resolve_datastore(session: Session, ref: str) -> str:
    if ref in session.datastores:
        return ref
    matches = [uuid for uuid, name in session.datastores.items() if name == ref]
    if len(matches) == 1:
        return matches[0]
    session.refresh_datastores()
    matches = [uuid for uuid, name in session.datastores.items() if ref in (uuid, name)]
    if len(matches) != 1:
        raise ValidationError(f"Unknown datastore '{ref}'", field="datastore")
    return matches[0]


def _clone(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    new_name = _valid_name(params.get("name") or f"{vm.name}{BACKUP_SUFFIX}-{stamp}")
    linked = _flag(params, "linked", default=True)
    datastore = params.get("datastore")
    datastore_uuid = _resolve_datastore(session, datastore) if datastore else None
    uri = service.uri
    credential = session.credential

    def do_clone() -> str:
        # libvirt connections are not shared across threads
        worker = session.service_factory(uri, credential)
        worker.connect()
        try:
            return worker.clone_vm(vm.uuid, new_name, linked, datastore_uuid)
        finally:
            worker.disconnect()

    kind = "linked" if linked else "full"
    task = session.tasks.submit(do_clone, f"Clone {vm.name} to {new_name}")
    if _flag(params, "wait"):
        new_uuid = session.tasks.wait(task, CLONE_POLL_INTERVAL, CLONE_TIMEOUT)
        return ActionResult.success(f"Created {kind} clone {new_name} of {vm.name}", new_uuid)
    target = f" on {session.datastore_name(datastore_uuid)}" if datastore_uuid else ""
    return ActionResult(True, f"Started {kind} clone of {vm.name} to {new_name}{target}", "info", task)


# Information

def _guest_info(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    addresses = service.guest_addresses(vm.uuid)
    if not addresses:
        return ActionResult(True, f"No guest addresses reported for {vm.name}", "info", [])
    summary = ", ".join(f"{a.interface} {a.address}/{a.prefix}" for a in addresses)
    return ActionResult.success(summary, addresses)


def _events(session: Session, service: LibvirtService, vm: VM, params: Params) -> ActionResult:
    events = session.events.for_vm(vm.uuid)
    return ActionResult(True, f"{len(events)} events for {vm.name}", "info", events)


HANDLERS: dict[Action, Handler] = {
    Action.START: _start,
    Action.SHUTDOWN: _shutdown,
    Action.REBOOT: _reboot,
    Action.RESET: _reset,
    Action.POWER_OFF: _power_off,
    Action.SUSPEND: _suspend,
    Action.RESUME: _resume,
    Action.SNAPSHOT_CREATE: _snapshot_create,
    Action.SNAPSHOT_REVERT: _snapshot_revert,
    Action.SNAPSHOT_DELETE: _snapshot_delete,
    Action.CONSOLE: _console,
    Action.RDP: _rdp,
    Action.RECONFIGURE: _reconfigure,
    Action.MOUNT_ISO: _mount_iso,
    Action.EJECT_ISO: _eject_iso,
    Action.RUN_SCRIPT: _run_script,
    Action.SCREENSHOT: _screenshot,
    Action.CLONE: _clone,
    Action.GUEST_INFO: _guest_info,
    Action.EVENTS: _events,
}

_unhandled = set(Action) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"Actions without handler: {sorted(a.name for a in _unhandled)}")


def dispatch(
    session: Session,
    action: Action,
    vm_id: str | None,
    params: Params | None = None,
) -> ActionResult:
    """Run ``action`` against the VM with UUID ``vm_id``.

    A lost connection is re-established once and reported back so the
    caller can retry; nothing is retried automatically.
    """
    params = dict(params or {})
    try:
        if not vm_id:
            raise ValidationError("No VM selected", field="vm")
        service = session.service_for(vm_id)
        vm = service.get_vm(vm_id, include_stats=session.options.perf)
        logger.debug("Dispatching %s on %s (%s)", action.value, vm.name, vm_id)
        return HANDLERS[action](session, service, vm, params)
    except NotConnectedError as e:
        return _reconnect(session, e)
    except ValidationError as e:
        logger.info("%s rejected: %s", action.value, e)
        return ActionResult.failure(str(e), "warning")
    except VMDeckError as e:
        logger.error("%s failed: %s", action.value, e)
        return ActionResult.failure(str(e))


def _reconnect(session: Session, error: NotConnectedError) -> ActionResult:
    uri = error.uri
    if uri not in session.services:
        return ActionResult.failure(str(error))
    if not session.recover(error):
        return ActionResult.failure(f"Lost connection to {uri} and could not reconnect")
    return ActionResult.failure(
        f"Connection to {uri} was re-established; please retry",
        "warning",
        {"retry": True},
    )
