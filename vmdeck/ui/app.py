"""Main application class."""

import logging
import signal
import time
from collections.abc import Callable
from typing import Any, TypeVar

from blessed import Terminal
from blessed.keyboard import Keystroke

from vmdeck.actions import Action, ActionResult, dispatch
from vmdeck.config import KEYBINDINGS, RECENT_EVENTS, REFRESH_INTERVAL_MS
from vmdeck.exceptions import NotConnectedError, VMDeckError
from vmdeck.models import VM
from vmdeck.session import Session
from vmdeck.tasks import BackgroundTask
from vmdeck.ui.screens.main import MainScreen
from vmdeck.ui.theme import Theme
from vmdeck.ui.widgets.dialog import ConfirmDialog, InputDialog, MessageDialog, SelectDialog
from vmdeck.ui.widgets.snapshot_dialog import SnapshotDialog
from vmdeck.utils import format_bytes, format_percent, format_table

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Actions that ask before running
CONFIRM = {
    Action.RESET: "Hard reset '{name}'? Unsaved guest data is lost.",
    Action.POWER_OFF: "Power off '{name}' without shutting down the guest?",
    Action.REBOOT: "Restart the guest OS of '{name}'?",
    Action.SHUTDOWN: "Shut down the guest OS of '{name}'?",
}

# Actions whose result data is shown in a dialog
DETAIL_ACTIONS = {Action.GUEST_INFO, Action.EVENTS, Action.RUN_SCRIPT}


class App:
    """Full-screen VM console."""

    def __init__(self, session: Session) -> None:
        self.term = Terminal()
        self.theme = Theme(self.term)
        self.session = session
        self.main_screen: MainScreen | None = None
        self.running = False

    def run(self) -> int:
        """Run the application. Returns exit code."""
        def handle_signal(signum: int, frame: Any) -> None:
            self.running = False

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

        self.main_screen = MainScreen(self.term, self.theme, self.session)
        self.main_screen.refresh_vms()
        self.running = True
        try:
            return self._main_loop()
        except KeyboardInterrupt:
            return 0
        finally:
            self.running = False

    def _main_loop(self) -> int:
        """Main application loop."""
        assert self.main_screen is not None

        with self.term.fullscreen(), self.term.cbreak(), self.term.hidden_cursor():
            needs_redraw = True
            last_size = (self.term.width, self.term.height)
            last_refresh = time.monotonic()

            while self.running:
                size = (self.term.width, self.term.height)
                if size != last_size:
                    last_size = size
                    needs_redraw = True

                if self.session.tasks.poll():
                    self.main_screen.refresh_vms()
                    needs_redraw = True

                if (time.monotonic() - last_refresh) * 1000 >= REFRESH_INTERVAL_MS:
                    self.main_screen.refresh_vms()
                    last_refresh = time.monotonic()
                    needs_redraw = True

                if needs_redraw:
                    self.main_screen.render()
                    needs_redraw = False

                key: Keystroke = self.term.inkey(timeout=0.5)
                if key:
                    action = self.main_screen.handle_key(
                        str(key) if len(key) == 1 else key.name or ""
                    )
                    self._handle_action(action)
                    needs_redraw = True

        return 0

    def _handle_action(self, action: str | None) -> None:
        """Handle action from main screen."""
        assert self.main_screen is not None

        if action is None:
            return
        if action == "quit":
            if self.session.tasks.pending and not ConfirmDialog(
                self.term, self.theme, "Quit",
                f"{self.session.tasks.pending} task(s) still running. Quit anyway?",
            ).show():
                return
            self.running = False
        elif action == "refresh":
            if self.main_screen.refresh_vms() and self._guarded(self.session.refresh_datastores) is not None:
                self.main_screen.set_status("Refreshed", "success")
        elif action == "filter":
            power = self.main_screen.cycle_power_filter()
            self.main_screen.set_status(f"Showing {power.value} VMs")
        elif action == "help":
            self._show_help()
        elif action == "hosts":
            self._show_hosts()
        elif action == "datastores":
            self._show_datastores()
        elif action == "all_events":
            self._show_recent_events()
        elif action == "snapshots":
            self._manage_snapshots()
        elif action == "double_click":
            self._run_action(Action.parse(self.session.options.double_click))
        else:
            try:
                parsed = Action.parse(action)
            except ValueError:
                logger.warning("Unbound action '%s'", action)
                return
            self._run_action(parsed)

    def _run_action(self, action: Action) -> None:
        assert self.main_screen is not None
        vm = self.main_screen.selected_vm
        if vm is None:
            self.main_screen.set_status("No VM selected", "warning")
            return

        if action in CONFIRM:
            message = CONFIRM[action].format(name=vm.name)
            if not ConfirmDialog(self.term, self.theme, action.value.replace("_", " ").title(), message).show():
                return

        params = self._collect_params(action, vm)
        if params is None:
            return

        if action is Action.CONSOLE:
            result = self._outside_fullscreen(lambda: dispatch(self.session, action, vm.uuid, params))
        else:
            result = dispatch(self.session, action, vm.uuid, params)
        self._show_result(action, result)

        if result.ok and isinstance(result.data, BackgroundTask):
            self._watch_task(result.data)
        if action is Action.GUEST_INFO and result.ok:
            self.main_screen.remember_addresses(vm.uuid, result.data)
        self._refresh_row(vm.uuid)

    def _collect_params(self, action: Action, vm: VM) -> dict[str, str] | None:
        """Ask for the parameters an action needs. None means cancelled."""
        settings = self.session.settings
        options = self.session.options

        if action is Action.RECONFIGURE:
            vcpus = InputDialog(
                self.term, self.theme, "Reconfigure", f"vCPUs (1-{options.max_vcpus}):",
                default=str(vm.vcpus), validator=_digits,
            ).show()
            if vcpus is None:
                return None
            memory = InputDialog(
                self.term, self.theme, "Reconfigure", f"Memory in MB (max {options.max_memory_mb}):",
                default=str(vm.memory_mb), validator=_digits,
            ).show()
            if memory is None:
                return None
            return {"vcpus": vcpus, "memory_mb": memory}

        if action is Action.MOUNT_ISO:
            path = InputDialog(
                self.term, self.theme, "Mount ISO", "ISO path on the server:",
                default=str(vm.iso_path or ""),
                validator=lambda v: "Path required" if not v.strip() else None,
            ).show()
            return {"path": path.strip()} if path else None

        if action is Action.RUN_SCRIPT:
            script = InputDialog(
                self.term, self.theme, "Run Script", "Script:",
                default=settings.script_history[0] if settings.script_history else "",
                history=settings.script_history,
            ).show()
            if not script:
                return None
            args = InputDialog(
                self.term, self.theme, "Run Script", "Arguments:",
                default=settings.argument_history[0] if settings.argument_history else "",
                history=settings.argument_history,
            ).show()
            if args is None:
                return None
            return {"script": script, "args": args}

        if action is Action.CLONE:
            return self._clone_params(vm)

        return {}

    def _clone_params(self, vm: VM) -> dict[str, str] | None:
        stamp = time.strftime("%Y%m%d-%H%M%S")
        name = InputDialog(
            self.term, self.theme, "Clone", "Name of the clone:",
            default=f"{vm.name}-backup-{stamp}",
            validator=lambda v: "Name required" if not v.strip() else None,
        ).show()
        if not name:
            return None
        kind = SelectDialog(
            self.term, self.theme, "Clone type",
            [("true", "Linked clone (overlay on a base snapshot)"), ("false", "Full clone (copy all disks)")],
        ).show()
        if kind is None:
            return None
        if not self.session.datastores:
            self._guarded(self.session.refresh_datastores)
        choices = [("", "Same datastore as source")]
        choices.extend((uuid, ds_name) for uuid, ds_name in sorted(
            self.session.datastores.items(), key=lambda item: item[1]
        ))
        datastore = SelectDialog(self.term, self.theme, "Datastore", choices).show()
        if datastore is None:
            return None
        return {"name": name.strip(), "linked": kind, "datastore": datastore}

    def _show_result(self, action: Action, result: ActionResult) -> None:
        assert self.main_screen is not None
        if action in DETAIL_ACTIONS and result.data:
            MessageDialog(
                self.term, self.theme, result.message, "\n".join(_detail_lines(action, result.data)),
            ).show()
            self.main_screen.set_status(result.message, result.level)
        elif result.level == "error":
            MessageDialog(self.term, self.theme, "Error", result.message, "error").show()
            self.main_screen.set_status(result.message, "error")
        else:
            self.main_screen.set_status(result.message, result.level)

    def _watch_task(self, task: BackgroundTask) -> None:
        assert self.main_screen is not None
        screen = self.main_screen

        def on_success(new_uuid: str) -> None:
            screen.set_status(f"{task.description}: done", "success")
            logger.info("%s finished (%s)", task.description, new_uuid)

        def on_error(error: Exception) -> None:
            screen.set_status(f"{task.description}: {error}", "error")

        task.on_success = on_success
        task.on_error = on_error

    def _guarded(self, func: Callable[[], T]) -> T | None:
        """Run a session call; failures go to the status bar and give None."""
        assert self.main_screen is not None
        try:
            return func()
        except NotConnectedError as e:
            self.main_screen.report_disconnect(e)
        except VMDeckError as e:
            self.main_screen.set_status(f"Error: {e}", "error")
        return None

    def _refresh_row(self, uuid: str) -> None:
        assert self.main_screen is not None
        try:
            self.main_screen.replace_vm(self.session.find_vm(uuid))
        except VMDeckError as e:
            logger.debug("Could not refresh %s: %s", uuid, e)
            self.main_screen.refresh_vms()

    def _outside_fullscreen(self, func):
        """Run ``func`` with the terminal handed back to the user."""
        print(self.term.exit_fullscreen + self.term.normal_cursor, end="", flush=True)
        try:
            return func()
        finally:
            print(self.term.enter_fullscreen + self.term.hide_cursor, end="", flush=True)

    def _manage_snapshots(self) -> None:
        """Open the snapshot tree of the selected VM."""
        assert self.main_screen is not None
        vm = self.main_screen.selected_vm
        if not vm:
            return

        service = self._guarded(lambda: self.session.service_for(vm.uuid))
        if service is None:
            return

        dialog = SnapshotDialog(
            self.term,
            self.theme,
            vm,
            load_forest=lambda: service.snapshot_forest(vm.uuid),
            run=lambda action, params: dispatch(self.session, action, vm.uuid, params),
        )
        try:
            changed = dialog.show()
        except NotConnectedError as e:
            self.main_screen.report_disconnect(e)
            return
        except VMDeckError as e:
            MessageDialog(self.term, self.theme, "Snapshots", str(e), "error").show()
            return
        if changed:
            self._refresh_row(vm.uuid)

    def _show_hosts(self) -> None:
        hosts = self._guarded(self.session.list_hosts)
        if hosts is None:
            return
        rows = [
            [h.hostname, h.cpus, format_bytes(h.memory_mb * 1024 * 1024), h.vm_count, h.hypervisor_version, h.uri]
            for h in hosts
        ]
        table = format_table(["HOST", "CPUS", "MEMORY", "VMS", "LIBVIRT", "URI"], rows)
        MessageDialog(self.term, self.theme, "Hosts", "\n".join(table)).show()

    def _show_datastores(self) -> None:
        datastores = self._guarded(self.session.refresh_datastores)
        if datastores is None:
            return
        rows = [
            [d.name, "active" if d.active else "inactive", format_bytes(d.capacity_bytes),
             format_bytes(d.available_bytes), format_percent(d.percent_used), d.server]
            for d in datastores
        ]
        table = format_table(["NAME", "STATE", "CAPACITY", "FREE", "USED", "SERVER"], rows)
        MessageDialog(self.term, self.theme, "Datastores", "\n".join(table)).show()

    def _show_recent_events(self) -> None:
        assert self.main_screen is not None
        events = self.session.events.recent(RECENT_EVENTS)
        if not events:
            self.main_screen.set_status("No lifecycle events received yet")
            return
        rows = [[e.time_display, e.vm_name, e.event, e.detail, e.server] for e in events]
        table = format_table(["TIME", "VM", "EVENT", "DETAIL", "SERVER"], rows)
        MessageDialog(self.term, self.theme, f"Recent events ({len(events)})", "\n".join(table)).show()

    def _show_help(self) -> None:
        lines = ["Navigation: j/k or arrows, PgUp/PgDn, Enter runs the default action", ""]
        for key, action in KEYBINDINGS.items():
            lines.append(f"  {key:<3} {action.replace('_', ' ')}")
        lines.append("")
        lines.append(f"Enter: {self.session.options.double_click.replace('_', ' ')}")
        MessageDialog(self.term, self.theme, "Help", "\n".join(lines)).show()


def _digits(value: str) -> str | None:
    return None if value.strip().isdigit() else "Enter a whole number"


def _detail_lines(action: Action, data: Any) -> list[str]:
    if action is Action.RUN_SCRIPT:
        output = data.get("output", "") if isinstance(data, dict) else ""
        return output.splitlines() or ["(no output)"]
    if action is Action.EVENTS:
        return [f"{e.time_display}  {e.event:<12} {e.detail}" for e in data]
    return [f"{a.interface:<10} {a.mac_address:<18} {a.address}/{a.prefix}" for a in data]
