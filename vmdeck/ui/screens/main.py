"""Main screen with VM list and details pane."""

from blessed import Terminal

from vmdeck.config import KEYBINDINGS
from vmdeck.exceptions import NotConnectedError, VMDeckError
from vmdeck.models import VM, GuestAddress, PowerFilter
from vmdeck.session import Session
from vmdeck.ui.theme import Theme
from vmdeck.ui.widgets.list_view import ListView
from vmdeck.utils import format_bytes, format_percent

# Actions that only make sense with a VM selected
VM_ACTIONS = {
    "start", "shutdown", "reboot", "reset", "power_off", "suspend", "resume",
    "snapshots", "console", "rdp", "reconfigure", "mount_iso", "eject_iso",
    "run_script", "screenshot", "clone", "guest_info", "events",
}


class MainScreen:
    """Main application screen with split-pane layout."""

    def __init__(self, term: Terminal, theme: Theme, session: Session) -> None:
        self.term = term
        self.theme = theme
        self.session = session
        self.vms: list[VM] = []
        self.vm_list: ListView[VM] = ListView(
            term=term,
            theme=theme,
            format_func=self._format_vm_list_item,
            key_func=lambda vm: vm.uuid,
            height=20,  # Will be updated on first render
            empty_text="No VMs match the current filter",
        )
        self.status_message = ""
        self.search_query = session.vm_filter.name_pattern
        self.search_mode = False
        self.guest_addresses: dict[str, list[GuestAddress]] = {}

    @property
    def selected_vm(self) -> VM | None:
        return self.vm_list.selected_item

    def refresh_vms(self) -> bool:
        """Reload the VM list from every server, keeping the selection."""
        self.session.vm_filter.name_pattern = self._pattern()
        try:
            self.vms = self.session.list_vms()
        except NotConnectedError as e:
            self.report_disconnect(e)
            return False
        except VMDeckError as e:
            self.set_status(f"Error: {e}", "error")
            return False
        for vm in self.vms:
            self._attach_addresses(vm)
        self.vm_list.set_items(self.vms)
        return True

    def report_disconnect(self, error: NotConnectedError) -> None:
        """Reconnect once and tell the user whether a retry can work."""
        if self.session.recover(error):
            self.set_status(f"Reconnected to {error.uri}; press r to retry", "warning")
        else:
            self.set_status(f"Lost connection to {error.uri}", "error")

    def replace_vm(self, vm: VM) -> None:
        """Swap in a freshly fetched row for the same VM."""
        self._attach_addresses(vm)
        for i, existing in enumerate(self.vms):
            if existing.uuid == vm.uuid:
                self.vms[i] = vm
        self.vm_list.set_items(self.vms)

    def remember_addresses(self, uuid: str, addresses: list[GuestAddress]) -> None:
        """Keep the guest addresses last reported for a VM until it stops."""
        self.guest_addresses[uuid] = list(addresses)
        for vm in self.vms:
            if vm.uuid == uuid:
                vm.addresses = list(addresses)

    def _attach_addresses(self, vm: VM) -> None:
        if not vm.is_running:
            self.guest_addresses.pop(vm.uuid, None)
        elif not vm.addresses:
            vm.addresses = list(self.guest_addresses.get(vm.uuid, []))

    def _pattern(self) -> str:
        query = self.search_query.strip()
        if query and not any(c in query for c in "*?["):
            return f"*{query}*"
        return query

    def cycle_power_filter(self) -> PowerFilter:
        filters = list(PowerFilter)
        current = self.session.vm_filter.power
        self.session.vm_filter.power = filters[(filters.index(current) + 1) % len(filters)]
        self.refresh_vms()
        return self.session.vm_filter.power

    def _format_vm_list_item(self, vm: VM) -> str:
        """Format a VM for the list view."""
        indicator = self.theme.power_dot(vm)
        name = vm.name[:20].ljust(20)
        state = vm.state.display_name[:13].rjust(13)
        memory = vm.memory_display.rjust(6)
        return f"{indicator} {name} {state} {memory}"

    def render(self) -> None:
        """Render the entire screen."""
        print(self.term.home + self.term.clear, end="")

        list_width = min(47, self.term.width // 2)
        details_width = self.term.width - list_width - 1
        content_height = self.term.height - 4

        self._draw_header()
        self._draw_box(0, 3, list_width, content_height, "VMs", self._list_lines)
        vm = self.selected_vm
        self._draw_box(
            list_width + 1, 3, details_width, content_height,
            vm.name if vm else "No VM Selected",
            self._details_lines,
        )
        self._draw_status()
        print("", end="", flush=True)

    def _draw_header(self) -> None:
        title = " vmdeck "
        states = self.session.connection_states()
        servers = ", ".join(
            uri if up else f"{uri} (down)" for uri, up in states.items()
        ) or "not connected"
        vm_filter = self.session.vm_filter
        summary = f" {len(self.vms)} VMs [{vm_filter.power.value}] {servers} "
        summary = summary[: max(0, self.term.width - len(title) - 1)]
        padding = max(0, self.term.width - len(title) - len(summary))
        print(
            self.term.move_xy(0, 0)
            + self.theme.style("banner", title)
            + self.theme.header("─" * padding)
            + self.theme.style("banner", summary),
            end="",
        )
        self._draw_hints()
        print(self.term.move_xy(0, 2) + self.theme.dim("─" * self.term.width), end="")

    def _draw_box(self, x: int, y: int, width: int, height: int, title: str, body) -> None:
        """Draw a titled box and fill it with ``body(x, y, width, height)``."""
        inner = width - 2
        side = self.theme.header(self.theme.side())
        rows = [
            self.theme.header(self.theme.frame(width, top=True)),
            side + self.theme.title(title[: inner - 2].center(inner)) + side,
            self.theme.header(self.theme.rule(width)),
        ]
        for i, row in enumerate(rows):
            print(self.term.move_xy(x, y + i) + row, end="")
        body_height = height - 4
        for i in range(body_height):
            print(self.term.move_xy(x, y + 3 + i) + side, end="")
            print(self.term.move_xy(x + width - 1, y + 3 + i) + side, end="")
        body(x + 1, y + 3, inner, body_height)
        print(self.term.move_xy(x, y + height - 1) + self.theme.header(self.theme.frame(width, top=False)), end="")

    def _list_lines(self, x: int, y: int, width: int, height: int) -> None:
        self.vm_list.height = height
        for line in self.vm_list.render(x, y, width):
            print(line, end="")

    def _details_lines(self, x: int, y: int, width: int, height: int) -> None:
        vm = self.selected_vm
        details = self.vm_details(vm) if vm else [self.theme.dim("Select a VM to view details")]
        for i, line in enumerate(details[:height]):
            print(self.term.move_xy(x, y + i) + " " + self.theme.fit(line, width - 2), end="")

    def vm_details(self, vm: VM) -> list[str]:
        """Label/value lines for the details pane."""
        fields: list[tuple[str, str]] = [
            ("Name", vm.name),
            ("UUID", vm.uuid),
            ("Server", vm.server),
            ("State", self.theme.state(vm.state)),
            ("", ""),
            ("vCPUs", str(vm.vcpus)),
            ("Memory", f"{vm.memory_mb} MB"),
        ]
        if vm.stats is not None:
            fields.append(("Mem used", format_percent(vm.stats.memory_percent)))
            fields.append(("Disk I/O", f"{format_bytes(vm.stats.disk_read_bytes)} read, "
                                       f"{format_bytes(vm.stats.disk_write_bytes)} written"))
            fields.append(("Network", f"{format_bytes(vm.stats.net_rx_bytes)} in, "
                                      f"{format_bytes(vm.stats.net_tx_bytes)} out"))
        fields.append(("", ""))
        for i, disk in enumerate(vm.disks):
            fields.append(("Disks" if i == 0 else "", disk.name))
        fields.append(("ISO", vm.iso_path.name if vm.iso_path else self.theme.dim("none")))
        graphics = vm.graphics_type
        if vm.graphics_port:
            graphics += f" :{vm.graphics_port}"
        fields.append(("Display", graphics))
        if vm.primary_ipv4:
            fields.append(("Address", vm.primary_ipv4))
        fields.append(("", ""))
        snapshots = str(vm.snapshot_count)
        if vm.current_snapshot:
            snapshots += f" (current: {vm.current_snapshot})"
        fields.append(("Snapshots", snapshots))
        fields.append(("Autostart", self.theme.flag(vm.autostart)))
        if not vm.persistent:
            fields.append(("Persistent", self.theme.level("no (transient)", "warning")))

        label_width = max(len(label) for label, _ in fields) + 1
        lines: list[str] = []
        for label, value in fields:
            if not label and not value:
                lines.append("")
                continue
            prefix = f"{label}:" if label else ""
            lines.append(f"{prefix.ljust(label_width)} {value}")
        return lines

    def _draw_hints(self) -> None:
        vm = self.selected_vm
        keys: list[str] = []
        if vm:
            if vm.can_start:
                keys.append(self.theme.key_hint("s", "tart"))
            if vm.is_running:
                keys.append("shu" + self.theme.key_hint("t", "down"))
                keys.append(self.theme.key_hint("c", "onsole"))
                keys.append(self.theme.key_hint("w", "rdp"))
            if vm.is_paused:
                keys.append(self.theme.key_hint("u", "resume"))
            keys.append("sna" + self.theme.key_hint("p", "shots"))
            keys.append(self.theme.key_hint("e", "dit"))
            keys.append("c" + self.theme.key_hint("l", "one"))
        keys.append(self.theme.key_hint("f", "ilter"))
        keys.append(self.theme.key_hint("/", "search"))
        keys.append(self.theme.key_hint("?", "help"))
        keys.append(self.theme.key_hint("q", "uit"))
        hints = "  ".join(keys)

        if self.search_mode:
            indicator = self.theme.level(f"[Search: {self.search_query}█] ", "warning")
            hints = indicator + hints
        print(self.term.move_xy(0, 1) + self.theme.fit(hints, self.term.width), end="")

    def _draw_status(self) -> None:
        status_y = self.term.height - 1
        print(self.term.move_xy(0, status_y) + self.theme.fit(self.status_message, self.term.width), end="")

    def set_status(self, message: str, message_type: str = "info") -> None:
        """Set status message."""
        self.status_message = message if message_type == "info" else self.theme.level(message, message_type)

    def handle_key(self, key: str) -> str | None:
        """Handle key input. Returns action name or None."""
        if self.search_mode:
            if key == "KEY_ESCAPE":
                self.search_mode = False
                self.search_query = ""
                self.refresh_vms()
            elif key == "KEY_ENTER":
                self.search_mode = False
            elif key == "KEY_BACKSPACE":
                self.search_query = self.search_query[:-1]
                self.refresh_vms()
            elif len(key) == 1 and key.isprintable():
                self.search_query += key
                self.refresh_vms()
            return None

        if self.vm_list.handle_key(key):
            return None

        if key == "/":
            self.search_mode = True
            self.search_query = ""
            return None
        if key == "KEY_ENTER":
            return "double_click" if self.selected_vm else None

        action = KEYBINDINGS.get(key)
        if action in VM_ACTIONS and self.selected_vm is None:
            return None
        return action
