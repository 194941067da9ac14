"""VM model and related types."""

import fnmatch
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class VMState(Enum):
    """Virtual machine state, values match libvirt's virDomainState."""

    NOSTATE = 0
    RUNNING = 1
    BLOCKED = 2
    PAUSED = 3
    SHUTDOWN = 4
    SHUTOFF = 5
    CRASHED = 6
    PMSUSPENDED = 7

    @property
    def display_name(self) -> str:
        return _STATE_LABELS.get(self, self.name.lower())


_STATE_LABELS = {
    VMState.NOSTATE: "no state",
    VMState.SHUTDOWN: "shutting down",
    VMState.SHUTOFF: "shut off",
    VMState.PMSUSPENDED: "suspended",
}


class PowerFilter(Enum):
    """Power-state filter for the VM list."""

    ALL = "all"
    RUNNING = "running"
    STOPPED = "stopped"
    PAUSED = "paused"

    def matches(self, state: VMState) -> bool:
        if self is PowerFilter.ALL:
            return True
        return state in _POWER_GROUPS[self]


_POWER_GROUPS: dict[PowerFilter, frozenset[VMState]] = {
    PowerFilter.RUNNING: frozenset({VMState.RUNNING, VMState.BLOCKED}),
    PowerFilter.PAUSED: frozenset({VMState.PAUSED, VMState.PMSUSPENDED}),
    PowerFilter.STOPPED: frozenset({VMState.SHUTOFF, VMState.CRASHED, VMState.SHUTDOWN, VMState.NOSTATE}),
}


@dataclass
class VMFilter:
    """Display filter: power state plus a shell-style name pattern."""

    power: PowerFilter = PowerFilter.ALL
    name_pattern: str = ""

    def matches(self, vm: "VM") -> bool:
        if not self.power.matches(vm.state):
            return False
        if self.name_pattern:
            return fnmatch.fnmatch(vm.name.lower(), self.name_pattern.lower())
        return True


@dataclass
class VMStats:
    """Runtime statistics for a VM."""

    cpu_time_ns: int = 0
    memory_used_kb: int = 0
    memory_percent: float = 0.0
    disk_read_bytes: int = 0
    disk_write_bytes: int = 0
    net_rx_bytes: int = 0
    net_tx_bytes: int = 0


@dataclass
class GuestAddress:
    """One address reported for a guest interface."""

    interface: str
    mac_address: str
    address: str
    prefix: int = 0

    @property
    def is_ipv4(self) -> bool:
        return ":" not in self.address


@dataclass
class VM:
    """Virtual machine row as shown in the list."""

    uuid: str
    name: str
    server: str
    state: VMState
    vcpus: int
    memory_mb: int
    autostart: bool = False
    persistent: bool = True
    disks: list[Path] = field(default_factory=list)
    iso_path: Path | None = None
    graphics_type: str = "none"  # spice, vnc, none
    graphics_port: int | None = None
    snapshot_count: int = 0
    current_snapshot: str | None = None
    stats: VMStats | None = None
    addresses: list[GuestAddress] = field(default_factory=list)

    @property
    def is_running(self) -> bool:
        return self.state == VMState.RUNNING

    @property
    def is_paused(self) -> bool:
        return PowerFilter.PAUSED.matches(self.state)

    @property
    def can_start(self) -> bool:
        """Off or crashed; a paused VM is resumed instead."""
        return self.state in (VMState.SHUTOFF, VMState.CRASHED)

    @property
    def can_stop(self) -> bool:
        return self.state in (VMState.RUNNING, VMState.PAUSED, VMState.BLOCKED)

    @property
    def memory_display(self) -> str:
        """Memory in the list column: whole MiB below 1 GiB, one decimal above."""
        if self.memory_mb < 1024:
            return f"{self.memory_mb}M"
        return f"{self.memory_mb / 1024:.1f}G"

    @property
    def primary_ipv4(self) -> str | None:
        for addr in self.addresses:
            if addr.is_ipv4 and not addr.address.startswith("127."):
                return addr.address
        return None
