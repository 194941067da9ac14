"""Host and datastore models."""

from dataclasses import dataclass


@dataclass
class Host:
    """One connected virtualization server."""

    uri: str
    hostname: str
    cpu_model: str
    cpus: int
    memory_mb: int
    hypervisor_version: str = ""
    vm_count: int = 0
    connected: bool = True


@dataclass
class Datastore:
    """Storage pool known to a server."""

    uuid: str
    name: str
    server: str
    active: bool
    capacity_bytes: int = 0
    allocation_bytes: int = 0
    available_bytes: int = 0

    @property
    def percent_used(self) -> float:
        """Percentage of capacity allocated."""
        if self.capacity_bytes == 0:
            return 0.0
        return (self.allocation_bytes / self.capacity_bytes) * 100
