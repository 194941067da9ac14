"""VM event model."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class VMEvent:
    """Lifecycle event recorded for a VM."""

    timestamp: datetime
    vm_uuid: str
    vm_name: str
    server: str
    event: str
    detail: str = ""

    @property
    def time_display(self) -> str:
        return self.timestamp.strftime("%Y-%m-%d %H:%M:%S")
