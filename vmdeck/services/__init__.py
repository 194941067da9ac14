"""Services for vmdeck."""

from vmdeck.services.events import EventLog, start_event_loop
from vmdeck.services.libvirt_service import LibvirtService
from vmdeck.services.remote import RdpLauncher, open_console
from vmdeck.services.scripts import run_script

__all__ = [
    "EventLog",
    "LibvirtService",
    "RdpLauncher",
    "open_console",
    "run_script",
    "start_event_loop",
]
