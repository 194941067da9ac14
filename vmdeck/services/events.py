"""Lifecycle event collection."""

import logging
import threading
from collections import deque
from datetime import datetime

import libvirt

from vmdeck.config import EVENT_LOG_SIZE
from vmdeck.models import VMEvent

logger = logging.getLogger(__name__)

_loop_lock = threading.Lock()
_loop_thread: threading.Thread | None = None


def start_event_loop() -> None:
    """Register libvirt's default event loop and run it on a daemon thread.

    Must run before any connection is opened for callbacks to be delivered.
    Calling it again is a no-op.
    """
    global _loop_thread
    with _loop_lock:
        if _loop_thread is not None:
            return
        libvirt.virEventRegisterDefaultImpl()

        def run() -> None:
            while True:
                if libvirt.virEventRunDefaultImpl() < 0:
                    logger.error("libvirt event loop iteration failed")

        _loop_thread = threading.Thread(target=run, name="libvirt-events", daemon=True)
        _loop_thread.start()
        logger.debug("Started libvirt event loop")


class EventLog:
    """Bounded, thread-safe record of VM lifecycle events."""

    def __init__(self, maxlen: int = EVENT_LOG_SIZE) -> None:
        self._events: deque[VMEvent] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def record(self, vm_uuid: str, vm_name: str, server: str, event: str, detail: object = "") -> None:
        """Callback for ``LibvirtService.register_lifecycle_events``."""
        entry = VMEvent(
            timestamp=datetime.now(),
            vm_uuid=vm_uuid,
            vm_name=vm_name,
            server=server,
            event=event,
            detail=str(detail),
        )
        with self._lock:
            self._events.append(entry)
        logger.info("Event: %s %s on %s", vm_name, event, server)

    def for_vm(self, vm_uuid: str) -> list[VMEvent]:
        """Events of one VM, newest first."""
        with self._lock:
            events = [e for e in self._events if e.vm_uuid == vm_uuid]
        return list(reversed(events))

    def recent(self, limit: int | None = None) -> list[VMEvent]:
        with self._lock:
            events = list(reversed(self._events))
        return events[:limit] if limit is not None else events

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
