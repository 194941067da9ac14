"""Data models for vmdeck."""

from vmdeck.models.event import VMEvent
from vmdeck.models.host import Datastore, Host
from vmdeck.models.snapshot import Snapshot, SnapshotForest, SnapshotNode
from vmdeck.models.vm import VM, GuestAddress, PowerFilter, VMFilter, VMState, VMStats

__all__ = [
    "VM",
    "VMState",
    "VMStats",
    "VMFilter",
    "PowerFilter",
    "GuestAddress",
    "Host",
    "Datastore",
    "Snapshot",
    "SnapshotNode",
    "SnapshotForest",
    "VMEvent",
]
