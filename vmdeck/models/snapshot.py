"""Snapshot records and the snapshot forest."""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    """VM snapshot record as reported by the server."""

    id: str
    name: str
    created_at: datetime
    parent_id: str | None = None
    description: str = ""
    state: str = "unknown"  # power state at capture: "running", "shutoff", ...


@dataclass
class SnapshotNode:
    """Node in the snapshot forest.

    ``snapshot`` is None only for the synthetic "current position" marker.
    """

    snapshot: Snapshot | None
    children: list["SnapshotNode"] = field(default_factory=list)
    is_current_marker: bool = False

    @property
    def id(self) -> str | None:
        return self.snapshot.id if self.snapshot else None

    @property
    def label(self) -> str:
        if self.snapshot is None:
            return "You are here"
        return self.snapshot.name


class SnapshotForest:
    """Parent/child hierarchy rebuilt from a flat list of snapshot records."""

    def __init__(self) -> None:
        self.roots: list[SnapshotNode] = []
        self.current: SnapshotNode | None = None
        self._index: dict[str, SnapshotNode] = {}
        self._marker_owner: SnapshotNode | None = None

    @classmethod
    def build(
        cls,
        records: Iterable[Snapshot],
        current_id: str | None = None,
    ) -> "SnapshotForest":
        """Build the forest and attach the current-position marker.

        Records whose parent is not part of the set become unattached roots,
        and so does one member of every parent cycle. The marker goes under the snapshot matching ``current_id``; when
        there is no such snapshot it is not attached at all.
        """
        forest = cls()
        records = list(records)

        for record in records:
            forest._index[record.id] = SnapshotNode(snapshot=record)

        for record in records:
            node = forest._index[record.id]
            if record.parent_id is None:
                forest.roots.append(node)
                continue
            parent = forest._index.get(record.parent_id)
            if parent is None:
                logger.warning(
                    "Snapshot '%s' references missing parent '%s'; treating it as a root",
                    record.id,
                    record.parent_id,
                )
                forest.roots.append(node)
                continue
            parent.children.append(node)

        forest._break_cycles(records)
        forest._attach_current(current_id)
        return forest

    def _break_cycles(self, records: list[Snapshot]) -> None:
        reachable = {node.id for _, node in self.walk()}
        for record in records:
            if record.id in reachable:
                continue
            # follow parents until one repeats; that one is on the cycle
            seen: set[str] = set()
            cycle_id = record.id
            while cycle_id not in seen:
                seen.add(cycle_id)
                cycle_id = self._index[cycle_id].snapshot.parent_id
            node = self._index[cycle_id]
            self._index[node.snapshot.parent_id].children.remove(node)
            self.roots.append(node)
            logger.warning(
                "Snapshot '%s' is part of a parent cycle; treating it as a root", cycle_id,
            )
            reachable.update(n.id for _, n in self._walk_from([node]))

    def _attach_current(self, current_id: str | None) -> None:
        if current_id is None:
            logger.warning("No current snapshot reported; position marker not attached")
            return
        owner = self._index.get(current_id)
        if owner is None:
            logger.warning(
                "Current snapshot '%s' not in snapshot list; position marker not attached",
                current_id,
            )
            return
        self.current = SnapshotNode(snapshot=None, is_current_marker=True)
        self._marker_owner = owner
        owner.children.append(self.current)

    def find(self, snapshot_id: str) -> SnapshotNode | None:
        """Look a snapshot up anywhere in the forest."""
        return self._index.get(snapshot_id)

    def walk(self) -> Iterator[tuple[int, SnapshotNode]]:
        """Yield (depth, node) pairs depth-first in insertion order."""
        return self._walk_from(self.roots)

    @staticmethod
    def _walk_from(nodes: list[SnapshotNode]) -> Iterator[tuple[int, SnapshotNode]]:
        stack: list[tuple[int, SnapshotNode]] = [(0, node) for node in reversed(nodes)]
        while stack:
            depth, node = stack.pop()
            yield depth, node
            for child in reversed(node.children):
                stack.append((depth + 1, child))

    @property
    def current_snapshot(self) -> Snapshot | None:
        """Snapshot the marker hangs under, if any."""
        if self._marker_owner is None:
            return None
        return self._marker_owner.snapshot

    def __len__(self) -> int:
        return sum(1 for _ in self.walk())

    def __bool__(self) -> bool:
        return bool(self.roots)
