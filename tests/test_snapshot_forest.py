"""
Tests for the snapshot forest builder.
"""

import logging
import random

import pytest

from vmdeck.models import SnapshotForest


def _ids(nodes):
    return [node.id for node in nodes]


@pytest.fixture
def records(make_snapshot):
    # a ─ b ─ c
    #   └ d
    # e
    return [
        make_snapshot("a"),
        make_snapshot("b", "a"),
        make_snapshot("c", "b"),
        make_snapshot("d", "a"),
        make_snapshot("e"),
    ]


class TestBuild:
    """Structure of the rebuilt hierarchy."""

    def test_node_count_includes_marker(self, records):
        forest = SnapshotForest.build(records, "c")
        assert len(forest) == len(records) + 1

    def test_roots_are_parentless_records(self, records):
        forest = SnapshotForest.build(records, "c")
        assert _ids(forest.roots) == ["a", "e"]

    def test_parent_child_links_preserved(self, records):
        forest = SnapshotForest.build(records, "c")
        assert _ids(forest.find("a").children) == ["b", "d"]
        assert _ids(forest.find("b").children) == ["c"]
        assert forest.find("e").children == []

    def test_walk_is_depth_first(self, records):
        forest = SnapshotForest.build(records, "c")
        walked = [(depth, node.id, node.is_current_marker) for depth, node in forest.walk()]
        assert walked == [
            (0, "a", False),
            (1, "b", False),
            (2, "c", False),
            (3, None, True),
            (1, "d", False),
            (0, "e", False),
        ]

    def test_empty_forest(self):
        forest = SnapshotForest.build([], None)
        assert not forest
        assert len(forest) == 0
        assert list(forest.walk()) == []

    def test_records_in_any_order(self, make_snapshot):
        forest = SnapshotForest.build(
            [make_snapshot("child", "root"), make_snapshot("root")],
            "root",
        )
        assert _ids(forest.roots) == ["root"]
        assert forest.find("child") in forest.find("root").children


class TestDanglingParent:
    """A record whose parent is not in the set."""

    def test_becomes_unattached_root(self, make_snapshot, caplog):
        records = [make_snapshot("a"), make_snapshot("orphan", "deleted-long-ago")]
        with caplog.at_level(logging.WARNING):
            forest = SnapshotForest.build(records, "a")

        assert _ids(forest.roots) == ["a", "orphan"]
        assert len(forest) == 3
        assert "deleted-long-ago" in caplog.text

    def test_children_of_orphan_kept(self, make_snapshot):
        records = [make_snapshot("orphan", "gone"), make_snapshot("kid", "orphan")]
        forest = SnapshotForest.build(records, "kid")
        assert _ids(forest.roots) == ["orphan"]
        assert _ids(forest.find("orphan").children) == ["kid"]


class TestParentCycles:
    """Records whose parent chain loops back on itself."""

    def test_two_node_cycle(self, make_snapshot, caplog):
        records = [make_snapshot("a", "b"), make_snapshot("b", "a"), make_snapshot("c")]
        with caplog.at_level(logging.WARNING):
            forest = SnapshotForest.build(records, "b")

        assert _ids(forest.roots) == ["c", "a"]
        assert _ids(forest.find("a").children) == ["b"]
        assert len(forest) == 4
        assert forest.current_snapshot.id == "b"
        assert "parent cycle" in caplog.text

    def test_self_parent(self, make_snapshot):
        forest = SnapshotForest.build([make_snapshot("loop", "loop")], "loop")
        assert _ids(forest.roots) == ["loop"]
        assert forest.find("loop").children == [forest.current]
        assert len(forest) == 2

    def test_branch_hanging_off_cycle(self, make_snapshot):
        records = [
            make_snapshot("leaf", "x"),
            make_snapshot("x", "y"),
            make_snapshot("y", "x"),
        ]
        forest = SnapshotForest.build(records, None)

        assert len(forest.roots) == 1
        assert forest.roots[0].id in ("x", "y")
        assert len(forest) == 3
        assert forest.find("leaf") in forest.find("x").children


class TestCurrentMarker:
    """Attachment of the "you are here" node."""

    def test_attached_under_current(self, records):
        forest = SnapshotForest.build(records, "d")
        assert forest.current is not None
        assert forest.current.snapshot is None
        assert forest.current in forest.find("d").children
        assert forest.current_snapshot.id == "d"

    def test_attached_exactly_once(self, records):
        forest = SnapshotForest.build(records, "a")
        markers = [node for _, node in forest.walk() if node.is_current_marker]
        assert len(markers) == 1

    def test_marker_after_existing_children(self, records):
        forest = SnapshotForest.build(records, "a")
        assert forest.find("a").children[-1] is forest.current

    def test_no_current_id(self, records, caplog):
        with caplog.at_level(logging.WARNING):
            forest = SnapshotForest.build(records, None)
        assert forest.current is None
        assert forest.current_snapshot is None
        assert len(forest) == len(records)
        assert "position marker not attached" in caplog.text

    def test_unknown_current_id(self, records, caplog):
        with caplog.at_level(logging.WARNING):
            forest = SnapshotForest.build(records, "zz")
        assert forest.current is None
        assert len(forest) == len(records)
        assert "'zz'" in caplog.text


class TestFind:
    """Lookup anywhere in the forest."""

    def test_find_deep_node(self, make_snapshot):
        records = [make_snapshot("s0")]
        records += [make_snapshot(f"s{i}", f"s{i - 1}") for i in range(1, 60)]
        forest = SnapshotForest.build(records, "s59")

        node = forest.find("s42")
        assert node is not None
        assert node.snapshot.name == "s42"
        assert _ids(node.children) == ["s43"]

    def test_find_missing(self, records):
        forest = SnapshotForest.build(records, "a")
        assert forest.find("nope") is None

    def test_find_in_second_root(self, records):
        forest = SnapshotForest.build(records, "a")
        assert forest.find("e") is forest.roots[1]


class TestWellFormedSets:
    """Invariants over generated parent/child sets."""

    @pytest.mark.parametrize("seed", range(10))
    def test_counts(self, make_snapshot, seed):
        rng = random.Random(seed)
        records = []
        for i in range(rng.randint(1, 40)):
            parent = None
            if records and rng.random() < 0.8:
                parent = rng.choice(records).id
            records.append(make_snapshot(f"snap-{i}", parent))
        rng.shuffle(records)
        current = rng.choice(records).id

        forest = SnapshotForest.build(records, current)

        assert len(forest) == len(records) + 1
        assert len(forest.roots) == sum(1 for r in records if r.parent_id is None)
        for record in records:
            if record.parent_id is not None:
                assert forest.find(record.id) in forest.find(record.parent_id).children
        assert forest.current_snapshot.id == current
