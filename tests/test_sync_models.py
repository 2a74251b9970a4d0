"""Tests for the entity tree and the report model."""

import pytest

from trello_sync.sync.models import (
    SYNC_LOCAL_ID,
    SYNC_REMOTE_HASH,
    SYNC_REMOTE_ID,
    Direction,
    Entity,
    EntityKind,
    EntityTree,
    OperationKind,
    OperationResult,
    OperationStatus,
    RemoteRecord,
    RemoteSnapshot,
    Scope,
    SessionState,
    SyncReport,
)


def _tree() -> EntityTree:
    return EntityTree.from_entities(
        [
            Entity("b", EntityKind.BOARD, "Board"),
            Entity("l1", EntityKind.LIST, "Todo", "b"),
            Entity("l2", EntityKind.LIST, "Done", "b"),
            Entity("c1", EntityKind.CARD, "First", "l1"),
            Entity("c2", EntityKind.CARD, "Second", "l1"),
            Entity("k1", EntityKind.CHECKLIST, "Steps", "c1"),
            Entity("i1", EntityKind.ITEM, "Step", "k1"),
        ]
    )


class TestEntity:
    def test_local_id_is_kept_in_metadata(self):
        entity = Entity("abc", EntityKind.CARD, "Card")
        assert entity.metadata[SYNC_LOCAL_ID] == "abc"

    def test_remote_id_property(self):
        entity = Entity("abc", EntityKind.CARD, "Card")
        assert entity.remote_id is None
        entity.remote_id = "r1"
        assert entity.metadata[SYNC_REMOTE_ID] == "r1"
        entity.remote_id = None
        assert SYNC_REMOTE_ID not in entity.metadata

    def test_user_metadata_hides_sync_keys(self):
        entity = Entity(
            "abc",
            EntityKind.CARD,
            "Card",
            metadata={"due": "2026-01-01", SYNC_REMOTE_HASH: "h"},
        )
        assert entity.user_metadata == {"due": "2026-01-01"}

    def test_clear_sync_state_keeps_local_id(self):
        entity = Entity("abc", EntityKind.CARD, "Card")
        entity.remote_id = "r1"
        entity.metadata[SYNC_REMOTE_HASH] = "h"
        entity.clear_sync_state()
        assert entity.remote_id is None
        assert SYNC_REMOTE_HASH not in entity.metadata
        assert entity.metadata[SYNC_LOCAL_ID] == "abc"


class TestEntityTree:
    def test_walk_is_preorder(self):
        tree = _tree()
        assert [e.local_id for e in tree.walk()] == [
            "b", "l1", "c1", "k1", "i1", "c2", "l2",
        ]

    def test_ancestors_root_first(self):
        tree = _tree()
        assert [e.local_id for e in tree.ancestors("i1")] == [
            "b", "l1", "c1", "k1",
        ]
        assert tree.ancestors("b") == []

    def test_remove_returns_children_first(self):
        tree = _tree()
        removed = tree.remove("c1")
        assert [e.local_id for e in removed] == ["i1", "k1", "c1"]
        assert tree.get("l1").ordered_children == ["c2"]
        assert "k1" not in tree

    def test_move_reparents(self):
        tree = _tree()
        tree.move("c2", "l2", index=0)
        assert tree.get("c2").parent_local_id == "l2"
        assert tree.get("l1").ordered_children == ["c1"]
        assert tree.get("l2").ordered_children == ["c2"]

    def test_move_rejects_wrong_kind(self):
        tree = _tree()
        with pytest.raises(ValueError, match="cannot contain"):
            tree.move("c2", "b")

    def test_add_rejects_duplicates(self):
        tree = _tree()
        with pytest.raises(ValueError, match="Duplicate"):
            tree.add(Entity("c1", EntityKind.CARD, "Again", "l1"))

    def test_add_rejects_second_board(self):
        tree = _tree()
        with pytest.raises(ValueError, match="exactly one board"):
            tree.add(Entity("b2", EntityKind.BOARD, "Other"))

    def test_add_rejects_orphan(self):
        tree = _tree()
        with pytest.raises(ValueError, match="has no parent"):
            tree.add(Entity("x", EntityKind.CARD, "Orphan"))

    def test_add_at_index(self):
        tree = _tree()
        tree.add(Entity("c0", EntityKind.CARD, "Zero", "l1"), index=0)
        assert tree.get("l1").ordered_children == ["c0", "c1", "c2"]

    def test_validate_rejects_duplicate_remote_ids(self):
        tree = _tree()
        tree.get("c1").remote_id = "r"
        tree.get("c2").remote_id = "r"
        with pytest.raises(ValueError, match="bound to both"):
            tree.validate()

    def test_get_unknown(self):
        with pytest.raises(KeyError, match="No entity"):
            _tree().get("nope")


class TestRemoteSnapshot:
    def test_children_sorted_by_position(self):
        snapshot = RemoteSnapshot()
        snapshot.add(RemoteRecord(EntityKind.CARD, "c2", "B", "l", position=2))
        snapshot.add(RemoteRecord(EntityKind.CARD, "c1", "A", "l", position=1))
        assert [r.remote_id for r in snapshot.children("l")] == ["c1", "c2"]

    def test_is_deleted(self):
        snapshot = RemoteSnapshot()
        snapshot.complete.add("l")
        snapshot.missing.add("gone")
        assert snapshot.is_deleted("gone", None)
        assert snapshot.is_deleted("c9", "l")
        assert not snapshot.is_deleted("c9", "other")
        snapshot.add(RemoteRecord(EntityKind.CARD, "gone", "Back", "l"))
        assert not snapshot.is_deleted("gone", None)


def test_report_summary_counts():
    def result(kind, status):
        return OperationResult(
            op_id="x",
            kind=kind,
            local_id="c",
            entity_kind=EntityKind.CARD,
            title="Card",
            status=status,
        )

    report = SyncReport(
        command="sync-document",
        direction=Direction.BIDIRECTIONAL,
        scope=Scope.WHOLE_DOCUMENT,
        state=SessionState.PARTIAL_FAILURE,
        results=[
            result(OperationKind.FETCH, OperationStatus.APPLIED),
            result(OperationKind.CREATE, OperationStatus.APPLIED),
            result(OperationKind.UPDATE, OperationStatus.FAILED),
            result(OperationKind.CREATE, OperationStatus.SKIPPED),
        ],
        message="2 failure(s)",
        started_at="2026-01-01T00:00:00+00:00",
    )

    assert len(report.mutations) == 3
    assert len(report.created_remote) == 1
    summary = report.summary()
    assert "Created remote: 1" in summary
    assert "Failed:         1" in summary
    assert "Skipped:        1" in summary
