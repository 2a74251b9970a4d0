"""Tests for fetch planning and snapshot ingestion."""

from __future__ import annotations

import pytest

from trello_sync.sync.fetcher import ingest_board, ingest_card, plan_fetches
from trello_sync.sync.models import (
    Entity,
    EntityKind,
    EntityTree,
    OperationKind,
    RemoteSnapshot,
)


@pytest.fixture
def tree():
    tree = EntityTree.from_entities(
        [
            Entity("b", EntityKind.BOARD, "Board"),
            Entity("l", EntityKind.LIST, "Todo", "b"),
            Entity("c1", EntityKind.CARD, "One", "l"),
            Entity("k1", EntityKind.CHECKLIST, "Steps", "c1"),
            Entity("c2", EntityKind.CARD, "Two", "l"),
            Entity("c3", EntityKind.CARD, "Three", "l"),
        ]
    )
    for local_id in ("b", "l", "c1", "k1", "c2"):
        tree.get(local_id).remote_id = f"r{local_id}"
    return tree


class TestPlanFetches:
    def test_card_scope_fetches_cards(self, tree):
        ops = plan_fetches(tree, ["c1", "k1", "c2"])
        assert [op.target_remote_id for op in ops] == ["rc1", "rc2"]
        assert all(op.kind is OperationKind.FETCH for op in ops)

    def test_list_in_scope_fetches_board(self, tree):
        ops = plan_fetches(tree, ["l", "c1"])
        assert [op.target_remote_id for op in ops] == ["rb"]

    def test_whole_board(self, tree):
        ops = plan_fetches(tree, ["c1"], whole_board=True)
        assert [op.target_local_id for op in ops] == ["b"]

    def test_nothing_bound_fetches_nothing(self, tree):
        assert plan_fetches(tree, ["c3"]) == []

    def test_unbound_board(self, tree):
        tree.get("b").remote_id = None
        assert plan_fetches(tree, ["l"], whole_board=True) == []


BOARD_JSON = {
    "id": "rb",
    "name": "Board",
    "desc": "",
    "lists": [
        {"id": "rl", "name": "Todo", "idBoard": "rb", "pos": 1, "closed": False},
        {"id": "rx", "name": "Old", "idBoard": "rb", "pos": 2, "closed": True},
    ],
    "cards": [
        {"id": "rc1", "name": "One", "idList": "rl", "pos": 1},
        {"id": "rc9", "name": "Gone", "idList": "rl", "pos": 2, "closed": True},
    ],
    "checklists": [
        {
            "id": "rk1",
            "name": "Steps",
            "idCard": "rc1",
            "checkItems": [
                {"id": "ri1", "name": "Step", "state": "complete"},
            ],
        }
    ],
}


def test_ingest_board():
    snapshot = RemoteSnapshot()
    ingest_board(snapshot, BOARD_JSON)

    assert set(snapshot.records) == {"rb", "rl", "rc1", "rk1", "ri1"}
    assert {"rb", "rl", "rc1", "rk1"} <= snapshot.complete
    assert snapshot.get("ri1").parent_remote_id == "rk1"
    assert snapshot.get("rk1").parent_remote_id == "rc1"
    # archived cards count as deleted
    assert snapshot.is_deleted("rc9", "rl")


def test_ingest_card_clears_missing():
    snapshot = RemoteSnapshot()
    snapshot.missing.add("rc1")

    ingest_card(
        snapshot,
        {"id": "rc1", "name": "One", "idList": "rl", "checklists": []},
    )

    assert "rc1" not in snapshot.missing
    assert "rc1" in snapshot.complete
    assert snapshot.children("rc1") == []
