"""Tests for content hashing and sync stamps.

Covers:
- normalize_text strips BOM, CRLF and trailing whitespace
- content_hash covers title, user metadata and children order
- content_hash ignores sync bookkeeping keys
- local_changed / remote_changed against the stored stamps
"""

from __future__ import annotations

from trello_sync.sync.models import (
    SYNC_LOCAL_HASH,
    SYNC_PARENT,
    SYNC_REMOTE_HASH,
    Entity,
    EntityKind,
    RemoteRecord,
)
from trello_sync.sync.state import (
    content_hash,
    local_changed,
    normalize_text,
    remote_changed,
    remote_hash,
    stamp,
)


def _card(**metadata) -> Entity:
    return Entity("c", EntityKind.CARD, "Card", "l", metadata=dict(metadata))


def _record(title: str = "Card", **metadata) -> RemoteRecord:
    return RemoteRecord(EntityKind.CARD, "rc", title, "rl", dict(metadata))


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


class TestNormalizeText:
    def test_strips_bom(self):
        assert normalize_text("﻿hello") == "hello"

    def test_converts_line_endings(self):
        assert normalize_text("a\r\nb\rc") == "a\nb\nc"

    def test_strips_trailing_whitespace_and_blank_edges(self):
        assert normalize_text("\n\na  \nb\t\n\n") == "a\nb"


# ---------------------------------------------------------------------------
# Hashes
# ---------------------------------------------------------------------------


class TestContentHash:
    def test_stable_across_line_endings(self):
        a = _card(description="one\ntwo")
        b = _card(description="one\r\ntwo  ")
        assert content_hash(a) == content_hash(b)

    def test_title_changes_hash(self):
        a = _card()
        b = _card()
        b.title = "Renamed"
        assert content_hash(a) != content_hash(b)

    def test_metadata_changes_hash(self):
        assert content_hash(_card(due="2026-01-01")) != content_hash(_card())

    def test_children_order_changes_hash(self):
        a = _card()
        b = _card()
        a.ordered_children = ["x", "y"]
        b.ordered_children = ["y", "x"]
        assert content_hash(a) != content_hash(b)

    def test_sync_keys_are_ignored(self):
        a = _card()
        b = _card()
        b.remote_id = "rc"
        b.metadata[SYNC_REMOTE_HASH] = "whatever"
        assert content_hash(a) == content_hash(b)

    def test_local_id_is_ignored(self):
        a = Entity("one", EntityKind.CARD, "Card")
        b = Entity("two", EntityKind.CARD, "Card")
        assert content_hash(a) == content_hash(b)

    def test_remote_hash_covers_position(self):
        a = RemoteRecord(EntityKind.CARD, "rc", "Card", "rl", position=1)
        b = RemoteRecord(EntityKind.CARD, "rc", "Card", "rl", position=9)
        assert remote_hash(a) != remote_hash(b)

    def test_remote_hash_covers_parent(self):
        a = RemoteRecord(EntityKind.CARD, "rc", "Card", "rl1")
        b = RemoteRecord(EntityKind.CARD, "rc", "Card", "rl2")
        assert remote_hash(a) != remote_hash(b)


# ---------------------------------------------------------------------------
# Change detection
# ---------------------------------------------------------------------------


class TestChangeDetection:
    def test_unstamped_entity_counts_as_changed(self):
        entity = _card()
        assert local_changed(entity)
        assert remote_changed(entity, _record())

    def test_stamp_settles_both_sides(self):
        entity = _card()
        record = _record()
        stamp(entity, record)

        assert entity.metadata[SYNC_LOCAL_HASH] == content_hash(entity)
        assert not local_changed(entity)
        assert not remote_changed(entity, record)

    def test_each_side_compares_with_its_own_stamp(self):
        entity = _card()
        record = _record()
        stamp(entity, record)

        entity.title = "Edited locally"
        assert local_changed(entity)
        assert not remote_changed(entity, record)

        assert remote_changed(entity, _record(description="edited remotely"))

    def test_stamp_remembers_remote_parent(self):
        entity = _card()
        stamp(entity, _record())

        assert entity.metadata[SYNC_PARENT] == _record().parent_remote_id
        assert SYNC_PARENT not in entity.user_metadata
        assert not local_changed(entity)
