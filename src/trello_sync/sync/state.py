"""Content hashing and sync-state bookkeeping.

Sync state lives inside each entity's metadata rather than a side file:
``sync-local-hash`` is the entity's content hash at the last successful
sync and ``sync-remote-hash`` the hash of the remote record at that
time. ``sync-parent`` holds the remote parent id at that time. Local and
remote hashes are never compared with each other; each side is compared
against its own stored hash.

Hashes normalise text (BOM, line endings, trailing whitespace) before
SHA-256 so they are stable across platforms and editors.
"""

from __future__ import annotations

import hashlib
import json

from trello_sync.sync.models import (
    SYNC_LOCAL_HASH,
    SYNC_PARENT,
    SYNC_REMOTE_HASH,
    Entity,
    RemoteRecord,
)


def normalize_text(text: str) -> str:
    """Normalise text for hashing.

    Strips a leading BOM, converts CRLF/CR to LF, removes trailing
    whitespace from each line and surrounding blank lines.
    """
    text = text.removeprefix("\ufeff")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [line.rstrip() for line in text.split("\n")]
    return "\n".join(lines).strip("\n")


def _digest(payload: dict) -> str:
    encoded = json.dumps(
        payload, sort_keys=True, ensure_ascii=False, separators=(",", ":")
    ).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def content_hash(entity: Entity) -> str:
    """SHA-256 of title, user metadata and children order."""
    return _digest(
        {
            "kind": entity.kind.value,
            "title": normalize_text(entity.title),
            "metadata": {
                k: normalize_text(v)
                for k, v in entity.user_metadata.items()
            },
            "children": list(entity.ordered_children),
        }
    )


def remote_hash(record: RemoteRecord) -> str:
    """SHA-256 of a remote record's title, metadata, parent and position.

    Parent and position are included so that a card moved or reordered
    in Trello reads as a remote change.
    """
    return _digest(
        {
            "kind": record.kind.value,
            "title": normalize_text(record.title),
            "metadata": {
                k: normalize_text(v) for k, v in record.metadata.items()
            },
            "parent": record.parent_remote_id,
            "position": record.position,
        }
    )


def local_changed(entity: Entity) -> bool:
    return content_hash(entity) != entity.metadata.get(SYNC_LOCAL_HASH)


def remote_changed(entity: Entity, record: RemoteRecord) -> bool:
    return remote_hash(record) != entity.metadata.get(SYNC_REMOTE_HASH)


def stamp_local(entity: Entity) -> None:
    entity.metadata[SYNC_LOCAL_HASH] = content_hash(entity)


def stamp_remote(entity: Entity, record: RemoteRecord) -> None:
    entity.metadata[SYNC_REMOTE_HASH] = remote_hash(record)
    stamp_parent(entity, record)


def stamp_parent(entity: Entity, record: RemoteRecord) -> None:
    """Remember the remote parent so a later local move can be told apart."""
    if record.parent_remote_id:
        entity.metadata[SYNC_PARENT] = record.parent_remote_id


def stamp(entity: Entity, record: RemoteRecord) -> None:
    """Record both sides as in sync."""
    stamp_remote(entity, record)
    stamp_local(entity)
