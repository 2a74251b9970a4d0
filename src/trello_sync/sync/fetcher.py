"""Remote fetch planning and snapshot ingestion.

A session's first phase fetches the remote state covering its scope. A
whole board is one request (open lists, open cards, all checklists); a
scope confined to cards and below fetches each bound card instead.
Fetched JSON is normalised into the session's ``RemoteSnapshot``.
"""

from __future__ import annotations

import logging
from typing import Any

from trello_sync.sync.mapper import record_from_json
from trello_sync.sync.models import (
    Entity,
    EntityKind,
    EntityTree,
    Operation,
    OperationKind,
    RemoteSnapshot,
)

logger = logging.getLogger(__name__)


def _nearest_card(tree: EntityTree, entity: Entity) -> Entity | None:
    current: Entity | None = entity
    while current is not None and current.kind is not EntityKind.CARD:
        if current.kind in (EntityKind.BOARD, EntityKind.LIST):
            return None
        current = tree.parent(current)
    return current


def plan_fetches(
    tree: EntityTree, scope_ids: list[str], *, whole_board: bool = False
) -> list[Operation]:
    """Plan the FETCH operations covering ``scope_ids``.

    Args:
        tree: The local tree.
        scope_ids: Local ids in the session's scope.
        whole_board: Fetch the whole board regardless of scope.

    Returns:
        FETCH operations (no dependencies between them).
    """
    root = tree.root
    bound = [
        tree.get(local_id)
        for local_id in scope_ids
        if tree.get(local_id).remote_id
    ]
    if not bound and not whole_board:
        return []

    cards: dict[str, Entity] = {}
    need_board = whole_board
    for entity in bound:
        card = _nearest_card(tree, entity)
        if card is None or not card.remote_id:
            need_board = True
            break
        cards[card.local_id] = card

    if need_board:
        if root is None or not root.remote_id:
            logger.warning("Board is not bound; nothing to fetch")
            return []
        return [
            Operation(
                kind=OperationKind.FETCH,
                target_local_id=root.local_id,
                target_remote_id=root.remote_id,
            )
        ]

    return [
        Operation(
            kind=OperationKind.FETCH,
            target_local_id=card.local_id,
            target_remote_id=card.remote_id,
        )
        for card in cards.values()
    ]


def _ingest_checklist(snapshot: RemoteSnapshot, data: dict[str, Any]) -> None:
    record = record_from_json(EntityKind.CHECKLIST, data)
    snapshot.add(record)
    snapshot.complete.add(record.remote_id)
    for item in data.get("checkItems", []):
        snapshot.add(record_from_json(EntityKind.ITEM, item, record.remote_id))


def ingest_board(snapshot: RemoteSnapshot, data: dict[str, Any]) -> None:
    """Add a board fetched with its lists, cards and checklists."""
    board = record_from_json(EntityKind.BOARD, data)
    snapshot.add(board)
    snapshot.complete.add(board.remote_id)

    for lst in data.get("lists", []):
        if lst.get("closed"):
            continue
        record = record_from_json(EntityKind.LIST, lst, board.remote_id)
        snapshot.add(record)
        snapshot.complete.add(record.remote_id)

    for card in data.get("cards", []):
        if card.get("closed"):
            continue
        record = record_from_json(EntityKind.CARD, card)
        snapshot.add(record)
        snapshot.complete.add(record.remote_id)

    for checklist in data.get("checklists", []):
        _ingest_checklist(snapshot, checklist)

    logger.debug(
        "Ingested board %s: %d records", board.remote_id, len(snapshot.records)
    )


def ingest_card(snapshot: RemoteSnapshot, data: dict[str, Any]) -> None:
    """Add a card fetched with its checklists."""
    record = record_from_json(EntityKind.CARD, data)
    snapshot.add(record)
    snapshot.complete.add(record.remote_id)
    for checklist in data.get("checklists", []):
        _ingest_checklist(snapshot, checklist)
