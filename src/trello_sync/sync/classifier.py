"""Classify entities by comparing local and remote state.

Each side is compared against its own stored hash, in priority order:

1. no remote binding                        -> ``new-local``
2. bound, but gone from the fetched region  -> ``deleted-remote``
3. both sides changed                       -> ``conflict``
4. only remote changed                      -> ``updated-remote``
5. only local changed                       -> ``updated-local``
6. neither changed                          -> ``unchanged``

Descendants of a ``deleted-remote`` entity are ``deleted-remote`` too.
Unbound remote children of bound, in-scope parents are reported as
``new-remote``.

Structure is compared too. A card whose remote list differs from its
local parent was moved on one side; the ``sync-parent`` stamped at the
last sync tells which. Parents whose bound children sit in a different
order locally than remotely are reported as reordered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from trello_sync.sync.identity import IdentityMap
from trello_sync.sync.models import (
    SYNC_PARENT,
    Classification,
    Entity,
    EntityKind,
    EntityTree,
    RemoteRecord,
    RemoteSnapshot,
)
from trello_sync.sync.state import local_changed, remote_changed

logger = logging.getLogger(__name__)


@dataclass
class ClassificationResult:
    """Output of ``classify``.

    Attributes:
        states: Classification per in-scope local id, in scope order.
        new_remote: ``(parent_local_id, record)`` for each unbound remote
            child found under a bound parent. Only the top of each new
            remote subtree is listed.
        moved: ``(local_id, new_parent_local_id)`` for cards moved to
            another list remotely.
        local_moves: Cards moved to another list in the document.
        reordered: Parents whose bound children are ordered differently
            on the two sides, or whose new or moved-in children are not
            at the end.
    """

    states: dict[str, Classification] = field(default_factory=dict)
    new_remote: list[tuple[str, RemoteRecord]] = field(default_factory=list)
    moved: list[tuple[str, str]] = field(default_factory=list)
    local_moves: list[str] = field(default_factory=list)
    reordered: list[str] = field(default_factory=list)

    def with_state(self, state: Classification) -> list[str]:
        return [k for k, v in self.states.items() if v is state]


def classify(
    tree: EntityTree,
    identity: IdentityMap,
    snapshot: RemoteSnapshot,
    scope_ids: list[str],
    *,
    discover_new_remote: bool = False,
) -> ClassificationResult:
    """Classify every in-scope entity.

    Args:
        tree: The local tree.
        identity: Current bindings.
        snapshot: Remote state fetched for this session.
        scope_ids: In-scope local ids, parents before children.
        discover_new_remote: Also report unbound remote children of
            in-scope entities.
    """
    result = ClassificationResult()
    in_scope = set(scope_ids)

    for local_id in scope_ids:
        entity = tree.get(local_id)
        remote_id = identity.resolve(local_id)
        if remote_id is None:
            result.states[local_id] = Classification.NEW_LOCAL
            continue

        parent = tree.parent(entity)
        if (
            parent is not None
            and result.states.get(parent.local_id)
            is Classification.DELETED_REMOTE
        ):
            result.states[local_id] = Classification.DELETED_REMOTE
            continue

        parent_remote_id = identity.resolve(parent.local_id) if parent else None
        if snapshot.is_deleted(remote_id, parent_remote_id):
            result.states[local_id] = Classification.DELETED_REMOTE
            continue

        record = snapshot.get(remote_id)
        if record is None:
            logger.debug(
                "%s '%s' (%s) is outside the fetched region",
                entity.kind.value,
                entity.title,
                remote_id,
            )
            result.states[local_id] = Classification.UNCHANGED
            continue

        changed_local = local_changed(entity)
        changed_remote = remote_changed(entity, record)
        if changed_local and changed_remote:
            state = Classification.CONFLICT
        elif changed_remote:
            state = Classification.UPDATED_REMOTE
        elif changed_local:
            state = Classification.UPDATED_LOCAL
        else:
            state = Classification.UNCHANGED
        result.states[local_id] = state

        if (
            entity.kind is EntityKind.CARD
            and parent is not None
            and record.parent_remote_id != parent_remote_id
        ):
            _classify_move(
                result, tree, identity, entity, record, changed_remote
            )

        if (
            remote_id in snapshot.complete
            and entity.ordered_children
            and all(c in in_scope for c in entity.ordered_children)
            and _order_differs(identity, snapshot, entity, remote_id)
        ):
            result.reordered.append(local_id)

        if discover_new_remote and remote_id in snapshot.complete:
            for child in snapshot.children(remote_id):
                if identity.resolve_reverse(child.remote_id) is None:
                    result.new_remote.append((local_id, child))

    logger.debug(
        "Classified %d entities: %s",
        len(result.states),
        {s.value: len(result.with_state(s)) for s in Classification},
    )
    return result


def _classify_move(
    result: ClassificationResult,
    tree: EntityTree,
    identity: IdentityMap,
    entity: Entity,
    record: RemoteRecord,
    changed_remote: bool,
) -> None:
    """Decide which side moved a card whose lists disagree.

    The remote side moved it when its list differs from the one stamped
    at the last sync. Without a stamp, a changed remote hash decides.
    When both sides moved it, the remote move is reported.
    """
    stored = entity.metadata.get(SYNC_PARENT)
    if stored is not None:
        moved_remotely = record.parent_remote_id != stored
    else:
        moved_remotely = changed_remote

    if not moved_remotely:
        result.local_moves.append(entity.local_id)
        return

    new_parent = (
        identity.resolve_reverse(record.parent_remote_id)
        if record.parent_remote_id
        else None
    )
    if new_parent is not None and new_parent in tree:
        result.moved.append((entity.local_id, new_parent))
    else:
        logger.info(
            "Card '%s' moved to a list outside the document", entity.title
        )


def _order_differs(
    identity: IdentityMap,
    snapshot: RemoteSnapshot,
    entity: Entity,
    remote_id: str,
) -> bool:
    """True when the children's local order cannot stand remotely as is.

    Children that sit under ``remote_id`` remotely must appear in remote
    position order. Any other child (new, moved in, or gone remotely)
    must come after them, where a ``bottom`` create or move puts it.
    """
    positions: list[float] = []
    unplaced = False
    for child_id in entity.ordered_children:
        child_remote_id = identity.resolve(child_id)
        record = snapshot.get(child_remote_id) if child_remote_id else None
        if record is None or record.parent_remote_id != remote_id:
            unplaced = True
            continue
        if unplaced:
            return True
        positions.append(record.position)
    return positions != sorted(positions)
