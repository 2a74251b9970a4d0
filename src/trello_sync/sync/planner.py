"""Turn classifications into a dependency-ordered operation plan.

Ordering rules, expressed as ``depends_on`` edges:

- A create depends on its parent's create when the parent is unbound.
- Sibling creates are chained in outline order so remote positions
  follow the document.
- A delete depends on the deletes of all currently bound children.
- A create under a parent depends on the deletes of that parent's
  children planned in the same plan.
- A card moved locally is pushed with an update that depends on its
  new list's create when that list is new.

Structure: when a parent whose local content changed has children in
an order Trello cannot reproduce with bottom inserts, every child of it
is given an explicit position (``POSITION_STEP`` apart, in outline
order). Bound children get a position update; creates carry it.

Independent subtrees share no edges, so the orchestrator is free to run
them concurrently.

Direction filtering: ``to-remote`` plans remote mutations only,
``from-remote`` plans local overwrites and removals only, and
``bidirectional`` plans both.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from trello_sync.sync.classifier import ClassificationResult
from trello_sync.sync.models import (
    Classification,
    Direction,
    EntityTree,
    Operation,
    OperationKind,
)
from trello_sync.sync.resolver import Resolution

logger = logging.getLogger(__name__)

# Trello's default spacing between positions
POSITION_STEP = 16384.0


@dataclass
class Plan:
    """Operations plus the local-side changes that precede them.

    Attributes:
        operations: Remote operations, dependencies before dependents.
        local_overwrites: Entities to overwrite from their remote record.
        local_removals: Entities deleted remotely, to remove locally.
        repositioned: Parents whose local child order is pushed; their
            remote order is not pulled back in the same session.
    """

    operations: list[Operation] = field(default_factory=list)
    local_overwrites: list[str] = field(default_factory=list)
    local_removals: list[str] = field(default_factory=list)
    repositioned: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.operations)

    def find(self, kind: OperationKind, local_id: str) -> Operation | None:
        for op in self.operations:
            if op.kind is kind and op.target_local_id == local_id:
                return op
        return None

    def by_id(self) -> dict[str, Operation]:
        return {op.op_id: op for op in self.operations}


def plan_deletes(
    tree: EntityTree, root_ids: Iterable[str]
) -> list[Operation]:
    """Plan child-first deletes of every bound entity under ``root_ids``.

    Returns:
        DELETE operations; each depends on its bound children's deletes.
    """
    operations: list[Operation] = []
    by_local: dict[str, Operation] = {}
    for root_id in root_ids:
        subtree = list(tree.walk(root_id))
        for entity in reversed(subtree):
            if not entity.remote_id or entity.local_id in by_local:
                continue
            op = Operation(
                kind=OperationKind.DELETE,
                target_local_id=entity.local_id,
                target_remote_id=entity.remote_id,
            )
            for child_id in entity.ordered_children:
                child_op = by_local.get(child_id)
                if child_op is not None:
                    op.depends_on.add(child_op.op_id)
            by_local[entity.local_id] = op
            operations.append(op)
    return operations


def plan_sync(
    tree: EntityTree,
    classification: ClassificationResult,
    direction: Direction,
    resolutions: dict[str, Resolution] | None = None,
    *,
    deletions: Iterable[str] = (),
) -> Plan:
    """Plan a sync session.

    Args:
        tree: The local tree.
        classification: Classified in-scope entities (parents first).
        direction: Session direction.
        resolutions: Winning side per conflicting local id.
        deletions: Roots of subtrees to delete remotely.

    Returns:
        The plan.
    """
    resolutions = resolutions or {}
    pushes = direction in (Direction.TO_REMOTE, Direction.BIDIRECTIONAL)
    pulls = direction in (Direction.FROM_REMOTE, Direction.BIDIRECTIONAL)
    plan = Plan()

    delete_ops = plan_deletes(tree, deletions) if pushes else []
    plan.operations.extend(delete_ops)
    deletes_by_parent: dict[str, set[str]] = {}
    for op in delete_ops:
        entity = tree.get(op.target_local_id)
        if entity.parent_local_id is not None:
            deletes_by_parent.setdefault(entity.parent_local_id, set()).add(
                op.op_id
            )

    if pushes:
        plan.repositioned = _repositioned(tree, classification, resolutions)
    positioned = set(plan.repositioned)
    creates: dict[str, Operation] = {}
    updates: dict[str, Operation] = {}

    for local_id, state in classification.states.items():
        entity = tree.get(local_id)
        parent = tree.parent(entity)
        parent_create = creates.get(parent.local_id) if parent else None

        match state:
            case Classification.NEW_LOCAL if pushes:
                if (
                    parent is not None
                    and not parent.remote_id
                    and parent_create is None
                ):
                    logger.warning(
                        "Cannot create %s '%s': parent '%s' is not bound",
                        entity.kind.value,
                        entity.title,
                        parent.title,
                    )
                    continue
                op = Operation(
                    kind=OperationKind.CREATE, target_local_id=local_id
                )
                if parent_create is not None:
                    op.depends_on.add(parent_create.op_id)
                if parent is not None:
                    previous = _previous_sibling_create(
                        parent.ordered_children, local_id, creates
                    )
                    if previous is not None:
                        op.depends_on.add(previous.op_id)
                    op.depends_on |= deletes_by_parent.get(
                        parent.local_id, set()
                    )
                    if parent.local_id in positioned:
                        op.position = _slot(parent.ordered_children, local_id)
                creates[local_id] = op
                plan.operations.append(op)

            case Classification.UPDATED_LOCAL if pushes:
                updates[local_id] = _update(
                    local_id, entity.remote_id, parent_create
                )
                plan.operations.append(updates[local_id])

            case Classification.CONFLICT:
                winner = resolutions.get(local_id, "remote")
                if winner == "local" and pushes:
                    updates[local_id] = _update(
                        local_id, entity.remote_id, parent_create
                    )
                    plan.operations.append(updates[local_id])
                elif winner == "remote" and pulls:
                    plan.local_overwrites.append(local_id)

            case Classification.UPDATED_REMOTE if pulls:
                plan.local_overwrites.append(local_id)

            case Classification.DELETED_REMOTE if pulls:
                if (
                    parent is None
                    or classification.states.get(parent.local_id)
                    is not Classification.DELETED_REMOTE
                ):
                    plan.local_removals.append(local_id)

    if pushes:
        _plan_structure(tree, classification, plan, creates, updates)

    logger.debug(
        "Planned %d operations, %d local overwrites, %d local removals, "
        "%d repositioned parents",
        len(plan.operations),
        len(plan.local_overwrites),
        len(plan.local_removals),
        len(plan.repositioned),
    )
    return plan


def _update(
    local_id: str, remote_id: str | None, parent_create: Operation | None
) -> Operation:
    op = Operation(
        kind=OperationKind.UPDATE,
        target_local_id=local_id,
        target_remote_id=remote_id,
    )
    if parent_create is not None:
        op.depends_on.add(parent_create.op_id)
    return op


def _previous_sibling_create(
    siblings: list[str], local_id: str, creates: dict[str, Operation]
) -> Operation | None:
    index = siblings.index(local_id)
    for sibling_id in reversed(siblings[:index]):
        op = creates.get(sibling_id)
        if op is not None:
            return op
    return None


def _slot(siblings: list[str], local_id: str) -> float:
    return (siblings.index(local_id) + 1) * POSITION_STEP


def _repositioned(
    tree: EntityTree,
    classification: ClassificationResult,
    resolutions: dict[str, Resolution],
) -> list[str]:
    """Parents whose local child order is pushed.

    A bound parent qualifies when it is out of order and its own local
    side wins. A new parent qualifies when a card was moved into it, so
    the moved card and the created siblings share one numbering.
    """
    parents: list[str] = []
    for local_id in classification.reordered:
        state = classification.states.get(local_id)
        if state is Classification.UPDATED_LOCAL or (
            state is Classification.CONFLICT
            and resolutions.get(local_id) == "local"
        ):
            parents.append(local_id)
    for local_id in classification.local_moves:
        parent_id = tree.get(local_id).parent_local_id
        if (
            parent_id is not None
            and parent_id not in parents
            and classification.states.get(parent_id) is Classification.NEW_LOCAL
        ):
            parents.append(parent_id)
    return parents


def _plan_structure(
    tree: EntityTree,
    classification: ClassificationResult,
    plan: Plan,
    creates: dict[str, Operation],
    updates: dict[str, Operation],
) -> None:
    """Plan position updates for repositioned parents and local moves.

    An entity that already has a field update carries its position on
    that update; any other gets a structure-only update.
    """
    remote_moves = {local_id for local_id, _ in classification.moved}
    not_pushed = (Classification.NEW_LOCAL, Classification.DELETED_REMOTE)

    def place(local_id: str, position: float | str) -> None:
        op = updates.get(local_id)
        if op is None:
            entity = tree.get(local_id)
            parent_create = creates.get(entity.parent_local_id or "")
            op = _update(local_id, entity.remote_id, parent_create)
            op.structure_only = True
            updates[local_id] = op
            plan.operations.append(op)
        op.position = position

    for parent_id in plan.repositioned:
        siblings = tree.get(parent_id).ordered_children
        for child_id in siblings:
            if (
                child_id in creates
                or child_id in remote_moves
                or not tree.get(child_id).remote_id
                or classification.states.get(child_id) in not_pushed
            ):
                continue
            place(child_id, _slot(siblings, child_id))

    for local_id in classification.local_moves:
        op = updates.get(local_id)
        if op is None or op.position is None:
            place(local_id, "bottom")
