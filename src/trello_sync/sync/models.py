"""Data model for the entity sync engine.

Defines the data contracts shared by every sync module:

- ``EntityKind`` and the ``CHILD_KIND`` / ``PARENT_KIND`` lookup tables.
- ``Entity`` / ``EntityTree``: the local hierarchy parsed from a document.
- ``RemoteRecord`` / ``RemoteSnapshot``: normalized remote state.
- ``Operation``: one unit of remote work inside a sync session.
- ``OperationResult``, ``LocalChange``, ``SyncErrorInfo``, ``SyncReport``:
  frozen report models returned to the CLI and MCP front ends.

Local-side structures are mutable dataclasses because the orchestrator
updates them in place while a session runs; report models are frozen.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator

from pydantic import BaseModel

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class EntityKind(str, Enum):
    """Levels of the board hierarchy."""

    BOARD = "board"
    LIST = "list"
    CARD = "card"
    CHECKLIST = "checklist"
    ITEM = "item"


CHILD_KIND: dict[EntityKind, EntityKind | None] = {
    EntityKind.BOARD: EntityKind.LIST,
    EntityKind.LIST: EntityKind.CARD,
    EntityKind.CARD: EntityKind.CHECKLIST,
    EntityKind.CHECKLIST: EntityKind.ITEM,
    EntityKind.ITEM: None,
}

PARENT_KIND: dict[EntityKind, EntityKind | None] = {
    EntityKind.BOARD: None,
    EntityKind.LIST: EntityKind.BOARD,
    EntityKind.CARD: EntityKind.LIST,
    EntityKind.CHECKLIST: EntityKind.CARD,
    EntityKind.ITEM: EntityKind.CHECKLIST,
}


class Direction(str, Enum):
    TO_REMOTE = "to-remote"
    FROM_REMOTE = "from-remote"
    BIDIRECTIONAL = "bidirectional"


class Scope(str, Enum):
    SINGLE_ENTITY = "single-entity"
    SUBTREE = "subtree"
    WHOLE_DOCUMENT = "whole-document"


class Classification(str, Enum):
    """Per-entity outcome of comparing local and remote state."""

    NEW_LOCAL = "new-local"
    NEW_REMOTE = "new-remote"
    DELETED_REMOTE = "deleted-remote"
    CONFLICT = "conflict"
    UPDATED_REMOTE = "updated-remote"
    UPDATED_LOCAL = "updated-local"
    UNCHANGED = "unchanged"


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    FETCH = "fetch"


class OperationStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class SessionState(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    DONE = "done"
    PARTIAL_FAILURE = "partial-failure"


class LocalAction(str, Enum):
    """Changes applied to the local document from remote state."""

    OVERWRITE = "overwrite"
    MATERIALIZE = "materialize"
    REMOVE = "remove"
    MOVE = "move"
    REORDER = "reorder"


# Reserved metadata keys holding sync bookkeeping
SYNC_LOCAL_ID = "sync-local-id"
SYNC_REMOTE_ID = "sync-remote-id"
SYNC_LOCAL_HASH = "sync-local-hash"
SYNC_REMOTE_HASH = "sync-remote-hash"
SYNC_PARENT = "sync-parent"
SYNC_PREFIX = "sync-"

USER_METADATA_KEYS = ("due", "members", "labels", "description", "checked")


def new_local_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Local hierarchy
# ---------------------------------------------------------------------------


@dataclass
class Entity:
    """A node of the local hierarchy.

    ``remote_id`` and the stored hashes live in ``metadata`` under the
    reserved ``sync-*`` keys so that rendering the entity persists them.
    """

    local_id: str
    kind: EntityKind
    title: str
    parent_local_id: str | None = None
    ordered_children: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    modified_at: datetime | None = None

    def __post_init__(self) -> None:
        self.metadata[SYNC_LOCAL_ID] = self.local_id

    @property
    def remote_id(self) -> str | None:
        return self.metadata.get(SYNC_REMOTE_ID) or None

    @remote_id.setter
    def remote_id(self, value: str | None) -> None:
        if value:
            self.metadata[SYNC_REMOTE_ID] = value
        else:
            self.metadata.pop(SYNC_REMOTE_ID, None)

    @property
    def user_metadata(self) -> dict[str, str]:
        """Metadata without the reserved ``sync-*`` bookkeeping keys."""
        return {
            k: v
            for k, v in self.metadata.items()
            if not k.startswith(SYNC_PREFIX)
        }

    def clear_sync_state(self) -> None:
        """Forget the remote binding, both stored hashes and the remote parent."""
        for key in (
            SYNC_REMOTE_ID,
            SYNC_LOCAL_HASH,
            SYNC_REMOTE_HASH,
            SYNC_PARENT,
        ):
            self.metadata.pop(key, None)


class EntityTree:
    """The local hierarchy: one board root and its descendants.

    Entities are indexed by local id; each parent's ``ordered_children``
    holds the outline order of its children.
    """

    def __init__(self) -> None:
        self.entities: dict[str, Entity] = {}
        self.root_id: str | None = None

    @classmethod
    def from_entities(cls, entities: list[Entity]) -> EntityTree:
        """Build and validate a tree from parent-first ordered entities.

        Raises:
            ValueError: If any structural invariant is violated.
        """
        tree = cls()
        for entity in entities:
            tree.add(entity)
        tree.validate()
        return tree

    def __len__(self) -> int:
        return len(self.entities)

    def __contains__(self, local_id: object) -> bool:
        return local_id in self.entities

    def __iter__(self) -> Iterator[Entity]:
        return self.walk()

    @property
    def root(self) -> Entity | None:
        if self.root_id is None:
            return None
        return self.entities[self.root_id]

    def get(self, local_id: str) -> Entity:
        try:
            return self.entities[local_id]
        except KeyError:
            raise KeyError(f"No entity with local id '{local_id}'") from None

    def parent(self, entity: Entity) -> Entity | None:
        if entity.parent_local_id is None:
            return None
        return self.entities.get(entity.parent_local_id)

    def children(self, local_id: str) -> list[Entity]:
        return [self.entities[c] for c in self.get(local_id).ordered_children]

    def walk(self, local_id: str | None = None) -> Iterator[Entity]:
        """Yield the subtree at ``local_id`` (default: root) in preorder."""
        start = local_id if local_id is not None else self.root_id
        if start is None:
            return
        stack = [start]
        while stack:
            entity = self.entities[stack.pop()]
            yield entity
            stack.extend(reversed(entity.ordered_children))

    def ancestors(self, local_id: str) -> list[Entity]:
        """Ancestors of ``local_id``, root first."""
        chain: list[Entity] = []
        current = self.parent(self.get(local_id))
        while current is not None:
            chain.append(current)
            current = self.parent(current)
        chain.reverse()
        return chain

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, entity: Entity, index: int | None = None) -> Entity:
        """Attach ``entity`` under its ``parent_local_id``.

        Raises:
            ValueError: On a duplicate local id, a missing parent, a second
                board, or a child kind the parent cannot hold.
        """
        if entity.local_id in self.entities:
            raise ValueError(f"Duplicate local id '{entity.local_id}'")

        if entity.parent_local_id is None:
            if entity.kind is not EntityKind.BOARD:
                raise ValueError(
                    f"{entity.kind.value} '{entity.title}' has no parent"
                )
            if self.root_id is not None:
                raise ValueError("A document holds exactly one board")
            self.root_id = entity.local_id
        else:
            parent = self.entities.get(entity.parent_local_id)
            if parent is None:
                raise ValueError(
                    f"Parent '{entity.parent_local_id}' of "
                    f"'{entity.title}' does not exist"
                )
            self._check_kind(parent, entity)
            if entity.local_id not in parent.ordered_children:
                if index is None:
                    parent.ordered_children.append(entity.local_id)
                else:
                    parent.ordered_children.insert(index, entity.local_id)

        self.entities[entity.local_id] = entity
        return entity

    def remove(self, local_id: str) -> list[Entity]:
        """Detach and drop the subtree at ``local_id``.

        Returns:
            The removed entities, children before parents.
        """
        entity = self.get(local_id)
        removed = list(self.walk(local_id))
        removed.reverse()
        parent = self.parent(entity)
        if parent is not None:
            parent.ordered_children.remove(local_id)
        else:
            self.root_id = None
        for item in removed:
            del self.entities[item.local_id]
        return removed

    def move(
        self, local_id: str, new_parent_id: str, index: int | None = None
    ) -> None:
        """Reparent ``local_id`` under ``new_parent_id``."""
        entity = self.get(local_id)
        new_parent = self.get(new_parent_id)
        self._check_kind(new_parent, entity)
        old_parent = self.parent(entity)
        if old_parent is not None:
            old_parent.ordered_children.remove(local_id)
        entity.parent_local_id = new_parent_id
        if index is None:
            new_parent.ordered_children.append(local_id)
        else:
            new_parent.ordered_children.insert(index, local_id)

    @staticmethod
    def _check_kind(parent: Entity, child: Entity) -> None:
        if CHILD_KIND[parent.kind] is not child.kind:
            raise ValueError(
                f"A {parent.kind.value} cannot contain a "
                f"{child.kind.value} ('{child.title}')"
            )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check every structural invariant of the hierarchy.

        Raises:
            ValueError: Describing the first violation found.
        """
        if self.entities and self.root_id is None:
            raise ValueError("Document has no board")

        seen_remote: dict[str, str] = {}
        for entity in self.entities.values():
            if entity.parent_local_id is None:
                if entity.local_id != self.root_id:
                    raise ValueError(
                        f"{entity.kind.value} '{entity.title}' has no parent"
                    )
            else:
                parent = self.entities.get(entity.parent_local_id)
                if parent is None:
                    raise ValueError(
                        f"Parent of '{entity.title}' does not exist"
                    )
                self._check_kind(parent, entity)
                if parent.ordered_children.count(entity.local_id) != 1:
                    raise ValueError(
                        f"'{entity.title}' must appear exactly once in "
                        f"its parent's children"
                    )

            for child_id in entity.ordered_children:
                child = self.entities.get(child_id)
                if child is None or child.parent_local_id != entity.local_id:
                    raise ValueError(
                        f"Child '{child_id}' of '{entity.title}' is not "
                        f"attached to it"
                    )

            remote_id = entity.remote_id
            if remote_id:
                holder = seen_remote.get(remote_id)
                if holder is not None:
                    raise ValueError(
                        f"Remote id '{remote_id}' is bound to both "
                        f"'{holder}' and '{entity.local_id}'"
                    )
                seen_remote[remote_id] = entity.local_id


# ---------------------------------------------------------------------------
# Remote state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RemoteRecord:
    """Normalized remote entity.

    ``metadata`` uses the same user keys as local entities (``due``,
    ``members``, ``labels``, ``description``, ``checked``).
    """

    kind: EntityKind
    remote_id: str
    title: str
    parent_remote_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    position: float = 0.0
    modified_at: datetime | None = None


@dataclass
class RemoteSnapshot:
    """Remote records gathered by the fetch phase of a session.

    Attributes:
        records: Fetched records by remote id.
        complete: Remote ids whose children were all fetched; a bound
            child absent from ``records`` was deleted remotely.
        missing: Remote ids whose fetch returned 404.
    """

    records: dict[str, RemoteRecord] = field(default_factory=dict)
    complete: set[str] = field(default_factory=set)
    missing: set[str] = field(default_factory=set)

    def add(self, record: RemoteRecord) -> None:
        self.records[record.remote_id] = record
        self.missing.discard(record.remote_id)

    def get(self, remote_id: str) -> RemoteRecord | None:
        return self.records.get(remote_id)

    def children(self, remote_id: str) -> list[RemoteRecord]:
        """Fetched children of ``remote_id``, in remote position order."""
        return sorted(
            (
                r
                for r in self.records.values()
                if r.parent_remote_id == remote_id
            ),
            key=lambda r: r.position,
        )

    def is_deleted(
        self, remote_id: str, parent_remote_id: str | None
    ) -> bool:
        if remote_id in self.missing:
            return True
        if remote_id in self.records:
            return False
        return parent_remote_id is not None and parent_remote_id in self.complete

    def is_known(self, remote_id: str) -> bool:
        """True when a fetch has established the entity's existence or absence."""
        return remote_id in self.records or remote_id in self.missing


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@dataclass
class Operation:
    """One unit of remote work in a sync session.

    Attributes:
        kind: create, update, delete or fetch.
        target_local_id: Local entity the operation acts on.
        target_remote_id: Remote id captured at planning time (deletes,
            fetches).
        depends_on: Ids of operations that must be applied first.
        position: Remote position to send with a create or update:
            a number, or ``"bottom"``. ``None`` keeps Trello's default.
        structure_only: The update only moves or repositions the
            entity; its fields are left as they are remotely.
        op_id: Unique id, never reused across sessions.
    """

    kind: OperationKind
    target_local_id: str
    target_remote_id: str | None = None
    position: float | str | None = None
    structure_only: bool = False
    depends_on: set[str] = field(default_factory=set)
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    retry_count: int = 0
    status: OperationStatus = OperationStatus.PENDING
    error: str | None = None

    def __repr__(self) -> str:
        return (
            f"Operation({self.kind.value} {self.target_local_id} "
            f"[{self.status.value}])"
        )


# ---------------------------------------------------------------------------
# Report contracts
# ---------------------------------------------------------------------------


class OperationResult(BaseModel):
    """Outcome of one remote operation.

    Attributes:
        op_id: Operation id.
        kind: Operation kind.
        local_id: Target entity local id.
        entity_kind: Target entity kind.
        title: Target entity title at planning time.
        status: Final operation status.
        retry_count: Retries the client performed.
        error: Error message for failed or skipped operations.
    """

    op_id: str
    kind: OperationKind
    local_id: str
    entity_kind: EntityKind
    title: str
    status: OperationStatus
    retry_count: int = 0
    error: str | None = None

    model_config = {"frozen": True}


class LocalChange(BaseModel):
    """A change applied to the local document from remote state."""

    action: LocalAction
    local_id: str
    entity_kind: EntityKind
    title: str

    model_config = {"frozen": True}


class SyncErrorInfo(BaseModel):
    """A failure recorded by a sync session.

    Attributes:
        op_id: Failing operation, if the error came from one.
        local_id: Entity involved, if any.
        error_type: Exception class name.
        message: Human-readable message.
    """

    op_id: str | None = None
    local_id: str | None = None
    error_type: str
    message: str

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one sync session.

    Attributes:
        command: Command that ran the session.
        direction: Session direction.
        scope: Session scope.
        dry_run: Whether operations were only planned.
        state: Terminal session state.
        results: One entry per operation.
        local_changes: Local document changes applied from remote.
        classifications: Classification per local id.
        errors: Recorded failures.
        message: The session's single summary notification.
        started_at: ISO 8601 start timestamp.
        completed_at: ISO 8601 completion timestamp.
    """

    command: str
    direction: Direction
    scope: Scope
    dry_run: bool = False
    state: SessionState
    results: list[OperationResult] = []
    local_changes: list[LocalChange] = []
    classifications: dict[str, Classification] = {}
    errors: list[SyncErrorInfo] = []
    message: str = ""
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def _with(
        self, kind: OperationKind, status: OperationStatus
    ) -> list[OperationResult]:
        return [
            r for r in self.results if r.kind == kind and r.status == status
        ]

    @property
    def created_remote(self) -> list[OperationResult]:
        return self._with(OperationKind.CREATE, OperationStatus.APPLIED)

    @property
    def updated_remote(self) -> list[OperationResult]:
        return self._with(OperationKind.UPDATE, OperationStatus.APPLIED)

    @property
    def deleted_remote(self) -> list[OperationResult]:
        return self._with(OperationKind.DELETE, OperationStatus.APPLIED)

    @property
    def mutations(self) -> list[OperationResult]:
        """Non-fetch operations, whatever their status."""
        return [r for r in self.results if r.kind != OperationKind.FETCH]

    @property
    def failed(self) -> list[OperationResult]:
        return [r for r in self.results if r.status == OperationStatus.FAILED]

    @property
    def skipped(self) -> list[OperationResult]:
        return [
            r for r in self.results if r.status == OperationStatus.SKIPPED
        ]

    def summary(self) -> str:
        """Format a human-readable summary of the session.

        Returns:
            Multi-line summary string with counts by outcome.
        """
        changed_local = len(self.local_changes)
        lines = [
            f"{self.command} ({self.direction.value}, {self.scope.value})"
            + (" (dry run)" if self.dry_run else ""),
            f"  Created remote: {len(self.created_remote)}",
            f"  Updated remote: {len(self.updated_remote)}",
            f"  Deleted remote: {len(self.deleted_remote)}",
            f"  Changed local:  {changed_local}",
            f"  Failed:         {len(self.failed)}",
            f"  Skipped:        {len(self.skipped)}",
            f"  Result:         {self.message}",
        ]
        return "\n".join(lines)
