"""Sync engine: runs one command as one sync session.

The ``SyncEngine`` ties together the identity map, classifier, planner,
resolver and orchestrator for an outline document. For the sync
commands it:

1. Computes the scope (entity, subtree or whole document).
2. Fetches the remote state covering the scope (FETCH operations).
3. Classifies every in-scope entity.
4. Resolves conflicts according to the session direction.
5. Plans remote operations and local changes.
6. Applies local changes, then executes the operation graph.
7. Finalizes: restamps parents, writes the document, notifies once.

The engine is also the orchestrator's ``OperationExecutor``: it builds
each request at dispatch time and applies each result (bind, unbind,
fresh hashes, snapshot ingestion) when the response arrives.

Dry runs fetch remote state and plan, but send no mutating request and
never write the document.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from trello_sync.core.errors import NotFoundError
from trello_sync.sync.classifier import ClassificationResult, classify
from trello_sync.sync.fetcher import ingest_board, ingest_card, plan_fetches
from trello_sync.sync.identity import IdentityMap
from trello_sync.sync.mapper import (
    RemoteRequest,
    ResourceMapper,
    apply_record,
    entity_from_record,
    record_from_json,
)
from trello_sync.sync.models import (
    Classification,
    Direction,
    Entity,
    EntityKind,
    LocalAction,
    LocalChange,
    Operation,
    OperationKind,
    OperationResult,
    RemoteRecord,
    RemoteSnapshot,
    Scope,
    SessionState,
    SyncErrorInfo,
    SyncReport,
)
from trello_sync.sync.orchestrator import Notifier, Orchestrator, SyncSession
from trello_sync.sync.planner import Plan, plan_sync
from trello_sync.sync.resolver import Resolution, create_resolver
from trello_sync.sync.state import (
    local_changed,
    remote_changed,
    stamp,
    stamp_local,
    stamp_parent,
)

if TYPE_CHECKING:
    from trello_sync.core.client import TrelloClient
    from trello_sync.document.outline import OutlineDocument

logger = logging.getLogger(__name__)


# command -> (direction, scope, needs an entity)
COMMANDS: dict[str, tuple[Direction, Scope, bool]] = {
    "sync-entity-to-remote": (Direction.TO_REMOTE, Scope.SINGLE_ENTITY, True),
    "sync-entity-from-remote": (
        Direction.FROM_REMOTE,
        Scope.SINGLE_ENTITY,
        True,
    ),
    "sync-subtree-to-remote": (Direction.TO_REMOTE, Scope.SUBTREE, True),
    "sync-subtree-from-remote": (Direction.FROM_REMOTE, Scope.SUBTREE, True),
    "sync-document-to-remote": (
        Direction.TO_REMOTE,
        Scope.WHOLE_DOCUMENT,
        False,
    ),
    "sync-document-from-remote": (
        Direction.FROM_REMOTE,
        Scope.WHOLE_DOCUMENT,
        False,
    ),
    "sync-document": (Direction.BIDIRECTIONAL, Scope.WHOLE_DOCUMENT, False),
    "delete-entity": (Direction.TO_REMOTE, Scope.SUBTREE, True),
    "delete-all-entities": (Direction.TO_REMOTE, Scope.WHOLE_DOCUMENT, False),
    "install-board-metadata": (
        Direction.FROM_REMOTE,
        Scope.WHOLE_DOCUMENT,
        False,
    ),
    "create-board-and-bootstrap": (
        Direction.TO_REMOTE,
        Scope.WHOLE_DOCUMENT,
        False,
    ),
}


class SyncEngine:
    """Run sync commands against one outline document.

    Args:
        client: Trello client (anything with ``request``, ``get_board``
            and ``get_card`` coroutines).
        document: The parsed outline document.
        notify: Receives the session summary (and, in trace mode, one
            line per operation).
        trace: Notify per operation.
    """

    def __init__(
        self,
        client: TrelloClient,
        document: OutlineDocument,
        *,
        notify: Notifier | None = None,
        trace: bool = False,
    ) -> None:
        self.client = client
        self.document = document
        self.tree = document.tree
        self.identity = IdentityMap(self.tree)
        self.mapper = ResourceMapper(self.tree, self.identity)
        self.snapshot = RemoteSnapshot()
        self.orchestrator = Orchestrator(self, notify, trace=trace)
        self.session: SyncSession | None = None
        self._clean: set[str] = set()
        self._restamp: set[str] = set()
        self._labels: dict[str, tuple[EntityKind, str]] = {}

    # ------------------------------------------------------------------
    # Command dispatch
    # ------------------------------------------------------------------

    async def run(
        self,
        command: str,
        entity_id: str | None = None,
        *,
        board_id: str | None = None,
        dry_run: bool = False,
    ) -> SyncReport:
        """Run a command by name.

        Raises:
            ValueError: On an unknown command, a missing entity id, or
                a command that does not apply to the document.
        """
        if command not in COMMANDS:
            raise ValueError(
                f"Unknown command: '{command}'. Valid commands: "
                f"{sorted(COMMANDS)}"
            )
        direction, scope, needs_entity = COMMANDS[command]
        if needs_entity:
            if not entity_id:
                raise ValueError(f"{command} needs an entity id")
            if entity_id not in self.tree:
                raise ValueError(f"No entity with local id '{entity_id}'")

        match command:
            case "delete-entity":
                return await self.delete_entity(entity_id, dry_run=dry_run)
            case "delete-all-entities":
                return await self.delete_all_entities(dry_run=dry_run)
            case "install-board-metadata":
                return await self.install_board_metadata(
                    board_id, dry_run=dry_run
                )
            case "create-board-and-bootstrap":
                return await self.create_board_and_bootstrap(dry_run=dry_run)
            case _:
                return await self._sync(
                    command, direction, scope, entity_id, dry_run
                )

    async def sync_entity(
        self, local_id: str, direction: Direction, *, dry_run: bool = False
    ) -> SyncReport:
        command = f"sync-entity-{direction.value}"
        return await self._sync(
            command, direction, Scope.SINGLE_ENTITY, local_id, dry_run
        )

    async def sync_subtree(
        self, local_id: str, direction: Direction, *, dry_run: bool = False
    ) -> SyncReport:
        command = f"sync-subtree-{direction.value}"
        return await self._sync(
            command, direction, Scope.SUBTREE, local_id, dry_run
        )

    async def sync_document(
        self,
        direction: Direction = Direction.BIDIRECTIONAL,
        *,
        dry_run: bool = False,
    ) -> SyncReport:
        command = (
            "sync-document"
            if direction is Direction.BIDIRECTIONAL
            else f"sync-document-{direction.value}"
        )
        return await self._sync(
            command, direction, Scope.WHOLE_DOCUMENT, None, dry_run
        )

    def cancel(self) -> None:
        """Cancel the running session; in-flight completions are dropped."""
        if self.session is not None:
            self.session.cancel("Sync cancelled")

    # ------------------------------------------------------------------
    # Sync sessions
    # ------------------------------------------------------------------

    def _start(
        self, command: str, direction: Direction, scope: Scope
    ) -> SyncSession:
        self.session = SyncSession(command, direction, scope)
        self.snapshot = RemoteSnapshot()
        self._restamp = set()
        self._clean = {
            e.local_id for e in self.tree.walk() if not local_changed(e)
        }
        self._labels = {
            e.local_id: (e.kind, e.title) for e in self.tree.walk()
        }
        logger.info("Starting %s", command)
        return self.session

    async def _sync(
        self,
        command: str,
        direction: Direction,
        scope: Scope,
        anchor_id: str | None,
        dry_run: bool,
    ) -> SyncReport:
        session = self._start(command, direction, scope)
        scope_ids = self._scope_ids(scope, anchor_id, direction)

        fetches = plan_fetches(
            self.tree, scope_ids, whole_board=scope is Scope.WHOLE_DOCUMENT
        )
        await self.orchestrator.dispatch(session, fetches)
        if session.errors or session.cancelled:
            return await self._finish(session, dry_run)

        result = classify(
            self.tree,
            self.identity,
            self.snapshot,
            scope_ids,
            discover_new_remote=(
                scope is not Scope.SINGLE_ENTITY
                and direction is not Direction.TO_REMOTE
            ),
        )
        if direction is Direction.TO_REMOTE:
            self._recreate_deleted(result, dry_run)
            # Remote moves are only applied when pulling
            result.moved.clear()

        resolutions = self._resolve_conflicts(result, direction)
        plan = plan_sync(self.tree, result, direction, resolutions)

        if dry_run:
            self._preview_local(session, plan, result, scope_ids)
            for op in plan.operations:
                session.operations[op.op_id] = op
            return await self._finish(session, dry_run, result.states)

        if direction is not Direction.TO_REMOTE:
            self._apply_local(session, plan, result, scope_ids)
        await self.orchestrator.execute(session, plan.operations)
        return await self._finish(session, dry_run, result.states)

    def _scope_ids(
        self, scope: Scope, anchor_id: str | None, direction: Direction
    ) -> list[str]:
        """In-scope local ids, parents first.

        Entity and subtree scopes pushing to remote include unbound
        ancestors, which must be created first.
        """
        if scope is Scope.WHOLE_DOCUMENT or anchor_id is None:
            return [e.local_id for e in self.tree.walk()]
        ids: list[str] = []
        if direction is not Direction.FROM_REMOTE:
            ids = [
                a.local_id
                for a in self.tree.ancestors(anchor_id)
                if not a.remote_id
            ]
        if scope is Scope.SINGLE_ENTITY:
            ids.append(anchor_id)
        else:
            ids.extend(e.local_id for e in self.tree.walk(anchor_id))
        return ids

    def _recreate_deleted(
        self, result: ClassificationResult, dry_run: bool
    ) -> None:
        """Pushing to remote: recreate remotely deleted entities."""
        for local_id in result.with_state(Classification.DELETED_REMOTE):
            logger.info(
                "%s '%s' was deleted remotely; recreating it",
                *self._labels[local_id],
            )
            if not dry_run:
                self.identity.unbind(local_id)
            result.states[local_id] = Classification.NEW_LOCAL

    def _resolve_conflicts(
        self, result: ClassificationResult, direction: Direction
    ) -> dict[str, Resolution]:
        resolver = create_resolver(direction)
        resolutions: dict[str, Resolution] = {}
        for local_id in result.with_state(Classification.CONFLICT):
            entity = self.tree.get(local_id)
            record = self.snapshot.get(entity.remote_id or "")
            if record is None:
                continue
            resolutions[local_id] = resolver.resolve(entity, record)
            logger.info(
                "Conflict on %s '%s': %s wins",
                entity.kind.value,
                entity.title,
                resolutions[local_id],
            )
        return resolutions

    # ------------------------------------------------------------------
    # Local changes
    # ------------------------------------------------------------------

    def _change(
        self, session: SyncSession, action: LocalAction, entity: Entity
    ) -> None:
        session.local_changes.append(
            LocalChange(
                action=action,
                local_id=entity.local_id,
                entity_kind=entity.kind,
                title=entity.title,
            )
        )

    def _preview_local(
        self,
        session: SyncSession,
        plan: Plan,
        result: ClassificationResult,
        scope_ids: list[str],
    ) -> None:
        for local_id in plan.local_overwrites:
            self._change(session, LocalAction.OVERWRITE, self.tree.get(local_id))
        for local_id, _ in result.moved:
            self._change(session, LocalAction.MOVE, self.tree.get(local_id))
        for local_id in plan.local_removals:
            self._change(session, LocalAction.REMOVE, self.tree.get(local_id))
        for _, record in result.new_remote:
            session.local_changes.append(
                LocalChange(
                    action=LocalAction.MATERIALIZE,
                    local_id="",
                    entity_kind=record.kind,
                    title=record.title,
                )
            )
        if session.direction is not Direction.TO_REMOTE:
            for parent_id in self._reorder_candidates(scope_ids, plan):
                parent = self.tree.get(parent_id)
                if self._remote_order(parent) is not None:
                    self._change(session, LocalAction.REORDER, parent)

    def _apply_local(
        self,
        session: SyncSession,
        plan: Plan,
        result: ClassificationResult,
        scope_ids: list[str],
    ) -> None:
        """Apply remote state to the document before remote operations run."""
        for local_id in plan.local_overwrites:
            entity = self.tree.get(local_id)
            record = self.snapshot.get(entity.remote_id or "")
            if record is None:
                continue
            apply_record(entity, record)
            stamp(entity, record)
            session.touched.add(local_id)
            self._change(session, LocalAction.OVERWRITE, entity)

        for local_id, new_parent_id in result.moved:
            entity = self.tree.get(local_id)
            old_parent_id = entity.parent_local_id
            self.tree.move(local_id, new_parent_id)
            self._restamp.update({new_parent_id, old_parent_id or ""})
            session.touched.add(local_id)
            self._change(session, LocalAction.MOVE, entity)

        for local_id in plan.local_removals:
            if local_id in self.tree:
                self._remove_local(session, local_id)

        for parent_id, record in result.new_remote:
            if parent_id in self.tree:
                self._materialize(session, parent_id, record)
                self._restamp.add(parent_id)

        for parent_id in self._reorder_candidates(scope_ids, plan):
            parent = self.tree.get(parent_id)
            order = self._remote_order(parent)
            if order is None:
                continue
            parent.ordered_children = order
            self._restamp.add(parent_id)
            session.touched.add(parent_id)
            self._change(session, LocalAction.REORDER, parent)

    def _reorder_candidates(
        self, scope_ids: list[str], plan: Plan
    ) -> list[str]:
        pushed = set(plan.repositioned)
        return [
            local_id
            for local_id in scope_ids
            if local_id in self.tree and local_id not in pushed
        ]

    def _remote_order(self, parent: Entity) -> list[str] | None:
        """The parent's children with the bound ones in remote order.

        Only children that sit under the parent remotely are sorted, in
        the slots they already hold; every other child keeps its place.

        Returns:
            The new child order, or ``None`` if it would not change.
        """
        remote_id = parent.remote_id
        if not remote_id or remote_id not in self.snapshot.complete:
            return None
        slots: list[int] = []
        placed: list[tuple[float, str]] = []
        for index, child_id in enumerate(parent.ordered_children):
            record = self.snapshot.get(self.tree.get(child_id).remote_id or "")
            if record is not None and record.parent_remote_id == remote_id:
                slots.append(index)
                placed.append((record.position, child_id))
        placed.sort(key=lambda pair: pair[0])
        order = list(parent.ordered_children)
        for index, (_, child_id) in zip(slots, placed):
            order[index] = child_id
        return order if order != parent.ordered_children else None

    def _remove_local(self, session: SyncSession, local_id: str) -> None:
        entity = self.tree.get(local_id)
        self._change(session, LocalAction.REMOVE, entity)
        if entity.parent_local_id is not None:
            self._restamp.add(entity.parent_local_id)
            session.touched.add(entity.parent_local_id)
        for removed in self.tree.remove(local_id):
            self.identity.unbind(removed.local_id)
        session.touched.add(local_id)

    def _materialize(
        self,
        session: SyncSession,
        parent_id: str,
        record: RemoteRecord,
        *,
        recursive: bool = True,
    ) -> Entity:
        """Create a bound local entity (and its subtree) from remote."""
        entity = entity_from_record(
            record, parent_id, modified_at=record.modified_at
        )
        self.tree.add(entity)
        self.identity.bind(entity.local_id, record.remote_id)
        self._labels[entity.local_id] = (entity.kind, entity.title)
        self._change(session, LocalAction.MATERIALIZE, entity)
        if recursive:
            for child in self.snapshot.children(record.remote_id):
                self._materialize(session, entity.local_id, child)
        stamp(entity, record)
        session.touched.add(entity.local_id)
        return entity

    # ------------------------------------------------------------------
    # Delete commands
    # ------------------------------------------------------------------

    async def delete_entity(
        self, local_id: str, *, dry_run: bool = False
    ) -> SyncReport:
        """Delete an entity's subtree remotely (children first), then locally."""
        session = self._start("delete-entity", Direction.TO_REMOTE, Scope.SUBTREE)
        self.tree.get(local_id)
        return await self._run_deletes(session, [local_id], dry_run)

    async def delete_all_entities(self, *, dry_run: bool = False) -> SyncReport:
        """Delete every card remotely and locally, keeping board and lists."""
        session = self._start(
            "delete-all-entities", Direction.TO_REMOTE, Scope.WHOLE_DOCUMENT
        )
        card_ids = [
            e.local_id for e in self.tree.walk() if e.kind is EntityKind.CARD
        ]
        return await self._run_deletes(session, card_ids, dry_run)

    async def _run_deletes(
        self, session: SyncSession, root_ids: list[str], dry_run: bool
    ) -> SyncReport:
        operations = plan_sync(
            self.tree,
            ClassificationResult(),
            Direction.TO_REMOTE,
            deletions=root_ids,
        ).operations
        if dry_run:
            for op in operations:
                session.operations[op.op_id] = op
            for root_id in root_ids:
                if not self.tree.get(root_id).remote_id:
                    self._change(
                        session, LocalAction.REMOVE, self.tree.get(root_id)
                    )
            return await self._finish(session, dry_run)

        await self.orchestrator.execute(session, operations)
        if not session.errors and not session.cancelled:
            # Subtrees that were never synced have nothing to delete remotely
            for root_id in root_ids:
                if root_id in self.tree:
                    self._remove_local(session, root_id)
        return await self._finish(session, dry_run)

    # ------------------------------------------------------------------
    # Bootstrap commands
    # ------------------------------------------------------------------

    async def install_board_metadata(
        self, board_id: str | None = None, *, dry_run: bool = False
    ) -> SyncReport:
        """Bind the document to an existing board and its lists.

        Binds the board, binds each unbound local list to the unbound
        remote list with the same title, and adds remote lists missing
        from the document. Cards are left to the sync commands.

        Raises:
            ValueError: If the document has no board, or no board id is
                given and the board is not bound.
        """
        session = self._start(
            "install-board-metadata",
            Direction.FROM_REMOTE,
            Scope.WHOLE_DOCUMENT,
        )
        root = self.tree.root
        if root is None:
            raise ValueError("Document has no board")
        target = board_id or root.remote_id
        if not target:
            raise ValueError(
                "No board id given and the document's board is not bound"
            )

        fetch = Operation(
            kind=OperationKind.FETCH,
            target_local_id=root.local_id,
            target_remote_id=target,
        )
        await self.orchestrator.dispatch(session, [fetch])
        if session.errors or session.cancelled:
            return await self._finish(session, dry_run)
        board = self.snapshot.get(target)
        if board is None:
            session.errors.append(
                SyncErrorInfo(
                    error_type="NotFoundError",
                    message=f"Board {target} not found",
                )
            )
            return await self._finish(session, dry_run)

        rebinding = root.remote_id is not None and root.remote_id != target
        if dry_run:
            self._change(session, LocalAction.OVERWRITE, root)
        else:
            if rebinding:
                logger.warning(
                    "Rebinding document from board %s to %s; dropping "
                    "existing bindings",
                    root.remote_id,
                    target,
                )
                for entity in list(self.tree.walk()):
                    self.identity.unbind(entity.local_id)
            self.identity.bind(root.local_id, target)
            apply_record(root, board)
            session.touched.add(root.local_id)
            self._change(session, LocalAction.OVERWRITE, root)

        bound_lists = {
            e.remote_id for e in self.tree.children(root.local_id) if e.remote_id
        }
        if rebinding:
            bound_lists = set()
        free = [
            r for r in self.snapshot.children(target) if r.remote_id not in bound_lists
        ]
        for entity in self.tree.children(root.local_id):
            if entity.remote_id and not rebinding:
                continue
            match = next((r for r in free if r.title == entity.title), None)
            if match is None:
                continue
            free.remove(match)
            if not dry_run:
                self.identity.bind(entity.local_id, match.remote_id)
                stamp(entity, match)
                session.touched.add(entity.local_id)
            logger.info("Bound list '%s' to %s", entity.title, match.remote_id)

        for record in free:
            if dry_run:
                session.local_changes.append(
                    LocalChange(
                        action=LocalAction.MATERIALIZE,
                        local_id="",
                        entity_kind=record.kind,
                        title=record.title,
                    )
                )
            else:
                self._materialize(
                    session, root.local_id, record, recursive=False
                )

        if not dry_run:
            stamp(root, board)
        return await self._finish(session, dry_run)

    async def create_board_and_bootstrap(
        self, *, dry_run: bool = False
    ) -> SyncReport:
        """Create the document's board and its lists remotely.

        Raises:
            ValueError: If the document has no board or the board is
                already bound.
        """
        session = self._start(
            "create-board-and-bootstrap",
            Direction.TO_REMOTE,
            Scope.WHOLE_DOCUMENT,
        )
        root = self.tree.root
        if root is None:
            raise ValueError("Document has no board")
        if root.remote_id:
            raise ValueError(
                f"Board '{root.title}' is already bound to {root.remote_id}"
            )

        if not dry_run:
            for entity in self.tree.walk():
                if entity.remote_id:
                    self.identity.unbind(entity.local_id)
        result = ClassificationResult()
        result.states[root.local_id] = Classification.NEW_LOCAL
        for lst in self.tree.children(root.local_id):
            result.states[lst.local_id] = Classification.NEW_LOCAL
        plan = plan_sync(self.tree, result, Direction.TO_REMOTE)

        if dry_run:
            for op in plan.operations:
                session.operations[op.op_id] = op
            return await self._finish(session, dry_run, result.states)
        await self.orchestrator.execute(session, plan.operations)
        return await self._finish(session, dry_run, result.states)

    # ------------------------------------------------------------------
    # OperationExecutor
    # ------------------------------------------------------------------

    def _board_remote_id(self) -> str | None:
        root = self.tree.root
        return root.remote_id if root is not None else None

    def describe(self, op: Operation) -> str:
        kind, title = self._labels.get(
            op.target_local_id, (EntityKind.CARD, op.target_local_id)
        )
        return f"{kind.value} '{title}'"

    async def execute(self, op: Operation) -> Any:
        def on_retry(count: int) -> None:
            op.retry_count = count

        board_id = self._board_remote_id()
        entity = self.tree.get(op.target_local_id)

        match op.kind:
            case OperationKind.FETCH:
                try:
                    if entity.kind is EntityKind.BOARD:
                        return await self.client.get_board(
                            op.target_remote_id, on_retry=on_retry
                        )
                    return await self.client.get_card(
                        op.target_remote_id, board_id, on_retry=on_retry
                    )
                except NotFoundError:
                    logger.info(
                        "%s %s not found remotely",
                        entity.kind.value,
                        op.target_remote_id,
                    )
                    return None
            case OperationKind.CREATE:
                request = self.mapper.create_request(entity, op.position)
                if entity.kind is EntityKind.BOARD:
                    board_id = None
            case OperationKind.UPDATE:
                request = self.mapper.update_request(
                    entity, op.position, structure_only=op.structure_only
                )
            case OperationKind.DELETE:
                parent_remote_id = (
                    self.mapper.parent_remote_id(entity)
                    if entity.kind is EntityKind.ITEM
                    else None
                )
                request = self.mapper.delete_request(
                    entity.kind, op.target_remote_id or "", parent_remote_id
                )
                try:
                    return await self._send(request, board_id, on_retry)
                except NotFoundError:
                    logger.info(
                        "%s already deleted remotely", self.describe(op)
                    )
                    return None

        return await self._send(request, board_id, on_retry)

    async def _send(
        self,
        request: RemoteRequest,
        board_id: str | None,
        on_retry: Any,
    ) -> Any:
        return await self.client.request(
            request.method,
            request.path,
            request.params,
            request.body,
            board_id=board_id,
            on_retry=on_retry,
        )

    def apply(self, op: Operation, result: Any) -> None:
        session = self.session
        if session is None:
            raise RuntimeError("apply() called outside a sync session")
        local_id = op.target_local_id

        match op.kind:
            case OperationKind.FETCH:
                if result is None:
                    self.snapshot.missing.add(op.target_remote_id or "")
                elif self.tree.get(local_id).kind is EntityKind.BOARD:
                    ingest_board(self.snapshot, result)
                else:
                    ingest_card(self.snapshot, result)

            case OperationKind.CREATE | OperationKind.UPDATE:
                entity = self.tree.get(local_id)
                record = record_from_json(
                    entity.kind, result, self.mapper.parent_remote_id(entity)
                )
                if op.kind is OperationKind.CREATE:
                    self.identity.bind(local_id, record.remote_id)
                if op.structure_only and self._remote_pending(entity):
                    # Remote edits not pulled yet stay visible to later sessions
                    stamp_parent(entity, record)
                else:
                    stamp(entity, record)
                session.touched.add(local_id)

            case OperationKind.DELETE:
                if local_id in self.tree:
                    self._remove_local(session, local_id)

    def _remote_pending(self, entity: Entity) -> bool:
        """True when the fetched record holds changes not yet pulled."""
        record = self.snapshot.get(entity.remote_id or "")
        return record is not None and remote_changed(entity, record)

    # ------------------------------------------------------------------
    # Finalizing
    # ------------------------------------------------------------------

    async def _finish(
        self,
        session: SyncSession,
        dry_run: bool,
        classifications: dict[str, Classification] | None = None,
    ) -> SyncReport:
        async def finalize() -> None:
            if dry_run:
                return
            for parent_id in self._restamp:
                # Children changed because of this session only
                if parent_id in self.tree and parent_id in self._clean:
                    stamp_local(self.tree.get(parent_id))
                    session.touched.add(parent_id)
            if session.touched and self.document.path is not None:
                await self.document.save_async()

        await self.orchestrator.finish(session, finalize)
        logger.info("%s finished: %s", session.command, session.message)
        return self._report(session, dry_run, classifications or {})

    def _report(
        self,
        session: SyncSession,
        dry_run: bool,
        classifications: dict[str, Classification],
    ) -> SyncReport:
        results = []
        for op in session.operations.values():
            kind, title = self._labels.get(
                op.target_local_id, (EntityKind.CARD, op.target_local_id)
            )
            results.append(
                OperationResult(
                    op_id=op.op_id,
                    kind=op.kind,
                    local_id=op.target_local_id,
                    entity_kind=kind,
                    title=title,
                    status=op.status,
                    retry_count=op.retry_count,
                    error=op.error,
                )
            )
        return SyncReport(
            command=session.command,
            direction=session.direction,
            scope=session.scope,
            dry_run=dry_run,
            state=session.state,
            results=results,
            local_changes=list(session.local_changes),
            classifications=dict(classifications),
            errors=list(session.errors),
            message=session.message,
            started_at=session.started_at,
            completed_at=session.completed_at,
        )
