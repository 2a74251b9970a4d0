"""Asynchronous execution of a session's operation graph.

``SyncSession`` tracks one command run through the states::

    planning -> executing -> finalizing -> done | partial-failure

``Orchestrator`` dispatches every operation whose dependencies have all
been applied, concurrently, and processes completions in whatever order
they arrive. A failed operation marks its transitive dependents
``skipped``; independent operations keep running. Errors whose class is
``fatal`` (authentication, lost connection) abort the session: pending
operations are cancelled and in-flight completions are dropped.

The orchestrator knows nothing about Trello. An ``OperationExecutor``
performs the remote call (``execute``, awaited) and applies its result
to local state (``apply``, called on the loop thread once the call
succeeded).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

from trello_sync.sync.models import (
    Direction,
    LocalChange,
    Operation,
    OperationStatus,
    Scope,
    SessionState,
    SyncErrorInfo,
)
from trello_sync.sync.reporter import summary_message

logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]


class OperationExecutor(Protocol):
    """Performs and applies operations for the orchestrator."""

    async def execute(self, op: Operation) -> Any:
        """Perform the remote side of ``op`` and return its result."""
        ...  # pragma: no cover

    def apply(self, op: Operation, result: Any) -> None:
        """Apply a successful result to local state."""
        ...  # pragma: no cover

    def describe(self, op: Operation) -> str:
        """Short human-readable label for ``op``."""
        ...  # pragma: no cover


@dataclass
class SyncSession:
    """State of one command run.

    Attributes:
        command: Command name.
        direction: Sync direction.
        scope: Sync scope.
        operations: Every operation dispatched by the session, by id.
        errors: Recorded failures, in the order they happened.
        local_changes: Local document changes applied from remote.
        touched: Local ids mutated by the session.
        state: Current state-machine state.
        message: Summary notification, set when the session ends.
    """

    command: str
    direction: Direction
    scope: Scope
    started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    completed_at: str | None = None
    operations: dict[str, Operation] = field(default_factory=dict)
    errors: list[SyncErrorInfo] = field(default_factory=list)
    local_changes: list[LocalChange] = field(default_factory=list)
    touched: set[str] = field(default_factory=set)
    state: SessionState = SessionState.PLANNING
    cancelled: bool = False
    message: str = ""

    def cancel(self, reason: str | None = None) -> None:
        """Cancel every operation that has not been dispatched yet."""
        if self.cancelled:
            return
        self.cancelled = True
        if reason is not None:
            self.errors.append(
                SyncErrorInfo(error_type="Cancelled", message=reason)
            )
        for op in self.operations.values():
            if op.status is OperationStatus.PENDING:
                op.status = OperationStatus.CANCELLED
        logger.info("Session %s cancelled", self.command)


class Orchestrator:
    """Run operation graphs for a session.

    Args:
        executor: Performs and applies operations.
        notify: Receives user-visible notifications.
        trace: Also notify once per finished operation.
    """

    def __init__(
        self,
        executor: OperationExecutor,
        notify: Notifier | None = None,
        *,
        trace: bool = False,
    ) -> None:
        self._executor = executor
        self._notify = notify or (lambda message: None)
        self._trace = trace

    async def execute(
        self, session: SyncSession, operations: list[Operation]
    ) -> None:
        """Enter ``executing`` and run the mutation graph."""
        session.state = SessionState.EXECUTING
        await self.dispatch(session, operations)

    async def dispatch(
        self, session: SyncSession, operations: list[Operation]
    ) -> None:
        """Run ``operations`` to completion honouring ``depends_on``."""
        for op in operations:
            session.operations[op.op_id] = op
        if session.cancelled:
            for op in operations:
                op.status = OperationStatus.CANCELLED
            return

        dependents: dict[str, list[Operation]] = {}
        for op in operations:
            for dep in op.depends_on:
                dependents.setdefault(dep, []).append(op)

        pending = {op.op_id: op for op in operations}
        running: dict[asyncio.Task, Operation] = {}

        try:
            while pending or running:
                if not session.cancelled:
                    for op in self._ready(session, pending):
                        del pending[op.op_id]
                        op.status = OperationStatus.RUNNING
                        logger.debug("Dispatching %r", op)
                        task = asyncio.create_task(self._run(op))
                        running[task] = op

                if not running:
                    break

                done, _ = await asyncio.wait(
                    running, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    op = running.pop(task)
                    self._complete(session, op, task, dependents)

                if session.cancelled:
                    for op in pending.values():
                        if op.status is OperationStatus.PENDING:
                            op.status = OperationStatus.CANCELLED
                    pending.clear()
                    await self._drop_in_flight(running)
                    running.clear()
        except asyncio.CancelledError:
            session.cancel("Sync cancelled")
            await self._drop_in_flight(running)
            raise

        for op in pending.values():
            # unreachable dependency
            if op.status is OperationStatus.PENDING:
                op.status = OperationStatus.SKIPPED
                op.error = "dependency not satisfied"

    def _ready(
        self, session: SyncSession, pending: dict[str, Operation]
    ) -> list[Operation]:
        ready = []
        for op in pending.values():
            if op.status is not OperationStatus.PENDING:
                continue
            deps = [session.operations.get(d) for d in op.depends_on]
            if all(
                d is not None and d.status is OperationStatus.APPLIED
                for d in deps
            ):
                ready.append(op)
        return ready

    async def _run(self, op: Operation) -> Any:
        return await self._executor.execute(op)

    def _complete(
        self,
        session: SyncSession,
        op: Operation,
        task: asyncio.Task,
        dependents: dict[str, list[Operation]],
    ) -> None:
        if session.cancelled:
            op.status = OperationStatus.CANCELLED
            return

        error = task.exception()
        if error is None:
            try:
                self._executor.apply(op, task.result())
            except (ValueError, KeyError) as e:
                error = e
            else:
                op.status = OperationStatus.APPLIED
                logger.debug("Applied %r", op)
                if self._trace:
                    self._notify(
                        f"{op.kind.value} {self._executor.describe(op)}: ok"
                    )
                return

        op.status = OperationStatus.FAILED
        op.error = str(error)
        session.errors.append(
            SyncErrorInfo(
                op_id=op.op_id,
                local_id=op.target_local_id,
                error_type=type(error).__name__,
                message=str(error),
            )
        )
        logger.error(
            "%s %s failed: %s",
            op.kind.value,
            self._executor.describe(op),
            error,
        )
        if self._trace:
            self._notify(
                f"{op.kind.value} {self._executor.describe(op)}: "
                f"failed ({error})"
            )

        skipped = self._skip_dependents(op, dependents)
        if skipped:
            logger.info(
                "Skipped %d operation(s) depending on %s", skipped, op.op_id
            )

        if getattr(error, "fatal", False):
            logger.error("Aborting session %s: %s", session.command, error)
            session.cancel()

    def _skip_dependents(
        self, failed: Operation, dependents: dict[str, list[Operation]]
    ) -> int:
        count = 0
        queue = [failed.op_id]
        while queue:
            for dependent in dependents.get(queue.pop(), []):
                if dependent.status is OperationStatus.PENDING:
                    dependent.status = OperationStatus.SKIPPED
                    dependent.error = f"dependency {failed.op_id} failed"
                    count += 1
                    queue.append(dependent.op_id)
        return count

    @staticmethod
    async def _drop_in_flight(running: dict[asyncio.Task, Operation]) -> None:
        for task, op in running.items():
            task.cancel()
            op.status = OperationStatus.CANCELLED
        if running:
            await asyncio.gather(*running, return_exceptions=True)

    async def finish(
        self,
        session: SyncSession,
        finalize: Callable[[], Awaitable[None]] | None = None,
    ) -> str:
        """Finalize the session and emit its single summary notification.

        Args:
            session: The session to finish.
            finalize: Coroutine that persists locally mutated entities.

        Returns:
            The summary message.
        """
        session.state = SessionState.FINALIZING
        if finalize is not None:
            try:
                await finalize()
            except OSError as e:
                logger.error("Could not write document: %s", e)
                session.errors.append(
                    SyncErrorInfo(error_type=type(e).__name__, message=str(e))
                )

        session.completed_at = datetime.now(timezone.utc).isoformat()
        if session.errors:
            session.state = SessionState.PARTIAL_FAILURE
            session.message = summary_message(session.errors)
        else:
            session.state = SessionState.DONE
            session.message = "Done!"
        self._notify(session.message)
        return session.message

