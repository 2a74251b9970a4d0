"""Conflict resolution policies for the sync engine.

A conflict is an entity changed on both sides since the last sync. The
session direction picks the policy:

- ``LocalWinsResolver`` (``to-remote``): push local content.
- ``RemoteWinsResolver`` (``from-remote``): overwrite local content.
- ``NewerWinsResolver`` (``bidirectional``): the side with the newer
  modification timestamp wins; ties favour remote. When either
  timestamp is missing the remote side wins and a warning is logged.

The ``create_resolver()`` factory maps a direction to its resolver.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

from trello_sync.sync.models import Direction, Entity, RemoteRecord

logger = logging.getLogger(__name__)

Resolution = Literal["local", "remote"]


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(self, entity: Entity, record: RemoteRecord) -> Resolution:
        """Pick the winning side for a conflicting entity.

        Args:
            entity: The locally modified entity.
            record: The remotely modified record bound to it.

        Returns:
            ``"local"`` or ``"remote"``.
        """
        ...  # pragma: no cover


class LocalWinsResolver:
    """Always resolve conflicts in favour of local content."""

    def resolve(self, entity: Entity, record: RemoteRecord) -> Resolution:
        return "local"


class RemoteWinsResolver:
    """Always resolve conflicts in favour of remote content."""

    def resolve(self, entity: Entity, record: RemoteRecord) -> Resolution:
        return "remote"


class NewerWinsResolver:
    """Resolve conflicts by modification time, ties to remote."""

    def resolve(self, entity: Entity, record: RemoteRecord) -> Resolution:
        local_time = entity.modified_at
        remote_time = record.modified_at
        if local_time is None or remote_time is None:
            logger.warning(
                "Conflict on %s '%s' has no %s timestamp; keeping remote",
                entity.kind.value,
                entity.title,
                "local" if local_time is None else "remote",
            )
            return "remote"
        try:
            local_newer = local_time > remote_time
        except TypeError:
            # naive vs aware datetimes
            logger.warning(
                "Conflict on %s '%s' has incomparable timestamps; "
                "keeping remote",
                entity.kind.value,
                entity.title,
            )
            return "remote"
        return "local" if local_newer else "remote"


_DIRECTION_MAP: dict[Direction, type] = {
    Direction.TO_REMOTE: LocalWinsResolver,
    Direction.FROM_REMOTE: RemoteWinsResolver,
    Direction.BIDIRECTIONAL: NewerWinsResolver,
}


def create_resolver(direction: Direction | str) -> ConflictResolver:
    """Create the conflict resolver for a session direction.

    Raises:
        ValueError: If the direction is not recognised.
    """
    try:
        cls = _DIRECTION_MAP[Direction(direction)]
    except ValueError:
        raise ValueError(
            f"Unknown sync direction: '{direction}'. Valid directions: "
            f"{sorted(d.value for d in Direction)}"
        ) from None
    return cls()  # type: ignore[no-any-return]
