"""Bidirectional local-id <-> remote-id map.

The map is rebuilt from the document's ``sync-remote-id`` metadata when a
session starts and writes every change back to the entity, so rendering
the document persists the bindings.
"""

from __future__ import annotations

import logging

from trello_sync.sync.models import EntityTree

logger = logging.getLogger(__name__)


class IdentityMap:
    """Bindings between local entities and remote ids.

    Args:
        tree: The entity tree whose metadata stores the bindings.
    """

    def __init__(self, tree: EntityTree) -> None:
        self._tree = tree
        self._forward: dict[str, str] = {}
        self._reverse: dict[str, str] = {}
        for entity in tree.entities.values():
            if entity.remote_id:
                self.bind(entity.local_id, entity.remote_id)

    def __len__(self) -> int:
        return len(self._forward)

    def __contains__(self, local_id: object) -> bool:
        return local_id in self._forward

    def items(self) -> list[tuple[str, str]]:
        return list(self._forward.items())

    def resolve(self, local_id: str) -> str | None:
        return self._forward.get(local_id)

    def resolve_reverse(self, remote_id: str) -> str | None:
        return self._reverse.get(remote_id)

    def bind(self, local_id: str, remote_id: str) -> None:
        """Bind ``local_id`` to ``remote_id``.

        Idempotent. Replaces any earlier binding of ``local_id``.

        Raises:
            ValueError: If ``remote_id`` is already bound to a different
                local id.
        """
        holder = self._reverse.get(remote_id)
        if holder is not None and holder != local_id:
            raise ValueError(
                f"Remote id '{remote_id}' is already bound to '{holder}'"
            )
        previous = self._forward.get(local_id)
        if previous is not None and previous != remote_id:
            logger.debug(
                "Rebinding %s: %s -> %s", local_id, previous, remote_id
            )
            del self._reverse[previous]
        self._forward[local_id] = remote_id
        self._reverse[remote_id] = local_id

        entity = self._tree.entities.get(local_id)
        if entity is not None:
            entity.remote_id = remote_id

    def unbind(self, local_id: str) -> str | None:
        """Drop the binding of ``local_id`` and its stored hashes.

        Returns:
            The remote id that was bound, or ``None``.
        """
        remote_id = self._forward.pop(local_id, None)
        if remote_id is not None:
            self._reverse.pop(remote_id, None)
        entity = self._tree.entities.get(local_id)
        if entity is not None:
            entity.clear_sync_state()
        return remote_id
