"""Mapping between local entities and Trello REST resources.

Translates in both directions:

- **Local -> Trello**: builds the request (method, path, query, body)
  that creates, updates or deletes an entity. Requests are built when
  the operation is dispatched, not when it is planned, so parents bound
  earlier in the same session are already resolvable.
- **Trello -> Local**: normalises Trello JSON into ``RemoteRecord``s
  that use the local metadata keys, and applies records to entities.

Trello resources per kind::

    board      POST /boards            PUT /boards/{id}       DELETE /boards/{id}
    list       POST /lists             PUT /lists/{id}        PUT /lists/{id}/closed
    card       POST /cards             PUT /cards/{id}        DELETE /cards/{id}
    checklist  POST /checklists        PUT /checklists/{id}   DELETE /checklists/{id}
    item       POST /checklists/{c}/checkItems
               PUT /cards/{card}/checkItem/{id}
               DELETE /checklists/{c}/checkItems/{id}

Trello cannot delete lists, so deleting a list archives it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from trello_sync.sync.identity import IdentityMap
from trello_sync.sync.models import (
    Entity,
    EntityKind,
    EntityTree,
    RemoteRecord,
    new_local_id,
)

# User metadata keys carried by each kind on the Trello side
KIND_FIELDS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.BOARD: ("description",),
    EntityKind.LIST: (),
    EntityKind.CARD: ("description", "due", "members", "labels"),
    EntityKind.CHECKLIST: (),
    EntityKind.ITEM: ("checked",),
}


@dataclass(frozen=True)
class RemoteRequest:
    method: str
    path: str
    params: dict[str, Any] | None = None
    body: dict[str, Any] | None = None


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a Trello ISO 8601 timestamp (``...Z``)."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _split_ids(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _joined(values: list[str] | None) -> str:
    return ",".join(values or [])


def _compact(metadata: dict[str, str | None]) -> dict[str, str]:
    return {k: v for k, v in metadata.items() if v}


# ---------------------------------------------------------------------------
# Trello -> Local
# ---------------------------------------------------------------------------


def record_from_json(
    kind: EntityKind,
    data: dict[str, Any],
    parent_remote_id: str | None = None,
) -> RemoteRecord:
    """Normalise one Trello resource into a ``RemoteRecord``.

    Args:
        kind: Entity kind of the resource.
        data: Trello JSON for the resource.
        parent_remote_id: Parent id when the JSON does not carry one.
    """
    match kind:
        case EntityKind.BOARD:
            parent = None
            metadata = _compact({"description": data.get("desc")})
        case EntityKind.LIST:
            parent = data.get("idBoard") or parent_remote_id
            metadata = {}
        case EntityKind.CARD:
            parent = data.get("idList") or parent_remote_id
            metadata = _compact(
                {
                    "description": data.get("desc"),
                    "due": data.get("due"),
                    "members": _joined(data.get("idMembers")),
                    "labels": _joined(data.get("idLabels")),
                }
            )
        case EntityKind.CHECKLIST:
            parent = data.get("idCard") or parent_remote_id
            metadata = {}
        case EntityKind.ITEM:
            parent = data.get("idChecklist") or parent_remote_id
            checked = data.get("state") == "complete"
            metadata = {"checked": "true" if checked else "false"}

    return RemoteRecord(
        kind=kind,
        remote_id=data["id"],
        title=data.get("name", ""),
        parent_remote_id=parent,
        metadata=metadata,
        position=float(data.get("pos") or 0),
        modified_at=parse_timestamp(data.get("dateLastActivity")),
    )


def apply_record(entity: Entity, record: RemoteRecord) -> None:
    """Overwrite the entity's remote-backed fields with the record's."""
    entity.title = record.title
    for key in KIND_FIELDS[entity.kind]:
        value = record.metadata.get(key)
        if value:
            entity.metadata[key] = value
        else:
            entity.metadata.pop(key, None)


def entity_from_record(
    record: RemoteRecord,
    parent_local_id: str | None,
    modified_at: datetime | None = None,
) -> Entity:
    """Build a new, bound local entity from a remote record."""
    entity = Entity(
        local_id=new_local_id(),
        kind=record.kind,
        title=record.title,
        parent_local_id=parent_local_id,
        metadata=dict(record.metadata),
        modified_at=modified_at,
    )
    entity.remote_id = record.remote_id
    return entity


# ---------------------------------------------------------------------------
# Local -> Trello
# ---------------------------------------------------------------------------


class ResourceMapper:
    """Build Trello requests for local entities.

    Args:
        tree: The local entity tree.
        identity: Bindings used to resolve parent remote ids.
    """

    def __init__(self, tree: EntityTree, identity: IdentityMap) -> None:
        self._tree = tree
        self._identity = identity

    def _remote_id(self, entity: Entity | None) -> str:
        if entity is None:
            raise ValueError("Entity has no parent")
        remote_id = self._identity.resolve(entity.local_id)
        if remote_id is None:
            raise ValueError(
                f"{entity.kind.value} '{entity.title}' is not bound to "
                f"a remote entity"
            )
        return remote_id

    def parent_remote_id(self, entity: Entity) -> str | None:
        parent = self._tree.parent(entity)
        if parent is None:
            return None
        return self._remote_id(parent)

    def create_request(
        self, entity: Entity, position: float | str | None = None
    ) -> RemoteRequest:
        """Build the create request; children go to ``position`` or the bottom."""
        meta = entity.metadata
        pos = position if position is not None else "bottom"
        match entity.kind:
            case EntityKind.BOARD:
                return RemoteRequest(
                    "POST",
                    "boards",
                    body={
                        "name": entity.title,
                        "desc": meta.get("description", ""),
                        "defaultLists": False,
                    },
                )
            case EntityKind.LIST:
                return RemoteRequest(
                    "POST",
                    "lists",
                    body={
                        "name": entity.title,
                        "idBoard": self._remote_id(self._tree.parent(entity)),
                        "pos": pos,
                    },
                )
            case EntityKind.CARD:
                return RemoteRequest(
                    "POST",
                    "cards",
                    body={
                        "idList": self._remote_id(self._tree.parent(entity)),
                        "pos": pos,
                        **self._card_fields(entity),
                    },
                )
            case EntityKind.CHECKLIST:
                return RemoteRequest(
                    "POST",
                    "checklists",
                    body={
                        "idCard": self._remote_id(self._tree.parent(entity)),
                        "name": entity.title,
                        "pos": pos,
                    },
                )
            case EntityKind.ITEM:
                checklist_id = self._remote_id(self._tree.parent(entity))
                return RemoteRequest(
                    "POST",
                    f"checklists/{checklist_id}/checkItems",
                    body={
                        "name": entity.title,
                        "checked": meta.get("checked") == "true",
                        "pos": pos,
                    },
                )
        raise ValueError(f"Unknown entity kind: {entity.kind}")

    def update_request(
        self,
        entity: Entity,
        position: float | str | None = None,
        *,
        structure_only: bool = False,
    ) -> RemoteRequest:
        """Build the update request for a bound entity.

        Args:
            entity: The entity to push.
            position: New remote position, if it changes.
            structure_only: Send only the parent (cards) and position,
                leaving the remote fields untouched.
        """
        remote_id = self._remote_id(entity)
        body: dict[str, Any]
        match entity.kind:
            case EntityKind.BOARD:
                return RemoteRequest(
                    "PUT",
                    f"boards/{remote_id}",
                    body={
                        "name": entity.title,
                        "desc": entity.metadata.get("description", ""),
                    },
                )
            case EntityKind.LIST:
                body = {} if structure_only else {"name": entity.title}
                path = f"lists/{remote_id}"
            case EntityKind.CARD:
                body = {"idList": self._remote_id(self._tree.parent(entity))}
                if not structure_only:
                    body.update(self._card_fields(entity))
                path = f"cards/{remote_id}"
            case EntityKind.CHECKLIST:
                body = {} if structure_only else {"name": entity.title}
                path = f"checklists/{remote_id}"
            case EntityKind.ITEM:
                checklist = self._tree.parent(entity)
                card = self._tree.parent(checklist) if checklist else None
                card_id = self._remote_id(card)
                if structure_only:
                    body = {}
                else:
                    state = (
                        "complete"
                        if entity.metadata.get("checked") == "true"
                        else "incomplete"
                    )
                    body = {"name": entity.title, "state": state}
                path = f"cards/{card_id}/checkItem/{remote_id}"
            case _:
                raise ValueError(f"Unknown entity kind: {entity.kind}")

        if position is not None:
            body["pos"] = position
        return RemoteRequest("PUT", path, body=body)

    def delete_request(
        self,
        kind: EntityKind,
        remote_id: str,
        parent_remote_id: str | None = None,
    ) -> RemoteRequest:
        match kind:
            case EntityKind.BOARD:
                return RemoteRequest("DELETE", f"boards/{remote_id}")
            case EntityKind.LIST:
                return RemoteRequest(
                    "PUT", f"lists/{remote_id}/closed", body={"value": True}
                )
            case EntityKind.CARD:
                return RemoteRequest("DELETE", f"cards/{remote_id}")
            case EntityKind.CHECKLIST:
                return RemoteRequest("DELETE", f"checklists/{remote_id}")
            case EntityKind.ITEM:
                if parent_remote_id is None:
                    raise ValueError("Deleting an item needs its checklist id")
                return RemoteRequest(
                    "DELETE",
                    f"checklists/{parent_remote_id}/checkItems/{remote_id}",
                )
        raise ValueError(f"Unknown entity kind: {kind}")

    @staticmethod
    def _card_fields(entity: Entity) -> dict[str, Any]:
        meta = entity.metadata
        return {
            "name": entity.title,
            "desc": meta.get("description", ""),
            "due": meta.get("due") or None,
            "idMembers": ",".join(_split_ids(meta.get("members"))),
            "idLabels": ",".join(_split_ids(meta.get("labels"))),
        }
