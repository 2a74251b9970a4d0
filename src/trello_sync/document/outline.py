"""Outline document parser and renderer.

The document is a plain-text outline. Heading depth encodes the entity
kind::

    * Board
    ** List
    *** Card
    **** Checklist
    ***** [ ] Item

A heading may be followed by a property drawer holding metadata, and
then by body lines. Body lines are the entity's ``description``::

    *** Write release notes
    :PROPERTIES:
    :due: 2026-11-01T12:00:00.000Z
    :sync-local-id: 3b1e...
    :sync-remote-id: 6530...
    :END:
    Card description body lines.

Text before the first heading is kept verbatim. Body lines that would
read as headings are rendered with one leading space.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from trello_sync.file_handler import (
    read_file_async,
    read_file_with_encoding,
    validate_file_path,
    write_file,
    write_file_async,
)
from trello_sync.sync.models import (
    SYNC_LOCAL_HASH,
    SYNC_LOCAL_ID,
    SYNC_PARENT,
    SYNC_REMOTE_HASH,
    SYNC_REMOTE_ID,
    Entity,
    EntityKind,
    EntityTree,
    new_local_id,
)

logger = logging.getLogger(__name__)

DEPTH: dict[EntityKind, int] = {
    EntityKind.BOARD: 1,
    EntityKind.LIST: 2,
    EntityKind.CARD: 3,
    EntityKind.CHECKLIST: 4,
    EntityKind.ITEM: 5,
}
KIND_AT_DEPTH = {depth: kind for kind, depth in DEPTH.items()}

_HEADING_RE = re.compile(r"^(\*+)\s+(.*?)\s*$")
_PROPERTY_RE = re.compile(r"^:([A-Za-z0-9_-]+):\s*(.*?)\s*$")
_CHECKBOX_RE = re.compile(r"^\[([ xX])\]\s*(.*)$")
_DRAWER_START = ":PROPERTIES:"
_DRAWER_END = ":END:"

# Keys rendered outside the drawer
_INLINE_KEYS = ("description", "checked")
_SYNC_KEYS = (
    SYNC_LOCAL_ID,
    SYNC_REMOTE_ID,
    SYNC_PARENT,
    SYNC_LOCAL_HASH,
    SYNC_REMOTE_HASH,
)


class DocumentParser(Protocol):
    """Interface between the sync engine and a document format."""

    def parse_buffer(self) -> EntityTree:
        """Parse the document into an entity tree."""
        ...  # pragma: no cover

    def render_entity(self, entity: Entity) -> str:
        """Render one entity (heading, metadata, body)."""
        ...  # pragma: no cover


class OutlineDocument:
    """An outline file and the entity tree parsed from it.

    Args:
        text: Document content.
        path: File the document was read from and is saved to.
        encoding: Encoding used when saving.
        modified_at: Modification time assigned to every entity.
    """

    def __init__(
        self,
        text: str,
        path: Path | None = None,
        encoding: str = "utf-8",
        modified_at: datetime | None = None,
    ) -> None:
        self.text = text
        self.path = path
        self.encoding = encoding
        self.modified_at = modified_at
        self.preamble: list[str] = []
        self._tree: EntityTree | None = None

    @classmethod
    def load(cls, path_str: str) -> OutlineDocument:
        path = validate_file_path(path_str)
        content, encoding = read_file_with_encoding(path)
        return cls(content, path, encoding, _mtime(path))

    @classmethod
    async def load_async(cls, path_str: str) -> OutlineDocument:
        content, encoding, path = await read_file_async(path_str)
        return cls(content, path, encoding, _mtime(path))

    @property
    def tree(self) -> EntityTree:
        if self._tree is None:
            self._tree = self.parse_buffer()
        return self._tree

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_buffer(self) -> EntityTree:
        """Parse the document text into a validated tree.

        Entities keep the ``sync-local-id`` stored in their drawer; those
        without one get a fresh id, written on the next render.

        Raises:
            ValueError: On headings deeper than an item, skipped levels,
                a malformed drawer, or any structural violation of the
                resulting tree.
        """
        self.preamble = []
        nodes: list[_Node] = []
        stack: list[_Node] = []
        current: _Node | None = None
        in_drawer = False
        drawer_allowed = False

        for lineno, raw in enumerate(self.text.splitlines(), start=1):
            line = raw.rstrip("\r")

            if in_drawer:
                if line.strip() == _DRAWER_END:
                    in_drawer = False
                    continue
                match = _PROPERTY_RE.match(line.strip())
                if match is None:
                    raise ValueError(
                        f"Line {lineno}: malformed property '{line.strip()}'"
                    )
                if current is None:
                    raise ValueError(
                        f"Line {lineno}: property drawer outside an entity"
                    )
                current.metadata[match.group(1)] = match.group(2)
                continue

            heading = _HEADING_RE.match(line)
            if heading is not None:
                current = _node_from_heading(
                    lineno, len(heading.group(1)), heading.group(2), stack
                )
                nodes.append(current)
                drawer_allowed = True
                continue

            if current is None:
                self.preamble.append(line)
                continue

            if drawer_allowed and line.strip() == _DRAWER_START:
                in_drawer = True
                drawer_allowed = False
                continue
            drawer_allowed = False
            current.body.append(_unescape(line))

        if in_drawer:
            raise ValueError("Property drawer is not closed with :END:")

        entities: list[Entity] = []
        for node in nodes:
            node.local_id = node.metadata.get(SYNC_LOCAL_ID) or new_local_id()
            description = "\n".join(node.body).strip("\n")
            if description:
                node.metadata["description"] = description
            entities.append(
                Entity(
                    local_id=node.local_id,
                    kind=node.kind,
                    title=node.title,
                    parent_local_id=(
                        node.parent.local_id if node.parent else None
                    ),
                    metadata=node.metadata,
                    modified_at=self.modified_at,
                )
            )

        tree = EntityTree.from_entities(entities)
        self._tree = tree
        logger.debug("Parsed %d entities", len(tree))
        return tree

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_entity(self, entity: Entity) -> str:
        """Render one entity: heading, property drawer and body."""
        stars = "*" * DEPTH[entity.kind]
        title = entity.title
        if entity.kind is EntityKind.ITEM:
            box = "X" if entity.metadata.get("checked") == "true" else " "
            title = f"[{box}] {title}"
        lines = [f"{stars} {title}".rstrip()]

        user_keys = [
            k
            for k in entity.metadata
            if k not in _INLINE_KEYS and k not in _SYNC_KEYS
        ]
        sync_keys = [k for k in _SYNC_KEYS if entity.metadata.get(k)]
        if user_keys or sync_keys:
            lines.append(_DRAWER_START)
            for key in user_keys + sync_keys:
                lines.append(f":{key}: {entity.metadata[key]}")
            lines.append(_DRAWER_END)

        description = entity.metadata.get("description")
        if description:
            lines.extend(_escape(line) for line in description.split("\n"))
        return "\n".join(lines)

    def render_tree(self, tree: EntityTree | None = None) -> str:
        """Render the preamble and every entity in outline order."""
        tree = tree if tree is not None else self.tree
        parts = list(self.preamble)
        parts.extend(self.render_entity(entity) for entity in tree.walk())
        return "\n".join(parts) + "\n"

    def save(self) -> int:
        """Write the rendered tree back to ``path`` atomically.

        Returns:
            Number of bytes written.
        """
        if self.path is None:
            raise ValueError("Document has no path to save to")
        self.text = self.render_tree()
        written = write_file(self.path, self.text, self.encoding)
        logger.info("Wrote %s (%d bytes)", self.path, written)
        return written

    async def save_async(self) -> int:
        if self.path is None:
            raise ValueError("Document has no path to save to")
        self.text = self.render_tree()
        written = await write_file_async(self.path, self.text, self.encoding)
        logger.info("Wrote %s (%d bytes)", self.path, written)
        return written


@dataclass
class _Node:
    """A heading collected during the first parsing pass."""

    kind: EntityKind
    title: str
    parent: _Node | None
    metadata: dict[str, str] = field(default_factory=dict)
    body: list[str] = field(default_factory=list)
    local_id: str = ""


def _node_from_heading(
    lineno: int, depth: int, text: str, stack: list[_Node]
) -> _Node:
    kind = KIND_AT_DEPTH.get(depth)
    if kind is None:
        raise ValueError(
            f"Line {lineno}: heading depth {depth} is deeper than an item"
        )
    del stack[depth - 1 :]
    if len(stack) != depth - 1:
        raise ValueError(f"Line {lineno}: '{text}' skips a heading level")

    node = _Node(kind=kind, title=text, parent=stack[-1] if stack else None)
    if kind is EntityKind.ITEM:
        box = _CHECKBOX_RE.match(text)
        if box is not None:
            node.title = box.group(2).strip()
            node.metadata["checked"] = (
                "true" if box.group(1) in ("x", "X") else "false"
            )
        else:
            node.metadata["checked"] = "false"
    stack.append(node)
    return node


def _mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


_BODY_HEADING_RE = re.compile(r"^ *\*+\s")


def _escape(line: str) -> str:
    if _BODY_HEADING_RE.match(line):
        return " " + line
    return line


def _unescape(line: str) -> str:
    if line.startswith(" ") and _BODY_HEADING_RE.match(line):
        return line[1:]
    return line
