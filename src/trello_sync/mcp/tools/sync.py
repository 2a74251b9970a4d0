"""MCP tool handlers for outline document sync.

Defines two tools:

- ``outline_sync`` -- run any sync command on a document (with
  optional dry-run).
- ``outline_status`` -- binding and change summary for a document,
  computed locally without contacting Trello.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

import mcp.types as types

from ...config_loader import load_hierarchical_config
from ...config_schema import UnifiedConfig, build_config
from ...core.client import TrelloClient
from ...document import OutlineDocument
from ...sync.engine import COMMANDS, SyncEngine
from ...sync.reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from ...sync.state import local_changed
from .registry import READ, WRITE, ToolSpec

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="outline_sync",
        description=(
            "Run a sync command between a local outline document and "
            "its Trello board. Commands: " + ", ".join(COMMANDS) + ". "
            "Use dry_run to preview the planned operations."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "document": {
                    "type": "string",
                    "description": "Path to the outline document",
                },
                "command": {
                    "type": "string",
                    "enum": list(COMMANDS),
                    "description": "Sync command to run",
                },
                "entity_id": {
                    "type": "string",
                    "description": (
                        "sync-local-id of the entity (entity, subtree "
                        "and delete-entity commands)"
                    ),
                },
                "board_id": {
                    "type": "string",
                    "description": (
                        "Trello board id (install-board-metadata only)"
                    ),
                },
                "dry_run": {
                    "type": "boolean",
                    "description": "Preview changes without applying them",
                },
                "trace": {
                    "type": "boolean",
                    "description": "Report every operation as it finishes",
                },
            },
            "required": ["document", "command"],
        },
    ),
    types.Tool(
        name="outline_status",
        description=(
            "Show the sync state of an outline document -- entities per "
            "kind, how many are bound to Trello, and how many changed "
            "locally since their last sync."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "document": {
                    "type": "string",
                    "description": "Path to the outline document",
                },
            },
            "required": ["document"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


def _load_unified_config() -> UnifiedConfig:
    """Load the unified config from the hierarchical config system."""
    return build_config(load_hierarchical_config())


async def _handle_outline_sync(
    client: TrelloClient, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``outline_sync`` tool."""
    document_path = args.get("document")
    command = args.get("command")
    if not document_path or not command:
        raise ValueError("document and command are required")

    defaults = _load_unified_config().sync
    dry_run = bool(args.get("dry_run", defaults.dry_run))
    trace = bool(args.get("trace", defaults.trace))

    document = await OutlineDocument.load_async(document_path)
    notifications: list[str] = []
    engine = SyncEngine(
        client, document, notify=notifications.append, trace=trace
    )
    report = await engine.run(
        command,
        args.get("entity_id"),
        board_id=args.get("board_id"),
        dry_run=dry_run,
    )

    if dry_run:
        text = format_dry_run_preview(report)
    else:
        text = format_sync_report(report)
    if trace and len(notifications) > 1:
        text += "\n\nTrace:\n" + "\n".join(
            f"  {line}" for line in notifications[:-1]
        )

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=report_to_json(report),
        isError=bool(report.errors),
    )


async def _handle_outline_status(
    client: TrelloClient, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``outline_status`` tool."""
    document_path = args.get("document")
    if not document_path:
        raise ValueError("document is required")

    document = await OutlineDocument.load_async(document_path)
    tree = document.tree
    root = tree.root

    kinds: Counter[str] = Counter()
    bound = 0
    changed = 0
    for entity in tree.walk():
        kinds[entity.kind.value] += 1
        if entity.remote_id:
            bound += 1
            if local_changed(entity):
                changed += 1

    board_id = root.remote_id if root is not None else None
    lines = [
        f"Sync status for '{document_path}'",
        f"  Board:           {root.title if root else '(none)'}",
        f"  Trello board id: {board_id or '(not bound)'}",
        f"  Entities:        {len(tree)}"
        + (
            " (" + ", ".join(f"{n} {k}" for k, n in kinds.items()) + ")"
            if kinds
            else ""
        ),
        f"  Bound:           {bound}",
        f"  Unbound:         {len(tree) - bound}",
        f"  Changed locally: {changed}",
    ]

    structured = {
        "document": str(document_path),
        "board": root.title if root else None,
        "board_id": board_id,
        "entities": len(tree),
        "by_kind": dict(kinds),
        "bound": bound,
        "unbound": len(tree) - bound,
        "changed_locally": changed,
    }

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=structured,
    )


SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYNC_TOOLS[0],
        permissions=frozenset({READ, WRITE}),
        handler=_handle_outline_sync,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[1],
        permissions=frozenset({READ}),
        handler=_handle_outline_status,
    ),
]
