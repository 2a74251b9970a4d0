"""ToolSpec and ToolRegistry for permission-based tool filtering.

Operators can restrict which tools are exposed to AI agents by listing
the token scopes they grant (``READ``, ``WRITE``) in a permissions file.

Key concepts:
- ToolSpec: Immutable dataclass linking a Tool definition, required
  scopes, and an async handler ``(client, args) -> CallToolResult``.
- ToolRegistry: Filters specs by allowed scopes at construction time,
  then provides list_tools() and call_tool() dispatch with error
  translation.
- load_permissions_file: Reads a simple text file of scope names.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import mcp.types as types

from ...core.client import TrelloClient
from ...core.errors import TrelloSyncError

logger = logging.getLogger(__name__)

READ = "READ"
WRITE = "WRITE"
KNOWN_PERMISSIONS = frozenset({READ, WRITE})


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        permissions: Scopes required to use this tool. Empty frozenset
            means the tool is always available.
        handler: Async handler with signature (client, args) -> CallToolResult.
    """

    tool: types.Tool
    permissions: frozenset[str]
    handler: Callable[[TrelloClient, dict], Awaitable[types.CallToolResult]]


class ToolRegistry:
    """Registry of ToolSpecs with optional permission-based filtering.

    If allowed_permissions is None, all specs are included. Otherwise a
    spec is included only if its permissions are empty or a subset of
    allowed_permissions.
    """

    def __init__(
        self,
        specs: list[ToolSpec],
        allowed_permissions: frozenset[str] | None = None,
    ):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if (
                allowed_permissions is None
                or not spec.permissions
                or spec.permissions <= allowed_permissions
            ):
                self._specs[spec.tool.name] = spec

    def list_tools(self) -> list[types.Tool]:
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        client: TrelloClient,
    ) -> types.CallToolResult:
        """Dispatch tool call to registered handler.

        Client errors, validation errors and unexpected exceptions are
        translated into structured CallToolResult responses with
        corrective actions.

        Raises:
            ValueError: If tool name is not registered (unknown or
                filtered out).
        """
        from .errors import build_error_response, translate_sync_error

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        args = arguments or {}
        try:
            return await spec.handler(client, args)
        except TrelloSyncError as e:
            logger.warning("Trello error in %s: %s", name, e)
            return translate_sync_error(e)
        except (ValueError, KeyError) as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Retry later; see the server log for details.",
            )


def load_permissions_file(path: str | Path) -> frozenset[str]:
    """Load granted scopes from a text file.

    Format: one scope per line, ``#`` for comments, blank lines ignored.

    Example file::

        # Read-only agent
        READ

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file names an unknown scope or is empty.
    """
    path = Path(path)
    permissions: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped not in KNOWN_PERMISSIONS:
            raise ValueError(
                f"Invalid permission '{stripped}' at line {line_num} in {path}. "
                f"Expected one of: {', '.join(sorted(KNOWN_PERMISSIONS))}."
            )
        permissions.add(stripped)
    if not permissions:
        raise ValueError(
            f"No permissions found in {path}. File must contain at least one permission."
        )
    return frozenset(permissions)
