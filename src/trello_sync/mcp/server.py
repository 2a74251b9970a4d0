"""stdio MCP server for trello-sync.

An agent connected over stdio can check the Trello connection
(``ping``), run any sync command on an outline document
(``outline_sync``) and inspect a document's sync state
(``outline_status``). A permissions file can hide the WRITE tools.

stdout carries JSON-RPC only; logs go to a file and user-facing
messages to stderr.
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Any

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.client import TrelloClient
from ..logger import setup_logging
from ..version import check_version_consistency
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    ToolSpec,
    build_error_response,
    load_permissions_file,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "trello-sync"
DEFAULT_LOG_FILE = "/tmp/trello-sync-mcp.log"

server = Server(SERVER_NAME)


@dataclass
class Session:
    """What the protocol handlers need while the server is connected."""

    client: TrelloClient | None = None
    registry: ToolRegistry | None = None

    def require_client(self) -> TrelloClient:
        if self.client is None:
            raise RuntimeError("Trello client not initialized")
        return self.client

    def require_registry(self) -> ToolRegistry:
        if self.registry is None:
            raise RuntimeError("Tool registry not initialized")
        return self.registry

    def clear(self) -> None:
        self.client = None
        self.registry = None


session = Session()


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


async def _ping(client: TrelloClient, args: dict) -> types.CallToolResult:
    try:
        username = await client.validate_connection()
    except Exception as e:
        return build_error_response(
            "connection_failed",
            str(e),
            "Check TRELLO_API_KEY, TRELLO_TOKEN and the Trello endpoint.",
        )
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=f"Connected to Trello as {username} "
                f"(trello-sync {__version__}).",
            )
        ]
    )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Check the Trello connection and return the token's username",
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    permissions=frozenset(),
    handler=_ping,
)


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Registry of ``ping`` plus the outline tools the permissions allow.

    Raises:
        ValueError: If the permissions file names an unknown scope.
    """
    specs = [PING_SPEC, *ALL_SPECS]
    allowed = load_permissions_file(permissions_file) if permissions_file else None
    registry = ToolRegistry(specs, allowed)
    logger.info("%d of %d tools enabled", registry.tool_count(), len(specs))
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


# ---------------------------------------------------------------------------
# Protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    return session.require_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Dispatch a tool call; unknown and hidden tools get an error result."""
    client = session.require_client()
    try:
        return await session.require_registry().call_tool(
            name, arguments, client
        )
    except ValueError as e:
        return build_error_response(
            "unknown_tool", str(e), "Use list_tools to see available tools."
        )


# ---------------------------------------------------------------------------
# Running
# ---------------------------------------------------------------------------


async def serve(overrides: dict[str, Any] | None = None) -> None:
    """Connect to Trello and answer MCP requests on stdio until EOF.

    Args:
        overrides: Values from the command line: api_key, token,
            base_url, debug, log_file and permissions_file.
    """
    overrides = overrides or {}
    # Before stdio_server: nothing may be logged to stdout
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )
    consistent, message = check_version_consistency()
    if consistent:
        logger.info(message)
    else:
        logger.warning(message)
        print(f"Warning: {message}", file=sys.stderr)

    session.registry = build_registry(overrides.get("permissions_file"))
    async with server_lifespan(config_overrides=overrides) as ctx:
        session.client = ctx["client"]
        options = InitializationOptions(
            server_name=SERVER_NAME,
            server_version=__version__,
            capabilities=server.get_capabilities(
                notification_options=NotificationOptions(),
                experimental_capabilities={},
            ),
        )
        try:
            async with mcp.server.stdio.stdio_server() as (reader, writer):
                await server.run(reader, writer, options)
        finally:
            session.clear()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trello-sync-mcp",
        description="MCP server that syncs outline documents with Trello boards",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Credentials from TRELLO_API_KEY / TRELLO_TOKEN, .env or config.yml
  trello-sync-mcp

  # Agents may inspect documents but never change Trello or the files
  trello-sync-mcp --permissions-file read-only.permissions

  # A Trello-compatible test endpoint, with debug logs
  trello-sync-mcp --base-url http://localhost:8080/1 --debug

The server speaks JSON-RPC on stdin/stdout; run it from an MCP client.
        """,
    )
    parser.add_argument("--api-key", help="Trello API key (overrides env and config)")
    parser.add_argument(
        "--token",
        help="Trello token (visible in the process list; prefer TRELLO_TOKEN)",
    )
    parser.add_argument("--base-url", help="Trello REST endpoint")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level")
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--permissions-file",
        help="File of allowed scopes, one per line (READ, WRITE); "
        "all tools are enabled without it",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"trello-sync-mcp version {__version__}",
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Only the options given on the command line."""
    overrides: dict[str, Any] = {
        key: getattr(args, key)
        for key in ("api_key", "token", "base_url", "log_file", "permissions_file")
        if getattr(args, key)
    }
    if args.debug:
        overrides["debug"] = True
    return overrides


def run(argv: list[str] | None = None) -> None:
    overrides = overrides_from_args(build_parser().parse_args(argv))
    shown = sorted(k for k in overrides if k not in ("api_key", "token"))
    if shown:
        print(f"Command-line overrides: {', '.join(shown)}", file=sys.stderr)

    try:
        asyncio.run(serve(overrides))
    except RuntimeError:
        # server_lifespan has already explained the failure on stderr
        sys.exit(1)
    except (ValueError, FileNotFoundError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)


if __name__ == "__main__":
    run()
