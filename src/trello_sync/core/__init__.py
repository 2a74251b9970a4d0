"""Core Trello client functionality shared between CLI and MCP server."""

from .async_utils import run_sync
from .client import TrelloClient

__all__ = ["TrelloClient", "run_sync"]
