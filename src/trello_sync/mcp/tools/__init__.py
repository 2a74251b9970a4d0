"""MCP tool handlers for outline sync.

This package contains MCP tool implementations that wrap the sync engine
with async handlers and structured error responses.
"""

from .errors import build_error_response, translate_sync_error
from .registry import (
    READ,
    WRITE,
    ToolRegistry,
    ToolSpec,
    load_permissions_file,
)
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = list(SYNC_SPECS)

__all__ = [
    "build_error_response",
    "translate_sync_error",
    # Registry
    "READ",
    "WRITE",
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    # Spec lists
    "ALL_SPECS",
    "SYNC_SPECS",
    "SYNC_TOOLS",
]
