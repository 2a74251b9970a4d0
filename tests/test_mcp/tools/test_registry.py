"""Tests for ToolSpec, ToolRegistry, and load_permissions_file.

Covers:
- ToolSpec immutability
- ToolRegistry filtering by granted scopes (READ, WRITE)
- call_tool dispatch and error translation
- load_permissions_file parsing, validation, and error cases
"""

import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

import mcp.types as types

from trello_sync.core.errors import AuthError, NotFoundError
from trello_sync.mcp.tools.registry import (
    READ,
    WRITE,
    ToolRegistry,
    ToolSpec,
    load_permissions_file,
)


def _make_spec(
    name: str,
    permissions: frozenset[str] | None = None,
    handler=None,
) -> ToolSpec:
    if permissions is None:
        permissions = frozenset()
    if handler is None:

        async def handler(client, args):
            return types.CallToolResult(
                content=[types.TextContent(type="text", text=f"ok:{name}")]
            )

    return ToolSpec(
        tool=types.Tool(
            name=name,
            description=f"Test tool {name}",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        permissions=permissions,
        handler=handler,
    )


def _raising(error):
    async def handler(client, args):
        raise error

    return handler


def _text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


def _write_permissions(text: str) -> str:
    with tempfile.NamedTemporaryFile(
        mode="w", suffix=".permissions", delete=False
    ) as f:
        f.write(text)
        return f.name


class TestToolSpec(unittest.TestCase):
    def test_frozen(self):
        spec = _make_spec("outline_status", frozenset({READ}))
        with self.assertRaises(AttributeError):
            spec.permissions = frozenset({WRITE})


class TestToolRegistry(unittest.TestCase):
    """Filtering and dispatch."""

    def setUp(self):
        self.specs = [
            _make_spec("ping"),
            _make_spec("outline_status", frozenset({READ})),
            _make_spec("outline_sync", frozenset({READ, WRITE})),
        ]

    def test_no_filter_all_tools_registered(self):
        registry = ToolRegistry(self.specs)
        self.assertEqual(registry.tool_count(), 3)

    def test_read_only(self):
        registry = ToolRegistry(self.specs, frozenset({READ}))
        names = [t.name for t in registry.list_tools()]
        self.assertEqual(names, ["ping", "outline_status"])

    def test_write_without_read_excludes_sync(self):
        """Multi-scope spec needs ALL of its scopes."""
        registry = ToolRegistry(self.specs, frozenset({WRITE}))
        names = [t.name for t in registry.list_tools()]
        self.assertEqual(names, ["ping"])

    def test_read_write(self):
        registry = ToolRegistry(self.specs, frozenset({READ, WRITE}))
        self.assertEqual(registry.tool_count(), 3)

    def test_call_tool_dispatches_to_handler(self):
        calls = []

        async def handler(client, args):
            calls.append((client, args))
            return types.CallToolResult(
                content=[types.TextContent(type="text", text="dispatched")]
            )

        registry = ToolRegistry([_make_spec("t", handler=handler)])
        client = MagicMock()

        result = asyncio.run(registry.call_tool("t", {"key": "val"}, client))

        self.assertEqual(calls, [(client, {"key": "val"})])
        self.assertEqual(_text(result), "dispatched")

    def test_call_tool_none_arguments(self):
        calls = []

        async def handler(client, args):
            calls.append(args)
            return types.CallToolResult(content=[])

        registry = ToolRegistry([_make_spec("t", handler=handler)])
        asyncio.run(registry.call_tool("t", None, MagicMock()))
        self.assertEqual(calls, [{}])

    def test_call_tool_unknown_raises(self):
        registry = ToolRegistry(self.specs)
        with self.assertRaises(ValueError) as ctx:
            asyncio.run(registry.call_tool("nonexistent", {}, MagicMock()))
        self.assertIn("Unknown tool", str(ctx.exception))

    def test_call_tool_filtered_out_raises(self):
        registry = ToolRegistry(self.specs, frozenset({READ}))
        with self.assertRaises(ValueError):
            asyncio.run(registry.call_tool("outline_sync", {}, MagicMock()))

    def test_trello_errors_translated(self):
        registry = ToolRegistry(
            [
                _make_spec("auth", handler=_raising(AuthError("bad token"))),
                _make_spec("gone", handler=_raising(NotFoundError("no card"))),
            ]
        )
        auth = asyncio.run(registry.call_tool("auth", {}, MagicMock()))
        gone = asyncio.run(registry.call_tool("gone", {}, MagicMock()))

        self.assertTrue(auth.isError)
        self.assertIn("permission_denied", _text(auth))
        self.assertIn("not_found", _text(gone))

    def test_validation_errors(self):
        registry = ToolRegistry(
            [
                _make_spec("v", handler=_raising(ValueError("document is required"))),
                _make_spec("k", handler=_raising(KeyError("command"))),
            ]
        )
        for name in ("v", "k"):
            result = asyncio.run(registry.call_tool(name, {}, MagicMock()))
            self.assertTrue(result.isError)
            self.assertIn("validation_error", _text(result))

    def test_unexpected_error(self):
        registry = ToolRegistry(
            [_make_spec("boom", handler=_raising(RuntimeError("kaput")))]
        )
        result = asyncio.run(registry.call_tool("boom", {}, MagicMock()))
        self.assertTrue(result.isError)
        self.assertIn("server_error", _text(result))
        self.assertIn("kaput", _text(result))


class TestLoadPermissionsFile(unittest.TestCase):
    def test_load_valid_file(self):
        path = _write_permissions("# Read-only agent\nREAD\n\n# done\n")
        try:
            self.assertEqual(load_permissions_file(path), frozenset({READ}))
        finally:
            Path(path).unlink()

    def test_duplicates_and_indented_comments(self):
        path = _write_permissions("READ\n  # note\n  WRITE  \nREAD\n")
        try:
            self.assertEqual(
                load_permissions_file(path), frozenset({READ, WRITE})
            )
        finally:
            Path(path).unlink()

    def test_load_file_not_found(self):
        with self.assertRaises(FileNotFoundError):
            load_permissions_file("/nonexistent/path.permissions")

    def test_load_empty_file(self):
        path = _write_permissions("# Only comments\n\n")
        try:
            with self.assertRaises(ValueError) as ctx:
                load_permissions_file(path)
            self.assertIn("No permissions found", str(ctx.exception))
        finally:
            Path(path).unlink()

    def test_unknown_scope(self):
        path = _write_permissions("READ\nADMIN\n")
        try:
            with self.assertRaises(ValueError) as ctx:
                load_permissions_file(path)
            self.assertIn("Invalid permission 'ADMIN' at line 2", str(ctx.exception))
        finally:
            Path(path).unlink()

    def test_lowercase_scope_rejected(self):
        path = _write_permissions("read\n")
        try:
            with self.assertRaises(ValueError):
                load_permissions_file(path)
        finally:
            Path(path).unlink()


if __name__ == "__main__":
    unittest.main()
