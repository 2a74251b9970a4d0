"""MCP stdio server exposing outline sync to AI agents."""
