"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from ..config import resolve_config
from ..core.async_utils import init_semaphore, reset_semaphore
from ..core.client import TrelloClient

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Resolve configuration (CLI > env vars > .env > YAML > defaults)
    - Create TrelloClient and validate the credentials
    - Initialize the in-flight request semaphore
    - Fail fast if Trello is unreachable or rejects the token

    On shutdown:
    - Drop the semaphore

    Args:
        config_overrides: Optional dict with config values from CLI
            (api_key, token, base_url, debug)

    Yields:
        Dict with 'client' key containing the initialized TrelloClient

    Raises:
        RuntimeError: If configuration is invalid or Trello rejects the
            connection.
    """
    logger.info("MCP server starting...")
    _stderr_print("Trello Sync MCP Server starting...")

    try:
        config, _ = resolve_config(config_overrides)
        logger.info("Trello endpoint: %s", config.base_url)
        _stderr_print(f"  Trello endpoint: {config.base_url}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print("  Ensure TRELLO_API_KEY and TRELLO_TOKEN are set.")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure TRELLO_API_KEY and TRELLO_TOKEN are set."
        ) from e

    init_semaphore(config.max_parallel_requests)
    logger.info("Validating Trello credentials...")
    _stderr_print("  Validating Trello credentials...")
    try:
        client = TrelloClient(config)
        username = await client.validate_connection()
    except Exception as e:
        reset_semaphore()
        logger.error("Failed to connect to Trello: %s", e)
        _stderr_print("ERROR: Trello connection failed.")
        _stderr_print(f"  {e}")
        raise RuntimeError(
            f"Trello connection failed: {e}. Check TRELLO_API_KEY and TRELLO_TOKEN."
        ) from e

    logger.info("Connected to Trello as %s", username)
    _stderr_print(f"  Connected to Trello as {username}")
    _stderr_print(f"  Parallel requests: {config.max_parallel_requests}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"client": client}
    finally:
        reset_semaphore()
        logger.info("MCP server shutting down")
        _stderr_print("Trello Sync MCP Server shutting down.")
