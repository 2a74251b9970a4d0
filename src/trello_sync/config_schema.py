"""Unified configuration schema for trello_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the Trello connection, sync behaviour and logging.

Usage:
    from trello_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    fallbacks = unified.trello.model_dump(exclude_none=True)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class TrelloConfig(BaseModel):
    """Trello connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    api_key: str | None = Field(
        default=None, description="Trello API (consumer) key"
    )
    token: str | None = Field(
        default=None, description="Trello read/write token"
    )
    base_url: str | None = Field(
        default=None, description="Trello REST endpoint"
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempts for rate-limited or failed requests (1-20)",
    )
    max_parallel_requests: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum requests in flight (1-100)",
    )
    requests_per_window: int = Field(
        default=300,
        ge=1,
        description="Requests allowed per token per window",
    )
    board_requests_per_window: int = Field(
        default=100,
        ge=1,
        description="Requests allowed per board per window",
    )
    window_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Length of the rate-limit window in seconds",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Defaults applied to every sync command.

    Attributes:
        trace: Emit one notification per operation instead of a
            single summary.
        dry_run: Plan operations without executing them.
    """

    trace: bool = Field(
        default=False, description="Per-operation notifications"
    )
    dry_run: bool = Field(default=False, description="Plan only")

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log record format"
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    trello: TrelloConfig = Field(default_factory=TrelloConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


