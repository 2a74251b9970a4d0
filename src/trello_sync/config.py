"""Connection and runtime configuration for trello-sync.

Reads Trello credentials and client tuning from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    TRELLO_API_KEY: Trello API (consumer) key (required)
    TRELLO_TOKEN: Trello read/write token (required)
    TRELLO_BASE_URL: REST endpoint (optional, default: https://api.trello.com/1)
    TRELLO_MAX_ATTEMPTS: Attempts for transient failures (optional, default: 5)
    TRELLO_MAX_PARALLEL_REQUESTS: Max requests in flight (optional, default: 10)
    TRELLO_DEBUG: Enable debug/trace logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

from dotenv import load_dotenv

from .config_loader import load_hierarchical_config
from .config_schema import UnifiedConfig, build_config

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.trello.com/1"


@dataclass
class Config:
    api_key: str
    token: str
    base_url: str = DEFAULT_BASE_URL
    debug: bool = False
    max_attempts: int = 5
    max_parallel_requests: int = 10
    # Trello quota: 300 requests / 10 s per token, 100 / 10 s per board
    requests_per_window: int = 300
    board_requests_per_window: int = 100
    window_seconds: float = 10.0


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If URL format is invalid, credentials are empty, or
            a numeric limit is out of range.
    """
    config.base_url = config.base_url.strip()

    if not config.base_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid Trello URL '{config.base_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.base_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid Trello URL '{config.base_url}': URL must include a hostname"
        )

    config.base_url = config.base_url.removesuffix("/")

    if not config.api_key.strip():
        raise ValueError(
            "Trello API key cannot be empty. Set TRELLO_API_KEY environment variable."
        )

    if not config.token.strip():
        raise ValueError(
            "Trello token cannot be empty. Set TRELLO_TOKEN environment variable."
        )

    if config.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    if config.requests_per_window < 1 or config.board_requests_per_window < 1:
        raise ValueError("Rate limit quotas must be at least 1")

    if config.window_seconds <= 0:
        raise ValueError("window_seconds must be positive")

    if not config.base_url.startswith("https://"):
        logger.warning(
            "WARNING: Trello credentials will be sent over plain HTTP (%s). Use only for development.",
            config.base_url,
        )


def _int_from_env(
    key: str, fallback: int, low: int, high: int
) -> int:
    """Read an integer env var, validating its range."""
    raw = os.getenv(key)
    if raw is None:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    api_key: str | None = None,
    token: str | None = None,
    base_url: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        api_key: Override API key (takes precedence over env var and YAML).
        token: Override token (takes precedence over env var and YAML).
        base_url: Override REST endpoint.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Dict of values from the YAML config file
            ``trello`` section. Used as fallback when CLI arg and env
            var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the key or token is missing after checking all
            sources, or any value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > error/default ---

    final_key = api_key or os.getenv("TRELLO_API_KEY") or fb.get("api_key")
    if not final_key:
        raise ValueError(
            "Trello API key not found. Set TRELLO_API_KEY environment variable, "
            "pass --api-key CLI argument, or add 'api_key' to config.yml."
        )

    final_token = token or os.getenv("TRELLO_TOKEN") or fb.get("token")
    if not final_token:
        raise ValueError(
            "Trello token not found. Set TRELLO_TOKEN environment variable, "
            "pass --token CLI argument, or add 'token' to config.yml."
        )

    final_url = (
        base_url
        or os.getenv("TRELLO_BASE_URL")
        or fb.get("base_url")
        or DEFAULT_BASE_URL
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if debug:
        final_debug = True
    else:
        env_debug = os.getenv("TRELLO_DEBUG")
        if env_debug is not None:
            final_debug = env_debug.lower() in ("true", "1", "yes", "on")
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    final_attempts = _int_from_env(
        "TRELLO_MAX_ATTEMPTS", int(fb.get("max_attempts", 5)), 1, 20
    )
    final_parallel = _int_from_env(
        "TRELLO_MAX_PARALLEL_REQUESTS",
        int(fb.get("max_parallel_requests", 10)),
        1,
        100,
    )

    config = Config(
        api_key=final_key.strip(),
        token=final_token.strip(),
        base_url=final_url,
        debug=final_debug,
        max_attempts=final_attempts,
        max_parallel_requests=final_parallel,
        requests_per_window=int(fb.get("requests_per_window", 300)),
        board_requests_per_window=int(
            fb.get("board_requests_per_window", 100)
        ),
        window_seconds=float(fb.get("window_seconds", 10.0)),
    )

    validate_config(config)

    return config


def resolve_config(
    overrides: dict | None = None,
) -> tuple[Config, UnifiedConfig]:
    """Load configuration from every source.

    Loads ``.env`` first (so ``${VAR}`` interpolation in YAML sees its
    values), then the YAML config files, then merges them with
    ``load_config()``.

    Args:
        overrides: Values from the command line (api_key, token,
            base_url, debug).

    Returns:
        Tuple of (validated Config, UnifiedConfig for the other sections).

    Raises:
        ValueError: If credentials are missing or a value is invalid.
    """
    load_dotenv()
    unified = build_config(load_hierarchical_config())

    opts = overrides or {}
    config = load_config(
        api_key=opts.get("api_key"),
        token=opts.get("token"),
        base_url=opts.get("base_url"),
        debug=opts.get("debug", False),
        yaml_fallbacks=unified.trello.model_dump(exclude_none=True),
    )
    return config, unified
