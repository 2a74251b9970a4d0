"""Find, read and merge trello-sync YAML config files.

Files are looked up in a fixed order (explicit path, project directory,
user config directory). Later lookups lose: a section such as
``trello:`` from a project file replaces the whole section from the
user file. YAML may pull other files in with ``!include`` and may refer
to the environment with ``${NAME}`` or ``${NAME:-fallback}``.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV = "TRELLO_SYNC_CONFIG"
PROJECT_DIR = ".trello_sync"
CONFIG_NAMES = ("config.yml", "config.yaml")

_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+?)(?::-(?P<fallback>.*?))?\}")


# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------


def interpolate_env_vars(value: str) -> str:
    """Expand ``${NAME}`` and ``${NAME:-fallback}`` in ``value``.

    An unset or empty variable expands to its fallback, or to nothing.
    A ``${`` without a closing brace is kept as written.
    """

    def expand(match: re.Match) -> str:
        return os.environ.get(match["name"]) or match["fallback"] or ""

    return _ENV_REF.sub(expand, value)


def interpolate_tree(data: Any) -> Any:
    """Expand environment references in every string of parsed YAML."""
    match data:
        case str():
            return interpolate_env_vars(data)
        case dict():
            return {key: interpolate_tree(value) for key, value in data.items()}
        case list():
            return [interpolate_tree(item) for item in data]
    return data


# ---------------------------------------------------------------------------
# Reading YAML
# ---------------------------------------------------------------------------


class _IncludeLoader(yaml.SafeLoader):
    """Safe loader that also understands ``!include <path>``.

    ``chain`` holds the files being read, outermost first.
    """

    chain: tuple[Path, ...] = ()


def _include(loader: _IncludeLoader, node: yaml.ScalarNode) -> Any:
    including = Path(loader.name).resolve()
    target = Path(loader.construct_scalar(node)).expanduser()
    if not target.is_absolute():
        target = including.parent / target
    target = target.resolve()

    if target in loader.chain:
        cycle = " -> ".join(str(p) for p in (*loader.chain, target))
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.is_file():
        raise FileNotFoundError(
            f"Include file not found: {target} (included by {including})"
        )
    return load_yaml(target, _chain=(*loader.chain, target))


_IncludeLoader.add_constructor("!include", _include)


def load_yaml(path: Path, *, _chain: tuple[Path, ...] = ()) -> Any:
    """Parse one config file, resolving ``!include`` relative to it."""
    path = path.resolve()
    with path.open(encoding="utf-8") as fh:
        loader = _IncludeLoader(fh)
        loader.chain = _chain or (path,)
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Locating files
# ---------------------------------------------------------------------------


def _candidates() -> list[Path]:
    paths = []
    explicit = os.environ.get(CONFIG_ENV)
    if explicit:
        paths.append(Path(explicit).expanduser().resolve())
    paths.extend(Path.cwd() / PROJECT_DIR / name for name in CONFIG_NAMES)
    paths.append(Path.home() / ".config" / "trello_sync" / CONFIG_NAMES[0])
    return paths


def discover_config_files() -> list[Path]:
    """Existing config files, most important first.

    1. The file named by ``TRELLO_SYNC_CONFIG``.
    2. ``.trello_sync/config.yml`` or ``config.yaml`` in the working
       directory.
    3. ``~/.config/trello_sync/config.yml``.
    """
    return [path for path in _candidates() if path.exists()]


def resolve_config_path() -> Path:
    """The file ``init-config`` would use: the first existing one, or the
    project ``.trello_sync/config.yml``."""
    found = discover_config_files()
    return found[0] if found else Path.cwd() / PROJECT_DIR / CONFIG_NAMES[0]


_STARTER_CONFIG = """\
# trello-sync configuration
#
# Credentials may come from the environment instead:
#   TRELLO_API_KEY, TRELLO_TOKEN, TRELLO_BASE_URL
#
# trello:
#   api_key: ${TRELLO_API_KEY}
#   token: ${TRELLO_TOKEN}
#   max_attempts: 5
#   max_parallel_requests: 10
#   requests_per_window: 300
#   board_requests_per_window: 100
#   window_seconds: 10
#
# sync:
#   trace: false
#   dry_run: false
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none.

    Args:
        target: Where to write the starter file. Defaults to
            ``resolve_config_path()``.
    """
    found = discover_config_files()
    if found:
        logger.debug("Using existing config file %s", found[0])
        return found[0]

    path = target or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Wrote starter config to %s", path)
    return path


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file into one dict.

    Top-level sections from a more important file replace the same
    sections from a less important one. Environment references are
    expanded once the files are merged. No files gives ``{}``.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files()):
        logger.debug("Reading config file %s", path)
        data = load_yaml(path)
        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Ignoring config file %s: expected a mapping, got %s",
                path,
                type(data).__name__,
            )
    return interpolate_tree(merged)
