"""Version checking utilities for detecting stale installs."""

from pathlib import Path


def check_version_consistency() -> tuple[bool, str]:
    """Check if runtime version matches source version in pyproject.toml.

    Returns:
        Tuple of (is_consistent, message) where:
        - is_consistent: True if versions match, False otherwise
        - message: Descriptive message about version status

    An editable install picks up source changes immediately, but a
    regular install keeps the version it was built with; a mismatch
    means the installed package is stale.
    """
    try:
        from . import __version__ as runtime_version
    except ImportError:
        return False, "Cannot import __version__ from trello_sync"

    import tomllib

    # Locate pyproject.toml relative to this module (src layout)
    pyproject_path = (
        Path(__file__).parent.parent.parent / "pyproject.toml"
    )

    if not pyproject_path.exists():
        return (
            False,
            "Cannot find pyproject.toml for version comparison",
        )

    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
            source_version = data.get("project", {}).get(
                "version", "unknown"
            )
    except Exception as e:
        return False, f"Failed to read version from pyproject.toml: {e}"

    if runtime_version != source_version:
        return False, (
            f"Version mismatch detected! "
            f"Runtime: {runtime_version}, Source: {source_version}. "
            f"Installed package is stale - reinstall with: pip install -e ."
        )

    return True, f"Version verified: {runtime_version}"
