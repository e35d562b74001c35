"""Path resolution shared by CLI commands."""

from pathlib import Path

from fieldward.config import Settings


def resolve_settings() -> Settings:
    """Resolve settings relative to the project root.

    Commands may run from the repository root or from ``backend/``.
    """
    cwd = Path.cwd()
    base_path = cwd.parent if cwd.name == "backend" else cwd
    return Settings.from_env(base_path)
