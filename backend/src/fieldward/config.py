"""Runtime settings resolved from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from fieldward.persistence.config import DatabaseConfig

DEFAULT_AUDIT_TABLE = "audit_logs"


@dataclass
class Settings:
    """Process-wide configuration.

    Attributes:
        metadata_path: Directory holding ``entities/*.yaml``
        database: Database connection configuration
        log_level: Root log level name
        audit_table: Table that receives audit rows and is cascaded on delete
    """

    metadata_path: Path
    database: DatabaseConfig
    log_level: str = "INFO"
    audit_table: str = DEFAULT_AUDIT_TABLE

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> Settings:
        """Create settings from environment variables.

        Resolution:
        - FIELDWARD_METADATA_PATH, default ``{base_path}/metadata``
        - DATABASE_URL / FIELDWARD_DB_PATH (see DatabaseConfig.from_env)
        - FIELDWARD_LOG_LEVEL, default INFO
        - FIELDWARD_AUDIT_TABLE, default audit_logs
        """
        base = base_path or Path.cwd()
        metadata_env = os.environ.get("FIELDWARD_METADATA_PATH")
        metadata_path = Path(metadata_env) if metadata_env else base / "metadata"

        return cls(
            metadata_path=metadata_path,
            database=DatabaseConfig.from_env(base),
            log_level=os.environ.get("FIELDWARD_LOG_LEVEL", "INFO").upper(),
            audit_table=os.environ.get("FIELDWARD_AUDIT_TABLE", DEFAULT_AUDIT_TABLE),
        )
