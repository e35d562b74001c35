"""Database location and engine construction."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.pool import StaticPool

DEFAULT_DB_FILE = Path("data") / "fieldward.db"
_SUPPORTED_BACKENDS = ("sqlite", "postgresql")


@dataclass
class DatabaseConfig:
    """Where Fieldward keeps its tables.

    ``url`` is a SQLAlchemy-style URL; plain ``postgresql://`` URLs are
    routed to the psycopg 3 driver.
    """

    url: str

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> DatabaseConfig:
        """DATABASE_URL, else FIELDWARD_DB_PATH as a SQLite file, else a file under base_path."""
        url = os.environ.get("DATABASE_URL")
        if url:
            return cls(url=url)
        db_file = os.environ.get("FIELDWARD_DB_PATH")
        if db_file:
            return cls(url=f"sqlite:///{db_file}")
        location = (base_path / DEFAULT_DB_FILE) if base_path else Path("fieldward.db")
        return cls(url=f"sqlite:///{location}")

    @property
    def backend(self) -> str:
        return make_url(self.url).get_backend_name()

    @property
    def is_sqlite(self) -> bool:
        return self.backend == "sqlite"

    @property
    def is_postgresql(self) -> bool:
        return self.backend == "postgresql"

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and make_url(self.url).database in (None, "", ":memory:")

    @property
    def sqlalchemy_url(self) -> str:
        url = make_url(self.url)
        if url.drivername == "postgresql":
            url = url.set(drivername="postgresql+psycopg")
        return url.render_as_string(hide_password=False)


def create_db_engine(config: DatabaseConfig) -> Engine:
    """Engine for config; in-memory SQLite pins one shared connection.

    Raises:
        ValueError: If the URL names a backend other than SQLite or PostgreSQL
    """
    if config.backend not in _SUPPORTED_BACKENDS:
        raise ValueError(f"Unsupported database backend '{config.backend}' in {config.url}")

    if config.is_memory:
        return create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if config.is_sqlite:
        Path(make_url(config.url).database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(config.sqlalchemy_url)
