"""Storage layer: configuration, transactional clients and schema creation."""

from fieldward.persistence.client import (
    ConnectionSource,
    Database,
    QueryResult,
    SQLAlchemyClient,
    TransactionalClient,
)
from fieldward.persistence.config import DatabaseConfig, create_db_engine

__all__ = [
    "ConnectionSource",
    "Database",
    "DatabaseConfig",
    "QueryResult",
    "SQLAlchemyClient",
    "TransactionalClient",
    "create_db_engine",
]
