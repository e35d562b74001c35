"""Wire the runtime: settings -> registry -> permissions -> storage -> services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from fieldward.auth.permissions import PermissionMatrix
from fieldward.config import Settings
from fieldward.hooks import register_builtin_hooks
from fieldward.metadata.loader import EntityRegistry
from fieldward.metadata.validator import validate_metadata_dir
from fieldward.persistence.client import Database
from fieldward.services.delete_engine import AuditCascadeDeleteEngine
from fieldward.services.entity_service import GenericEntityService

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    registry: EntityRegistry
    matrix: PermissionMatrix
    db: Database
    delete_engine: AuditCascadeDeleteEngine
    service: GenericEntityService


def build_runtime(settings: Settings | None = None, base_path: Path | None = None) -> Runtime:
    """Load metadata and construct the shared, read-only runtime objects.

    Schema issues in metadata are logged, not raised; loader errors
    (missing table name, unknown RLS role) abort startup.
    """
    settings = settings or Settings.from_env(base_path)
    register_builtin_hooks()

    for issue in validate_metadata_dir(settings.metadata_path):
        log = logger.error if issue.severity == "error" else logger.warning
        log("Metadata: %s", issue)

    registry = EntityRegistry(settings.metadata_path).load_all()
    matrix = PermissionMatrix.from_registry(registry)
    db = Database.from_config(settings.database)
    delete_engine = AuditCascadeDeleteEngine(db, registry, audit_table=settings.audit_table)
    service = GenericEntityService(registry, matrix, db, delete_engine)

    logger.info(
        "Runtime ready: %d entities, dialect=%s", len(registry), db.dialect
    )
    return Runtime(settings, registry, matrix, db, delete_engine, service)
