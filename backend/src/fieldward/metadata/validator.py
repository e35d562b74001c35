"""
metadata/validator.py - JSON Schema and semantic validation of entity YAML.

Usage:
    from fieldward.metadata.validator import validate_metadata_dir

    issues = validate_metadata_dir(Path("metadata"))
    for issue in issues:
        print(issue)

Schema checks catch shape errors per file. Semantic checks run on the
loaded registry and catch cross-references the schema cannot express:
RLS columns that are not fields, relationship keys that are not fields,
dependents on undeclared tables and hooks that are not registered.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError as SchemaValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from fieldward.hooks.registry import HookRegistry
from fieldward.metadata.loader import EntityRegistry
from fieldward.rls.policy import FieldReference, FieldShorthand

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"

ENTITY_SCHEMA = "entity.schema.json"

_SCHEMA_NAMES = ("_defs.schema.json", ENTITY_SCHEMA)


@dataclass
class ValidationIssue:
    """A single validation finding for a metadata YAML file."""

    file: Path
    message: str
    path: str = ""          # location within the document, e.g. "rlsPolicy/customer"
    severity: str = "error" # "error" | "warning"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load_schema(name: str) -> dict[str, Any]:
    with (_SCHEMAS_DIR / name).open() as fh:
        return json.load(fh)


def _load_registry() -> Registry:
    """Build a jsonschema Registry containing all Fieldward schemas."""
    resources = []
    for name in _SCHEMA_NAMES:
        schema = _load_schema(name)
        resources.append((schema["$id"], Resource(contents=schema, specification=DRAFT202012)))
    return Registry().with_resources(resources)


def _json_path(error: SchemaValidationError) -> str:
    parts = []
    for p in error.absolute_path:
        parts.append(f"[{p}]" if isinstance(p, int) else str(p))
    return "/".join(parts).replace("/[", "[")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_yaml_file(
    yaml_path: Path,
    schema_name: str = ENTITY_SCHEMA,
    *,
    registry: Registry | None = None,
) -> list[ValidationIssue]:
    """Validate a single YAML file against the named schema."""
    try:
        with yaml_path.open() as fh:
            doc = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if doc is None:
        return [ValidationIssue(file=yaml_path, message="File is empty or contains only whitespace")]

    if registry is None:
        registry = _load_registry()
    validator = Draft202012Validator(_load_schema(schema_name), registry=registry)

    return [
        ValidationIssue(file=yaml_path, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(doc), key=lambda e: list(e.path))
    ]


def validate_registry(registry: EntityRegistry, source: Path) -> list[ValidationIssue]:
    """Semantic checks on loaded entities."""
    issues: list[ValidationIssue] = []
    tables = {entity.table_name for entity in registry}

    for entity in registry:
        where = source / f"{entity.name}.yaml"
        for role, policy in (entity.rls_policy or {}).items():
            if isinstance(policy, (FieldShorthand, FieldReference)):
                if entity.get_field(policy.column) is None:
                    issues.append(
                        ValidationIssue(
                            file=where,
                            path=f"rlsPolicy/{role}",
                            message=f"RLS column '{policy.column}' is not a field of {entity.table_name}",
                        )
                    )
        for rel in entity.relationships:
            if rel.kind == "belongsTo" and entity.get_field(rel.foreign_key) is None:
                issues.append(
                    ValidationIssue(
                        file=where,
                        path=f"relationships/{rel.name}",
                        message=f"Foreign key '{rel.foreign_key}' is not a field of {entity.table_name}",
                    )
                )
            if rel.table not in tables:
                issues.append(
                    ValidationIssue(
                        file=where,
                        path=f"relationships/{rel.name}",
                        message=f"Related table '{rel.table}' is not declared by any entity",
                        severity="warning",
                    )
                )
        for dependent in entity.dependents:
            if dependent.table not in tables:
                issues.append(
                    ValidationIssue(
                        file=where,
                        path="dependents",
                        message=f"Dependent table '{dependent.table}' is not declared by any entity",
                        severity="warning",
                    )
                )
        for hook_point, names in entity.hooks.items():
            for name in names:
                if not HookRegistry.is_registered(name, hook_point):
                    issues.append(
                        ValidationIssue(
                            file=where,
                            path=f"hooks/{hook_point}",
                            message=f"Hook '{name}' is not registered",
                            severity="warning",
                        )
                    )
        protection = entity.system_protected
        if protection is not None:
            for name in (protection.identity_field, *protection.immutable_fields):
                if entity.get_field(name) is None:
                    issues.append(
                        ValidationIssue(
                            file=where,
                            path="systemProtected",
                            message=f"Protected field '{name}' is not a field of {entity.table_name}",
                        )
                    )
    return issues


def validate_metadata_dir(metadata_dir: Path, *, strict: bool = False) -> list[ValidationIssue]:
    """Validate every entity file under metadata_dir.

    Semantic checks only run when every file passes the schema. With
    ``strict`` warnings are promoted to errors.
    """
    entities_dir = metadata_dir / "entities"
    issues: list[ValidationIssue] = []
    if not entities_dir.exists():
        return [ValidationIssue(file=entities_dir, message="Entities directory not found")]

    registry = _load_registry()
    for yaml_file in sorted(entities_dir.glob("*.yaml")):
        issues.extend(validate_yaml_file(yaml_file, registry=registry))

    if not any(i.severity == "error" for i in issues):
        try:
            entity_registry = EntityRegistry(metadata_dir).load_all()
        except ValueError as exc:
            issues.append(ValidationIssue(file=entities_dir, message=str(exc)))
        else:
            issues.extend(validate_registry(entity_registry, entities_dir))

    if strict:
        for issue in issues:
            issue.severity = "error"
    return issues
