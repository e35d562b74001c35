"""Entity metadata loading and validation."""

from fieldward.metadata.loader import (
    DependentConfig,
    EntityMetadata,
    EntityPermissions,
    EntityRegistry,
    FieldAccess,
    FieldDefinition,
    PolymorphicType,
    Relationship,
    SystemProtection,
)

__all__ = [
    "DependentConfig",
    "EntityMetadata",
    "EntityPermissions",
    "EntityRegistry",
    "FieldAccess",
    "FieldDefinition",
    "PolymorphicType",
    "Relationship",
    "SystemProtection",
]
