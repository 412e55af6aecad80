"""
Desired-schema model for entmigrate.

Entity types are described with frozen dataclasses and collected in an
ordered SchemaRegistry, or loaded from a YAML/JSON file.
"""

from .loader import dump_yaml, load_schema, parse_json, parse_yaml
from .registry import DuplicateRegistrationError, RegistryFrozenError, SchemaRegistry
from .types import (
    INTEGER_RANGES,
    EntityTypeDef,
    FieldDef,
    FieldKind,
    IndexDef,
    ReferenceDef,
    field,
    index,
    ref,
)

__all__ = [
    "EntityTypeDef",
    "FieldDef",
    "FieldKind",
    "IndexDef",
    "ReferenceDef",
    "INTEGER_RANGES",
    "field",
    "index",
    "ref",
    "SchemaRegistry",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
    "load_schema",
    "parse_yaml",
    "parse_json",
    "dump_yaml",
]
