"""
YAML/JSON schema file format for entmigrate.

The CLI reads the desired schema from a file. The file is the
serialized form of a SchemaRegistry: a list of entity types in
declaration order.

Example schema:
    version: 1
    entity_types:
      - name: User
        fields:
          - name: name
            kind: str
            size: 20
          - name: state
            kind: enum
            enum_values: [loggedIn, loggedOut, online]
            nullable: true
        indexes:
          - fields: [name]
            unique: true

      - name: Pet
        fields:
          - name: name
            kind: str
        references:
          - column: owner_id
            target: User
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from ..errors import SchemaValidationError
from .registry import DuplicateRegistrationError, SchemaRegistry
from .types import EntityTypeDef

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = (1,)


def parse_schema(data: dict[str, Any]) -> SchemaRegistry:
    """Parse a complete schema from dict.

    Every entity type is parsed even after a failure so the error lists
    all problems at once.

    Raises:
        SchemaValidationError: If the document or any entity type is invalid
    """
    if not isinstance(data, dict):
        raise SchemaValidationError("Schema document must be a mapping")

    version = data.get("version", 1)
    if version not in SUPPORTED_VERSIONS:
        raise SchemaValidationError(f"Unsupported schema version {version}")

    errors: list[str] = []
    entity_types: list[EntityTypeDef] = []
    for position, raw in enumerate(data.get("entity_types", []) or []):
        label = raw.get("name") if isinstance(raw, dict) else None
        try:
            entity_types.append(EntityTypeDef.from_dict(raw))
        except (KeyError, TypeError, ValueError) as e:
            errors.append(f"entity_types[{position}] ({label or '?'}): {e}")

    if errors:
        raise SchemaValidationError(f"Invalid schema: {errors[0]}", errors=errors)

    try:
        registry = SchemaRegistry(entity_types)
    except DuplicateRegistrationError as e:
        raise SchemaValidationError(f"Invalid schema: {e}", errors=[str(e)]) from e
    registry.validate()
    return registry


def parse_yaml(yaml_str: str) -> SchemaRegistry:
    """Parse schema from YAML string."""
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise SchemaValidationError(f"Invalid YAML: {e}") from e
    return parse_schema(data or {})


def parse_json(json_str: str) -> SchemaRegistry:
    """Parse schema from JSON string."""
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise SchemaValidationError(f"Invalid JSON: {e}") from e
    return parse_schema(data or {})


def load_schema(path: str | Path) -> SchemaRegistry:
    """Load a schema file, choosing the parser by extension.

    Args:
        path: Path to a .yaml, .yml or .json file

    Returns:
        Validated, unfrozen SchemaRegistry

    Raises:
        SchemaValidationError: If the file cannot be parsed or is invalid
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        registry = parse_json(text)
    else:
        registry = parse_yaml(text)
    logger.info(f"Loaded {len(registry)} entity types from {path}")
    return registry


def dump_yaml(registry: SchemaRegistry) -> str:
    """Serialize a registry to the YAML file format."""
    data = {"version": 1, **registry.to_dict()}
    return yaml.dump(data, default_flow_style=False, sort_keys=False)
