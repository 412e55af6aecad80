"""
Schema Registry for entmigrate.

The SchemaRegistry holds the desired schema handed to the migrator.
It provides:
- Registration of entity types, in declaration order
- Lookup by entity name or table name
- Schema fingerprinting for drift reports
- Freeze mechanism so the schema cannot change during a run

Invariants:
    - Declaration order is significant: it decides creation order and
      the order in which new identifier tags are handed out
    - Entity names and table names are unique
    - Once frozen, no new types can be registered
    - Fingerprint changes when the schema changes

How to change safely:
    - Append new entity types at the end of the registry
    - Run `entmigrate plan --check` in CI before deploying a schema change
    - Never reorder existing types when identifier tagging is enabled

Example:
    >>> from entmigrate.schema import SchemaRegistry, EntityTypeDef, field
    >>> registry = SchemaRegistry()
    >>> registry.register(EntityTypeDef(name="User", fields=(field("name", "str"),)))
    >>> registry.get("users").name
    'User'
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Dict, Iterator, List, Optional

from ..errors import EntMigrateError, SchemaValidationError
from .types import EntityTypeDef

logger = logging.getLogger(__name__)


class RegistryFrozenError(EntMigrateError):
    """Raised when attempting to modify a frozen registry."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="REGISTRY_FROZEN")


class DuplicateRegistrationError(EntMigrateError):
    """Raised when an entity name or table name is registered twice."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="DUPLICATE_REGISTRATION")


class SchemaRegistry:
    """Ordered registry of entity type definitions.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible

    Attributes:
        frozen: Whether the registry is frozen (immutable)
        fingerprint: SHA-256 hash of the schema (computed on freeze)
    """

    def __init__(self, entity_types: Optional[List[EntityTypeDef]] = None) -> None:
        """Initialize a mutable registry, optionally pre-populated."""
        self._types: Dict[str, EntityTypeDef] = {}
        self._types_by_table: Dict[str, EntityTypeDef] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()
        for entity_type in entity_types or []:
            self.register(entity_type)

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Schema fingerprint (available after freeze)."""
        return self._fingerprint

    def __len__(self) -> int:
        return len(self._types)

    def __iter__(self) -> Iterator[EntityTypeDef]:
        return iter(self._types.values())

    def register(self, entity_type: EntityTypeDef) -> None:
        """Register an entity type definition.

        Args:
            entity_type: The entity type to register

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the name or table is taken
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register entity type '{entity_type.name}': registry is frozen"
                )

            if entity_type.name in self._types:
                raise DuplicateRegistrationError(
                    f"Entity type '{entity_type.name}' already registered"
                )

            table = entity_type.table_name
            if table in self._types_by_table:
                existing = self._types_by_table[table]
                raise DuplicateRegistrationError(
                    f"Table '{table}' already used by entity type '{existing.name}'"
                )

            self._types[entity_type.name] = entity_type
            self._types_by_table[table] = entity_type
            logger.debug(f"Registered entity type: {entity_type.name} (table={table})")

    def get(self, name: str) -> Optional[EntityTypeDef]:
        """Get an entity type by entity name or table name.

        Returns:
            EntityTypeDef if found, None otherwise
        """
        return self._types.get(name) or self._types_by_table.get(name)

    def entity_types(self) -> List[EntityTypeDef]:
        """All entity types in declaration order."""
        return list(self._types.values())

    def table_names(self) -> List[str]:
        """All table names in declaration order."""
        return [t.table_name for t in self._types.values()]

    def freeze(self) -> str:
        """Freeze the registry and compute fingerprint.

        Returns:
            Schema fingerprint string

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")

            self._fingerprint = self.compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Schema registry frozen with {len(self._types)} entity types, "
                f"fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint of the schema.

        Declaration order is part of the fingerprint because it affects
        the migration plan.

        Returns:
            Fingerprint string in format 'sha256:<hash>'
        """
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def to_dict(self) -> dict:
        """Convert registry to dictionary representation (declaration order)."""
        return {"entity_types": [t.to_dict() for t in self._types.values()]}

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Convert registry to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: dict) -> SchemaRegistry:
        """Create registry from dictionary representation.

        Returns:
            New SchemaRegistry with types registered (not frozen)
        """
        return cls([EntityTypeDef.from_dict(t) for t in data.get("entity_types", [])])

    @classmethod
    def from_json(cls, json_str: str) -> SchemaRegistry:
        """Create registry from JSON string."""
        return cls.from_dict(json.loads(json_str))

    def validate_all(self) -> list[str]:
        """Validate all registered types for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        tables = set(self._types_by_table)

        index_owner: Dict[str, str] = {}
        for entity in self._types.values():
            table = entity.table_name
            for reference in entity.references:
                if reference.target not in self._types:
                    errors.append(
                        f"Reference '{reference.column}' in entity type '{entity.name}' "
                        f"targets unknown entity type '{reference.target}'"
                    )

            if entity.previous_table and entity.previous_table in tables:
                errors.append(
                    f"Entity type '{entity.name}' is renamed from '{entity.previous_table}', "
                    f"which is still a declared table"
                )

            previous_names = [
                f.previous_name for f in entity.fields if f.previous_name
            ] + [r.previous_name for r in entity.references if r.previous_name]
            if len(previous_names) != len(set(previous_names)):
                errors.append(f"Entity type '{entity.name}' renames one column twice")

            for idx in entity.indexes:
                name = idx.resolved_name(table)
                if name in index_owner:
                    errors.append(
                        f"Index name '{name}' on '{table}' is already used on "
                        f"'{index_owner[name]}'"
                    )
                index_owner[name] = table

        return errors

    def validate(self) -> None:
        """Raise if validate_all() reports any error.

        Raises:
            SchemaValidationError: With the list of problems found
        """
        errors = self.validate_all()
        if errors:
            raise SchemaValidationError(
                f"Schema has {len(errors)} validation error(s): {errors[0]}", errors=errors
            )
