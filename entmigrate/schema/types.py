"""
Core type definitions for the entmigrate desired-schema model.

This module defines the logical description that the migration engine
reconciles against a live database:
- FieldDef: A typed field of an entity
- IndexDef: An index over one or more fields
- ReferenceDef: A foreign-key reference to another entity type
- EntityTypeDef: An entity type, mapped to exactly one table

Invariants:
    - Every entity type owns an implicit 64-bit `id` primary key
    - Field names are unique within an entity, `id` is reserved
    - Renames only happen through `previous_name` / `previous_table`
    - Definitions are immutable once a migration run begins

How to change safely:
    - Widen bounds (size, integer width, enum values); never shrink them
    - Rename a field by setting previous_name to its old name
    - Keep entity declaration order stable; it drives identifier tags

Example:
    >>> from entmigrate.schema.types import EntityTypeDef, field
    >>> User = EntityTypeDef(
    ...     name="User",
    ...     fields=(
    ...         field("name", "str", size=10),
    ...         field("state", "enum", enum_values=("loggedIn", "loggedOut")),
    ...     ),
    ... )
    >>> User.table_name
    'users'
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import ConstraintViolation

MAX_IDENTIFIER_LENGTH = 63

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class FieldKind(Enum):
    """Logical field types.

    The dialect type mappers translate these to physical column types.
    """

    INT8 = "int8"
    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    UINT8 = "uint8"
    UINT16 = "uint16"
    UINT32 = "uint32"
    UINT64 = "uint64"
    STRING = "str"
    BYTES = "bytes"
    ENUM = "enum"
    TIME = "time"
    BOOLEAN = "bool"
    FLOAT = "float"

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Args:
            value: String name of the field kind ("int" is an alias of int64)

        Returns:
            Corresponding FieldKind enum value

        Raises:
            ValueError: If value is not a valid field kind
        """
        if value == "int":
            return cls.INT64
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")

    @property
    def is_integer(self) -> bool:
        return self in INTEGER_RANGES

    @property
    def is_unsigned(self) -> bool:
        return self in (FieldKind.UINT8, FieldKind.UINT16, FieldKind.UINT32, FieldKind.UINT64)

    @property
    def bits(self) -> int | None:
        """Integer width in bits, None for non-integer kinds."""
        if not self.is_integer:
            return None
        return int(self.value.lstrip("uint"))


INTEGER_RANGES: dict[FieldKind, tuple[int, int]] = {
    FieldKind.INT8: (-(2**7), 2**7 - 1),
    FieldKind.INT16: (-(2**15), 2**15 - 1),
    FieldKind.INT32: (-(2**31), 2**31 - 1),
    FieldKind.INT64: (-(2**63), 2**63 - 1),
    FieldKind.UINT8: (0, 2**8 - 1),
    FieldKind.UINT16: (0, 2**16 - 1),
    FieldKind.UINT32: (0, 2**32 - 1),
    FieldKind.UINT64: (0, 2**64 - 1),
}

ON_DELETE_ACTIONS = ("SET NULL", "CASCADE", "RESTRICT", "NO ACTION")


def snake_case(name: str) -> str:
    """Convert a CamelCase entity name to snake_case."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return name.lower()


def pluralize(word: str) -> str:
    """Naive English plural used for default table names."""
    if re.search(r"(s|x|z|ch|sh)$", word):
        return word + "es"
    if re.search(r"[^aeiou]y$", word):
        return word[:-1] + "ies"
    return word + "s"


def short_identifier(name: str, limit: int = MAX_IDENTIFIER_LENGTH) -> str:
    """Shorten an identifier to the portable length limit.

    Long names keep a readable prefix and get a stable hash suffix so two
    different long names never collapse to the same identifier.
    """
    if len(name) <= limit:
        return name
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
    return f"{name[: limit - 9]}_{digest}"


def _check_identifier(kind: str, name: str) -> None:
    if not name:
        raise ValueError(f"{kind} name cannot be empty")
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"{kind} name '{name}' is not a valid identifier")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(f"{kind} name '{name}' exceeds {MAX_IDENTIFIER_LENGTH} characters")


@dataclass(frozen=True)
class FieldDef:
    """Definition of a single field of an entity type.

    Attributes:
        name: Column name
        kind: Logical type of the field
        size: Max length (str) or max bytes (bytes); None means unbounded
        nullable: Whether NULL is allowed
        default: Default value applied by the database
        unique: Whether values must be unique across rows
        enum_values: Closed value set if kind is ENUM
        previous_name: Explicit rename directive (old column name)
        description: Human-readable description

    Invariants:
        - size is only meaningful for STRING and BYTES
        - enum_values are required for ENUM and must be distinct
        - default must itself be a valid value of the field

    Example:
        >>> name = FieldDef(name="name", kind=FieldKind.STRING, size=10)
    """

    name: str
    kind: FieldKind
    size: int | None = None
    nullable: bool = False
    default: Any = None
    unique: bool = False
    enum_values: tuple[str, ...] | None = None
    previous_name: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        """Validate field definition."""
        _check_identifier("Field", self.name)
        if self.name == "id":
            raise ValueError("Field name 'id' is reserved for the primary key")
        if self.previous_name is not None:
            _check_identifier("Previous field", self.previous_name)
            if self.previous_name == self.name:
                raise ValueError(f"Field '{self.name}' cannot be renamed to itself")
        if self.size is not None:
            if self.kind not in (FieldKind.STRING, FieldKind.BYTES):
                raise ValueError(f"size is only valid for str and bytes fields ('{self.name}')")
            if self.size <= 0:
                raise ValueError(f"size must be positive, got {self.size} for '{self.name}'")
        if self.kind == FieldKind.ENUM:
            if not self.enum_values:
                raise ValueError(f"enum_values required for ENUM field '{self.name}'")
            if len(set(self.enum_values)) != len(self.enum_values):
                raise ValueError(f"Duplicate enum value in field '{self.name}'")
            if any(not v for v in self.enum_values):
                raise ValueError(f"Empty enum value in field '{self.name}'")
        elif self.enum_values:
            raise ValueError(f"enum_values given for non-enum field '{self.name}'")
        if self.default is not None:
            if self.kind in (FieldKind.TIME, FieldKind.BYTES):
                raise ValueError(f"Defaults are not supported for {self.kind.value} field '{self.name}'")
            is_valid, error = self.validate_value(self.default)
            if not is_valid:
                raise ValueError(f"Invalid default: {error}")

    def validate_value(self, value: Any) -> tuple[bool, str | None]:
        """Validate a value against this field definition.

        Args:
            value: The value to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        if value is None:
            if not self.nullable and self.default is None:
                return False, f"Field '{self.name}' is required"
            return True, None

        if self.kind.is_integer:
            if not isinstance(value, int) or isinstance(value, bool):
                return False, f"Field '{self.name}' must be an integer, got {type(value).__name__}"
            low, high = INTEGER_RANGES[self.kind]
            if not low <= value <= high:
                return False, f"Field '{self.name}' value {value} out of {self.kind.value} range"
            return True, None

        if self.kind == FieldKind.ENUM:
            if not isinstance(value, str):
                return False, f"Field '{self.name}' must be a string, got {type(value).__name__}"
            if self.enum_values and value not in self.enum_values:
                return (
                    False,
                    f"Field '{self.name}' must be one of {self.enum_values}, got '{value}'",
                )
            return True, None

        if self.kind == FieldKind.STRING:
            if not isinstance(value, str):
                return False, f"Field '{self.name}' must be a string, got {type(value).__name__}"
            if self.size is not None and len(value) > self.size:
                return False, f"Field '{self.name}' is limited to {self.size} characters"
            return True, None

        if self.kind == FieldKind.BYTES:
            if not isinstance(value, (bytes, bytearray)):
                return False, f"Field '{self.name}' must be bytes, got {type(value).__name__}"
            if self.size is not None and len(value) > self.size:
                return False, f"Field '{self.name}' is limited to {self.size} bytes"
            return True, None

        validators = {
            FieldKind.TIME: lambda v: isinstance(v, datetime),
            FieldKind.BOOLEAN: lambda v: isinstance(v, bool),
            FieldKind.FLOAT: lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
        }
        validator = validators.get(self.kind)
        if validator and not validator(value):
            return False, f"Field '{self.name}' has invalid type for kind {self.kind.value}"

        return True, None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind.value,
        }
        if self.size is not None:
            result["size"] = self.size
        if self.nullable:
            result["nullable"] = True
        if self.default is not None:
            result["default"] = self.default
        if self.unique:
            result["unique"] = True
        if self.enum_values:
            result["enum_values"] = list(self.enum_values)
        if self.previous_name:
            result["previous_name"] = self.previous_name
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            kind=FieldKind.from_str(data["kind"]),
            size=data.get("size"),
            nullable=data.get("nullable", False),
            default=data.get("default"),
            unique=data.get("unique", False),
            enum_values=tuple(data["enum_values"]) if data.get("enum_values") else None,
            previous_name=data.get("previous_name"),
            description=data.get("description", ""),
        )


def field(
    name: str,
    kind: str | FieldKind,
    *,
    size: int | None = None,
    nullable: bool = False,
    default: Any = None,
    unique: bool = False,
    enum_values: tuple[str, ...] | None = None,
    previous_name: str | None = None,
    description: str = "",
) -> FieldDef:
    """Convenience function to create a FieldDef.

    This is the preferred way to define fields in schema definitions.

    Example:
        >>> name = field("name", "str", size=10)
        >>> state = field("state", "enum", enum_values=("on", "off"), nullable=True)
    """
    if isinstance(kind, str):
        kind = FieldKind.from_str(kind)
    return FieldDef(
        name=name,
        kind=kind,
        size=size,
        nullable=nullable,
        default=default,
        unique=unique,
        enum_values=tuple(enum_values) if enum_values else None,
        previous_name=previous_name,
        description=description,
    )


@dataclass(frozen=True)
class IndexDef:
    """Definition of an index over one or more fields.

    Attributes:
        fields: Ordered column names
        unique: Whether the index enforces uniqueness
        name: Explicit index name (derived from table and fields if unset)
    """

    fields: tuple[str, ...]
    unique: bool = False
    name: str | None = None

    def __post_init__(self) -> None:
        if not self.fields:
            raise ValueError("Index must cover at least one field")
        if len(set(self.fields)) != len(self.fields):
            raise ValueError(f"Duplicate field in index {self.fields}")
        if self.name is not None:
            _check_identifier("Index", self.name)

    def resolved_name(self, table: str) -> str:
        """Name of the index on the given table."""
        if self.name:
            return self.name
        return short_identifier("_".join((table,) + self.fields))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"fields": list(self.fields)}
        if self.unique:
            result["unique"] = True
        if self.name:
            result["name"] = self.name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexDef:
        return cls(
            fields=tuple(data["fields"]),
            unique=data.get("unique", False),
            name=data.get("name"),
        )


def index(*fields: str, unique: bool = False, name: str | None = None) -> IndexDef:
    """Convenience function to create an IndexDef."""
    return IndexDef(fields=tuple(fields), unique=unique, name=name)


@dataclass(frozen=True)
class ReferenceDef:
    """Foreign-key reference from an entity to another entity's id.

    Attributes:
        column: Name of the referencing column (e.g. "owner_id")
        target: Name of the referenced entity type
        nullable: Whether the reference is optional
        on_delete: Referential action when the target row is deleted
        previous_name: Explicit rename directive for the column
    """

    column: str
    target: str
    nullable: bool = True
    on_delete: str = "SET NULL"
    previous_name: str | None = None

    def __post_init__(self) -> None:
        _check_identifier("Reference column", self.column)
        if self.column == "id":
            raise ValueError("Reference column 'id' is reserved for the primary key")
        if not self.target:
            raise ValueError(f"Reference '{self.column}' needs a target entity")
        if self.on_delete not in ON_DELETE_ACTIONS:
            raise ValueError(
                f"Invalid on_delete '{self.on_delete}' for '{self.column}'. "
                f"Valid: {ON_DELETE_ACTIONS}"
            )
        if self.on_delete == "SET NULL" and not self.nullable:
            raise ValueError(f"Reference '{self.column}' uses SET NULL but is not nullable")

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"column": self.column, "target": self.target}
        if not self.nullable:
            result["nullable"] = False
        if self.on_delete != "SET NULL":
            result["on_delete"] = self.on_delete
        if self.previous_name:
            result["previous_name"] = self.previous_name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReferenceDef:
        return cls(
            column=data["column"],
            target=data["target"],
            nullable=data.get("nullable", True),
            on_delete=data.get("on_delete", "SET NULL"),
            previous_name=data.get("previous_name"),
        )


def ref(
    column: str,
    target: str,
    *,
    nullable: bool = True,
    on_delete: str = "SET NULL",
    previous_name: str | None = None,
) -> ReferenceDef:
    """Convenience function to create a ReferenceDef."""
    return ReferenceDef(
        column=column,
        target=target,
        nullable=nullable,
        on_delete=on_delete,
        previous_name=previous_name,
    )


@dataclass(frozen=True)
class EntityTypeDef:
    """Definition of an entity type, mapped to one table.

    Attributes:
        name: Entity name (CamelCase by convention)
        fields: Ordered field definitions
        indexes: Index definitions
        references: Foreign-key references to other entity types
        table: Explicit table name (snake_case plural of name if unset)
        previous_table: Explicit rename directive for the table
        description: Human-readable description

    Invariants:
        - Column names (fields and reference columns) are unique
        - Index fields must name existing columns

    Example:
        >>> Pet = EntityTypeDef(
        ...     name="Pet",
        ...     fields=(field("name", "str", size=64),),
        ...     references=(ref("owner_id", "User"),),
        ... )
    """

    name: str
    fields: tuple[FieldDef, ...] = dataclass_field(default_factory=tuple)
    indexes: tuple[IndexDef, ...] = dataclass_field(default_factory=tuple)
    references: tuple[ReferenceDef, ...] = dataclass_field(default_factory=tuple)
    table: str | None = None
    previous_table: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        """Validate entity type definition."""
        _check_identifier("Entity type", self.name)
        if self.table is not None:
            _check_identifier("Table", self.table)
        if self.previous_table is not None:
            _check_identifier("Previous table", self.previous_table)

        names = self.column_names()
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate column name in entity type '{self.name}'")

        known = set(names)
        for idx in self.indexes:
            unknown = [f for f in idx.fields if f not in known]
            if unknown:
                raise ValueError(
                    f"Index on entity type '{self.name}' references unknown fields {unknown}"
                )

    @property
    def table_name(self) -> str:
        """Physical table name."""
        return self.table or pluralize(snake_case(self.name))

    def column_names(self) -> list[str]:
        """Names of all non-id columns in declaration order."""
        return [f.name for f in self.fields] + [r.column for r in self.references]

    def get_field(self, name: str) -> FieldDef | None:
        """Get a field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def check_payload(self, payload: dict[str, Any]) -> None:
        """Reject a payload that the database constraints would reject.

        Raises:
            ConstraintViolation: On the first invalid field
        """
        for f in self.fields:
            is_valid, error = f.validate_value(payload.get(f.name))
            if not is_valid:
                raise ConstraintViolation(
                    error or f"Invalid value for '{f.name}'",
                    kind="check" if payload.get(f.name) is not None else "not_null",
                    table=self.table_name,
                    column=f.name,
                )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.indexes:
            result["indexes"] = [i.to_dict() for i in self.indexes]
        if self.references:
            result["references"] = [r.to_dict() for r in self.references]
        if self.table:
            result["table"] = self.table
        if self.previous_table:
            result["previous_table"] = self.previous_table
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityTypeDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            fields=tuple(FieldDef.from_dict(f) for f in data.get("fields", [])),
            indexes=tuple(IndexDef.from_dict(i) for i in data.get("indexes", [])),
            references=tuple(ReferenceDef.from_dict(r) for r in data.get("references", [])),
            table=data.get("table"),
            previous_table=data.get("previous_table"),
            description=data.get("description", ""),
        )
