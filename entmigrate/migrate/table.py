"""
Physical table model shared by the planner, the inspector and the dialects.

Desired tables are derived from the entity registry through a dialect's
type mapper; live tables are reconstructed by the inspector. Both sides
use the same frozen dataclasses so the planner can compare them directly.

Invariants:
    - Every table has an `id` primary key column
    - Unique fields are modelled as unique indexes named `<table>_<col>_key`
    - Implicit indexes (primary key, foreign-key backing) are never planned
    - tag == sequence_base >> 32 whenever sequence_base is known
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from ..dialect.types import ColumnType
from ..schema.types import short_identifier

if TYPE_CHECKING:
    from ..dialect.base import BaseDialect
    from ..schema.registry import SchemaRegistry

ID_COLUMN = "id"
TAG_SHIFT = 32


@dataclass(frozen=True)
class Column:
    """A table column.

    Attributes:
        name: Column name
        type: Semantic column type
        nullable: Whether NULL is allowed
        default: Normalized SQL literal of the default, None if absent
        primary_key: True only for the id column
        previous_name: Rename directive carried from the field definition
        check_name: Name of the backing check constraint, when named
    """

    name: str
    type: ColumnType
    nullable: bool = False
    default: Optional[str] = None
    primary_key: bool = False
    previous_name: Optional[str] = None
    check_name: Optional[str] = None


@dataclass(frozen=True)
class Index:
    """A secondary index.

    Attributes:
        name: Index name
        columns: Indexed columns, in order
        unique: Whether the index enforces uniqueness
        implicit: Created by the database for a key; never planned against
        constraint: Backed by a table constraint (dropped with DROP CONSTRAINT)
    """

    name: str
    columns: Tuple[str, ...]
    unique: bool = False
    implicit: bool = False
    constraint: bool = False

    def same_definition(self, other: Index) -> bool:
        return self.columns == other.columns and self.unique == other.unique


@dataclass(frozen=True)
class ForeignKey:
    """A single-column foreign key to another table's id."""

    name: str
    column: str
    ref_table: str
    ref_column: str = ID_COLUMN
    on_delete: str = "SET NULL"


@dataclass(frozen=True)
class Table:
    """A table, desired or live.

    Attributes:
        name: Table name
        columns: Columns in order, id first
        indexes: Secondary indexes
        foreign_keys: Foreign keys
        sequence_base: Identity sequence base, None if the table has none
        previous_name: Rename directive (desired tables only)
    """

    name: str
    columns: Tuple[Column, ...]
    indexes: Tuple[Index, ...] = ()
    foreign_keys: Tuple[ForeignKey, ...] = ()
    sequence_base: Optional[int] = None
    previous_name: Optional[str] = None

    @property
    def tag(self) -> Optional[int]:
        """Identifier tag recovered from the sequence base."""
        if self.sequence_base is None:
            return None
        return self.sequence_base >> TAG_SHIFT

    @property
    def primary_key(self) -> Optional[Column]:
        for column in self.columns:
            if column.primary_key:
                return column
        return None

    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> Optional[Column]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def index(self, name: str) -> Optional[Index]:
        for idx in self.indexes:
            if idx.name == name:
                return idx
        return None

    def foreign_key(self, column: str) -> Optional[ForeignKey]:
        for fk in self.foreign_keys:
            if fk.column == column:
                return fk
        return None

    def planned_indexes(self) -> List[Index]:
        """Indexes the planner manages (implicit ones excluded)."""
        return [idx for idx in self.indexes if not idx.implicit]

    # Copy helpers used by operation simulation.

    def with_columns(self, columns: List[Column]) -> Table:
        return replace(self, columns=tuple(columns))

    def with_indexes(self, indexes: List[Index]) -> Table:
        return replace(self, indexes=tuple(indexes))

    def with_foreign_keys(self, foreign_keys: List[ForeignKey]) -> Table:
        return replace(self, foreign_keys=tuple(foreign_keys))

    def describe(self) -> str:
        """Multi-line text rendering used by `entmigrate inspect`."""
        lines = [f"table {self.name}" + (f" (tag {self.tag})" if self.tag is not None else "")]
        for column in self.columns:
            flags = []
            if column.primary_key:
                flags.append("pk")
            flags.append("null" if column.nullable else "not null")
            if column.default is not None:
                flags.append(f"default {column.default}")
            lines.append(f"  {column.name}: {column.type.describe()} ({', '.join(flags)})")
        for idx in self.indexes:
            kind = "unique index" if idx.unique else "index"
            suffix = " [implicit]" if idx.implicit else ""
            lines.append(f"  {kind} {idx.name} ({', '.join(idx.columns)}){suffix}")
        for fk in self.foreign_keys:
            lines.append(
                f"  foreign key {fk.column} -> {fk.ref_table}.{fk.ref_column} "
                f"ON DELETE {fk.on_delete}"
            )
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "sequence_base": self.sequence_base,
            "tag": self.tag,
            "columns": [
                {
                    "name": c.name,
                    "type": c.type.sql,
                    "family": c.type.family.value,
                    "low": c.type.low,
                    "high": c.type.high,
                    "size": c.type.size,
                    "values": list(c.type.values) if c.type.values is not None else None,
                    "nullable": c.nullable,
                    "default": c.default,
                    "primary_key": c.primary_key,
                }
                for c in self.columns
            ],
            "indexes": [
                {
                    "name": i.name,
                    "columns": list(i.columns),
                    "unique": i.unique,
                    "implicit": i.implicit,
                }
                for i in self.indexes
            ],
            "foreign_keys": [
                {
                    "name": f.name,
                    "column": f.column,
                    "ref_table": f.ref_table,
                    "ref_column": f.ref_column,
                    "on_delete": f.on_delete,
                }
                for f in self.foreign_keys
            ],
        }


def unique_index_name(table: str, column: str) -> str:
    return short_identifier(f"{table}_{column}_key")


def foreign_key_name(table: str, column: str) -> str:
    return short_identifier(f"{table}_{column}_fkey")


def desired_tables(registry: SchemaRegistry, dialect: BaseDialect) -> List[Table]:
    """Map every entity type of the registry to a desired Table.

    Args:
        registry: Desired schema, in declaration order
        dialect: Target dialect, whose type mapper decides column types

    Returns:
        Tables in declaration order

    Raises:
        UnsupportedTypeError: If a field has no representation in the dialect
    """
    tables_by_entity: Dict[str, str] = {e.name: e.table_name for e in registry.entity_types()}
    tables = []
    for entity in registry.entity_types():
        name = entity.table_name
        columns = [
            Column(
                name=ID_COLUMN,
                type=dialect.primary_key_type(),
                nullable=False,
                primary_key=True,
            )
        ]
        indexes = []
        foreign_keys = []

        for f in entity.fields:
            ctype = dialect.column_type(f, table=name)
            columns.append(
                Column(
                    name=f.name,
                    type=ctype,
                    nullable=f.nullable,
                    default=dialect.normalize_default(dialect.default_literal(f), ctype),
                    previous_name=f.previous_name,
                    check_name=dialect.check_name(name, f.name, ctype),
                )
            )
            if f.unique:
                indexes.append(Index(unique_index_name(name, f.name), (f.name,), unique=True))

        for r in entity.references:
            columns.append(
                Column(
                    name=r.column,
                    type=dialect.reference_type(),
                    nullable=r.nullable,
                    previous_name=r.previous_name,
                )
            )
            foreign_keys.append(
                ForeignKey(
                    name=foreign_key_name(name, r.column),
                    column=r.column,
                    ref_table=tables_by_entity.get(r.target, r.target),
                    on_delete=r.on_delete,
                )
            )

        for idx in entity.indexes:
            indexes.append(Index(idx.resolved_name(name), tuple(idx.fields), unique=idx.unique))

        tables.append(
            Table(
                name=name,
                columns=tuple(columns),
                indexes=tuple(indexes),
                foreign_keys=tuple(foreign_keys),
                previous_name=entity.previous_table,
            )
        )
    return tables
