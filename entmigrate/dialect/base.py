"""
Dialect base class.

A dialect bundles everything that differs between database engines:
- The type mapper (logical field kind -> physical ColumnType)
- DDL rendering for every migration operation
- Catalog queries used by the schema inspector
- Default-literal normalization
- Case-folding predicates and constraint-error classification

Invariants:
    - Type mapping is deterministic: same field, same ColumnType
    - Whatever the inspector reads back for a rendered column compares
      equal to the mapped ColumnType
    - Dialects are stateless; one instance may serve many connections

How to change safely:
    - When a mapping changes, update the catalog parser in the same change
      or every existing database will plan a widening on the next run
    - Keep render() output one statement per list element
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Dict, List, Optional

from ..errors import EntMigrateError, UnsupportedTypeError
from ..schema.types import INTEGER_RANGES, FieldDef, FieldKind
from .types import ColumnType, Emulation, TypeFamily

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection

    from ..migrate import operations as ops
    from ..migrate.table import Column, ForeignKey, Index, Table

logger = logging.getLogger(__name__)

INT64_LOW, INT64_HIGH = INTEGER_RANGES[FieldKind.INT64]

_QUOTED_VALUE_RE = re.compile(r"'((?:[^']|'')*)'")
_BETWEEN_RE = re.compile(r"BETWEEN\s+\(?'?(-?\d+)'?\)?\s+AND\s+\(?'?(-?\d+)'?\)?", re.IGNORECASE)
_LOW_RE = re.compile(r">=\s*\(?'?(-?\d+)'?\)?")
_HIGH_RE = re.compile(r"<=\s*\(?'?(-?\d+)'?\)?")
_LENGTH_RE = re.compile(r"length\(.*?\)\s*<=\s*\(?'?(\d+)'?\)?", re.IGNORECASE)
_ENUM_RE = re.compile(r"\bIN\s*\(|=\s*ANY\b", re.IGNORECASE)
_INT_LITERAL_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_LITERAL_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


@dataclass(frozen=True)
class DialectCapabilities:
    """What a database engine can do natively.

    Attributes:
        transactional_ddl: DDL statements can be rolled back
        native_enum: Enumerations have a native column type
        native_unsigned: Unsigned integers have native column types
        alter_column: Column types can be changed in place
        forward_references: Foreign keys may be declared inline before the
            referenced table exists
    """

    transactional_ddl: bool
    native_enum: bool
    native_unsigned: bool
    alter_column: bool
    forward_references: bool


@dataclass(frozen=True)
class Predicate:
    """A SQL boolean fragment with its bound parameters.

    Example:
        >>> p = dialect.equal_fold("name", "alex")
        >>> conn.execute(text(f"SELECT id FROM users WHERE {p.sql}"), p.params)
    """

    sql: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ParsedCheck:
    """Bounds recovered from a check constraint expression."""

    low: Optional[int] = None
    high: Optional[int] = None
    size: Optional[int] = None
    values: Optional[tuple] = None

    @property
    def emulation(self) -> Emulation:
        if self.values is not None:
            return Emulation.ENUM_CHECK
        if self.size is not None:
            return Emulation.LENGTH_CHECK
        if self.low is not None or self.high is not None:
            return Emulation.RANGE_CHECK
        return Emulation.NONE


def parse_check(expression: Optional[str]) -> ParsedCheck:
    """Recover bounds from a check expression as the catalog returns it.

    Handles both the expressions this package renders and the normalized
    forms engines store (`BETWEEN` expanded to `>=`/`<=`, `IN` rewritten
    to `= ANY (ARRAY[...])`, literals wrapped in casts).
    """
    if not expression:
        return ParsedCheck()
    if _ENUM_RE.search(expression):
        values = tuple(v.replace("''", "'") for v in _QUOTED_VALUE_RE.findall(expression))
        return ParsedCheck(values=values)
    match = _LENGTH_RE.search(expression)
    if match:
        return ParsedCheck(size=int(match.group(1)))
    match = _BETWEEN_RE.search(expression)
    if match:
        return ParsedCheck(low=int(match.group(1)), high=int(match.group(2)))
    low = _LOW_RE.search(expression)
    high = _HIGH_RE.search(expression)
    if low or high:
        return ParsedCheck(
            low=int(low.group(1)) if low else None,
            high=int(high.group(1)) if high else None,
        )
    return ParsedCheck()


def quote_string(value: str) -> str:
    """Render a SQL string literal."""
    return "'" + value.replace("'", "''") + "'"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards with a backslash."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class BaseDialect(ABC):
    """Common behavior of the three supported dialects."""

    name: ClassVar[str]
    capabilities: ClassVar[DialectCapabilities]

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    # Identifiers and literals

    def quote(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def bool_literal(self, value: bool) -> str:
        return "1" if value else "0"

    # Type mapper

    @abstractmethod
    def column_type(self, f: FieldDef, table: Optional[str] = None) -> ColumnType:
        """Map a logical field to a physical column type.

        Raises:
            UnsupportedTypeError: If the kind has no representation
        """

    @abstractmethod
    def primary_key_type(self) -> ColumnType:
        """Type of the auto-incrementing id column."""

    def reference_type(self) -> ColumnType:
        """Type of a column referencing another table's id."""
        return ColumnType(TypeFamily.INT, "bigint", low=INT64_LOW, high=INT64_HIGH)

    def unsupported(self, f: FieldDef, table: Optional[str], reason: str) -> UnsupportedTypeError:
        where = f"{table}.{f.name}" if table else f.name
        return UnsupportedTypeError(
            f"{self.name} cannot represent {f.kind.value} field {where}: {reason}",
            dialect=self.name,
            table=table,
            field_name=f.name,
            kind=f.kind.value,
        )

    @staticmethod
    def int_type(sql: str, kind: FieldKind, emulation: Emulation = Emulation.NONE) -> ColumnType:
        low, high = INTEGER_RANGES[kind]
        return ColumnType(TypeFamily.INT, sql, low=low, high=high, emulation=emulation)

    def check_name(self, table: str, column: str, ctype: ColumnType) -> Optional[str]:
        """Name of the check constraint backing an emulated type."""
        return None

    def length_function(self, ctype: ColumnType) -> str:
        return "length"

    def check_expression(self, column: str, ctype: ColumnType) -> Optional[str]:
        """Render the check constraint that enforces an emulated type."""
        col = self.quote(column)
        if ctype.emulation == Emulation.RANGE_CHECK:
            return f"{col} BETWEEN {ctype.low} AND {ctype.high}"
        if ctype.emulation == Emulation.LENGTH_CHECK:
            return f"{self.length_function(ctype)}({col}) <= {ctype.size}"
        if ctype.emulation == Emulation.ENUM_CHECK:
            values = ", ".join(quote_string(v) for v in ctype.values or ())
            return f"{col} IN ({values})"
        return None

    # Defaults

    def default_literal(self, f: FieldDef) -> Optional[str]:
        """SQL literal for a field's default value."""
        value = f.default
        if value is None:
            return None
        if f.kind == FieldKind.BOOLEAN:
            return self.bool_literal(bool(value))
        if f.kind.is_integer:
            return str(int(value))
        if f.kind == FieldKind.FLOAT:
            return repr(float(value))
        return quote_string(str(value))

    def strip_default(self, raw: str) -> str:
        """Dialect-specific cleanup of a catalog default expression."""
        return raw

    def normalize_default(self, raw: Optional[str], ctype: ColumnType) -> Optional[str]:
        """Canonical form of a default literal, for comparison and DDL.

        Both the mapped default and the catalog default go through this
        function so that `'x'::character varying`, `x` and `'x'` compare
        equal for a string column.
        """
        if raw is None:
            return None
        text = self.strip_default(raw.strip())
        while text.startswith("(") and text.endswith(")"):
            text = text[1:-1].strip()
        if text.upper() == "NULL":
            return None

        family = ctype.family
        quoted = len(text) >= 2 and text[0] == text[-1] == "'"
        unquoted = text[1:-1] if quoted else text
        if family == TypeFamily.BOOL:
            return self.bool_literal(unquoted.lower() in ("1", "true", "t", "y", "yes", "on"))
        if family == TypeFamily.INT and _INT_LITERAL_RE.match(unquoted):
            return str(int(unquoted))
        if family == TypeFamily.FLOAT and _FLOAT_LITERAL_RE.match(unquoted):
            return repr(float(unquoted))
        if family in (TypeFamily.STRING, TypeFamily.ENUM) and not quoted:
            return quote_string(text)
        return text

    # DDL

    @abstractmethod
    def column_definition(self, column: Column, table: str) -> str:
        """Column clause as used in CREATE TABLE and ADD COLUMN."""

    def foreign_key_clause(self, fk: ForeignKey) -> str:
        return (
            f"CONSTRAINT {self.quote(fk.name)} FOREIGN KEY({self.quote(fk.column)}) "
            f"REFERENCES {self.quote(fk.ref_table)}({self.quote(fk.ref_column)}) "
            f"ON DELETE {fk.on_delete}"
        )

    def create_index_sql(self, table: str, index: Index) -> str:
        unique = "UNIQUE " if index.unique else ""
        cols = ", ".join(self.quote(c) for c in index.columns)
        return f"CREATE {unique}INDEX {self.quote(index.name)} ON {self.quote(table)}({cols})"

    def render(
        self,
        op: ops.Operation,
        before: Optional[Table],
        after: Optional[Table],
    ) -> List[str]:
        """Render one operation to SQL statements.

        Args:
            op: The operation
            before: The target table before the operation (old name for
                RenameTable, None for CreateTable)
            after: The target table after the operation

        Returns:
            Statements to execute, in order
        """
        method = getattr(self, f"render_{op.kind.name.lower()}", None)
        if method is None:
            raise EntMigrateError(f"{self.name} cannot render {op.kind.name}")
        return method(op, before, after)

    def render_rename_table(self, op, before, after) -> List[str]:
        return [f"ALTER TABLE {self.quote(op.old_name)} RENAME TO {self.quote(op.table)}"]

    def render_rename_column(self, op, before, after) -> List[str]:
        return [
            f"ALTER TABLE {self.quote(op.table)} RENAME COLUMN "
            f"{self.quote(op.old_name)} TO {self.quote(op.new_name)}"
        ]

    def render_add_index(self, op, before, after) -> List[str]:
        return [self.create_index_sql(op.table, op.index)]

    def render_drop_index(self, op, before, after) -> List[str]:
        return [f"DROP INDEX {self.quote(op.index.name)}"]

    # Catalog

    @abstractmethod
    def table_names(self, conn: Connection) -> List[str]:
        """Names of all user tables."""

    @abstractmethod
    def inspect_table(self, conn: Connection, name: str) -> Optional[Table]:
        """Reconstruct one live table, None if it does not exist."""

    @abstractmethod
    def sequence_bases(self, conn: Connection) -> Dict[str, Optional[int]]:
        """Identity sequence base of every table, None for tables without one."""

    def prepare_inspection(self, conn: Connection) -> None:
        """Session setup run once before catalog queries."""

    # Query-time helpers

    @abstractmethod
    def equal_fold(self, column: str, value: str, param: str = "v") -> Predicate:
        """Case-insensitive equality."""

    @abstractmethod
    def contains_fold(self, column: str, substr: str, param: str = "p") -> Predicate:
        """Case-insensitive substring match."""

    @abstractmethod
    def classify_error(self, orig: BaseException) -> Optional[str]:
        """Constraint kind of a driver error, None if not a constraint error."""
