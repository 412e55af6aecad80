"""
SQLite dialect.

SQLite has dynamic typing, so every bound of a logical type is enforced
with a column CHECK constraint. It cannot alter a column in place; widening,
default changes, foreign-key changes and column drops rebuild the table:
create a copy, move the rows, carry the AUTOINCREMENT counter over, drop
the original and rename the copy.

Invariants:
    - The id column is `integer PRIMARY KEY AUTOINCREMENT` so the counter
      lives in sqlite_sequence and survives deletes
    - An AUTOINCREMENT table without a sqlite_sequence row has base 0
    - Rebuilds keep the sqlite_sequence value of the original table
    - Rebuilds require `PRAGMA foreign_keys=OFF`, set by the migrator
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional

from sqlalchemy import text

from ..schema.types import FieldDef, FieldKind, short_identifier
from .base import (
    INT64_HIGH,
    INT64_LOW,
    BaseDialect,
    DialectCapabilities,
    Predicate,
    escape_like,
    parse_check,
    quote_string,
)
from .types import ColumnType, Emulation, TypeFamily

logger = logging.getLogger(__name__)

REBUILD_SUFFIX = "__entmigrate_new"

_INT_TYPES = {
    FieldKind.INT8: "tinyint",
    FieldKind.INT16: "smallint",
    FieldKind.INT32: "integer",
    FieldKind.INT64: "bigint",
    FieldKind.UINT8: "tinyint",
    FieldKind.UINT16: "smallint",
    FieldKind.UINT32: "integer",
}

_INT_NAMES = {"int", "integer", "tinyint", "smallint", "mediumint", "bigint", "int2", "int8"}
_TEXT_NAMES = {"varchar", "char", "text", "character", "nvarchar", "nchar", "clob", "varying"}
_TIME_NAMES = {"datetime", "timestamp", "date"}
_FLOAT_NAMES = {"real", "double", "float", "numeric", "decimal"}

_DECL_RE = re.compile(r"^\s*([a-z_]+)(?:[a-z_ ]*?)(?:\(\s*(\d+)\s*(?:,\s*\d+\s*)?\))?")
_NAME_RE = re.compile(r'\s*(?:"((?:[^"]|"")+)"|`([^`]+)`|\[([^\]]+)\]|(\w+))')
_CHECK_RE = re.compile(r"\bCHECK\s*\(", re.IGNORECASE)
_TABLE_CONSTRAINTS = {"CONSTRAINT", "PRIMARY", "FOREIGN", "UNIQUE", "CHECK"}


def split_top_level(body: str) -> List[str]:
    """Split a column list at commas outside parentheses and quotes."""
    parts = []
    depth = 0
    quote: Optional[str] = None
    current: List[str] = []
    for ch in body:
        if quote:
            current.append(ch)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"', "`"):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    if current:
        parts.append("".join(current).strip())
    return [p for p in parts if p]


def extract_check(definition: str) -> Optional[str]:
    """Return the expression of the first CHECK clause of a definition."""
    match = _CHECK_RE.search(definition)
    if not match:
        return None
    start = match.end()
    depth = 1
    quote: Optional[str] = None
    for pos in range(start, len(definition)):
        ch = definition[pos]
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return definition[start:pos].strip()
    return None


def column_checks(create_sql: str) -> Dict[str, str]:
    """Map column name to its CHECK expression from a CREATE TABLE statement."""
    body = create_sql[create_sql.index("(") + 1 : create_sql.rindex(")")]
    checks = {}
    for part in split_top_level(body):
        match = _NAME_RE.match(part)
        if not match:
            continue
        name = next(g for g in match.groups() if g is not None)
        if match.group(4) and name.upper() in _TABLE_CONSTRAINTS:
            continue
        expression = extract_check(part[match.end() :])
        if expression:
            checks[name.replace('""', '"')] = expression
    return checks


class SQLiteDialect(BaseDialect):
    """SQLite 3.26+."""

    name = "sqlite"
    capabilities = DialectCapabilities(
        transactional_ddl=True,
        native_enum=False,
        native_unsigned=False,
        alter_column=False,
        forward_references=True,
    )

    # Type mapper

    def column_type(self, f: FieldDef, table: Optional[str] = None) -> ColumnType:
        kind = f.kind
        if kind == FieldKind.UINT64:
            raise self.unsupported(f, table, "values above 2^63-1 do not fit a SQLite integer")
        if kind.is_integer:
            emulation = Emulation.NONE if kind == FieldKind.INT64 else Emulation.RANGE_CHECK
            return self.int_type(_INT_TYPES[kind], kind, emulation)
        if kind == FieldKind.STRING:
            if f.size is None:
                return ColumnType(TypeFamily.STRING, "text")
            return ColumnType(
                TypeFamily.STRING, f"varchar({f.size})", size=f.size, emulation=Emulation.LENGTH_CHECK
            )
        if kind == FieldKind.BYTES:
            if f.size is None:
                return ColumnType(TypeFamily.BYTES, "blob")
            return ColumnType(TypeFamily.BYTES, "blob", size=f.size, emulation=Emulation.LENGTH_CHECK)
        if kind == FieldKind.ENUM:
            return ColumnType(
                TypeFamily.ENUM, "text", values=tuple(f.enum_values or ()), emulation=Emulation.ENUM_CHECK
            )
        if kind == FieldKind.TIME:
            return ColumnType(TypeFamily.TIME, "datetime")
        if kind == FieldKind.BOOLEAN:
            return ColumnType(TypeFamily.BOOL, "bool")
        if kind == FieldKind.FLOAT:
            return ColumnType(TypeFamily.FLOAT, "real")
        raise self.unsupported(f, table, "unknown kind")

    def primary_key_type(self) -> ColumnType:
        return ColumnType(TypeFamily.INT, "integer", low=INT64_LOW, high=INT64_HIGH)

    # DDL

    def column_definition(self, column, table: str) -> str:
        if column.primary_key:
            return f"{self.quote(column.name)} integer PRIMARY KEY AUTOINCREMENT NOT NULL"
        parts = [self.quote(column.name), column.type.sql]
        if not column.nullable:
            parts.append("NOT NULL")
        if column.default is not None:
            parts.append(f"DEFAULT {column.default}")
        check = self.check_expression(column.name, column.type)
        if check:
            parts.append(f"CHECK ({check})")
        return " ".join(parts)

    def create_table_sql(self, table, name: Optional[str] = None) -> str:
        clauses = [self.column_definition(c, table.name) for c in table.columns]
        clauses.extend(self.foreign_key_clause(fk) for fk in table.foreign_keys)
        return f"CREATE TABLE {self.quote(name or table.name)} ({', '.join(clauses)})"

    def _set_sequence(self, table: str, start: int) -> List[str]:
        return [
            f"DELETE FROM sqlite_sequence WHERE name = {quote_string(table)}",
            f"INSERT INTO sqlite_sequence(name, seq) VALUES ({quote_string(table)}, {start})",
        ]

    def rebuild(self, before, after) -> List[str]:
        """Replace a table by a copy with the new definition."""
        tmp = short_identifier(after.name + REBUILD_SUFFIX)
        common = [self.quote(c) for c in after.column_names() if before.column(c) is not None]
        cols = ", ".join(common)
        statements = [
            self.create_table_sql(after, name=tmp),
            f"INSERT INTO {self.quote(tmp)} ({cols}) SELECT {cols} FROM {self.quote(before.name)}",
            f"DELETE FROM sqlite_sequence WHERE name = {quote_string(tmp)}",
            f"INSERT INTO sqlite_sequence(name, seq) SELECT {quote_string(tmp)}, seq "
            f"FROM sqlite_sequence WHERE name = {quote_string(before.name)}",
            f"DROP TABLE {self.quote(before.name)}",
            f"ALTER TABLE {self.quote(tmp)} RENAME TO {self.quote(after.name)}",
        ]
        statements.extend(self.create_index_sql(after.name, idx) for idx in after.planned_indexes())
        return statements

    def render_create_table(self, op, before, after) -> List[str]:
        statements = [self.create_table_sql(op.definition)]
        if op.identity_start:
            statements.append(
                f"INSERT INTO sqlite_sequence(name, seq) VALUES ({quote_string(op.table)}, {op.identity_start})"
            )
        return statements

    def render_add_column(self, op, before, after) -> List[str]:
        clause = self.column_definition(op.column, op.table)
        fk = op.foreign_key
        if fk is not None:
            clause += (
                f" REFERENCES {self.quote(fk.ref_table)}({self.quote(fk.ref_column)}) "
                f"ON DELETE {fk.on_delete}"
            )
        return [f"ALTER TABLE {self.quote(op.table)} ADD COLUMN {clause}"]

    def render_widen_column(self, op, before, after) -> List[str]:
        return self.rebuild(before, after)

    render_modify_column = render_widen_column
    render_drop_column = render_widen_column
    render_add_foreign_key = render_widen_column
    render_drop_foreign_key = render_widen_column

    def render_set_identity_start(self, op, before, after) -> List[str]:
        return self._set_sequence(op.table, op.start)

    # Catalog

    def table_names(self, conn) -> List[str]:
        rows = conn.execute(
            text(
                "SELECT name FROM sqlite_master WHERE type = 'table' "
                "AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
        )
        return [row[0] for row in rows]

    def _create_sql(self, conn, name: str) -> Optional[str]:
        return conn.execute(
            text("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name"),
            {"name": name},
        ).scalar()

    def _sequences(self, conn) -> Dict[str, int]:
        exists = conn.execute(
            text("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'")
        ).scalar()
        if not exists:
            return {}
        return {row[0]: int(row[1]) for row in conn.execute(text("SELECT name, seq FROM sqlite_sequence"))}

    def _parse_type(self, declared: str, check: Optional[str]) -> ColumnType:
        decl = (declared or "").strip().lower()
        parsed = parse_check(check)
        match = _DECL_RE.match(decl)
        base = match.group(1) if match else ""
        length = int(match.group(2)) if match and match.group(2) else None

        if base in _INT_NAMES:
            low = parsed.low if parsed.low is not None else INT64_LOW
            high = parsed.high if parsed.high is not None else INT64_HIGH
            return ColumnType(TypeFamily.INT, decl, low=low, high=high, emulation=parsed.emulation)
        if base in _TEXT_NAMES:
            if parsed.values is not None:
                return ColumnType(TypeFamily.ENUM, decl, values=parsed.values, emulation=Emulation.ENUM_CHECK)
            size = parsed.size if parsed.size is not None else length
            return ColumnType(TypeFamily.STRING, decl, size=size, emulation=parsed.emulation)
        if base == "blob":
            return ColumnType(TypeFamily.BYTES, decl, size=parsed.size, emulation=parsed.emulation)
        if base in _TIME_NAMES:
            return ColumnType(TypeFamily.TIME, decl)
        if base in ("bool", "boolean"):
            return ColumnType(TypeFamily.BOOL, decl)
        if base in _FLOAT_NAMES:
            return ColumnType(TypeFamily.FLOAT, decl)
        return ColumnType(TypeFamily.UNKNOWN, decl)

    def inspect_table(self, conn, name: str):
        from ..migrate.table import Column, ForeignKey, Index, Table, foreign_key_name

        create_sql = self._create_sql(conn, name)
        if create_sql is None:
            return None
        checks = column_checks(create_sql)
        quoted = self.quote(name)

        columns = []
        for row in conn.exec_driver_sql(f"PRAGMA table_info({quoted})"):
            _, col_name, declared, notnull, default, pk = tuple(row)
            ctype = self._parse_type(declared, checks.get(col_name))
            columns.append(
                Column(
                    name=col_name,
                    type=ctype,
                    nullable=not notnull and not pk,
                    default=self.normalize_default(default, ctype),
                    primary_key=bool(pk),
                )
            )

        indexes = []
        for row in conn.exec_driver_sql(f"PRAGMA index_list({quoted})").fetchall():
            _, idx_name, unique, origin = tuple(row)[:4]
            info = conn.exec_driver_sql(f"PRAGMA index_info({self.quote(idx_name)})").fetchall()
            idx_columns = tuple(r[2] for r in sorted(info, key=lambda r: r[0]))
            indexes.append(
                Index(
                    name=idx_name,
                    columns=idx_columns,
                    unique=bool(unique),
                    implicit=origin != "c",
                )
            )

        foreign_keys = []
        for row in conn.exec_driver_sql(f"PRAGMA foreign_key_list({quoted})"):
            values = tuple(row)
            ref_table, from_col, to_col, on_delete = values[2], values[3], values[4], values[6]
            foreign_keys.append(
                ForeignKey(
                    name=foreign_key_name(name, from_col),
                    column=from_col,
                    ref_table=ref_table,
                    ref_column=to_col or "id",
                    on_delete=on_delete,
                )
            )

        base = None
        if "AUTOINCREMENT" in create_sql.upper():
            base = self._sequences(conn).get(name, 0)

        return Table(
            name=name,
            columns=tuple(columns),
            indexes=tuple(sorted(indexes, key=lambda i: i.name)),
            foreign_keys=tuple(foreign_keys),
            sequence_base=base,
        )

    def sequence_bases(self, conn) -> Dict[str, Optional[int]]:
        sequences = self._sequences(conn)
        bases: Dict[str, Optional[int]] = {}
        rows = conn.execute(
            text(
                "SELECT name, sql FROM sqlite_master WHERE type = 'table' "
                "AND name NOT LIKE 'sqlite_%'"
            )
        )
        for name, create_sql in rows:
            if create_sql and "AUTOINCREMENT" in create_sql.upper():
                bases[name] = sequences.get(name, 0)
            else:
                bases[name] = None
        return bases

    # Query-time helpers

    def equal_fold(self, column: str, value: str, param: str = "v") -> Predicate:
        return Predicate(f"LOWER({self.quote(column)}) = LOWER(:{param})", {param: value})

    def contains_fold(self, column: str, substr: str, param: str = "p") -> Predicate:
        return Predicate(
            f"LOWER({self.quote(column)}) LIKE LOWER(:{param}) ESCAPE '\\'",
            {param: f"%{escape_like(substr)}%"},
        )

    def classify_error(self, orig: BaseException) -> Optional[str]:
        message = str(orig)
        if message.startswith("UNIQUE constraint failed") or "is not unique" in message:
            return "unique"
        if message.startswith("CHECK constraint failed"):
            return "check"
        if message.startswith("FOREIGN KEY constraint failed"):
            return "foreign_key"
        if message.startswith("NOT NULL constraint failed"):
            return "not_null"
        if type(orig).__name__ == "IntegrityError":
            return "integrity"
        return None
