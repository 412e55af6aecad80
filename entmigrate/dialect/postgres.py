"""
PostgreSQL dialect.

PostgreSQL has no unsigned integers and no single-byte integer, so
int8 and the unsigned kinds use the next wider signed type guarded by a
named range check. Enumerations are varchar columns with a value-set
check rather than CREATE TYPE enums, which keeps widening a plain
constraint swap. DDL is transactional.

Invariants:
    - Check constraints are named `<table>_<column>_check`
    - The id column is an identity column; the sequence base is its
      START value minus one
    - Catalog defaults are normalized by stripping `::type` casts
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
)
from .types import ColumnType, Emulation, TypeFamily

logger = logging.getLogger(__name__)

_INT_TYPES = {
    FieldKind.INT8: ("smallint", Emulation.RANGE_CHECK),
    FieldKind.INT16: ("smallint", Emulation.NONE),
    FieldKind.INT32: ("integer", Emulation.NONE),
    FieldKind.INT64: ("bigint", Emulation.NONE),
    FieldKind.UINT8: ("smallint", Emulation.RANGE_CHECK),
    FieldKind.UINT16: ("integer", Emulation.RANGE_CHECK),
    FieldKind.UINT32: ("bigint", Emulation.RANGE_CHECK),
    FieldKind.UINT64: ("numeric(20,0)", Emulation.RANGE_CHECK),
}

_NATIVE_RANGES = {
    "smallint": (-(2**15), 2**15 - 1),
    "integer": (-(2**31), 2**31 - 1),
    "bigint": (INT64_LOW, INT64_HIGH),
}

_CAST_RE = re.compile(r"::[a-z_][a-z_ ]*(?:\(\d+(?:,\s*\d+)?\))?(?:\[\])?", re.IGNORECASE)

DELETE_RULES = {
    "a": "NO ACTION",
    "r": "RESTRICT",
    "c": "CASCADE",
    "n": "SET NULL",
    "d": "SET DEFAULT",
}

SQLSTATE_KINDS = {
    "23505": "unique",
    "23503": "foreign_key",
    "23514": "check",
    "23502": "not_null",
    "22001": "check",
}


class PostgresDialect(BaseDialect):
    """PostgreSQL 10+ (identity columns)."""

    name = "postgres"
    capabilities = DialectCapabilities(
        transactional_ddl=True,
        native_enum=False,
        native_unsigned=False,
        alter_column=True,
        forward_references=False,
    )

    def bool_literal(self, value: bool) -> str:
        return "true" if value else "false"

    def strip_default(self, raw: str) -> str:
        return _CAST_RE.sub("", raw)

    # Type mapper

    def column_type(self, f: FieldDef, table: Optional[str] = None) -> ColumnType:
        kind = f.kind
        if kind.is_integer:
            sql, emulation = _INT_TYPES[kind]
            return self.int_type(sql, kind, emulation)
        if kind == FieldKind.STRING:
            if f.size is None:
                return ColumnType(TypeFamily.STRING, "text")
            return ColumnType(TypeFamily.STRING, f"varchar({f.size})", size=f.size)
        if kind == FieldKind.BYTES:
            if f.size is None:
                return ColumnType(TypeFamily.BYTES, "bytea")
            return ColumnType(TypeFamily.BYTES, "bytea", size=f.size, emulation=Emulation.LENGTH_CHECK)
        if kind == FieldKind.ENUM:
            return ColumnType(
                TypeFamily.ENUM, "varchar", values=tuple(f.enum_values or ()), emulation=Emulation.ENUM_CHECK
            )
        if kind == FieldKind.TIME:
            return ColumnType(TypeFamily.TIME, "timestamp with time zone")
        if kind == FieldKind.BOOLEAN:
            return ColumnType(TypeFamily.BOOL, "boolean")
        if kind == FieldKind.FLOAT:
            return ColumnType(TypeFamily.FLOAT, "double precision")
        raise self.unsupported(f, table, "unknown kind")

    def primary_key_type(self) -> ColumnType:
        return ColumnType(TypeFamily.INT, "bigint", low=INT64_LOW, high=INT64_HIGH)

    def check_name(self, table: str, column: str, ctype: ColumnType) -> Optional[str]:
        if ctype.emulation == Emulation.NONE:
            return None
        return short_identifier(f"{table}_{column}_check")

    def length_function(self, ctype: ColumnType) -> str:
        return "octet_length" if ctype.family == TypeFamily.BYTES else "char_length"

    # DDL

    def _check_clause(self, column) -> Optional[str]:
        check = self.check_expression(column.name, column.type)
        if not check:
            return None
        name = column.check_name
        if name:
            return f"CONSTRAINT {self.quote(name)} CHECK ({check})"
        return f"CHECK ({check})"

    def column_definition(self, column, table: str, identity_start: Optional[int] = None) -> str:
        if column.primary_key:
            options = f" (START WITH {identity_start + 1})" if identity_start else ""
            return f"{self.quote(column.name)} bigint GENERATED BY DEFAULT AS IDENTITY{options} PRIMARY KEY"
        parts = [self.quote(column.name), column.type.sql]
        if not column.nullable:
            parts.append("NOT NULL")
        if column.default is not None:
            parts.append(f"DEFAULT {column.default}")
        check = self._check_clause(column)
        if check:
            parts.append(check)
        return " ".join(parts)

    def render_create_table(self, op, before, after) -> List[str]:
        table = op.definition
        clauses = [self.column_definition(c, table.name, op.identity_start) for c in table.columns]
        clauses.extend(self.foreign_key_clause(fk) for fk in table.foreign_keys)
        return [f"CREATE TABLE {self.quote(table.name)} ({', '.join(clauses)})"]

    def render_add_column(self, op, before, after) -> List[str]:
        statements = [f"ALTER TABLE {self.quote(op.table)} ADD COLUMN {self.column_definition(op.column, op.table)}"]
        if op.foreign_key is not None:
            statements.append(
                f"ALTER TABLE {self.quote(op.table)} ADD {self.foreign_key_clause(op.foreign_key)}"
            )
        return statements

    def _alter(self, table: str, column: str, action: str) -> str:
        return f"ALTER TABLE {self.quote(table)} ALTER COLUMN {self.quote(column)} {action}"

    def _nullability_and_default(self, op) -> List[str]:
        statements = []
        column, previous = op.column, op.previous
        if column.nullable and not previous.nullable:
            statements.append(self._alter(op.table, column.name, "DROP NOT NULL"))
        if column.default != previous.default:
            if column.default is None:
                statements.append(self._alter(op.table, column.name, "DROP DEFAULT"))
            else:
                statements.append(self._alter(op.table, column.name, f"SET DEFAULT {column.default}"))
        return statements

    def render_widen_column(self, op, before, after) -> List[str]:
        column, previous = op.column, op.previous
        statements = []
        if previous.check_name:
            statements.append(
                f"ALTER TABLE {self.quote(op.table)} DROP CONSTRAINT IF EXISTS {self.quote(previous.check_name)}"
            )
        if previous.type.sql != column.type.sql:
            sql = column.type.sql
            statements.append(
                self._alter(op.table, column.name, f"TYPE {sql} USING {self.quote(column.name)}::{sql}")
            )
        statements.extend(self._nullability_and_default(op))
        check = self.check_expression(column.name, column.type)
        if check:
            name = column.check_name or short_identifier(f"{op.table}_{column.name}_check")
            statements.append(
                f"ALTER TABLE {self.quote(op.table)} ADD CONSTRAINT {self.quote(name)} CHECK ({check})"
            )
        return statements

    def render_modify_column(self, op, before, after) -> List[str]:
        return self._nullability_and_default(op)

    def render_drop_column(self, op, before, after) -> List[str]:
        return [f"ALTER TABLE {self.quote(op.table)} DROP COLUMN {self.quote(op.column.name)}"]

    def render_drop_index(self, op, before, after) -> List[str]:
        if op.index.constraint:
            return [f"ALTER TABLE {self.quote(op.table)} DROP CONSTRAINT {self.quote(op.index.name)}"]
        return [f"DROP INDEX {self.quote(op.index.name)}"]

    def render_add_foreign_key(self, op, before, after) -> List[str]:
        return [f"ALTER TABLE {self.quote(op.table)} ADD {self.foreign_key_clause(op.foreign_key)}"]

    def render_drop_foreign_key(self, op, before, after) -> List[str]:
        return [f"ALTER TABLE {self.quote(op.table)} DROP CONSTRAINT {self.quote(op.foreign_key.name)}"]

    def render_set_identity_start(self, op, before, after) -> List[str]:
        id_column = before.primary_key.name if before is not None and before.primary_key else "id"
        return [self._alter(op.table, id_column, f"SET START WITH {op.start + 1} RESTART")]

    # Catalog

    def table_names(self, conn) -> List[str]:
        rows = conn.execute(
            text(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = current_schema() AND table_type = 'BASE TABLE' "
                "ORDER BY table_name"
            )
        )
        return [row[0] for row in rows]

    def _parse_type(self, data_type: str, char_length, precision, scale, check: Optional[str]) -> ColumnType:
        parsed = parse_check(check)
        data_type = data_type.lower()

        if data_type in _NATIVE_RANGES or (data_type == "numeric" and scale == 0):
            if data_type == "numeric":
                sql = f"numeric({precision},0)" if precision else "numeric"
                bound = 10 ** int(precision) - 1 if precision else None
                native = (-bound if bound else None, bound)
            else:
                sql = data_type
                native = _NATIVE_RANGES[data_type]
            low = parsed.low if parsed.low is not None else native[0]
            high = parsed.high if parsed.high is not None else native[1]
            return ColumnType(TypeFamily.INT, sql, low=low, high=high, emulation=parsed.emulation)
        if data_type in ("character varying", "text", "character"):
            if data_type == "text":
                sql = "text"
            else:
                prefix = "varchar" if data_type == "character varying" else "char"
                sql = f"{prefix}({char_length})" if char_length else prefix
            if parsed.values is not None:
                return ColumnType(TypeFamily.ENUM, sql, values=parsed.values, emulation=Emulation.ENUM_CHECK)
            return ColumnType(TypeFamily.STRING, sql, size=char_length)
        if data_type == "bytea":
            return ColumnType(TypeFamily.BYTES, "bytea", size=parsed.size, emulation=parsed.emulation)
        if data_type.startswith("timestamp") or data_type == "date":
            return ColumnType(TypeFamily.TIME, data_type)
        if data_type == "boolean":
            return ColumnType(TypeFamily.BOOL, "boolean")
        if data_type in ("double precision", "real", "numeric"):
            return ColumnType(TypeFamily.FLOAT, data_type)
        return ColumnType(TypeFamily.UNKNOWN, data_type)

    def _checks(self, conn, name: str) -> Dict[str, tuple]:
        rows = conn.execute(
            text(
                "SELECT c.conname, a.attname, pg_get_constraintdef(c.oid) "
                "FROM pg_constraint c "
                "JOIN pg_class t ON t.oid = c.conrelid "
                "JOIN pg_namespace n ON n.oid = t.relnamespace "
                "JOIN pg_attribute a ON a.attrelid = c.conrelid AND a.attnum = c.conkey[1] "
                "WHERE c.contype = 'c' AND t.relname = :table "
                "AND n.nspname = current_schema() AND array_length(c.conkey, 1) = 1 "
                "ORDER BY c.conname"
            ),
            {"table": name},
        )
        checks: Dict[str, tuple] = {}
        for conname, column, definition in rows:
            checks.setdefault(column, (conname, definition))
        return checks

    def inspect_table(self, conn, name: str):
        from ..migrate.table import Column, ForeignKey, Index, Table

        rows = conn.execute(
            text(
                "SELECT column_name, data_type, is_nullable, column_default, "
                "character_maximum_length, numeric_precision, numeric_scale, is_identity "
                "FROM information_schema.columns "
                "WHERE table_schema = current_schema() AND table_name = :table "
                "ORDER BY ordinal_position"
            ),
            {"table": name},
        ).fetchall()
        if not rows:
            return None

        checks = self._checks(conn, name)

        grouped: Dict[str, dict] = {}
        index_rows = conn.execute(
            text(
                "SELECT i.relname, a.attname, ix.indisunique, ix.indisprimary, "
                "con.conname IS NOT NULL "
                "FROM pg_index ix "
                "JOIN pg_class t ON t.oid = ix.indrelid "
                "JOIN pg_class i ON i.oid = ix.indexrelid "
                "JOIN pg_namespace n ON n.oid = t.relnamespace "
                "JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey) "
                "LEFT JOIN pg_constraint con ON con.conindid = ix.indexrelid "
                "AND con.contype IN ('p', 'u') "
                "WHERE t.relname = :table AND n.nspname = current_schema() "
                "ORDER BY i.relname, array_position(ix.indkey::int2[], a.attnum)"
            ),
            {"table": name},
        )
        primary_columns = set()
        for idx_name, column, unique, primary, constraint in index_rows:
            entry = grouped.setdefault(
                idx_name,
                {"columns": [], "unique": unique, "primary": primary, "constraint": constraint},
            )
            entry["columns"].append(column)
            if primary:
                primary_columns.add(column)
        indexes = [
            Index(
                name=idx_name,
                columns=tuple(entry["columns"]),
                unique=entry["unique"],
                implicit=entry["primary"],
                constraint=entry["constraint"],
            )
            for idx_name, entry in sorted(grouped.items())
        ]

        columns = []
        has_sequence = False
        for col_name, data_type, is_nullable, default, char_length, precision, scale, is_identity in rows:
            check_name, check = checks.get(col_name, (None, None))
            ctype = self._parse_type(data_type, char_length, precision, scale, check)
            serial = is_identity == "YES" or (default or "").startswith("nextval(")
            if serial and col_name in primary_columns:
                has_sequence = True
            columns.append(
                Column(
                    name=col_name,
                    type=ctype,
                    nullable=is_nullable == "YES",
                    default=None if serial else self.normalize_default(default, ctype),
                    primary_key=col_name in primary_columns,
                    check_name=check_name if ctype.emulation != Emulation.NONE else None,
                )
            )

        fk_rows = conn.execute(
            text(
                "SELECT c.conname, a.attname, rt.relname, ra.attname, c.confdeltype "
                "FROM pg_constraint c "
                "JOIN pg_class t ON t.oid = c.conrelid "
                "JOIN pg_namespace n ON n.oid = t.relnamespace "
                "JOIN pg_class rt ON rt.oid = c.confrelid "
                "JOIN pg_attribute a ON a.attrelid = c.conrelid AND a.attnum = c.conkey[1] "
                "JOIN pg_attribute ra ON ra.attrelid = c.confrelid AND ra.attnum = c.confkey[1] "
                "WHERE c.contype = 'f' AND t.relname = :table AND n.nspname = current_schema() "
                "ORDER BY c.conname"
            ),
            {"table": name},
        )
        foreign_keys = [
            ForeignKey(
                name=fk_name,
                column=column,
                ref_table=ref_table,
                ref_column=ref_column,
                on_delete=DELETE_RULES.get(rule, "NO ACTION"),
            )
            for fk_name, column, ref_table, ref_column, rule in fk_rows
        ]

        base = None
        if has_sequence:
            base = self.sequence_bases(conn).get(name)

        return Table(
            name=name,
            columns=tuple(columns),
            indexes=tuple(indexes),
            foreign_keys=tuple(foreign_keys),
            sequence_base=base,
        )

    def sequence_bases(self, conn) -> Dict[str, Optional[int]]:
        bases: Dict[str, Optional[int]] = {name: None for name in self.table_names(conn)}
        rows = conn.execute(
            text(
                "SELECT c.table_name, s.seqstart "
                "FROM information_schema.columns c "
                "JOIN pg_sequence s ON s.seqrelid = "
                "pg_get_serial_sequence(quote_ident(c.table_name), c.column_name)::regclass "
                "WHERE c.table_schema = current_schema() "
                "AND (c.is_identity = 'YES' OR c.column_default LIKE :serial)"
            ),
            {"serial": "nextval(%"},
        )
        for table, start in rows:
            bases[table] = int(start) - 1
        return bases

    # Query-time helpers

    def equal_fold(self, column: str, value: str, param: str = "v") -> Predicate:
        return Predicate(f"{self.quote(column)} ILIKE :{param}", {param: escape_like(value)})

    def contains_fold(self, column: str, substr: str, param: str = "p") -> Predicate:
        return Predicate(f"{self.quote(column)} ILIKE :{param}", {param: f"%{escape_like(substr)}%"})

    def classify_error(self, orig: BaseException) -> Optional[str]:
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if not code:
            return None
        if code in SQLSTATE_KINDS:
            return SQLSTATE_KINDS[code]
        if code.startswith("23"):
            return "integrity"
        return None
