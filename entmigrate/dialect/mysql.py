"""
MySQL / MariaDB dialect.

MySQL has native unsigned integers and enumerations, so no check
constraints are needed. DDL is not transactional: every statement commits
on its own. Tables use the case-sensitive utf8mb4_bin collation; the fold
predicates switch to utf8mb4_general_ci per comparison.

Invariants:
    - Strings longer than a varchar can hold map to the smallest TEXT type
      whose capacity covers them, and the ColumnType records that
      capacity rather than the requested size
    - AUTO_INCREMENT holds the next id, so the sequence base is
      AUTO_INCREMENT - 1
    - Indexes backing foreign keys are implicit
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional

from sqlalchemy import text

from ..schema.types import FieldDef, FieldKind
from .base import (
    INT64_HIGH,
    INT64_LOW,
    BaseDialect,
    DialectCapabilities,
    Predicate,
    escape_like,
    quote_string,
)
from .types import ColumnType, TypeFamily

logger = logging.getLogger(__name__)

MAX_VARCHAR = 16383
MAX_VARBINARY = 4096

# Capacity in characters (utf8mb4) or bytes.
TEXT_CAPACITY = {"tinytext": 63, "text": 16383, "mediumtext": 4194303, "longtext": None}
BLOB_CAPACITY = {"tinyblob": 255, "blob": 65535, "mediumblob": 16777215, "longblob": None}

_INT_BITS = {"tinyint": 8, "smallint": 16, "mediumint": 24, "int": 32, "integer": 32, "bigint": 64}

_INT_TYPES = {
    FieldKind.INT8: "tinyint",
    FieldKind.INT16: "smallint",
    FieldKind.INT32: "int",
    FieldKind.INT64: "bigint",
    FieldKind.UINT8: "tinyint unsigned",
    FieldKind.UINT16: "smallint unsigned",
    FieldKind.UINT32: "int unsigned",
    FieldKind.UINT64: "bigint unsigned",
}

_COLUMN_TYPE_RE = re.compile(r"^\s*(\w+)(?:\((.*)\))?(\s+unsigned)?", re.IGNORECASE | re.DOTALL)
_QUOTED_RE = re.compile(r"'((?:[^']|'')*)'")
_INTRODUCER_RE = re.compile(r"^_[a-z0-9]+(?=\\?')", re.IGNORECASE)

CONSTRAINT_CODES = {
    1062: "unique",
    1451: "foreign_key",
    1452: "foreign_key",
    3819: "check",
    1048: "not_null",
    1406: "check",
    1265: "check",
    1264: "check",
}


def _int_range(bits: int, unsigned: bool):
    if unsigned:
        return 0, 2**bits - 1
    return -(2 ** (bits - 1)), 2 ** (bits - 1) - 1


class MySQLDialect(BaseDialect):
    """MySQL 8 and MariaDB 10.5+."""

    name = "mysql"
    capabilities = DialectCapabilities(
        transactional_ddl=False,
        native_enum=True,
        native_unsigned=True,
        alter_column=True,
        forward_references=False,
    )

    def quote(self, identifier: str) -> str:
        return "`" + identifier.replace("`", "``") + "`"

    # Type mapper

    def column_type(self, f: FieldDef, table: Optional[str] = None) -> ColumnType:
        kind = f.kind
        if kind.is_integer:
            return self.int_type(_INT_TYPES[kind], kind)
        if kind == FieldKind.STRING:
            if f.size is None or f.size > TEXT_CAPACITY["mediumtext"]:
                return ColumnType(TypeFamily.STRING, "longtext")
            if f.size <= MAX_VARCHAR:
                return ColumnType(TypeFamily.STRING, f"varchar({f.size})", size=f.size)
            return ColumnType(TypeFamily.STRING, "mediumtext", size=TEXT_CAPACITY["mediumtext"])
        if kind == FieldKind.BYTES:
            if f.size is not None and f.size <= MAX_VARBINARY:
                return ColumnType(TypeFamily.BYTES, f"varbinary({f.size})", size=f.size)
            for sql in ("blob", "mediumblob"):
                capacity = BLOB_CAPACITY[sql]
                if f.size is not None and f.size <= capacity:
                    return ColumnType(TypeFamily.BYTES, sql, size=capacity)
            return ColumnType(TypeFamily.BYTES, "longblob")
        if kind == FieldKind.ENUM:
            values = tuple(f.enum_values or ())
            sql = "enum(" + ", ".join(quote_string(v) for v in values) + ")"
            return ColumnType(TypeFamily.ENUM, sql, values=values)
        if kind == FieldKind.TIME:
            return ColumnType(TypeFamily.TIME, "datetime(6)")
        if kind == FieldKind.BOOLEAN:
            return ColumnType(TypeFamily.BOOL, "boolean")
        if kind == FieldKind.FLOAT:
            return ColumnType(TypeFamily.FLOAT, "double")
        raise self.unsupported(f, table, "unknown kind")

    def primary_key_type(self) -> ColumnType:
        return ColumnType(TypeFamily.INT, "bigint", low=INT64_LOW, high=INT64_HIGH)

    # DDL

    def column_definition(self, column, table: str) -> str:
        if column.primary_key:
            return f"{self.quote(column.name)} bigint NOT NULL AUTO_INCREMENT"
        parts = [self.quote(column.name), column.type.sql]
        parts.append("NULL" if column.nullable else "NOT NULL")
        if column.default is not None:
            if column.type.sql.endswith(("text", "blob")):
                # TEXT and BLOB columns only accept expression defaults.
                parts.append(f"DEFAULT ({column.default})")
            else:
                parts.append(f"DEFAULT {column.default}")
        return " ".join(parts)

    def render_create_table(self, op, before, after) -> List[str]:
        table = op.definition
        clauses = [self.column_definition(c, table.name) for c in table.columns]
        pk = table.primary_key
        if pk is not None:
            clauses.append(f"PRIMARY KEY({self.quote(pk.name)})")
        clauses.extend(self.foreign_key_clause(fk) for fk in table.foreign_keys)
        sql = (
            f"CREATE TABLE {self.quote(table.name)} ({', '.join(clauses)}) "
            f"CHARACTER SET utf8mb4 COLLATE utf8mb4_bin"
        )
        if op.identity_start:
            sql += f" AUTO_INCREMENT = {op.identity_start + 1}"
        return [sql]

    def render_rename_table(self, op, before, after) -> List[str]:
        return [f"RENAME TABLE {self.quote(op.old_name)} TO {self.quote(op.table)}"]

    def render_add_column(self, op, before, after) -> List[str]:
        statements = [f"ALTER TABLE {self.quote(op.table)} ADD COLUMN {self.column_definition(op.column, op.table)}"]
        if op.foreign_key is not None:
            statements.append(
                f"ALTER TABLE {self.quote(op.table)} ADD {self.foreign_key_clause(op.foreign_key)}"
            )
        return statements

    def render_widen_column(self, op, before, after) -> List[str]:
        return [
            f"ALTER TABLE {self.quote(op.table)} MODIFY COLUMN "
            f"{self.column_definition(op.column, op.table)}"
        ]

    render_modify_column = render_widen_column

    def render_drop_column(self, op, before, after) -> List[str]:
        return [f"ALTER TABLE {self.quote(op.table)} DROP COLUMN {self.quote(op.column.name)}"]

    def render_drop_index(self, op, before, after) -> List[str]:
        return [f"DROP INDEX {self.quote(op.index.name)} ON {self.quote(op.table)}"]

    def render_add_foreign_key(self, op, before, after) -> List[str]:
        return [f"ALTER TABLE {self.quote(op.table)} ADD {self.foreign_key_clause(op.foreign_key)}"]

    def render_drop_foreign_key(self, op, before, after) -> List[str]:
        return [
            f"ALTER TABLE {self.quote(op.table)} DROP FOREIGN KEY {self.quote(op.foreign_key.name)}"
        ]

    def render_set_identity_start(self, op, before, after) -> List[str]:
        return [f"ALTER TABLE {self.quote(op.table)} AUTO_INCREMENT = {op.start + 1}"]

    # Catalog

    def prepare_inspection(self, conn) -> None:
        version = conn.execute(text("SELECT VERSION()")).scalar() or ""
        mariadb = "mariadb" in version.lower()
        conn.info["entmigrate.mariadb"] = mariadb
        major = version.split(".", 1)[0]
        if not mariadb and major.isdigit() and int(major) >= 8:
            # Statistics are cached for 24h by default; AUTO_INCREMENT must be current.
            conn.execute(text("SET SESSION information_schema_stats_expiry = 0"))

    def table_names(self, conn) -> List[str]:
        rows = conn.execute(
            text(
                "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES "
                "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE' "
                "ORDER BY TABLE_NAME"
            )
        )
        return [row[0] for row in rows]

    def parse_column_type(self, column_type: str) -> ColumnType:
        """Semantic type of an INFORMATION_SCHEMA.COLUMNS.COLUMN_TYPE value."""
        sql = column_type.strip()
        match = _COLUMN_TYPE_RE.match(sql)
        if not match:
            return ColumnType(TypeFamily.UNKNOWN, sql)
        base = match.group(1).lower()
        args = match.group(2)
        unsigned = bool(match.group(3))

        if base in ("bool", "boolean") or (base == "tinyint" and args == "1"):
            return ColumnType(TypeFamily.BOOL, sql)
        if base in _INT_BITS:
            low, high = _int_range(_INT_BITS[base], unsigned)
            return ColumnType(TypeFamily.INT, sql, low=low, high=high)
        if base in ("varchar", "char"):
            return ColumnType(TypeFamily.STRING, sql, size=int(args) if args else None)
        if base in TEXT_CAPACITY:
            return ColumnType(TypeFamily.STRING, sql, size=TEXT_CAPACITY[base])
        if base in ("varbinary", "binary"):
            return ColumnType(TypeFamily.BYTES, sql, size=int(args) if args else None)
        if base in BLOB_CAPACITY:
            return ColumnType(TypeFamily.BYTES, sql, size=BLOB_CAPACITY[base])
        if base == "enum":
            values = tuple(v.replace("''", "'") for v in _QUOTED_RE.findall(args or ""))
            return ColumnType(TypeFamily.ENUM, sql, values=values)
        if base in ("datetime", "timestamp", "date"):
            return ColumnType(TypeFamily.TIME, sql)
        if base in ("double", "float", "real"):
            return ColumnType(TypeFamily.FLOAT, sql)
        return ColumnType(TypeFamily.UNKNOWN, sql)

    def _catalog_default(self, conn, raw: Optional[str], extra: str, ctype: ColumnType) -> Optional[str]:
        if raw is None:
            return None
        literal = raw
        generated = "DEFAULT_GENERATED" in (extra or "").upper()
        if generated:
            # Expression defaults come back as _utf8mb4\'value\'.
            literal = _INTRODUCER_RE.sub("", literal).replace("\\'", "'")
        elif (
            not generated
            and not conn.info.get("entmigrate.mariadb", False)
            and ctype.family in (TypeFamily.STRING, TypeFamily.ENUM)
        ):
            # MySQL reports plain defaults unquoted.
            literal = quote_string(raw)
        return self.normalize_default(literal, ctype)

    def inspect_table(self, conn, name: str):
        from ..migrate.table import Column, ForeignKey, Index, Table

        rows = conn.execute(
            text(
                "SELECT COLUMN_NAME, COLUMN_TYPE, IS_NULLABLE, COLUMN_DEFAULT, COLUMN_KEY, EXTRA "
                "FROM INFORMATION_SCHEMA.COLUMNS "
                "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table "
                "ORDER BY ORDINAL_POSITION"
            ),
            {"table": name},
        ).fetchall()
        if not rows:
            return None

        columns = []
        auto_increment = False
        for col_name, column_type, is_nullable, default, key, extra in rows:
            ctype = self.parse_column_type(column_type)
            if "auto_increment" in (extra or "").lower():
                auto_increment = True
            columns.append(
                Column(
                    name=col_name,
                    type=ctype,
                    nullable=is_nullable == "YES",
                    default=self._catalog_default(conn, default, extra, ctype),
                    primary_key=key == "PRI",
                )
            )

        foreign_keys = []
        fk_rows = conn.execute(
            text(
                "SELECT k.CONSTRAINT_NAME, k.COLUMN_NAME, k.REFERENCED_TABLE_NAME, "
                "k.REFERENCED_COLUMN_NAME, r.DELETE_RULE "
                "FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE k "
                "JOIN INFORMATION_SCHEMA.REFERENTIAL_CONSTRAINTS r "
                "ON r.CONSTRAINT_SCHEMA = k.CONSTRAINT_SCHEMA "
                "AND r.CONSTRAINT_NAME = k.CONSTRAINT_NAME AND r.TABLE_NAME = k.TABLE_NAME "
                "WHERE k.TABLE_SCHEMA = DATABASE() AND k.TABLE_NAME = :table "
                "AND k.REFERENCED_TABLE_NAME IS NOT NULL "
                "ORDER BY k.CONSTRAINT_NAME"
            ),
            {"table": name},
        )
        for fk_name, column, ref_table, ref_column, delete_rule in fk_rows:
            foreign_keys.append(
                ForeignKey(
                    name=fk_name,
                    column=column,
                    ref_table=ref_table,
                    ref_column=ref_column,
                    on_delete=delete_rule,
                )
            )
        fk_names = {fk.name for fk in foreign_keys}

        grouped: Dict[str, dict] = {}
        index_rows = conn.execute(
            text(
                "SELECT INDEX_NAME, COLUMN_NAME, NON_UNIQUE "
                "FROM INFORMATION_SCHEMA.STATISTICS "
                "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table "
                "ORDER BY INDEX_NAME, SEQ_IN_INDEX"
            ),
            {"table": name},
        )
        for idx_name, column, non_unique in index_rows:
            entry = grouped.setdefault(idx_name, {"columns": [], "unique": not int(non_unique)})
            entry["columns"].append(column)
        indexes = [
            Index(
                name=idx_name,
                columns=tuple(entry["columns"]),
                unique=entry["unique"],
                implicit=idx_name == "PRIMARY" or idx_name in fk_names,
            )
            for idx_name, entry in sorted(grouped.items())
        ]

        base = None
        if auto_increment:
            next_id = conn.execute(
                text(
                    "SELECT AUTO_INCREMENT FROM INFORMATION_SCHEMA.TABLES "
                    "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table"
                ),
                {"table": name},
            ).scalar()
            base = int(next_id or 1) - 1

        return Table(
            name=name,
            columns=tuple(columns),
            indexes=tuple(indexes),
            foreign_keys=tuple(foreign_keys),
            sequence_base=base,
        )

    def sequence_bases(self, conn) -> Dict[str, Optional[int]]:
        counters = {
            row[0]: row[1]
            for row in conn.execute(
                text(
                    "SELECT TABLE_NAME, AUTO_INCREMENT FROM INFORMATION_SCHEMA.TABLES "
                    "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE'"
                )
            )
        }
        with_identity = {
            row[0]
            for row in conn.execute(
                text(
                    "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.COLUMNS "
                    "WHERE TABLE_SCHEMA = DATABASE() AND EXTRA LIKE :extra"
                ),
                {"extra": "%auto_increment%"},
            )
        }
        return {
            table: (int(counter or 1) - 1 if table in with_identity else None)
            for table, counter in counters.items()
        }

    # Query-time helpers

    def equal_fold(self, column: str, value: str, param: str = "v") -> Predicate:
        return Predicate(f"{self.quote(column)} COLLATE utf8mb4_general_ci = :{param}", {param: value})

    def contains_fold(self, column: str, substr: str, param: str = "p") -> Predicate:
        return Predicate(
            f"{self.quote(column)} COLLATE utf8mb4_general_ci LIKE :{param}",
            {param: f"%{escape_like(substr)}%"},
        )

    def classify_error(self, orig: BaseException) -> Optional[str]:
        args = getattr(orig, "args", ())
        code = args[0] if args else None
        if isinstance(code, int):
            return CONSTRAINT_CODES.get(code)
        return None
