"""
Unit tests for the per-dialect type mappers and semantic column types.

Tests cover:
- Logical kind -> physical type per dialect
- Check constraint rendering for emulated bounds
- Unsupported kinds
- Semantic equality and widening rules
- Dialect resolution
"""

import pytest

from entmigrate.dialect import (
    ColumnType,
    Dialect,
    Emulation,
    MySQLDialect,
    PostgresDialect,
    SQLiteDialect,
    TypeChange,
    TypeFamily,
    can_widen,
    compare_types,
    get_dialect,
    same_type,
)
from entmigrate.errors import EntMigrateError, UnsupportedTypeError
from entmigrate.schema.types import field

sqlite = SQLiteDialect()
mysql = MySQLDialect()
postgres = PostgresDialect()


class TestSQLiteMapping:
    """Tests for the SQLite type mapper."""

    def test_small_integers_use_range_checks(self):
        ctype = sqlite.column_type(field("age", "int8"))
        assert ctype.sql == "tinyint"
        assert (ctype.low, ctype.high) == (-128, 127)
        assert ctype.emulation == Emulation.RANGE_CHECK
        assert sqlite.check_expression("age", ctype) == '"age" BETWEEN -128 AND 127'

    def test_int64_has_no_check(self):
        ctype = sqlite.column_type(field("count", "int64"))
        assert ctype.sql == "bigint"
        assert ctype.emulation == Emulation.NONE
        assert sqlite.check_expression("count", ctype) is None

    def test_unsigned_uses_range_check(self):
        ctype = sqlite.column_type(field("flags", "uint32"))
        assert sqlite.check_expression("flags", ctype) == '"flags" BETWEEN 0 AND 4294967295'

    def test_uint64_unsupported(self):
        with pytest.raises(UnsupportedTypeError) as exc_info:
            sqlite.column_type(field("big", "uint64"), table="counters")
        assert exc_info.value.dialect == "sqlite"
        assert exc_info.value.table == "counters"
        assert exc_info.value.field_name == "big"

    def test_bounded_string(self):
        ctype = sqlite.column_type(field("name", "str", size=10))
        assert ctype.sql == "varchar(10)"
        assert ctype.size == 10
        assert sqlite.check_expression("name", ctype) == 'length("name") <= 10'

    def test_unbounded_string(self):
        ctype = sqlite.column_type(field("bio", "str"))
        assert ctype.sql == "text"
        assert ctype.size is None

    def test_enum(self):
        ctype = sqlite.column_type(field("state", "enum", enum_values=("loggedIn", "loggedOut", "online")))
        assert ctype.sql == "text"
        assert sqlite.check_expression("state", ctype) == "\"state\" IN ('loggedIn', 'loggedOut', 'online')"

    def test_other_kinds(self):
        assert sqlite.column_type(field("at", "time")).sql == "datetime"
        assert sqlite.column_type(field("ok", "bool")).sql == "bool"
        assert sqlite.column_type(field("score", "float")).sql == "real"
        assert sqlite.column_type(field("data", "bytes", size=8)).emulation == Emulation.LENGTH_CHECK


class TestMySQLMapping:
    """Tests for the MySQL type mapper."""

    def test_native_unsigned(self):
        ctype = mysql.column_type(field("flags", "uint64"))
        assert ctype.sql == "bigint unsigned"
        assert ctype.high == 2**64 - 1
        assert ctype.emulation == Emulation.NONE

    def test_string_capacities(self):
        """Strings move to TEXT types past the varchar limit."""
        assert mysql.column_type(field("a", "str", size=16383)).sql == "varchar(16383)"
        medium = mysql.column_type(field("b", "str", size=16384))
        assert medium.sql == "mediumtext"
        assert medium.size == 4194303
        assert mysql.column_type(field("c", "str")).sql == "longtext"
        assert mysql.column_type(field("d", "str", size=5_000_000)).sql == "longtext"

    def test_bytes_capacities(self):
        assert mysql.column_type(field("a", "bytes", size=4096)).sql == "varbinary(4096)"
        assert mysql.column_type(field("b", "bytes", size=4097)).sql == "blob"
        assert mysql.column_type(field("c", "bytes", size=70000)).sql == "mediumblob"
        assert mysql.column_type(field("d", "bytes")).sql == "longblob"

    def test_native_enum(self):
        ctype = mysql.column_type(field("state", "enum", enum_values=("on", "it's")))
        assert ctype.sql == "enum('on', 'it''s')"
        assert mysql.check_expression("state", ctype) is None

    def test_quote(self):
        assert mysql.quote("users") == "`users`"

    def test_parse_column_type(self):
        """Catalog COLUMN_TYPE strings map back to semantic types."""
        assert mysql.parse_column_type("tinyint(1)").family == TypeFamily.BOOL
        assert mysql.parse_column_type("int(10) unsigned").high == 2**32 - 1
        assert mysql.parse_column_type("smallint").low == -(2**15)
        assert mysql.parse_column_type("varchar(10)").size == 10
        assert mysql.parse_column_type("mediumtext").size == 4194303
        assert mysql.parse_column_type("enum('a','b')").values == ("a", "b")
        assert mysql.parse_column_type("datetime(6)").family == TypeFamily.TIME

    def test_round_trip_equality(self):
        """What the catalog reports equals what the mapper produced."""
        cases = [
            (field("a", "uint16"), "smallint unsigned"),
            (field("b", "str", size=20), "varchar(20)"),
            (field("c", "bool"), "tinyint(1)"),
            (field("d", "enum", enum_values=("x", "y")), "enum('x','y')"),
            (field("e", "bytes", size=100000), "mediumblob"),
        ]
        for f, catalog in cases:
            assert mysql.column_type(f) == mysql.parse_column_type(catalog), f.name


class TestPostgresMapping:
    """Tests for the PostgreSQL type mapper."""

    def test_int8_uses_smallint_with_check(self):
        ctype = postgres.column_type(field("age", "int8"))
        assert ctype.sql == "smallint"
        assert ctype.emulation == Emulation.RANGE_CHECK
        assert postgres.check_name("users", "age", ctype) == "users_age_check"

    def test_unsigned_uses_wider_type(self):
        assert postgres.column_type(field("a", "uint8")).sql == "smallint"
        assert postgres.column_type(field("b", "uint16")).sql == "integer"
        assert postgres.column_type(field("c", "uint32")).sql == "bigint"
        uint64 = postgres.column_type(field("d", "uint64"))
        assert uint64.sql == "numeric(20,0)"
        assert uint64.high == 2**64 - 1

    def test_native_types_have_no_check(self):
        ctype = postgres.column_type(field("count", "int32"))
        assert ctype.sql == "integer"
        assert postgres.check_name("users", "count", ctype) is None

    def test_bytes_use_octet_length(self):
        ctype = postgres.column_type(field("data", "bytes", size=16))
        assert postgres.check_expression("data", ctype) == 'octet_length("data") <= 16'

    def test_enum_is_checked_varchar(self):
        ctype = postgres.column_type(field("state", "enum", enum_values=("a", "b")))
        assert ctype.sql == "varchar"
        assert ctype.emulation == Emulation.ENUM_CHECK

    def test_other_kinds(self):
        assert postgres.column_type(field("at", "time")).sql == "timestamp with time zone"
        assert postgres.column_type(field("ok", "bool")).sql == "boolean"
        assert postgres.column_type(field("score", "float")).sql == "double precision"


class TestCompareTypes:
    """Tests for semantic comparison and widening."""

    def test_semantic_equality_ignores_spelling(self):
        """varchar(10) with a length check equals a native varchar(10)."""
        assert sqlite.column_type(field("n", "str", size=10)) == mysql.column_type(field("n", "str", size=10))

    def test_enum_order_does_not_matter(self):
        a = ColumnType(TypeFamily.ENUM, "text", values=("a", "b"))
        b = ColumnType(TypeFamily.ENUM, "text", values=("b", "a"))
        assert compare_types(a, b) == TypeChange.SAME

    def test_integer_widening(self):
        int32 = sqlite.column_type(field("n", "int32"))
        int64 = sqlite.column_type(field("n", "int64"))
        assert can_widen(int32, int64)
        assert compare_types(int64, int32) == TypeChange.CONFLICT

    def test_signed_to_unsigned_conflicts(self):
        int8 = mysql.column_type(field("n", "int8"))
        uint16 = mysql.column_type(field("n", "uint16"))
        assert compare_types(int8, uint16) == TypeChange.CONFLICT

    def test_string_widening(self):
        s10 = sqlite.column_type(field("n", "str", size=10))
        s20 = sqlite.column_type(field("n", "str", size=20))
        text = sqlite.column_type(field("n", "str"))
        assert can_widen(s10, s20)
        assert can_widen(s10, text)
        assert compare_types(s20, s10) == TypeChange.CONFLICT
        assert compare_types(text, s20) == TypeChange.CONFLICT

    def test_enum_widening(self):
        v2 = sqlite.column_type(field("s", "enum", enum_values=("loggedIn", "loggedOut")))
        v3 = sqlite.column_type(field("s", "enum", enum_values=("loggedIn", "loggedOut", "online")))
        assert can_widen(v2, v3)
        assert compare_types(v3, v2) == TypeChange.CONFLICT

    def test_integer_to_string(self):
        """An integer converts to a string long enough for every value."""
        int8 = sqlite.column_type(field("n", "int8"))
        assert can_widen(int8, sqlite.column_type(field("n", "str", size=4)))
        assert compare_types(int8, sqlite.column_type(field("n", "str", size=3))) == TypeChange.CONFLICT
        int64 = sqlite.column_type(field("n", "int64"))
        assert can_widen(int64, sqlite.column_type(field("n", "str", size=20)))

    def test_enum_to_string(self):
        enum = sqlite.column_type(field("s", "enum", enum_values=("loggedIn", "online")))
        assert can_widen(enum, sqlite.column_type(field("s", "str", size=8)))
        assert not can_widen(enum, sqlite.column_type(field("s", "str", size=7)))

    def test_string_to_integer_conflicts(self):
        s = sqlite.column_type(field("n", "str", size=10))
        assert compare_types(s, sqlite.column_type(field("n", "int64"))) == TypeChange.CONFLICT

    def test_unbounded_families_are_same(self):
        a = ColumnType(TypeFamily.TIME, "datetime")
        b = ColumnType(TypeFamily.TIME, "timestamp")
        assert same_type(a, b)

    def test_unknown_compares_sql(self):
        a = ColumnType(TypeFamily.UNKNOWN, "JSON")
        assert same_type(a, ColumnType(TypeFamily.UNKNOWN, "json"))
        assert compare_types(a, ColumnType(TypeFamily.UNKNOWN, "xml")) == TypeChange.CONFLICT


class TestDialectResolution:
    """Tests for Dialect and get_dialect."""

    def test_aliases(self):
        assert Dialect.from_name("postgresql") == Dialect.POSTGRES
        assert Dialect.from_name("mysql+pymysql") == Dialect.MYSQL
        assert Dialect.from_name("mariadb") == Dialect.MYSQL
        assert Dialect.from_name("sqlite") == Dialect.SQLITE

    def test_get_dialect(self):
        assert isinstance(get_dialect("postgresql"), PostgresDialect)
        assert get_dialect(Dialect.SQLITE) is Dialect.SQLITE.implementation
        assert get_dialect(mysql) is mysql

    def test_unsupported_dialect(self):
        with pytest.raises(EntMigrateError) as exc_info:
            Dialect.from_name("oracle")
        assert exc_info.value.code == "UNSUPPORTED_DIALECT"

    def test_capabilities(self):
        assert sqlite.capabilities.forward_references
        assert not mysql.capabilities.transactional_ddl
        assert postgres.capabilities.transactional_ddl
