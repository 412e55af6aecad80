"""
Unit tests for constraint-error classification and fold predicates.

Driver errors are simulated with small exception classes carrying the
attributes the real drivers set (pgcode/diag for psycopg2, numeric args
for PyMySQL); SQLite errors come from the sqlite3 module itself.

Tests cover:
- Classification per dialect and without a dialect
- Unwrapping SQLAlchemy errors
- Conversion to ConstraintViolation
- equal_fold / contains_fold rendering
"""

import sqlite3

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from entmigrate.constraints import as_constraint_violation, constraint_kind, is_constraint_error
from entmigrate.errors import ConstraintViolation
from entmigrate.predicates import contains_fold, equal_fold


class _Diag:
    def __init__(self, table_name=None, column_name=None):
        self.table_name = table_name
        self.column_name = column_name


class FakePgIntegrityError(Exception):
    """Shaped like psycopg2.errors.UniqueViolation."""

    def __init__(self, message, pgcode, table_name=None, column_name=None):
        super().__init__(message)
        self.pgcode = pgcode
        self.diag = _Diag(table_name, column_name)


class FakeMySQLIntegrityError(Exception):
    """Shaped like pymysql.err.IntegrityError: args are (errno, message)."""


def _wrap(orig):
    return IntegrityError("INSERT INTO users (name) VALUES (?)", {}, orig)


class TestConstraintKind:
    """Tests for constraint_kind and is_constraint_error."""

    @pytest.mark.parametrize(
        "message,kind",
        [
            ("UNIQUE constraint failed: users.name", "unique"),
            ('CHECK constraint failed: length("name") <= 10', "check"),
            ("FOREIGN KEY constraint failed", "foreign_key"),
            ("NOT NULL constraint failed: users.name", "not_null"),
        ],
    )
    def test_sqlite(self, message, kind):
        err = sqlite3.IntegrityError(message)
        assert constraint_kind(err) == kind
        assert constraint_kind(err, "sqlite") == kind

    @pytest.mark.parametrize(
        "pgcode,kind",
        [("23505", "unique"), ("23503", "foreign_key"), ("23514", "check"), ("23502", "not_null")],
    )
    def test_postgres(self, pgcode, kind):
        err = FakePgIntegrityError("violation", pgcode)
        assert constraint_kind(err) == kind
        assert constraint_kind(err, "postgresql") == kind

    def test_postgres_other_integrity_code(self):
        """Other class-23 codes are generic integrity errors."""
        assert constraint_kind(FakePgIntegrityError("exclusion", "23P01")) == "integrity"

    @pytest.mark.parametrize(
        "errno,kind",
        [(1062, "unique"), (1452, "foreign_key"), (3819, "check"), (1048, "not_null")],
    )
    def test_mysql(self, errno, kind):
        err = FakeMySQLIntegrityError(errno, "rejected")
        assert constraint_kind(err) == kind
        assert constraint_kind(err, "mysql") == kind

    def test_wrapped_error_is_unwrapped(self):
        err = _wrap(sqlite3.IntegrityError("UNIQUE constraint failed: users.name"))
        assert constraint_kind(err) == "unique"
        assert is_constraint_error(err)

    def test_wrapped_integrity_error_of_other_dialect(self):
        """A SQLAlchemy IntegrityError is a constraint error on any dialect."""
        err = _wrap(sqlite3.IntegrityError("UNIQUE constraint failed: users.name"))
        assert constraint_kind(err, "postgres") == "integrity"
        assert constraint_kind(err.orig, "postgres") is None

    def test_non_constraint_errors(self):
        assert not is_constraint_error(ValueError("boom"))
        assert not is_constraint_error(None)
        assert not is_constraint_error(sqlite3.OperationalError("no such table: users"))
        wrapped = OperationalError("SELECT 1", {}, sqlite3.OperationalError("database is locked"))
        assert not is_constraint_error(wrapped)

    def test_mysql_non_constraint_errno(self):
        assert not is_constraint_error(FakeMySQLIntegrityError(1146, "Table doesn't exist"), "mysql")


class TestAsConstraintViolation:
    """Tests for as_constraint_violation."""

    def test_sqlite_subject(self):
        err = _wrap(sqlite3.IntegrityError("UNIQUE constraint failed: users.name"))
        violation = as_constraint_violation(err)
        assert isinstance(violation, ConstraintViolation)
        assert violation.kind == "unique"
        assert (violation.table, violation.column) == ("users", "name")
        assert violation.__cause__ is err
        assert violation.details["kind"] == "unique"

    def test_sqlite_check_subject(self):
        violation = as_constraint_violation(sqlite3.IntegrityError('CHECK constraint failed: length("name") <= 10'))
        assert violation.kind == "check"
        assert violation.column == "name"

    def test_postgres_subject(self):
        err = FakePgIntegrityError("null value", "23502", table_name="users", column_name="name")
        violation = as_constraint_violation(err)
        assert (violation.kind, violation.table, violation.column) == ("not_null", "users", "name")

    def test_not_a_violation(self):
        assert as_constraint_violation(ValueError("boom")) is None


class TestFoldPredicates:
    """Tests for equal_fold and contains_fold."""

    def test_sqlite(self):
        p = equal_fold("sqlite", "name", "Alex")
        assert p.sql == 'LOWER("name") = LOWER(:v)'
        assert p.params == {"v": "Alex"}

    def test_mysql(self):
        p = equal_fold("mysql", "name", "Alex", param="name")
        assert p.sql == "`name` COLLATE utf8mb4_general_ci = :name"
        assert p.params == {"name": "Alex"}

    def test_postgres(self):
        p = equal_fold("postgres", "name", "Alex")
        assert p.sql == '"name" ILIKE :v'
        assert p.params == {"v": "Alex"}

    def test_contains_escapes_wildcards(self):
        """% and _ in the search string match literally."""
        for dialect in ("sqlite", "mysql", "postgres"):
            p = contains_fold(dialect, "name", "50%_off")
            assert p.params == {"p": "%50\\%\\_off%"}

    def test_equal_fold_postgres_escapes_wildcards(self):
        assert equal_fold("postgres", "name", "a_b").params == {"v": "a\\_b"}
