"""
Supported SQL dialects.

The set of dialects is closed: SQLite, MySQL/MariaDB and PostgreSQL.
Each Dialect member resolves to one stateless implementation instance.

Example:
    >>> from entmigrate.dialect import Dialect, get_dialect
    >>> get_dialect("postgresql").name
    'postgres'
    >>> Dialect.from_engine(engine).implementation.capabilities.transactional_ddl
    True
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Union

from ..errors import EntMigrateError
from .base import BaseDialect, DialectCapabilities, Predicate
from .mysql import MySQLDialect
from .postgres import PostgresDialect
from .sqlite import SQLiteDialect
from .types import ColumnType, Emulation, TypeChange, TypeFamily, can_widen, compare_types, same_type

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, Engine


class Dialect(Enum):
    SQLITE = "sqlite"
    MYSQL = "mysql"
    POSTGRES = "postgres"

    @property
    def implementation(self) -> BaseDialect:
        return _IMPLEMENTATIONS[self]

    @classmethod
    def from_name(cls, name: str) -> Dialect:
        """Resolve a dialect from a SQLAlchemy dialect or URL scheme name.

        Raises:
            EntMigrateError: If the engine is not supported
        """
        base = name.lower().split("+", 1)[0]
        aliases = {
            "sqlite": cls.SQLITE,
            "mysql": cls.MYSQL,
            "mariadb": cls.MYSQL,
            "postgres": cls.POSTGRES,
            "postgresql": cls.POSTGRES,
        }
        if base not in aliases:
            raise EntMigrateError(
                f"Unsupported dialect '{name}'. Supported: sqlite, mysql, postgres",
                code="UNSUPPORTED_DIALECT",
            )
        return aliases[base]

    @classmethod
    def from_engine(cls, engine: Union[Engine, Connection]) -> Dialect:
        return cls.from_name(engine.dialect.name)


_IMPLEMENTATIONS = {
    Dialect.SQLITE: SQLiteDialect(),
    Dialect.MYSQL: MySQLDialect(),
    Dialect.POSTGRES: PostgresDialect(),
}


def get_dialect(dialect: Union[str, Dialect, BaseDialect]) -> BaseDialect:
    """Return the implementation for a dialect name, member or instance."""
    if isinstance(dialect, BaseDialect):
        return dialect
    if isinstance(dialect, Dialect):
        return dialect.implementation
    return Dialect.from_name(dialect).implementation


__all__ = [
    "Dialect",
    "get_dialect",
    "BaseDialect",
    "DialectCapabilities",
    "Predicate",
    "SQLiteDialect",
    "MySQLDialect",
    "PostgresDialect",
    "ColumnType",
    "TypeFamily",
    "Emulation",
    "TypeChange",
    "compare_types",
    "can_widen",
    "same_type",
]
