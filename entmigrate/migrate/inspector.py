"""
Schema inspector.

Reads the live catalog through a dialect and reconstructs Table models.
The inspector is read-only: it never issues DDL and never writes.

Invariants:
    - Inspection of a missing table yields None, never an error
    - Driver failures surface as ConnectionError with the cause attached
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from ..dialect import BaseDialect, get_dialect
from ..errors import ConnectionError
from .table import Table

logger = logging.getLogger(__name__)


class SchemaInspector:
    """Reconstructs live tables from the database catalog.

    Args:
        connection: An open SQLAlchemy connection
        dialect: Dialect implementation (resolved from the connection if None)

    Example:
        >>> with engine.connect() as conn:
        ...     inspector = SchemaInspector(conn)
        ...     users = inspector.inspect(["users"])["users"]
    """

    def __init__(self, connection: Connection, dialect: Optional[BaseDialect] = None) -> None:
        self._conn = connection
        self._dialect = dialect or get_dialect(connection.dialect.name)
        self._prepared = False

    @property
    def dialect(self) -> BaseDialect:
        return self._dialect

    def _run(self, what: str, fn, *args):
        try:
            if not self._prepared:
                self._dialect.prepare_inspection(self._conn)
                self._prepared = True
            return fn(self._conn, *args)
        except (DBAPIError, SQLAlchemyError) as e:
            logger.error(f"Catalog query failed while reading {what}: {e}")
            raise ConnectionError(f"Failed to inspect {what}: {e}") from e

    def table_names(self) -> List[str]:
        """Names of all tables in the database (sorted)."""
        return self._run("table names", self._dialect.table_names)

    def inspect(self, names: Iterable[str]) -> Dict[str, Optional[Table]]:
        """Inspect the named tables.

        Returns:
            Mapping of name to Table, or None for tables that do not exist
        """
        result: Dict[str, Optional[Table]] = {}
        for name in names:
            table = self._run(f"table '{name}'", self._dialect.inspect_table, name)
            result[name] = table
            if table is not None:
                logger.debug(
                    f"Inspected {name}: {len(table.columns)} columns, "
                    f"{len(table.indexes)} indexes, base={table.sequence_base}"
                )
        return result

    def inspect_all(self) -> Dict[str, Table]:
        """Inspect every table in the database."""
        tables = self.inspect(self.table_names())
        return {name: table for name, table in tables.items() if table is not None}

    def sequence_bases(self) -> Dict[str, Optional[int]]:
        """Identity sequence base of every table in the database."""
        return self._run("sequence bases", self._dialect.sequence_bases)
