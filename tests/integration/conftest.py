"""
Integration test fixtures: a throwaway SQLite database per test.
"""

import pytest
from sqlalchemy import create_engine, event, text


@pytest.fixture
def engine(tmp_path):
    """SQLite file engine with foreign keys enforced on every connection."""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    yield engine
    engine.dispose()


@pytest.fixture
def insert(engine):
    """Insert one row and return its id."""

    def _insert(table, **values):
        cols = ", ".join(f'"{c}"' for c in values)
        params = ", ".join(f":{c}" for c in values)
        sql = f'INSERT INTO "{table}" ({cols}) VALUES ({params})' if values else f'INSERT INTO "{table}" DEFAULT VALUES'
        with engine.begin() as conn:
            return conn.execute(text(sql), values).lastrowid

    return _insert


@pytest.fixture
def rows(engine):
    """All rows of a table, ordered by id, as dicts."""

    def _rows(table):
        with engine.connect() as conn:
            return [dict(r._mapping) for r in conn.execute(text(f'SELECT * FROM "{table}" ORDER BY id'))]

    return _rows
