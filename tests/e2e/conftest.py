"""
E2E test fixtures for entmigrate.

These tests run against real MySQL and PostgreSQL servers. Point them at
an empty, disposable database:

    ENTMIGRATE_MYSQL_URL=mysql+pymysql://root:pw@localhost:3306/entmigrate_test
    ENTMIGRATE_POSTGRES_URL=postgresql://postgres:pw@localhost:5432/entmigrate_test

Every table in the database is dropped before and after each test.
"""

import os
from typing import Generator

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from entmigrate.dialect import get_dialect

SERVERS = {
    "mysql": os.environ.get("ENTMIGRATE_MYSQL_URL"),
    "postgres": os.environ.get("ENTMIGRATE_POSTGRES_URL"),
}


def _drop_all(engine: Engine) -> None:
    dialect = get_dialect(engine.dialect.name)
    with engine.begin() as conn:
        names = dialect.table_names(conn)
        if dialect.name == "mysql":
            conn.execute(text("SET FOREIGN_KEY_CHECKS = 0"))
            for name in names:
                conn.execute(text(f"DROP TABLE IF EXISTS {dialect.quote(name)}"))
            conn.execute(text("SET FOREIGN_KEY_CHECKS = 1"))
        else:
            for name in names:
                conn.execute(text(f"DROP TABLE IF EXISTS {dialect.quote(name)} CASCADE"))


@pytest.fixture(params=sorted(SERVERS))
def engine(request) -> Generator[Engine, None, None]:
    """Engine for each configured server, on a clean database."""
    url = SERVERS[request.param]
    if not url:
        pytest.skip(f"Set ENTMIGRATE_{request.param.upper()}_URL to run {request.param} E2E tests")
    engine = create_engine(url)
    _drop_all(engine)
    yield engine
    _drop_all(engine)
    engine.dispose()


@pytest.fixture
def insert(engine):
    """Insert one row and return its id."""
    dialect = get_dialect(engine.dialect.name)

    def _insert(table, **values):
        cols = ", ".join(dialect.quote(c) for c in values)
        params = ", ".join(f":{c}" for c in values)
        with engine.begin() as conn:
            if dialect.name == "postgres":
                sql = f"INSERT INTO {dialect.quote(table)} ({cols}) VALUES ({params}) RETURNING id"
                return conn.execute(text(sql), values).scalar()
            sql = f"INSERT INTO {dialect.quote(table)} ({cols}) VALUES ({params})"
            return conn.execute(text(sql), values).lastrowid

    return _insert
