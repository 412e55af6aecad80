"""
Integration tests for the schema inspector and query-time helpers on SQLite.

Tests cover:
- Reconstructed column types, defaults, indexes and foreign keys
- Sequence bases
- Fold predicates against real rows
- Constraint classification of real driver errors
"""

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from entmigrate import (
    MigrateConfig,
    Migrator,
    SchemaInspector,
    SchemaRegistry,
    as_constraint_violation,
    constraint_kind,
    contains_fold,
    equal_fold,
)
from entmigrate.dialect import TypeFamily
from entmigrate.schema.types import EntityTypeDef, field, index, ref

USER = EntityTypeDef(
    name="User",
    fields=(
        field("name", "str", size=10, unique=True),
        field("age", "int16", default=18),
        field("state", "enum", enum_values=("on", "off"), default="on"),
        field("bio", "str", nullable=True),
        field("active", "bool", default=False),
    ),
    indexes=(index("age", "state"),),
)
PET = EntityTypeDef(
    name="Pet",
    fields=(field("name", "str", nullable=True),),
    references=(ref("owner_id", "User", on_delete="CASCADE"),),
)


@pytest.fixture
def migrated(engine):
    Migrator(engine, MigrateConfig(global_unique_id=True)).migrate(SchemaRegistry([USER, PET]))
    return engine


class TestSchemaInspector:
    """Tests for reading the live catalog."""

    def test_columns(self, migrated):
        with migrated.connect() as conn:
            users = SchemaInspector(conn).inspect(["users"])["users"]

        assert users.column_names() == ["id", "name", "age", "state", "bio", "active"]
        assert users.primary_key.name == "id"

        name = users.column("name")
        assert (name.type.family, name.type.size, name.nullable) == (TypeFamily.STRING, 10, False)

        age = users.column("age")
        assert (age.type.low, age.type.high) == (-(2**15), 2**15 - 1)
        assert age.default == "18"

        state = users.column("state")
        assert state.type.family == TypeFamily.ENUM
        assert set(state.type.values) == {"on", "off"}
        assert state.default == "'on'"

        assert users.column("bio").type.size is None
        assert users.column("bio").nullable
        assert users.column("active").default == "0"

    def test_indexes(self, migrated):
        users = Migrator(migrated).inspect()["users"]
        indexes = {i.name: i for i in users.planned_indexes()}
        assert indexes["users_name_key"].unique
        assert indexes["users_age_state"].columns == ("age", "state")
        assert not indexes["users_age_state"].unique

    def test_foreign_keys(self, migrated):
        pets = Migrator(migrated).inspect()["pets"]
        fk = pets.foreign_key("owner_id")
        assert (fk.ref_table, fk.ref_column, fk.on_delete) == ("users", "id", "CASCADE")

    def test_sequence_bases(self, migrated):
        with migrated.connect() as conn:
            inspector = SchemaInspector(conn)
            bases = inspector.sequence_bases()
            assert inspector.table_names() == ["pets", "users"]
        assert bases == {"users": 0, "pets": 1 << 32}

    def test_missing_table(self, migrated):
        with migrated.connect() as conn:
            assert SchemaInspector(conn).inspect(["nope"]) == {"nope": None}

    def test_table_without_autoincrement(self, engine):
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE legacy (id integer PRIMARY KEY, name text)"))
        with engine.connect() as conn:
            inspector = SchemaInspector(conn)
            assert inspector.sequence_bases() == {"legacy": None}
            assert inspector.inspect(["legacy"])["legacy"].tag is None


class TestFoldPredicates:
    """Tests for case-insensitive predicates on real rows."""

    @pytest.fixture
    def names(self, migrated, insert):
        for name in ("Alex", "alexandra", "SAM", "50%_off"):
            insert("users", name=name)
        return migrated

    def _select(self, engine, predicate):
        with engine.connect() as conn:
            rows = conn.execute(text(f"SELECT name FROM users WHERE {predicate.sql} ORDER BY name"), predicate.params)
            return [r[0] for r in rows]

    def test_equal_fold(self, names):
        assert self._select(names, equal_fold("sqlite", "name", "alex")) == ["Alex"]
        assert self._select(names, equal_fold("sqlite", "name", "sam")) == ["SAM"]

    def test_contains_fold(self, names):
        assert self._select(names, contains_fold("sqlite", "name", "LEX")) == ["Alex", "alexandra"]

    def test_contains_fold_literal_wildcards(self, names):
        assert self._select(names, contains_fold("sqlite", "name", "%_")) == ["50%_off"]
        assert self._select(names, contains_fold("sqlite", "name", "_")) == ["50%_off"]


class TestConstraintErrors:
    """Tests for classifying real SQLite errors."""

    def _error(self, insert, table, **values):
        with pytest.raises(IntegrityError) as exc_info:
            insert(table, **values)
        return exc_info.value

    def test_unique(self, migrated, insert):
        insert("users", name="alex")
        err = self._error(insert, "users", name="alex")
        violation = as_constraint_violation(err)
        assert violation.kind == "unique"
        assert (violation.table, violation.column) == ("users", "name")

    def test_not_null(self, migrated, insert):
        err = self._error(insert, "users", age=3)
        assert constraint_kind(err) == "not_null"

    def test_check(self, migrated, insert):
        err = self._error(insert, "users", name="alex", age=2**15)
        assert constraint_kind(err) == "check"

    def test_foreign_key(self, migrated, insert):
        err = self._error(insert, "pets", owner_id=12345)
        assert constraint_kind(err, "sqlite") == "foreign_key"
