"""
E2E tests against MySQL and PostgreSQL.

Tests cover:
- Global unique id blocks on real identity sequences
- Widening and enum enforcement
- Idempotence on the server catalogs
- Constraint classification of real driver errors
"""

import pytest
from sqlalchemy.exc import DBAPIError

from entmigrate import (
    MigrateConfig,
    Migrator,
    SchemaRegistry,
    constraint_kind,
    is_constraint_error,
)
from entmigrate.schema.types import EntityTypeDef, field, index, ref

pytestmark = pytest.mark.e2e

GLOBAL = MigrateConfig(global_unique_id=True)


def _entity(name, *fields, **kwargs):
    return EntityTypeDef(name=name, fields=fields or (field("name", "str", size=50, nullable=True),), **kwargs)


def _migrate(engine, *entities, config=GLOBAL):
    return Migrator(engine, config).migrate(SchemaRegistry(list(entities)))


class TestGlobalUniqueId:
    """Tests for id blocks on server databases."""

    def test_tags_and_stability(self, engine, insert):
        _migrate(engine, *[_entity(n) for n in ["Car", "Conversion", "CustomType", "User"]])
        assert insert("users", name="alex") == (3 << 32) + 1

        all_types = ["Car", "Conversion", "CustomType", "Group", "Media", "Pet", "User"]
        result = _migrate(engine, *[_entity(n) for n in all_types])

        assert result.blocks["users"].tag == 3
        assert result.blocks["pets"].tag == 6
        assert insert("cars", name="x") == 1
        assert insert("groups", name="x") == (4 << 32) + 1
        assert insert("users", name="sam") == (3 << 32) + 2

    def test_inspected_tags(self, engine):
        _migrate(engine, _entity("Car"), _entity("User"))
        live = Migrator(engine).inspect()
        assert live["cars"].tag == 0
        assert live["users"].tag == 1


class TestEvolution:
    """Tests for widening and enums."""

    def test_widen_string(self, engine, insert):
        _migrate(engine, _entity("User", field("name", "str", size=10)))
        insert("users", name="a" * 10)

        with pytest.raises(DBAPIError):
            insert("users", name="a" * 12)

        _migrate(engine, _entity("User", field("name", "str", size=20)))
        assert insert("users", name="a" * 12) == 2

    def test_enum(self, engine, insert):
        v2 = _entity("User", field("state", "enum", enum_values=("loggedIn", "loggedOut"), nullable=True))
        v3 = _entity("User", field("state", "enum", enum_values=("loggedIn", "loggedOut", "online"), nullable=True))
        _migrate(engine, v2)

        with pytest.raises(DBAPIError) as exc_info:
            insert("users", state="online")
        assert is_constraint_error(exc_info.value)

        _migrate(engine, v3)
        insert("users", state="online")

    def test_small_integer_range(self, engine, insert):
        _migrate(engine, _entity("Item", field("level", "int8")))
        insert("items", level=127)
        with pytest.raises(DBAPIError) as exc_info:
            insert("items", level=128)
        assert is_constraint_error(exc_info.value)

    def test_second_run_is_a_no_op(self, engine):
        entities = [
            _entity(
                "User",
                field("name", "str", size=10, unique=True),
                field("age", "uint8", default=0),
                field("active", "bool", default=True),
                field("state", "enum", enum_values=("on", "off"), default="on"),
                field("bio", "str", nullable=True),
                field("avatar", "bytes", size=64, nullable=True),
                field("joined", "time", nullable=True),
            ),
            _entity("Pet", references=(ref("owner_id", "User"),), indexes=(index("name", "owner_id"),)),
        ]
        _migrate(engine, *entities)
        second = _migrate(engine, *entities)
        assert second.plan.is_empty


class TestConstraintErrors:
    """Tests for classifying server errors."""

    def test_unique_and_foreign_key(self, engine, insert):
        _migrate(
            engine,
            _entity("User", field("name", "str", size=10, unique=True)),
            _entity("Pet", references=(ref("owner_id", "User"),)),
        )
        insert("users", name="alex")

        with pytest.raises(DBAPIError) as exc_info:
            insert("users", name="alex")
        assert constraint_kind(exc_info.value) == "unique"

        with pytest.raises(DBAPIError) as exc_info:
            insert("pets", name="rex", owner_id=999)
        assert constraint_kind(exc_info.value) == "foreign_key"
