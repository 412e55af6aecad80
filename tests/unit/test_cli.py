"""
Unit tests for the migration CLI.

Every test runs main() against a throwaway SQLite file.
"""

import json
import logging

import pytest

from entmigrate.tools.migrate_cli import build_parser, main

SCHEMA_YAML = """
entity_types:
  - name: User
    fields:
      - name: name
        kind: str
        size: 20
      - name: state
        kind: enum
        enum_values: [loggedIn, loggedOut]
        nullable: true
  - name: Pet
    fields:
      - name: name
        kind: str
    references:
      - column: owner_id
        target: User
"""

SHRUNK_YAML = """
entity_types:
  - name: User
    fields:
      - name: name
        kind: str
        size: 5
"""


@pytest.fixture(autouse=True)
def isolate(monkeypatch):
    """Clear configuration env vars and restore the root logger afterwards."""
    for name in (
        "ENTMIGRATE_DATABASE_URL",
        "ENTMIGRATE_GLOBAL_UNIQUE_ID",
        "ENTMIGRATE_DROP_COLUMN",
        "ENTMIGRATE_DROP_INDEX",
        "ENTMIGRATE_VERIFY",
        "ENTMIGRATE_TIMEOUT_SECONDS",
        "LOG_LEVEL",
        "LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def url(tmp_path):
    return f"sqlite:///{tmp_path / 'app.db'}"


@pytest.fixture
def schema(tmp_path):
    path = tmp_path / "schema.yaml"
    path.write_text(SCHEMA_YAML)
    return str(path)


class TestParser:
    """Tests for argument parsing."""

    def test_toggles(self):
        args = build_parser().parse_args(["apply", "-s", "s.yaml", "--drop-column", "--timeout", "5"])
        assert args.command == "apply"
        assert args.drop_column
        assert args.drop_index is None
        assert args.timeout == 5.0

    def test_schema_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["plan"])


class TestCommands:
    """Tests for plan, sql, apply and inspect."""

    def test_plan_on_empty_database(self, url, schema, capsys):
        assert main(["--url", url, "plan", "--schema", schema]) == 0
        out = capsys.readouterr().out
        assert "CREATE_TABLE: users" in out
        assert "CREATE_TABLE: pets" in out

    def test_plan_check(self, url, schema):
        assert main(["--url", url, "plan", "--schema", schema, "--check"]) == 1

    def test_sql_is_a_dry_run(self, url, schema, capsys):
        assert main(["--url", url, "sql", "--schema", schema]) == 0
        out = capsys.readouterr().out
        assert 'CREATE TABLE "users"' in out
        assert out.strip().endswith(";")

        assert main(["--url", url, "inspect"]) == 0
        assert capsys.readouterr().out.strip() == "No tables"

    def test_apply_then_check(self, url, schema, capsys):
        assert main(["--url", url, "apply", "--schema", schema]) == 0
        out = capsys.readouterr().out
        assert "Applied 2 operation(s)" in out
        assert "(verified)" in out

        assert main(["--url", url, "plan", "--schema", schema, "--check"]) == 0
        assert "No changes" in capsys.readouterr().out

    def test_apply_global_unique_id(self, url, schema, capsys):
        assert main(["--url", url, "apply", "--schema", schema, "--global-unique-id"]) == 0
        out = capsys.readouterr().out
        assert "users: tag 0, ids 1..4294967295" in out
        assert "pets: tag 1" in out

    def test_inspect_json(self, url, schema, capsys):
        main(["--url", url, "apply", "--schema", schema, "--global-unique-id"])
        capsys.readouterr()

        assert main(["--url", url, "inspect", "--format", "json"]) == 0
        tables = json.loads(capsys.readouterr().out)
        assert sorted(tables) == ["pets", "users"]
        assert tables["pets"]["tag"] == 1
        assert [c["name"] for c in tables["users"]["columns"]] == ["id", "name", "state"]

    def test_inspect_text(self, url, schema, capsys):
        main(["--url", url, "apply", "--schema", schema])
        capsys.readouterr()

        assert main(["--url", url, "inspect"]) == 0
        out = capsys.readouterr().out
        assert "table users" in out
        assert "foreign key owner_id -> users.id" in out


class TestErrors:
    """Tests for exit codes and error output."""

    def test_missing_schema_file(self, url, tmp_path, capsys):
        assert main(["--url", url, "plan", "--schema", str(tmp_path / "missing.yaml")]) == 1
        assert "error:" in capsys.readouterr().err

    def test_conflict(self, url, schema, tmp_path, capsys):
        main(["--url", url, "apply", "--schema", schema])
        shrunk = tmp_path / "shrunk.yaml"
        shrunk.write_text(SHRUNK_YAML)
        capsys.readouterr()

        assert main(["--url", url, "apply", "--schema", str(shrunk)]) == 1
        assert "cannot change" in capsys.readouterr().err

    def test_invalid_configuration(self, url, schema, monkeypatch, capsys):
        monkeypatch.setenv("LOG_FORMAT", "xml")
        assert main(["--url", url, "plan", "--schema", schema]) == 2
        assert "Invalid LOG_FORMAT" in capsys.readouterr().err

    def test_unsupported_database(self, schema):
        assert main(["--url", "nosuchdb://localhost/db", "plan", "--schema", schema]) == 2
