"""
Unit tests for the YAML/JSON schema file format.

Tests cover:
- Parsing YAML and JSON documents
- Error collection for invalid entity types
- Loading by file extension
- YAML round trip
"""

import json

import pytest

from entmigrate.errors import SchemaValidationError
from entmigrate.schema import FieldKind, dump_yaml, load_schema, parse_json, parse_yaml

SCHEMA_YAML = """
version: 1
entity_types:
  - name: User
    fields:
      - name: name
        kind: str
        size: 20
      - name: state
        kind: enum
        enum_values: [loggedIn, loggedOut, online]
        nullable: true
    indexes:
      - fields: [name]
        unique: true

  - name: Pet
    fields:
      - name: name
        kind: str
    references:
      - column: owner_id
        target: User
"""


class TestParseYaml:
    """Tests for YAML parsing."""

    def test_parse_example(self):
        registry = parse_yaml(SCHEMA_YAML)

        assert registry.table_names() == ["users", "pets"]
        user = registry.get("User")
        assert user.get_field("name").size == 20
        assert user.get_field("state").kind == FieldKind.ENUM
        assert user.get_field("state").enum_values == ("loggedIn", "loggedOut", "online")
        assert user.indexes[0].unique
        assert registry.get("Pet").references[0].target == "User"

    def test_empty_document(self):
        assert len(parse_yaml("")) == 0

    def test_invalid_yaml(self):
        with pytest.raises(SchemaValidationError, match="Invalid YAML"):
            parse_yaml("entity_types: [unclosed")

    def test_unsupported_version(self):
        with pytest.raises(SchemaValidationError, match="Unsupported schema version"):
            parse_yaml("version: 2\nentity_types: []")

    def test_errors_are_collected(self):
        """Every invalid entity type is reported."""
        document = {
            "entity_types": [
                {"name": "User", "fields": [{"name": "id", "kind": "int"}]},
                {"name": "Pet", "fields": [{"name": "age", "kind": "decimal"}]},
            ]
        }
        with pytest.raises(SchemaValidationError) as exc_info:
            parse_json(json.dumps(document))
        assert len(exc_info.value.errors) == 2
        assert "User" in exc_info.value.errors[0]
        assert "Pet" in exc_info.value.errors[1]

    def test_duplicate_entity_reported(self):
        document = {"entity_types": [{"name": "User"}, {"name": "User"}]}
        with pytest.raises(SchemaValidationError, match="already registered"):
            parse_json(json.dumps(document))

    def test_dangling_reference_reported(self):
        document = {"entity_types": [{"name": "Pet", "references": [{"column": "owner_id", "target": "User"}]}]}
        with pytest.raises(SchemaValidationError, match="unknown entity type"):
            parse_json(json.dumps(document))


class TestLoadSchema:
    """Tests for loading schema files."""

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "schema.yaml"
        path.write_text(SCHEMA_YAML)
        assert load_schema(path).table_names() == ["users", "pets"]

    def test_load_json_file(self, tmp_path):
        path = tmp_path / "schema.json"
        path.write_text(parse_yaml(SCHEMA_YAML).to_json())
        assert load_schema(str(path)).table_names() == ["users", "pets"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_schema(tmp_path / "missing.yaml")

    def test_dump_yaml_round_trip(self):
        registry = parse_yaml(SCHEMA_YAML)
        assert parse_yaml(dump_yaml(registry)).compute_fingerprint() == registry.compute_fingerprint()
