"""Test the command line interface."""

import json

import pytest
from typer.testing import CliRunner

from schemagrid.cli import app

runner = CliRunner()

JSON_SCHEMA = json.dumps({
    "type": "object",
    "properties": {"order_id": {"type": "integer"}, "note": {"type": "string"}},
    "required": ["order_id"],
})


@pytest.fixture
def schema_file(tmp_path):
    path = tmp_path / "order.json"
    path.write_text(JSON_SCHEMA, encoding="utf-8")
    return path


@pytest.mark.unit
class TestCLI:
    """Test CLI commands."""

    def test_detect(self, schema_file):
        result = runner.invoke(app, ["detect", str(schema_file)])
        assert result.exit_code == 0
        assert result.output.strip().endswith("json")

    def test_convert_to_stdout(self, schema_file):
        result = runner.invoke(app, ["convert", str(schema_file), "--to", "xsd", "--from", "json"])
        assert result.exit_code == 0
        assert 'name="order_id"' in result.output
        assert 'name="note" minOccurs="0"' in result.output

    def test_convert_detects_source(self, schema_file, tmp_path):
        target = tmp_path / "order.yaml"
        result = runner.invoke(app, ["convert", str(schema_file), "--to", "yaml", "-o", str(target)])
        assert result.exit_code == 0
        assert "order_id" in target.read_text(encoding="utf-8")

    def test_convert_unknown_format(self, schema_file):
        result = runner.invoke(app, ["convert", str(schema_file), "--to", "toml"])
        assert result.exit_code == 2

    def test_convert_unreadable_source(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{broken", encoding="utf-8")
        result = runner.invoke(app, ["convert", str(path), "--to", "xml", "--from", "json"])
        assert result.exit_code == 1

    def test_validate(self, schema_file, tmp_path):
        assert runner.invoke(app, ["validate", str(schema_file), "--format", "json"]).exit_code == 0

        invalid = tmp_path / "invalid.json"
        invalid.write_text('{"a": 1}', encoding="utf-8")
        assert runner.invoke(app, ["validate", str(invalid), "--format", "json"]).exit_code == 1

    def test_validate_rejects_entities(self, tmp_path):
        path = tmp_path / "evil.xml"
        path.write_text('<!DOCTYPE s [<!ENTITY x "y">]><s>&x;</s>', encoding="utf-8")
        result = runner.invoke(app, ["validate", str(path), "--format", "xml"])
        assert result.exit_code == 1
        assert "security_violation" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["detect", str(tmp_path / "nope.json")])
        assert result.exit_code == 1

    def test_config(self):
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Max Session Users" in result.output
