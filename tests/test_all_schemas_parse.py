"""Test that all JSON schemas in specs/ are valid Draft 2020-12 schemas."""

import json
from pathlib import Path

import pytest
from jsonschema import Draft202012Validator
from jsonschema.validators import validator_for

SPECS_DIR = Path(__file__).parent.parent / "specs"
EXPECTED_SCHEMA_URI = "https://json-schema.org/draft/2020-12/schema"


def discover_schema_files() -> list[Path]:
    """Discover all schema files in the specs directory."""
    return sorted(SPECS_DIR.glob("*.schema.json"))


@pytest.mark.parametrize(
    "schema_path",
    discover_schema_files(),
    ids=lambda p: p.name,
)
def test_schema_parses_as_draft202012(schema_path: Path) -> None:
    """Each schema loads as UTF-8 JSON, declares Draft 2020-12, and self-validates."""
    schema = json.loads(schema_path.read_text(encoding="utf-8"))

    assert schema.get("$schema") == EXPECTED_SCHEMA_URI, f"{schema_path.name}: wrong $schema"
    assert validator_for(schema) is Draft202012Validator
    Draft202012Validator.check_schema(schema)


def test_at_least_one_schema_exists() -> None:
    """Ensure specs/ directory contains at least one schema file."""
    assert discover_schema_files(), f"No *.schema.json files found in {SPECS_DIR}"
