"""
JSON Schema checks for everything phaseflow persists.

The ledger, each history line and every metrics file have a bundled
draft 2020-12 schema under phaseflow/schemas/. Validators are compiled
once per schema and reused; the error reported is the most relevant one
jsonschema finds, with its location in the document.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"


class SchemaValidationError(Exception):
    """A document did not match its schema (or could not be checked at all)."""

    def __init__(self, schema_name: str, message: str, path: str | None = None):
        self.schema_name = schema_name
        self.path = path
        where = f" at {path}" if path else ""
        super().__init__(f"[{schema_name}] {message}{where}")


@lru_cache(maxsize=None)
def _validator(schema_name: str) -> Draft202012Validator:
    schema_file = SCHEMAS_DIR / f"{schema_name}.schema.json"
    try:
        schema = json.loads(schema_file.read_text())
    except FileNotFoundError:
        raise SchemaValidationError(schema_name, f"No schema at {schema_file}") from None
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def _location(error) -> str:
    if not error.absolute_path:
        return "(root)"
    return ".".join(str(part) for part in error.absolute_path)


def validate(data: Any, schema_name: str) -> None:
    """Raise SchemaValidationError unless data matches schema_name."""
    error = best_match(_validator(schema_name).iter_errors(data))
    if error is not None:
        raise SchemaValidationError(schema_name, error.message, _location(error))


def validate_file(filepath: Path, schema_name: str) -> Any:
    """
    Read a JSON file and check it.

    Returns:
        The decoded document.

    Raises:
        SchemaValidationError: missing file, bad JSON, or schema mismatch
    """
    try:
        data = json.loads(filepath.read_text())
    except FileNotFoundError:
        raise SchemaValidationError(schema_name, f"File not found: {filepath}") from None
    except json.JSONDecodeError as e:
        raise SchemaValidationError(schema_name, f"{filepath} is not JSON ({e})") from None

    validate(data, schema_name)
    return data


def validate_before_write(data: Any, schema_name: str, filepath: Path) -> None:
    """Guard for writers: nothing that fails its schema reaches disk."""
    try:
        validate(data, schema_name)
    except SchemaValidationError as e:
        raise SchemaValidationError(
            schema_name, f"not writing {filepath.name}: {e}", e.path
        ) from None
