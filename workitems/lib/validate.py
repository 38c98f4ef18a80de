"""
Schema validation for work item data.

Every document that crosses a boundary (workflow.yaml, Verification
section content, imported work trees) is checked against a JSON Schema
shipped in workitems/schemas/.
"""

import json
from pathlib import Path
from typing import Any

import jsonschema
from jsonschema.exceptions import best_match

from workitems.lib.errors import WorkItemsError

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"


class ValidationError(WorkItemsError):
    """Document does not match its schema."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.message = message
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


# Compiled validators by schema name
_validators: dict[str, jsonschema.Draft7Validator] = {}


def _validator(schema_name: str) -> jsonschema.Draft7Validator:
    if schema_name not in _validators:
        schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise ValidationError(schema_name, f"Schema file not found: {schema_path}")
        schema = json.loads(schema_path.read_text())
        _validators[schema_name] = jsonschema.Draft7Validator(schema)
    return _validators[schema_name]


def validate(data: Any, schema_name: str) -> None:
    """
    Validate data against a named schema.

    When several parts of the document are wrong, the most relevant
    error is reported.

    Args:
        data: Parsed document
        schema_name: "workflow", "verification" or "work_tree"

    Raises:
        ValidationError: If validation fails
    """
    error = best_match(_validator(schema_name).iter_errors(data))
    if error is None:
        return
    path = ".".join(str(p) for p in error.absolute_path) or "(root)"
    raise ValidationError(schema_name, error.message, path)


def validate_json(raw: str, schema_name: str) -> Any:
    """Parse a JSON string and validate it.

    Returns:
        The parsed document

    Raises:
        ValidationError: If the string is not JSON or doesn't match schema
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(schema_name, f"Invalid JSON: {e}") from None
    validate(data, schema_name)
    return data
