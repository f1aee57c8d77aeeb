"""
JSON Schema checks for initflow documents.

Every workflow schema and every state.yaml passes through here on its way in
or out. The JSON Schemas themselves are bundled in initflow/schemas/ as
<name>.schema.json.
"""

import json
from pathlib import Path

from jsonschema.exceptions import best_match
from jsonschema.protocols import Validator
from jsonschema.validators import validator_for


class ValidationError(Exception):
    """A document does not match its JSON Schema, or cannot be parsed."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.path = path
        location = f" at {path}" if path else ""
        super().__init__(f"[{schema_name}] {message}{location}")


_validators: dict[str, Validator] = {}


def get_schemas_dir() -> Path:
    """Directory of the schemas shipped inside the package."""
    return Path(__file__).parent.parent / "schemas"


def _get_validator(schema_name: str) -> Validator:
    validator = _validators.get(schema_name)
    if validator is not None:
        return validator

    schema_file = get_schemas_dir() / f"{schema_name}.schema.json"
    try:
        schema = json.loads(schema_file.read_text())
    except FileNotFoundError:
        raise ValidationError(schema_name, f"No bundled JSON Schema at {schema_file}") from None

    validator_cls = validator_for(schema)
    validator = validator_cls(schema)
    _validators[schema_name] = validator
    return validator


def validate(data: dict, schema_name: str) -> None:
    """Check data against a bundled schema ("workflow", "initiative_state").

    Only the most relevant failure is reported.

    Raises:
        ValidationError: If data does not conform
    """
    error = best_match(_get_validator(schema_name).iter_errors(data))
    if error is None:
        return

    location = "(root)"
    if error.absolute_path:
        location = ".".join(str(part) for part in error.absolute_path)
    raise ValidationError(schema_name, error.message, location)


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """Guard for writers: invalid data never reaches disk.

    Raises:
        ValidationError: Naming the file that was about to be written
    """
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(schema_name, f"Not writing {filepath}: {e}") from None
