"""JSON Schema validation utilities."""

import copy
from typing import Any

from jsonschema import Draft7Validator


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Args:
        data: The data to validate
        schema: JSON Schema to validate against

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages


def apply_defaults(data: Any, schema: dict[str, Any]) -> Any:
    """
    Return a copy of ``data`` with schema ``default`` values filled in.

    Descends into object properties and array items. Values the caller
    supplied are never replaced.
    """
    if not schema:
        return data

    result = copy.deepcopy(data)

    if schema.get("type") == "object" and isinstance(result, dict):
        for name, prop_schema in schema.get("properties", {}).items():
            if name not in result and "default" in prop_schema:
                result[name] = copy.deepcopy(prop_schema["default"])
            if name in result:
                result[name] = apply_defaults(result[name], prop_schema)

    elif schema.get("type") == "array" and isinstance(result, list):
        item_schema = schema.get("items")
        if isinstance(item_schema, dict):
            result = [apply_defaults(item, item_schema) for item in result]

    return result
