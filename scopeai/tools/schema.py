"""Validation of tool arguments against their JSON schema.

Covers the subset tool definitions use: ``type``, ``required``,
``properties``, ``enum``, ``items``, ``additionalProperties: false`` and
``minimum``/``maximum``.
"""

from __future__ import annotations

from typing import Any

_TYPE_CHECKS: dict[str, Any] = {
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "null": lambda v: v is None,
}


def validate_arguments(schema: dict[str, Any], value: Any, path: str = "") -> list[str]:
    """Return a list of human-readable violations; empty means valid."""
    errors: list[str] = []
    where = path or "arguments"

    expected = schema.get("type")
    if expected is not None:
        types = expected if isinstance(expected, list) else [expected]
        if not any(_TYPE_CHECKS.get(t, lambda v: True)(value) for t in types):
            errors.append(f"{where}: expected {' or '.join(types)}, got {type(value).__name__}")
            return errors

    if "enum" in schema and value not in schema["enum"]:
        errors.append(f"{where}: {value!r} is not one of {schema['enum']}")

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if "minimum" in schema and value < schema["minimum"]:
            errors.append(f"{where}: {value} is less than minimum {schema['minimum']}")
        if "maximum" in schema and value > schema["maximum"]:
            errors.append(f"{where}: {value} is greater than maximum {schema['maximum']}")

    if isinstance(value, dict):
        properties: dict[str, Any] = schema.get("properties", {})
        for req in schema.get("required", []):
            if req not in value:
                errors.append(f"Missing required parameter: {_join(path, req)}")
        for key, sub in value.items():
            if key in properties:
                errors.extend(validate_arguments(properties[key], sub, _join(path, key)))
            elif schema.get("additionalProperties") is False:
                errors.append(f"Unexpected parameter: {_join(path, key)}")

    if isinstance(value, list) and isinstance(schema.get("items"), dict):
        for i, item in enumerate(value):
            errors.extend(validate_arguments(schema["items"], item, f"{where}[{i}]"))

    return errors


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key
