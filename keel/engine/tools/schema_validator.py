"""Validation of tool parameters against a JSON Schema subset.

Supported keywords: type (object, string, number, integer, boolean,
array, null; a list of types is allowed), properties, required, enum,
items, minimum, maximum, minLength, maxLength, minItems, maxItems,
nullable. Type names are case-insensitive so upper-case function
declaration schemas work too. Unknown keywords are ignored.
"""
from __future__ import annotations

from typing import Any

_TYPE_CHECKS = {
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "string": lambda v: isinstance(v, str),
    "boolean": lambda v: isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "null": lambda v: v is None,
}


def validate(schema: dict[str, Any] | None, data: Any, path: str = "params") -> str | None:
    """Return an error message, or None when *data* conforms."""
    if not schema:
        return None

    if data is None and schema.get("nullable"):
        return None

    types = schema.get("type")
    if types is not None:
        type_list = types if isinstance(types, list) else [types]
        type_list = [str(t).lower() for t in type_list]
        if not any(_TYPE_CHECKS.get(t, lambda v: True)(data) for t in type_list):
            return f"{path} must be {' or '.join(type_list)}"

    if "enum" in schema and data not in schema["enum"]:
        allowed = ", ".join(repr(v) for v in schema["enum"])
        return f"{path} must be one of: {allowed}"

    if isinstance(data, dict):
        for name in schema.get("required", []) or []:
            if name not in data:
                return f"{path} must have required property '{name}'"
        properties = schema.get("properties") or {}
        for name, sub_schema in properties.items():
            if name in data and isinstance(sub_schema, dict):
                error = validate(sub_schema, data[name], f"{path}.{name}")
                if error:
                    return error

    if isinstance(data, list):
        if "minItems" in schema and len(data) < schema["minItems"]:
            return f"{path} must have at least {schema['minItems']} items"
        if "maxItems" in schema and len(data) > schema["maxItems"]:
            return f"{path} must have at most {schema['maxItems']} items"
        items = schema.get("items")
        if isinstance(items, dict):
            for i, item in enumerate(data):
                error = validate(items, item, f"{path}[{i}]")
                if error:
                    return error

    if isinstance(data, str):
        if "minLength" in schema and len(data) < schema["minLength"]:
            return f"{path} must be at least {schema['minLength']} characters"
        if "maxLength" in schema and len(data) > schema["maxLength"]:
            return f"{path} must be at most {schema['maxLength']} characters"

    if isinstance(data, (int, float)) and not isinstance(data, bool):
        if "minimum" in schema and data < schema["minimum"]:
            return f"{path} must be >= {schema['minimum']}"
        if "maximum" in schema and data > schema["maximum"]:
            return f"{path} must be <= {schema['maximum']}"

    return None
