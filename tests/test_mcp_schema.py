from __future__ import annotations

import copy
import time

from keel.engine.mcp_client.schema import (
    MAX_TOOL_NAME_LENGTH,
    make_tool_name,
    sanitize_parameters,
    sanitize_tool_name,
    truncate_tool_name,
)


def test_sanitize_tool_name_replaces_invalid_chars() -> None:
    assert sanitize_tool_name("my tool/v2:run") == "my_tool_v2_run"
    assert sanitize_tool_name("ok-name_1.2") == "ok-name_1.2"


def test_short_names_are_not_truncated() -> None:
    name = "a" * MAX_TOOL_NAME_LENGTH
    assert truncate_tool_name(name) == name


def test_long_names_keep_prefix_and_suffix() -> None:
    name = "p" * 40 + "s" * 40
    truncated = truncate_tool_name(name)
    assert len(truncated) == MAX_TOOL_NAME_LENGTH
    assert truncated == "p" * 28 + "___" + "s" * 32


def test_make_tool_name_namespaces_when_asked() -> None:
    assert make_tool_name("git hub", "create issue", namespaced=True) == "git_hub__create_issue"
    assert make_tool_name("github", "create_issue", namespaced=False) == "create_issue"
    assert len(make_tool_name("s" * 50, "t" * 50, namespaced=True)) == MAX_TOOL_NAME_LENGTH


def test_drops_unsupported_keywords() -> None:
    schema = {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "when": {"type": "string", "format": "date-time"},
            "email": {"type": "string", "format": "email"},
            "count": {"type": "integer", "format": "int32"},
        },
    }
    cleaned = sanitize_parameters(schema)
    assert "$schema" not in cleaned
    assert "additionalProperties" not in cleaned
    assert cleaned["properties"]["when"]["format"] == "date-time"
    assert "format" not in cleaned["properties"]["email"]
    assert cleaned["properties"]["count"]["format"] == "int32"


def test_property_names_matching_keywords_survive() -> None:
    schema = {
        "type": "object",
        "properties": {"format": {"type": "string"}, "$schema": {"type": "string"}},
    }
    cleaned = sanitize_parameters(schema)
    assert set(cleaned["properties"]) == {"format", "$schema"}


def test_input_is_not_mutated() -> None:
    schema = {
        "type": "object",
        "additionalProperties": False,
        "properties": {"a": {"$ref": "#/$defs/A"}},
        "$defs": {"A": {"type": "string", "format": "uri"}},
    }
    original = copy.deepcopy(schema)
    sanitize_parameters(schema)
    assert schema == original


def test_local_refs_are_inlined() -> None:
    schema = {
        "type": "object",
        "properties": {"point": {"$ref": "#/definitions/Point", "description": "Where"}},
        "definitions": {
            "Point": {
                "type": "object",
                "properties": {"x": {"type": "number"}, "y": {"type": "number"}},
            },
        },
    }
    cleaned = sanitize_parameters(schema)
    assert "definitions" not in cleaned
    point = cleaned["properties"]["point"]
    assert point["type"] == "object"
    assert point["description"] == "Where"
    assert set(point["properties"]) == {"x", "y"}


def test_recursive_ref_terminates_with_placeholder() -> None:
    schema = {
        "type": "object",
        "properties": {"root": {"$ref": "#/$defs/Node"}},
        "$defs": {
            "Node": {
                "type": "object",
                "properties": {
                    "value": {"type": "string"},
                    "children": {"type": "array", "items": {"$ref": "#/$defs/Node"}},
                },
            },
        },
    }
    cleaned = sanitize_parameters(schema)
    node = cleaned["properties"]["root"]
    assert node["properties"]["value"] == {"type": "string"}
    placeholder = node["properties"]["children"]["items"]
    assert placeholder["type"] == "object"
    assert "$ref" not in placeholder


def test_self_containing_dict_terminates() -> None:
    node: dict = {"type": "object", "properties": {}}
    node["properties"]["self"] = node
    cleaned = sanitize_parameters(node)
    assert cleaned["properties"]["self"]["type"] == "object"
    assert "properties" not in cleaned["properties"]["self"]


def test_unresolvable_ref_becomes_placeholder() -> None:
    cleaned = sanitize_parameters({
        "type": "object",
        "properties": {"x": {"$ref": "https://example.com/schema.json"}},
    })
    assert cleaned["properties"]["x"]["type"] == "object"


def test_non_dict_schema_defaults_to_empty_object() -> None:
    assert sanitize_parameters(None) == {"type": "object", "properties": {}}


def _count_refs_kept(node) -> int:
    if isinstance(node, dict):
        kept = 1 if node.get("description", "").startswith("Reference to") else 0
        return kept + sum(_count_refs_kept(v) for v in node.values())
    if isinstance(node, list):
        return sum(_count_refs_kept(v) for v in node)
    return 0


def test_shared_refs_expansion_is_bounded() -> None:
    depth = 22
    defs = {
        f"L{i}": {
            "type": "object",
            "properties": {
                "a": {"$ref": f"#/$defs/L{i + 1}"},
                "b": {"$ref": f"#/$defs/L{i + 1}"},
            },
        }
        for i in range(depth)
    }
    defs[f"L{depth}"] = {"type": "string"}
    schema = {"type": "object", "properties": {"root": {"$ref": "#/$defs/L0"}}, "$defs": defs}

    start = time.monotonic()
    cleaned = sanitize_parameters(schema)
    assert time.monotonic() - start < 2

    root = cleaned["properties"]["root"]
    assert root["properties"]["a"]["type"] == "object"
    assert _count_refs_kept(cleaned) > 0


def test_shared_refs_within_budget_are_fully_inlined() -> None:
    schema = {
        "type": "object",
        "properties": {"src": {"$ref": "#/$defs/P"}, "dst": {"$ref": "#/$defs/P"}},
        "$defs": {"P": {"type": "object", "properties": {"x": {"type": "number"}}}},
    }
    cleaned = sanitize_parameters(schema)
    assert cleaned["properties"]["src"] == cleaned["properties"]["dst"]
    assert cleaned["properties"]["src"]["properties"]["x"] == {"type": "number"}
