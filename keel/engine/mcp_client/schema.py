"""Schema and name clean-up for tools discovered over MCP.

Function-calling APIs accept a narrower JSON Schema than MCP servers
publish, and restrict tool names to ``[A-Za-z0-9_.-]{1,63}``.
"""
from __future__ import annotations

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

MAX_TOOL_NAME_LENGTH = 63
_NAME_PREFIX_LENGTH = 28
_NAME_SUFFIX_LENGTH = 32
_NAME_MARKER = "___"
_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")

_DROPPED_KEYS = frozenset({"$schema", "additionalProperties", "$defs", "definitions"})
_ALLOWED_STRING_FORMATS = frozenset({"enum", "date-time"})
# Keywords whose value maps arbitrary names to sub-schemas.
_SCHEMA_MAPS = frozenset({"properties", "patternProperties"})


def sanitize_tool_name(name: str) -> str:
    return _INVALID_NAME_CHARS.sub("_", name)


def truncate_tool_name(name: str) -> str:
    """Shorten names over 63 chars to prefix + ``___`` + suffix."""
    if len(name) <= MAX_TOOL_NAME_LENGTH:
        return name
    return name[:_NAME_PREFIX_LENGTH] + _NAME_MARKER + name[-_NAME_SUFFIX_LENGTH:]


def make_tool_name(server_name: str, tool_name: str, *, namespaced: bool) -> str:
    """Model-facing name for a discovered tool."""
    name = f"{server_name}__{tool_name}" if namespaced else tool_name
    return truncate_tool_name(sanitize_tool_name(name))


# Upper bound on $ref expansions per schema; shared refs are inlined at
# every use site, so the expanded size is capped rather than the depth.
MAX_REF_EXPANSIONS = 1000


def _placeholder(ref: str, reason: str = "Recursive reference") -> dict[str, Any]:
    return {"type": "object", "description": f"{reason} to {ref} omitted."}


def _resolve_ref(root: dict[str, Any], ref: str) -> Any:
    """Resolve a local JSON pointer (``#/$defs/Node``) against *root*."""
    if not ref.startswith("#"):
        return None
    node: Any = root
    pointer = ref[1:].lstrip("/")
    if not pointer:
        return root
    for part in pointer.split("/"):
        part = part.replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return None
    return node


def _is_string_type(node: dict[str, Any]) -> bool:
    node_type = node.get("type")
    if isinstance(node_type, list):
        return any(str(t).lower() == "string" for t in node_type)
    return isinstance(node_type, str) and node_type.lower() == "string"


class _SchemaSanitizer:
    """One sanitize pass over a schema rooted at *root*."""

    def __init__(self, root: dict[str, Any], max_expansions: int) -> None:
        self.root = root
        self.expansions_left = max_expansions
        self._active: set[int] = set()

    def sanitize(self, node: Any, ref_path: frozenset[str] = frozenset()) -> Any:
        if isinstance(node, list):
            return [self.sanitize(item, ref_path) for item in node]
        if not isinstance(node, dict):
            return node

        if id(node) in self._active:
            return _placeholder("self")

        ref = node.get("$ref")
        if isinstance(ref, str):
            return self._expand(node, ref, ref_path)

        self._active.add(id(node))
        try:
            out: dict[str, Any] = {}
            for key, value in node.items():
                if key in _DROPPED_KEYS:
                    continue
                if key == "format" and _is_string_type(node) and value not in _ALLOWED_STRING_FORMATS:
                    continue
                if key in _SCHEMA_MAPS and isinstance(value, dict):
                    out[key] = {
                        name: self.sanitize(sub, ref_path)
                        for name, sub in value.items()
                    }
                else:
                    out[key] = self.sanitize(value, ref_path)
            return out
        finally:
            self._active.discard(id(node))

    def _expand(self, node: dict[str, Any], ref: str, ref_path: frozenset[str]) -> Any:
        if ref in ref_path:
            return _placeholder(ref)
        if self.expansions_left <= 0:
            return _placeholder(ref, "Reference")
        target = _resolve_ref(self.root, ref)
        if not isinstance(target, dict):
            logger.debug("Unresolvable schema $ref %s replaced", ref)
            return _placeholder(ref)
        self.expansions_left -= 1
        if self.expansions_left == 0:
            logger.warning("Schema $ref expansion limit reached; remaining refs omitted")
        merged = {**target, **{k: v for k, v in node.items() if k != "$ref"}}
        self._active.add(id(node))
        try:
            return self.sanitize(merged, ref_path | {ref})
        finally:
            self._active.discard(id(node))


def sanitize_parameters(
    schema: Any, *, max_ref_expansions: int = MAX_REF_EXPANSIONS,
) -> dict[str, Any]:
    """Return a cleaned copy of *schema* fit for a function declaration.

    Drops ``$schema``, ``additionalProperties`` and string formats other
    than ``enum`` / ``date-time``; inlines local ``$ref``s. A reference
    back into its own expansion, or a dict that contains itself, becomes
    a plain object placeholder, so cyclic schemas always terminate.
    After *max_ref_expansions* inlined refs, any further ref is also
    replaced by a placeholder, so shared refs cannot blow up the output.
    The input is never mutated.
    """
    if not isinstance(schema, dict):
        return {"type": "object", "properties": {}}
    cleaned = _SchemaSanitizer(schema, max_ref_expansions).sanitize(schema)
    if "type" not in cleaned:
        cleaned["type"] = "object"
    return cleaned
