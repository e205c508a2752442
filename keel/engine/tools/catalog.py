"""Registry of tools available to the model."""
from __future__ import annotations

import logging
from typing import Any

from ..errors import ToolNotFoundError
from .base import DeclarativeTool, ToolInvocation

logger = logging.getLogger(__name__)


class ToolCatalog:
    """Name-keyed tool registry. Re-registering a name overwrites it."""

    def __init__(self) -> None:
        self._tools: dict[str, DeclarativeTool] = {}

    def register(self, tool: DeclarativeTool) -> None:
        if tool.name in self._tools:
            logger.warning(
                "Tool with name \"%s\" is already registered. Overwriting.",
                tool.name,
            )
        self._tools[tool.name] = tool
        logger.debug("Registered tool %s", tool.name)

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def unregister_discovered(self) -> int:
        """Remove every tool that came from an MCP server."""
        discovered = [
            name for name, tool in self._tools.items()
            if getattr(tool, "server_name", None) is not None
        ]
        for name in discovered:
            del self._tools[name]
        if discovered:
            logger.info("Removed %d discovered tools", len(discovered))
        return len(discovered)

    def get(self, name: str) -> DeclarativeTool | None:
        return self._tools.get(name)

    def get_all(self) -> list[DeclarativeTool]:
        """All tools sorted by display name."""
        return sorted(self._tools.values(), key=lambda t: t.display_name)

    def get_by_server(self, server_name: str) -> list[DeclarativeTool]:
        """Tools discovered from one MCP server, sorted by name."""
        tools = [
            t for t in self._tools.values()
            if getattr(t, "server_name", None) == server_name
        ]
        return sorted(tools, key=lambda t: t.name)

    def get_function_declarations(self) -> list[dict[str, Any]]:
        return [tool.schema for tool in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def build(self, name: str, raw_params: Any) -> ToolInvocation:
        """Look up *name* and validate *raw_params* into an invocation.

        Raises ToolNotFoundError or ToolValidationError.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name, sorted(self._tools))
        return tool.build(raw_params)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
