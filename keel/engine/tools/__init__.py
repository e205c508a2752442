"""Built-in tools and the catalog they register into."""
from __future__ import annotations

import logging

from ..config import EngineConfig
from ..edit_reconciler import EditReconciler
from ..process_runner import ProcessRunner
from .base import DeclarativeTool, ToolDeclaration, ToolInvocation, UpdateOutput
from .catalog import ToolCatalog
from .edit import EDIT_TOOL_NAME, EditTool
from .mcp_tool import McpTool
from .shell import SHELL_TOOL_NAME, ShellTool
from .web_fetch import WEB_FETCH_TOOL_NAME, WebFetchTool

logger = logging.getLogger(__name__)


def is_tool_enabled(tool: DeclarativeTool, config: EngineConfig) -> bool:
    """Apply ``core_tools`` / ``exclude_tools`` to a built-in tool.

    An empty ``core_tools`` enables everything; entries may name the
    tool or its class, optionally with a ``(prefix)`` suffix.
    """
    names = (tool.name, type(tool).__name__)
    if any(name in config.exclude_tools for name in names):
        return False
    if not config.core_tools:
        return True
    return any(
        entry in names or any(entry.startswith(f"{name}(") for name in names)
        for entry in config.core_tools
    )


def create_default_catalog(
    config: EngineConfig,
    *,
    runner: ProcessRunner | None = None,
    reconciler: EditReconciler | None = None,
) -> ToolCatalog:
    """Catalog with every enabled built-in tool registered."""
    catalog = ToolCatalog()
    for tool in (
        EditTool(config, reconciler),
        WebFetchTool(),
        ShellTool(config, runner),
    ):
        if is_tool_enabled(tool, config):
            catalog.register(tool)
        else:
            logger.info("Tool %s disabled by configuration", tool.name)
    return catalog


__all__ = [
    "DeclarativeTool",
    "ToolDeclaration",
    "ToolInvocation",
    "UpdateOutput",
    "ToolCatalog",
    "EditTool",
    "McpTool",
    "ShellTool",
    "WebFetchTool",
    "EDIT_TOOL_NAME",
    "SHELL_TOOL_NAME",
    "WEB_FETCH_TOOL_NAME",
    "create_default_catalog",
    "is_tool_enabled",
]
