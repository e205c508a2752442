"""MCP client side: server config, schema clean-up and tool discovery."""
from .config import McpServerConfig, parse_mcp_server_config, parse_mcp_servers
from .schema import (
    MAX_TOOL_NAME_LENGTH,
    make_tool_name,
    sanitize_parameters,
    sanitize_tool_name,
    truncate_tool_name,
)

__all__ = [
    # Bridge (lazy import to avoid circular deps with engine.config)
    "ExternalToolBridge",
    "McpServerStatus",
    # Config
    "McpServerConfig",
    "parse_mcp_server_config",
    "parse_mcp_servers",
    # Schema
    "MAX_TOOL_NAME_LENGTH",
    "make_tool_name",
    "sanitize_parameters",
    "sanitize_tool_name",
    "truncate_tool_name",
]


def __getattr__(name: str):
    if name == "ExternalToolBridge":
        from .bridge import ExternalToolBridge
        return ExternalToolBridge
    if name == "McpServerStatus":
        from .bridge import McpServerStatus
        return McpServerStatus
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
