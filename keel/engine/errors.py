"""Exception hierarchy for the tool execution engine.

Only validation, lookup and permission problems are raised across the
tool boundary. Process failures and file-system errors are reported in
ToolResult instead.
"""
from __future__ import annotations


class KeelError(Exception):
    """Base exception for all engine errors."""


class ToolValidationError(KeelError):
    """Parameters for a tool call failed validation."""
    def __init__(self, tool_name: str, reason: str):
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"Invalid parameters for {tool_name}: {reason}")


class ToolNotFoundError(KeelError):
    """No tool with the requested name is registered."""
    def __init__(self, tool_name: str, available: list[str] | None = None):
        self.tool_name = tool_name
        self.available = available or []
        super().__init__(f"Tool \"{tool_name}\" not found in registry.")


class PermissionDeniedError(KeelError):
    """A command or tool call was refused by policy.

    ``hard`` denials can never be overridden by a confirmation.
    """
    def __init__(self, reason: str, *, hard: bool, commands: list[str] | None = None):
        self.reason = reason
        self.hard = hard
        self.commands = commands or []
        super().__init__(reason)


class AnalysisFailure(KeelError):
    """The model-assisted repair step failed or returned unusable output."""
    def __init__(self, stage: str, reason: str):
        self.stage = stage
        self.reason = reason
        super().__init__(f"Edit analysis failed during {stage}: {reason}")


class McpDiscoveryError(KeelError):
    """Connecting to or listing tools from an MCP server failed."""
    def __init__(self, server_name: str, reason: str):
        self.server_name = server_name
        self.reason = reason
        super().__init__(
            f"Failed to discover tools from MCP server '{server_name}': {reason}"
        )
