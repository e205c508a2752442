"""Session-scoped approvals that bypass confirmation.

Holds three sets for the lifetime of one session:
- MCP server names ("always allow this server")
- MCP tool keys of the form ``server.tool``
- shell command prefixes (usually command roots such as ``git``)

Nothing is written to disk; a new session starts empty.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)


def mcp_tool_key(server_name: str, tool_name: str) -> str:
    return f"{server_name}.{tool_name}"


class SessionAllowlist:
    """In-memory allow decisions for one session."""

    def __init__(self) -> None:
        self._servers: set[str] = set()
        self._tools: set[str] = set()
        self._shell_prefixes: set[str] = set()

    @property
    def shell_prefixes(self) -> set[str]:
        return set(self._shell_prefixes)

    def allows_mcp(self, server_name: str, tool_name: str) -> bool:
        """True if the server or the specific ``server.tool`` is allowed."""
        return (
            server_name in self._servers
            or mcp_tool_key(server_name, tool_name) in self._tools
        )

    def add_server(self, server_name: str) -> None:
        if server_name not in self._servers:
            self._servers.add(server_name)
            logger.info("Session allowlist: server %s", server_name)

    def add_tool(self, server_name: str, tool_name: str) -> None:
        key = mcp_tool_key(server_name, tool_name)
        if key not in self._tools:
            self._tools.add(key)
            logger.info("Session allowlist: tool %s", key)

    def add_shell_prefixes(self, prefixes: Iterable[str]) -> None:
        added = [p for p in prefixes if p and p not in self._shell_prefixes]
        if added:
            self._shell_prefixes.update(added)
            logger.info("Session allowlist: commands %s", ", ".join(added))

    def clear(self) -> None:
        self._servers.clear()
        self._tools.clear()
        self._shell_prefixes.clear()
