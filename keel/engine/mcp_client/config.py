"""MCP server configuration.

Three transport types:
- stdio: command + args + env + cwd (local subprocess)
- sse: url + headers (Server-Sent Events)
- http: url + headers (streamable HTTP)

Config format (the ``mcp_servers`` / ``mcpServers`` map):
{
    "filesystem": {
        "command": "npx",
        "args": ["-y", "@modelcontextprotocol/server-filesystem"],
        "timeout": 30,
        "trust": false
    },
    "search": {
        "url": "http://localhost:8080/sse",
        "headers": {"Authorization": "Bearer ..."}
    }
}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

TRANSPORT_TYPES = ("stdio", "sse", "http")


@dataclass
class McpServerConfig:
    """A single MCP server entry."""

    name: str
    type: str = "stdio"

    # stdio fields
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] | None = None
    cwd: str | None = None

    # sse / http fields
    url: str | None = None
    headers: dict[str, str] | None = None

    # Seconds; None means the bridge default
    timeout: float | None = None
    # Trusted servers skip confirmation for every tool they expose
    trust: bool = False
    # Optional per-server tool filters
    include_tools: list[str] | None = None
    exclude_tools: list[str] | None = None


def parse_mcp_server_config(name: str, cfg: dict[str, Any]) -> McpServerConfig | None:
    """Parse a single server entry.

    The transport is taken from ``type`` when given, otherwise inferred:
    ``command`` means stdio, ``httpUrl`` means http, ``url`` means sse.
    Returns None if required fields are missing.
    """
    if not isinstance(cfg, dict):
        logger.warning("MCP server '%s' config is not a mapping, skipping", name)
        return None

    url = cfg.get("url")
    server_type = cfg.get("type")
    if server_type is None:
        if cfg.get("command"):
            server_type = "stdio"
        elif cfg.get("httpUrl"):
            server_type = "http"
            url = cfg.get("httpUrl")
        else:
            server_type = "sse"

    if server_type not in TRANSPORT_TYPES:
        logger.warning(
            "MCP server '%s' has unknown type '%s', skipping", name, server_type,
        )
        return None
    if server_type == "stdio" and not cfg.get("command"):
        logger.warning("stdio MCP server '%s' missing 'command', skipping", name)
        return None
    if server_type in ("sse", "http") and not url:
        logger.warning("%s MCP server '%s' missing 'url', skipping", server_type, name)
        return None

    timeout = cfg.get("timeout")
    return McpServerConfig(
        name=name,
        type=server_type,
        command=cfg.get("command"),
        args=[str(a) for a in cfg.get("args", [])],
        env=cfg.get("env"),
        cwd=cfg.get("cwd"),
        url=url,
        headers=cfg.get("headers"),
        timeout=float(timeout) if timeout is not None else None,
        trust=bool(cfg.get("trust", False)),
        include_tools=cfg.get("includeTools", cfg.get("include_tools")),
        exclude_tools=cfg.get("excludeTools", cfg.get("exclude_tools")),
    )


def parse_mcp_servers(raw: dict[str, Any] | None) -> dict[str, McpServerConfig]:
    """Parse a whole server map, dropping invalid entries."""
    servers: dict[str, McpServerConfig] = {}
    for name, cfg in (raw or {}).items():
        parsed = parse_mcp_server_config(name, cfg)
        if parsed:
            servers[name] = parsed
    if servers:
        logger.info("MCP servers configured: [%s]", ", ".join(servers))
    return servers
