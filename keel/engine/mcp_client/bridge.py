"""ExternalToolBridge: discover MCP server tools into a ToolCatalog.

Each server connection lives in its own task that owns the transport
and ``ClientSession`` contexts, so sessions stay open after discovery
returns and are torn down from the same task that opened them.
"""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from ..errors import McpDiscoveryError
from ..tools.catalog import ToolCatalog
from ..tools.mcp_tool import McpTool
from .config import McpServerConfig
from .schema import make_tool_name, sanitize_parameters

logger = logging.getLogger(__name__)

DEFAULT_MCP_TIMEOUT_SECONDS = 600.0
CLOSE_TIMEOUT_SECONDS = 5.0


class McpServerStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class _McpServerConnection:
    """One live session, held open by a background task."""

    def __init__(self, config: McpServerConfig, timeout: float) -> None:
        self.config = config
        self.timeout = timeout
        self.session: ClientSession | None = None
        self._ready: asyncio.Future[ClientSession] | None = None
        self._closing = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def _transport(self) -> Any:
        cfg = self.config
        if cfg.type == "stdio":
            params = StdioServerParameters(
                command=cfg.command or "",
                args=list(cfg.args),
                env={**os.environ, **(cfg.env or {})},
                cwd=cfg.cwd,
            )
            return stdio_client(params)
        if cfg.type == "http":
            return streamablehttp_client(cfg.url or "", headers=cfg.headers)
        return sse_client(cfg.url or "", headers=cfg.headers)

    async def start(self) -> ClientSession:
        self._ready = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(
            self._run(), name=f"mcp-server-{self.config.name}",
        )
        try:
            return await asyncio.wait_for(asyncio.shield(self._ready), self.timeout)
        except asyncio.TimeoutError:
            await self._cancel()
            raise McpDiscoveryError(
                self.config.name, f"connection timed out after {self.timeout}s",
            ) from None
        except McpDiscoveryError:
            await self.close()
            raise

    async def _run(self) -> None:
        assert self._ready is not None
        try:
            async with AsyncExitStack() as stack:
                streams = await stack.enter_async_context(self._transport())
                # streamable HTTP also yields a session-id getter
                read, write = streams[0], streams[1]
                session = await stack.enter_async_context(ClientSession(read, write))
                await session.initialize()
                self.session = session
                if not self._ready.done():
                    self._ready.set_result(session)
                await self._closing.wait()
        except Exception as exc:
            if not self._ready.done():
                self._ready.set_exception(McpDiscoveryError(self.config.name, str(exc)))
            else:
                logger.warning("MCP server '%s' connection ended: %s", self.config.name, exc)
        finally:
            self.session = None
            if not self._ready.done():
                self._ready.set_exception(
                    McpDiscoveryError(self.config.name, "connection closed before initialization")
                )

    async def close(self) -> None:
        self._closing.set()
        task = self._task
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), CLOSE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("MCP server '%s' did not close in time, cancelling", self.config.name)
            await self._cancel()

    async def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        if self._ready is not None and self._ready.done() and not self._ready.cancelled():
            # Mark any late failure as retrieved.
            self._ready.exception()


class ExternalToolBridge:
    """Connects to configured MCP servers and registers their tools.

    Names are prefixed ``server__tool`` when more than one server is
    configured, sanitized to ``[A-Za-z0-9_.-]`` and truncated to 63
    characters. A failing server is logged and skipped; it never stops
    discovery of the others.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        default_timeout: float = DEFAULT_MCP_TIMEOUT_SECONDS,
    ) -> None:
        self.catalog = catalog
        self.default_timeout = default_timeout
        self._connections: dict[str, _McpServerConnection] = {}
        self._status: dict[str, McpServerStatus] = {}

    @property
    def statuses(self) -> dict[str, McpServerStatus]:
        return dict(self._status)

    def get_status(self, server_name: str) -> McpServerStatus:
        return self._status.get(server_name, McpServerStatus.DISCONNECTED)

    async def discover(self, servers: dict[str, McpServerConfig]) -> dict[str, list[str]]:
        """Discover every server concurrently.

        Returns the registered tool names per server that produced tools.
        Re-discovery drops previously discovered tools and sessions first.
        """
        if self._connections:
            await self.aclose()
        self.catalog.unregister_discovered()

        namespaced = len(servers) > 1
        configs = list(servers.values())
        for cfg in configs:
            self._status[cfg.name] = McpServerStatus.CONNECTING
        results = await asyncio.gather(
            *(self._discover_server(cfg, namespaced) for cfg in configs),
            return_exceptions=True,
        )

        discovered: dict[str, list[str]] = {}
        for cfg, result in zip(configs, results):
            if isinstance(result, BaseException):
                self._status[cfg.name] = McpServerStatus.DISCONNECTED
                logger.warning("Skipping MCP server %s: %s", cfg.name, result)
                continue
            if result:
                discovered[cfg.name] = result
        logger.info(
            "MCP discovery finished: %d tools from %d/%d servers",
            sum(len(v) for v in discovered.values()), len(discovered), len(configs),
        )
        return discovered

    async def _discover_server(
        self, cfg: McpServerConfig, namespaced: bool,
    ) -> list[str]:
        timeout = cfg.timeout or self.default_timeout
        logger.info("Connecting to MCP server '%s' (%s)", cfg.name, cfg.type)
        connection = _McpServerConnection(cfg, timeout)
        session = await connection.start()

        try:
            listed = await asyncio.wait_for(session.list_tools(), timeout)
        except Exception as exc:
            await connection.close()
            reason = "listing tools timed out" if isinstance(exc, asyncio.TimeoutError) else str(exc)
            raise McpDiscoveryError(cfg.name, reason) from exc

        tools: list[McpTool] = []
        for remote in listed.tools:
            if cfg.include_tools and remote.name not in cfg.include_tools:
                continue
            if cfg.exclude_tools and remote.name in cfg.exclude_tools:
                continue
            tools.append(McpTool(
                session,
                server_name=cfg.name,
                server_tool_name=remote.name,
                name=make_tool_name(cfg.name, remote.name, namespaced=namespaced),
                description=remote.description or "",
                parameter_schema=sanitize_parameters(remote.inputSchema),
                timeout=timeout,
                trust=cfg.trust,
            ))

        if not tools:
            logger.info("MCP server '%s' exposes no usable tools, closing", cfg.name)
            await connection.close()
            self._status[cfg.name] = McpServerStatus.DISCONNECTED
            return []

        for tool in tools:
            self.catalog.register(tool)
        self._connections[cfg.name] = connection
        self._status[cfg.name] = McpServerStatus.CONNECTED
        logger.info(
            "MCP server '%s' connected with %d tools", cfg.name, len(tools),
        )
        return [tool.name for tool in tools]

    async def aclose(self) -> None:
        """Close every open session. Discovered tools stay registered
        but will fail when called; call discover() again to refresh."""
        connections = list(self._connections.values())
        self._connections.clear()
        await asyncio.gather(
            *(conn.close() for conn in connections), return_exceptions=True,
        )
        for conn in connections:
            self._status[conn.config.name] = McpServerStatus.DISCONNECTED
        if connections:
            logger.info("Closed %d MCP server connections", len(connections))
