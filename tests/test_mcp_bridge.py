from __future__ import annotations

import asyncio
import sys
import textwrap

import pytest

from keel.engine.mcp_client.bridge import ExternalToolBridge, McpServerStatus
from keel.engine.mcp_client.config import McpServerConfig, parse_mcp_servers
from keel.engine.tools.catalog import ToolCatalog

SERVER_SCRIPT = textwrap.dedent('''
    from mcp.server.fastmcp import FastMCP

    mcp = FastMCP("demo")


    @mcp.tool()
    def add(a: int, b: int) -> int:
        """Add two numbers."""
        return a + b


    @mcp.tool()
    def fail(reason: str) -> str:
        """Always fails."""
        raise ValueError(reason)


    if __name__ == "__main__":
        mcp.run()
''')

EMPTY_SERVER_SCRIPT = textwrap.dedent('''
    from mcp.server.fastmcp import FastMCP

    if __name__ == "__main__":
        FastMCP("empty").run()
''')


@pytest.fixture
def server_script(tmp_path) -> str:
    path = tmp_path / "demo_server.py"
    path.write_text(SERVER_SCRIPT)
    return str(path)


def _stdio(name: str, script: str, **kwargs) -> McpServerConfig:
    return McpServerConfig(name=name, command=sys.executable, args=[script], timeout=30, **kwargs)


def test_parse_mcp_servers_infers_transport() -> None:
    servers = parse_mcp_servers({
        "local": {"command": "npx", "args": ["-y", "server"], "timeout": 30, "trust": True},
        "remote": {"url": "http://localhost:8080/sse"},
        "streaming": {"httpUrl": "http://localhost:8080/mcp"},
        "broken": {"args": ["x"]},
    })
    assert set(servers) == {"local", "remote", "streaming"}
    assert servers["local"].type == "stdio"
    assert servers["local"].trust
    assert servers["local"].timeout == 30.0
    assert servers["remote"].type == "sse"
    assert servers["streaming"].type == "http"
    assert servers["streaming"].url == "http://localhost:8080/mcp"


@pytest.mark.asyncio
async def test_discovers_and_calls_tools(server_script) -> None:
    catalog = ToolCatalog()
    bridge = ExternalToolBridge(catalog)
    try:
        discovered = await bridge.discover({"demo": _stdio("demo", server_script)})
        assert sorted(discovered["demo"]) == ["add", "fail"]
        assert bridge.get_status("demo") == McpServerStatus.CONNECTED

        tool = catalog.get("add")
        assert tool.display_name == "add (demo MCP Server)"
        assert tool.schema["parameters"]["required"] == ["a", "b"]

        result = await catalog.build("add", {"a": 2, "b": 3}).execute(asyncio.Event())
        assert result.ok
        assert result.llm_content == "5"

        failed = await catalog.build("fail", {"reason": "nope"}).execute(asyncio.Event())
        assert failed.error is not None
        assert "nope" in failed.llm_content
    finally:
        await bridge.aclose()
    assert bridge.get_status("demo") == McpServerStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_multiple_servers_are_namespaced(server_script) -> None:
    catalog = ToolCatalog()
    bridge = ExternalToolBridge(catalog)
    try:
        await bridge.discover({
            "one": _stdio("one", server_script),
            "two": _stdio("two", server_script),
        })
        assert sorted(catalog.names()) == ["one__add", "one__fail", "two__add", "two__fail"]
        assert [t.name for t in catalog.get_by_server("two")] == ["two__add", "two__fail"]
    finally:
        await bridge.aclose()


@pytest.mark.asyncio
async def test_tool_filters_and_trust(server_script) -> None:
    catalog = ToolCatalog()
    bridge = ExternalToolBridge(catalog)
    try:
        await bridge.discover({
            "demo": _stdio("demo", server_script, exclude_tools=["fail"], trust=True),
        })
        assert catalog.names() == ["add"]
        assert catalog.build("add", {"a": 1, "b": 1}).trusted
    finally:
        await bridge.aclose()


@pytest.mark.asyncio
async def test_failing_server_does_not_block_others(server_script, tmp_path) -> None:
    catalog = ToolCatalog()
    bridge = ExternalToolBridge(catalog)
    try:
        discovered = await bridge.discover({
            "good": _stdio("good", server_script),
            "bad": McpServerConfig(
                name="bad", command=str(tmp_path / "does-not-exist"), timeout=10,
            ),
        })
        assert list(discovered) == ["good"]
        assert bridge.get_status("bad") == McpServerStatus.DISCONNECTED
        assert "good__add" in catalog
    finally:
        await bridge.aclose()


@pytest.mark.asyncio
async def test_server_without_tools_is_closed(tmp_path) -> None:
    script = tmp_path / "empty_server.py"
    script.write_text(EMPTY_SERVER_SCRIPT)
    catalog = ToolCatalog()
    bridge = ExternalToolBridge(catalog)
    discovered = await bridge.discover({"empty": _stdio("empty", str(script))})
    assert discovered == {}
    assert len(catalog) == 0
    assert bridge.get_status("empty") == McpServerStatus.DISCONNECTED
    await bridge.aclose()


@pytest.mark.asyncio
async def test_rediscovery_replaces_previous_tools(server_script) -> None:
    catalog = ToolCatalog()
    bridge = ExternalToolBridge(catalog)
    try:
        await bridge.discover({"demo": _stdio("demo", server_script)})
        await bridge.discover({"demo": _stdio("demo", server_script, include_tools=["add"])})
        assert catalog.names() == ["add"]
    finally:
        await bridge.aclose()
