from __future__ import annotations

from keel.shared.services.allowlist import SessionAllowlist, mcp_tool_key


def test_mcp_tool_key() -> None:
    assert mcp_tool_key("fs", "read") == "fs.read"


def test_server_allow_covers_every_tool() -> None:
    allowlist = SessionAllowlist()
    assert not allowlist.allows_mcp("fs", "read")
    allowlist.add_server("fs")
    assert allowlist.allows_mcp("fs", "read")
    assert allowlist.allows_mcp("fs", "write")
    assert not allowlist.allows_mcp("web", "read")


def test_tool_allow_is_specific() -> None:
    allowlist = SessionAllowlist()
    allowlist.add_tool("fs", "read")
    assert allowlist.allows_mcp("fs", "read")
    assert not allowlist.allows_mcp("fs", "write")


def test_shell_prefixes_are_copied_and_cleared() -> None:
    allowlist = SessionAllowlist()
    allowlist.add_shell_prefixes(["git", "", "git", "npm"])
    prefixes = allowlist.shell_prefixes
    prefixes.add("rm")
    assert allowlist.shell_prefixes == {"git", "npm"}
    allowlist.clear()
    assert allowlist.shell_prefixes == set()
    assert not allowlist.allows_mcp("fs", "read")
