from __future__ import annotations

import sys

import pytest

from keel.engine import cli


def _main(monkeypatch, *argv: str) -> int:
    monkeypatch.setattr(sys, "argv", ["keel", *argv])
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    return excinfo.value.code


def test_check_allowed(monkeypatch, capsys) -> None:
    monkeypatch.delenv("KEEL_CORE_TOOLS", raising=False)
    monkeypatch.delenv("KEEL_EXCLUDE_TOOLS", raising=False)
    assert _main(monkeypatch, "check", "git status") == 0
    assert "allowed: git status" in capsys.readouterr().out


def test_check_hard_denial(monkeypatch, capsys) -> None:
    monkeypatch.setenv("KEEL_EXCLUDE_TOOLS", "run_shell_command(rm)")
    assert _main(monkeypatch, "check", "ls && rm -rf build") == 2
    out = capsys.readouterr().out
    assert "denied (hard)" in out
    assert "rm -rf build" in out


def test_check_soft_denial(monkeypatch, capsys) -> None:
    monkeypatch.delenv("KEEL_EXCLUDE_TOOLS", raising=False)
    monkeypatch.setenv("KEEL_CORE_TOOLS", "run_shell_command(git)")
    assert _main(monkeypatch, "check", "git log; npm test") == 1
    out = capsys.readouterr().out
    assert "denied (soft)" in out
    assert "  - npm test" in out


def test_mcp_tools_without_servers(monkeypatch, capsys, tmp_path) -> None:
    config = tmp_path / "keel.yaml"
    config.write_text("engine:\n  approval_mode: yolo\n")
    assert _main(monkeypatch, "--config", str(config), "mcp-tools") == 1
    assert "No MCP servers configured." in capsys.readouterr().out
