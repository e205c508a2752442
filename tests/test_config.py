from __future__ import annotations

import textwrap

import pytest
import yaml

from keel.engine.config import EngineConfig, _split_list, fire_event, parse_approval_mode
from keel.engine.models import ApprovalMode
from keel.engine.yaml_config import load_yaml_config


def test_defaults() -> None:
    config = EngineConfig()
    assert config.approval_mode == ApprovalMode.DEFAULT
    assert config.mcp_timeout_seconds == 600.0
    assert config.command_policy.core_tools == []


@pytest.mark.parametrize("value, expected", [
    (None, ApprovalMode.DEFAULT),
    ("yolo", ApprovalMode.YOLO),
    ("autoEdit", ApprovalMode.AUTO_EDIT),
    ("auto-edit", ApprovalMode.AUTO_EDIT),
    ("bogus", ApprovalMode.DEFAULT),
])
def test_parse_approval_mode(value, expected) -> None:
    assert parse_approval_mode(value) == expected


def test_split_list_keeps_commas_in_parentheses() -> None:
    assert _split_list("run_shell_command(git, ls), replace ,") == [
        "run_shell_command(git, ls)", "replace",
    ]


def test_from_env(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("KEEL_TARGET_DIR", str(tmp_path))
    monkeypatch.setenv("KEEL_APPROVAL_MODE", "auto_edit")
    monkeypatch.setenv("KEEL_CORE_TOOLS", "run_shell_command(git),replace")
    monkeypatch.setenv("KEEL_EXCLUDE_TOOLS", "run_shell_command(rm)")
    monkeypatch.setenv("KEEL_MCP_TIMEOUT", "30")
    config = EngineConfig.from_env()
    assert config.target_dir == str(tmp_path)
    assert config.approval_mode == ApprovalMode.AUTO_EDIT
    assert config.core_tools == ["run_shell_command(git)", "replace"]
    assert config.exclude_tools == ["run_shell_command(rm)"]
    assert config.mcp_timeout_seconds == 30.0


def test_load_yaml_config(tmp_path) -> None:
    path = tmp_path / "keel.yaml"
    path.write_text(textwrap.dedent("""
        engine:
          target_dir: /srv/project
          approval_mode: yolo
          mcp_timeout_seconds: 45
        tools:
          core:
            - run_shell_command(git)
          exclude: run_shell_command(rm)
        mcpServers:
          fs:
            command: npx
            args: ["-y", "server-filesystem"]
    """))
    config = load_yaml_config(path)
    assert config.target_dir == "/srv/project"
    assert config.approval_mode == ApprovalMode.YOLO
    assert config.mcp_timeout_seconds == 45.0
    assert config.core_tools == ["run_shell_command(git)"]
    assert config.exclude_tools == ["run_shell_command(rm)"]
    assert config.mcp_servers["fs"].args == ["-y", "server-filesystem"]


def test_load_yaml_config_empty_file(tmp_path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_yaml_config(path).approval_mode == ApprovalMode.DEFAULT


def test_load_yaml_config_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "missing.yaml")
    bad = tmp_path / "bad.yaml"
    bad.write_text("engine: [unclosed\n")
    with pytest.raises(yaml.YAMLError):
        load_yaml_config(bad)
    listy = tmp_path / "list.yaml"
    listy.write_text("- a\n- b\n")
    with pytest.raises(ValueError, match="must be a mapping"):
        load_yaml_config(listy)


@pytest.mark.asyncio
async def test_fire_event_swallows_callback_errors() -> None:
    seen = []

    async def broken(event):
        seen.append(event["event"])
        raise RuntimeError("boom")

    await fire_event(broken, {"event": "tool_call_started"})
    await fire_event(None, {"event": "ignored"})
    assert seen == ["tool_call_started"]
