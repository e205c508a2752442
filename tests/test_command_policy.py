from __future__ import annotations

import pytest

from keel.shared.services.command_policy import (
    SUBSTITUTION_REASON,
    CommandPolicy,
    check_command_permissions,
    detect_command_substitution,
    extract_shell_prefixes,
    get_command_root,
    get_command_roots,
    is_command_allowed,
    split_commands,
    strip_shell_wrapper,
)


# ── Parsing ──────────────────────────────────────────────────────────


def test_split_commands_on_all_separators() -> None:
    assert split_commands("a && b || c; d | e & f") == ["a", "b", "c", "d", "e", "f"]


def test_split_commands_keeps_quoted_separators() -> None:
    assert split_commands("echo 'a && b'; echo \"c | d\"") == [
        "echo 'a && b'",
        'echo "c | d"',
    ]


def test_split_commands_keeps_escaped_separator() -> None:
    assert split_commands("echo a\\;b") == ["echo a\\;b"]


def test_get_command_root_strips_path_and_quotes() -> None:
    assert get_command_root("/usr/bin/ls -la") == "ls"
    assert get_command_root('"my tool" --flag') == "my tool"
    assert get_command_root("   ") is None


def test_get_command_roots_for_chain() -> None:
    assert get_command_roots("git status && npm test | tee out") == ["git", "npm", "tee"]


def test_strip_shell_wrapper() -> None:
    assert strip_shell_wrapper("bash -c 'ls -la'") == "ls -la"
    assert strip_shell_wrapper('cmd.exe /c "dir"') == "dir"
    assert strip_shell_wrapper("  ls  ") == "ls"


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("echo $(whoami)", True),
        ('echo "$(whoami)"', True),
        ("echo '$(whoami)'", False),
        ("echo `whoami`", True),
        ('echo "`whoami`"', True),
        ("echo '`whoami`'", False),
        ("diff <(ls a) <(ls b)", True),
        ('echo "<(ls)"', False),
        ("echo \\$(whoami)", False),
        ("echo $HOME", False),
        ("echo hello", False),
    ],
)
def test_detect_command_substitution(command: str, expected: bool) -> None:
    assert detect_command_substitution(command) is expected


def test_extract_shell_prefixes() -> None:
    tools = ["run_shell_command(git  status)", "ShellTool(npm)", "replace", "run_shell_command"]
    assert extract_shell_prefixes(tools) == ["git status", "npm"]


# ── Policy ───────────────────────────────────────────────────────────


def test_substitution_is_hard_denial_even_with_wildcard() -> None:
    policy = CommandPolicy(core_tools=["run_shell_command"])
    result = check_command_permissions("echo $(rm -rf /)", policy)
    assert not result.all_allowed
    assert result.is_hard_denial
    assert result.block_reason == SUBSTITUTION_REASON
    assert result.disallowed_commands == ["echo $(rm -rf /)"]


def test_excluded_shell_tool_is_hard_denial() -> None:
    policy = CommandPolicy(exclude_tools=["run_shell_command"])
    result = check_command_permissions("ls", policy)
    assert result.is_hard_denial
    assert "globally disabled" in (result.block_reason or "")


def test_blocked_prefix_wins_over_wildcard() -> None:
    policy = CommandPolicy(
        core_tools=["run_shell_command"],
        exclude_tools=["run_shell_command(rm)"],
    )
    result = check_command_permissions("ls && rm -rf build", policy)
    assert result.is_hard_denial
    assert result.disallowed_commands == ["rm -rf build"]
    assert result.block_reason == "Command 'rm -rf build' is blocked by configuration"


def test_blocked_prefix_respects_token_boundary() -> None:
    policy = CommandPolicy(exclude_tools=["run_shell_command(rm)"])
    assert check_command_permissions("rmdir build", policy).all_allowed


def test_wildcard_allows_everything() -> None:
    policy = CommandPolicy(core_tools=["run_shell_command"])
    assert check_command_permissions("anything goes", policy, session_allowlist=[]).all_allowed


def test_global_allowlist_soft_denial() -> None:
    policy = CommandPolicy(core_tools=["run_shell_command(git)"])
    result = check_command_permissions("git status && npm test", policy)
    assert not result.all_allowed
    assert not result.is_hard_denial
    assert result.disallowed_commands == ["npm test"]
    assert result.block_reason == "Command(s) not in the allowed commands list: npm test"


def test_no_policy_allows_by_default() -> None:
    assert check_command_permissions("ls -la", CommandPolicy()).all_allowed


def test_session_allowlist_switches_to_default_deny() -> None:
    result = check_command_permissions("ls -la", CommandPolicy(), session_allowlist=set())
    assert not result.all_allowed
    assert not result.is_hard_denial
    assert result.block_reason == "Command(s) not on the global or session allowlist: ls -la"


def test_session_allowlist_combines_with_global_prefixes() -> None:
    policy = CommandPolicy(core_tools=["run_shell_command(git)"])
    result = check_command_permissions(
        "git log && npm   test", policy, session_allowlist={"npm"},
    )
    assert result.all_allowed


def test_is_command_allowed() -> None:
    policy = CommandPolicy(exclude_tools=["run_shell_command(curl)"])
    assert is_command_allowed("ls", policy) == (True, None)
    allowed, reason = is_command_allowed("curl example.com", policy)
    assert not allowed
    assert "blocked by configuration" in (reason or "")
