"""Shell command policy evaluation.

Decides whether a shell command string may run given the configured
tool lists and an optional session allowlist:
- core_tools: "run_shell_command" allows every command (wildcard);
  "run_shell_command(git status)" allows commands with that prefix.
- exclude_tools: "run_shell_command" disables the shell tool;
  "run_shell_command(rm)" blocks commands with that prefix.

Blocked commands and command substitution are hard denials that no
confirmation can override. Commands that are merely not allowlisted
are soft denials the user may approve.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

SHELL_TOOL_NAMES: tuple[str, ...] = ("run_shell_command", "ShellTool")

_SHELL_WRAPPER_RE = re.compile(r"^\s*(?:sh|bash|zsh|cmd\.exe)\s+(?:/c|-c)\s+")
_COMMAND_ROOT_RE = re.compile(r"""^"([^"]+)"|^'([^']+)'|^(\S+)""")
_WHITESPACE_RE = re.compile(r"\s+")

SUBSTITUTION_REASON = (
    "Command substitution using $(), <(), or >() is not allowed "
    "for security reasons"
)


@dataclass
class CommandPolicy:
    """Tool lists consulted for shell commands."""

    core_tools: list[str] = field(default_factory=list)
    exclude_tools: list[str] = field(default_factory=list)


@dataclass
class CommandPermissionResult:
    """Verdict for one (possibly chained) command string."""

    all_allowed: bool
    disallowed_commands: list[str] = field(default_factory=list)
    block_reason: str | None = None
    is_hard_denial: bool = False


# ── Parsing ──────────────────────────────────────────────────────────


def split_commands(command: str) -> list[str]:
    """Split a chained command on &&, ||, ;, & and |.

    Separators inside single or double quotes are literal, and a
    backslash always carries the next character through unchanged.
    """
    commands: list[str] = []
    current: list[str] = []
    in_single = False
    in_double = False
    i = 0
    n = len(command)

    while i < n:
        char = command[i]
        next_char = command[i + 1] if i + 1 < n else ""

        if char == "\\" and i < n - 1:
            current.append(char + next_char)
            i += 2
            continue

        if char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double

        if not in_single and not in_double:
            if (char == "&" and next_char == "&") or (char == "|" and next_char == "|"):
                commands.append("".join(current).strip())
                current = []
                i += 1
            elif char in (";", "&", "|"):
                commands.append("".join(current).strip())
                current = []
            else:
                current.append(char)
        else:
            current.append(char)
        i += 1

    tail = "".join(current).strip()
    if tail:
        commands.append(tail)
    return [c for c in commands if c]


def get_command_root(command: str) -> str | None:
    """Return the executable name of a single command.

    Quoted executables are unquoted, and a path yields its last segment:
    ``get_command_root("/usr/bin/ls -la")`` is ``"ls"``.
    """
    trimmed = command.strip()
    if not trimmed:
        return None
    match = _COMMAND_ROOT_RE.match(trimmed)
    if not match:
        return None
    root = match.group(1) or match.group(2) or match.group(3)
    if not root:
        return None
    return re.split(r"[\\/]", root)[-1] or None


def get_command_roots(command: str) -> list[str]:
    """Roots of every command in a chained command string."""
    if not command:
        return []
    roots = []
    for part in split_commands(command):
        root = get_command_root(part)
        if root:
            roots.append(root)
    return roots


def strip_shell_wrapper(command: str) -> str:
    """Remove a leading ``bash -c`` / ``sh -c`` / ``cmd.exe /c`` wrapper."""
    match = _SHELL_WRAPPER_RE.match(command)
    if not match:
        return command.strip()
    inner = command[match.end():].strip()
    if len(inner) >= 2 and (
        (inner.startswith('"') and inner.endswith('"'))
        or (inner.startswith("'") and inner.endswith("'"))
    ):
        inner = inner[1:-1]
    return inner


def detect_command_substitution(command: str) -> bool:
    """True if bash would execute a substitution in *command*.

    Follows bash quoting: nothing inside single quotes is substituted;
    ``$(`` and backticks work unquoted and inside double quotes; ``<(``
    process substitution works only unquoted. A backslash escapes the
    next character everywhere except inside single quotes.
    """
    in_single = False
    in_double = False
    i = 0
    n = len(command)

    while i < n:
        char = command[i]
        next_char = command[i + 1] if i + 1 < n else ""

        if char == "\\" and not in_single:
            i += 2
            continue

        if char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
        elif char == "`" and not in_single:
            return True

        if not in_single:
            if char == "$" and next_char == "(":
                return True
            if char == "<" and next_char == "(" and not in_double:
                return True
        i += 1

    return False


# ── Policy ───────────────────────────────────────────────────────────


def _normalize(command: str) -> str:
    return _WHITESPACE_RE.sub(" ", command.strip())


def _is_prefixed_by(command: str, prefix: str) -> bool:
    """Prefix match on a token boundary: ``npm`` matches ``npm test``
    but not ``npmx``."""
    if not prefix or not command.startswith(prefix):
        return False
    return len(command) == len(prefix) or command[len(prefix)] == " "


def extract_shell_prefixes(tools: Iterable[str]) -> list[str]:
    """Pull command prefixes out of ``run_shell_command(<prefix>)`` entries."""
    prefixes: list[str] = []
    for tool in tools:
        for name in SHELL_TOOL_NAMES:
            if tool.startswith(f"{name}(") and tool.endswith(")"):
                prefix = _normalize(tool[len(name) + 1:-1])
                if prefix and prefix not in prefixes:
                    prefixes.append(prefix)
                break
    return prefixes


def check_command_permissions(
    command: str,
    policy: CommandPolicy,
    session_allowlist: Iterable[str] | None = None,
) -> CommandPermissionResult:
    """Evaluate *command* against *policy* and an optional session allowlist.

    Passing a session allowlist switches to "default deny": every
    sub-command must match a global or session prefix. Without one,
    commands are allowed unless a global allow-prefix list exists and
    a sub-command is missing from it.
    """
    if detect_command_substitution(command):
        logger.info("Command rejected (substitution): %s", command)
        return CommandPermissionResult(
            all_allowed=False,
            disallowed_commands=[command],
            block_reason=SUBSTITUTION_REASON,
            is_hard_denial=True,
        )

    core_tools = list(policy.core_tools or [])
    exclude_tools = list(policy.exclude_tools or [])

    if any(name in exclude_tools for name in SHELL_TOOL_NAMES):
        return CommandPermissionResult(
            all_allowed=False,
            disallowed_commands=[command],
            block_reason="Shell tool is globally disabled in configuration",
            is_hard_denial=True,
        )

    blocked = extract_shell_prefixes(exclude_tools)
    allowed = extract_shell_prefixes(core_tools)
    commands = [_normalize(c) for c in split_commands(command)]

    for cmd in commands:
        if any(_is_prefixed_by(cmd, prefix) for prefix in blocked):
            logger.info("Command rejected (blocked prefix): %s", cmd)
            return CommandPermissionResult(
                all_allowed=False,
                disallowed_commands=[cmd],
                block_reason=f"Command '{cmd}' is blocked by configuration",
                is_hard_denial=True,
            )

    if any(name in core_tools for name in SHELL_TOOL_NAMES):
        return CommandPermissionResult(all_allowed=True)

    if session_allowlist is not None:
        prefixes = allowed + [
            _normalize(p) for p in session_allowlist if p and p.strip()
        ]
        disallowed = [
            cmd for cmd in commands
            if not any(_is_prefixed_by(cmd, prefix) for prefix in prefixes)
        ]
        if disallowed:
            return CommandPermissionResult(
                all_allowed=False,
                disallowed_commands=disallowed,
                block_reason=(
                    "Command(s) not on the global or session allowlist: "
                    + ", ".join(disallowed)
                ),
                is_hard_denial=False,
            )
        return CommandPermissionResult(all_allowed=True)

    if allowed:
        disallowed = [
            cmd for cmd in commands
            if not any(_is_prefixed_by(cmd, prefix) for prefix in allowed)
        ]
        if disallowed:
            return CommandPermissionResult(
                all_allowed=False,
                disallowed_commands=disallowed,
                block_reason=(
                    "Command(s) not in the allowed commands list: "
                    + ", ".join(disallowed)
                ),
                is_hard_denial=False,
            )

    return CommandPermissionResult(all_allowed=True)


def is_command_allowed(
    command: str, policy: CommandPolicy,
) -> tuple[bool, str | None]:
    """Simple allow/deny view of check_command_permissions (default allow)."""
    result = check_command_permissions(command, policy)
    if result.all_allowed:
        return True, None
    return False, result.block_reason
