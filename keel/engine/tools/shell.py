"""run_shell_command: execute a shell command in the project."""
from __future__ import annotations

import asyncio
import logging
import os
import secrets
import sys
import tempfile
import time
from typing import Any

from keel.shared.events import BinaryDetectedEvent, BinaryProgressEvent, DataEvent, OutputEvent
from keel.shared.services.command_policy import (
    check_command_permissions,
    get_command_root,
    get_command_roots,
    strip_shell_wrapper,
)

from ..config import EngineConfig
from ..models import (
    ConfirmationKind,
    ExecConfirmationDetails,
    Icon,
    ToolError,
    ToolErrorType,
    ToolResult,
)
from ..process_runner import ProcessResult, ProcessRunner
from .base import DeclarativeTool, ToolInvocation, UpdateOutput

logger = logging.getLogger(__name__)

SHELL_TOOL_NAME = "run_shell_command"

_DESCRIPTION = """\
This tool executes a given shell command as `bash -c <command>`. Command can \
start background processes using `&`. Command is executed as a subprocess that \
leads its own process group. Command process group can be terminated as \
`kill -- -PGID` or signaled as `kill -s SIGNAL -- -PGID`.

The following information is returned:

Command: Executed command.
Directory: Directory (relative to project root) where command was executed, or `(root)`.
Stdout: Output on stdout stream. Can be `(empty)` or partial on error and for any unwaited background processes.
Stderr: Output on stderr stream. Can be `(empty)` or partial on error and for any unwaited background processes.
Error: Error or `(none)` if no error was reported for the subprocess.
Exit Code: Exit code or `(none)` if terminated by signal.
Signal: Signal number or `(none)` if no signal was received.
Background PIDs: List of background processes started or `(none)`.
Process Group PGID: Process group started or `(none)`"""

_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "command": {
            "type": "string",
            "description": "Exact bash command to execute as `bash -c <command>`",
        },
        "description": {
            "type": "string",
            "description": (
                "Brief description of the command for the user. Be specific "
                "and concise. Ideally a single sentence. No line breaks."
            ),
        },
        "directory": {
            "type": "string",
            "description": (
                "(OPTIONAL) Directory to run the command in, if not the project "
                "root directory. Must be relative to the project root directory "
                "and must already exist."
            ),
        },
    },
    "required": ["command"],
}


def _wrap_for_background_pids(command: str, pid_file: str) -> str:
    """Record the process group's PIDs via pgrep after *command* runs."""
    command = command.strip()
    if not command.endswith("&"):
        command += ";"
    return f"{{ {command} }}; __code=$?; pgrep -g 0 >{pid_file} 2>&1; exit $__code;"


def _read_background_pids(pid_file: str, shell_pid: int | None) -> list[int]:
    pids: list[int] = []
    try:
        with open(pid_file, encoding="utf-8") as f:
            lines = [line.strip() for line in f if line.strip()]
    except FileNotFoundError:
        return pids
    finally:
        try:
            os.unlink(pid_file)
        except OSError:
            pass
    for line in lines:
        if not line.isdigit():
            logger.debug("pgrep: %s", line)
            continue
        pid = int(line)
        if pid != shell_pid:
            pids.append(pid)
    return pids


class ShellInvocation(ToolInvocation):
    confirmation_kind = ConfirmationKind.EXEC

    def __init__(self, tool: ShellTool, params: dict[str, Any]) -> None:
        super().__init__(tool, params)
        self._tool = tool

    @property
    def command(self) -> str:
        return self.params["command"]

    def get_description(self) -> str:
        description = self.command
        if self.params.get("directory"):
            description += f" [in {self.params['directory']}]"
        if self.params.get("description"):
            description += f" ({self.params['description'].replace(chr(10), ' ')})"
        return description

    async def build_confirmation(
        self, abort_event: asyncio.Event | None = None,
    ) -> ExecConfirmationDetails:
        command = strip_shell_wrapper(self.command)
        return ExecConfirmationDetails(
            title="Confirm Shell Command",
            command=command,
            root_command=", ".join(get_command_roots(command)),
            roots_to_allow=get_command_roots(command),
        )

    async def execute(
        self,
        abort_event: asyncio.Event,
        update_output: UpdateOutput | None = None,
    ) -> ToolResult:
        if abort_event.is_set():
            return ToolResult(
                llm_content="Command was cancelled by user before it could start.",
                return_display="Command cancelled by user.",
            )

        config = self._tool.config
        cwd = os.path.abspath(
            os.path.join(config.target_dir, self.params.get("directory") or "")
        )

        pid_file = None
        command = self.command
        if sys.platform != "win32":
            pid_file = os.path.join(
                tempfile.gettempdir(), f"shell_pgrep_{secrets.token_hex(6)}.tmp"
            )
            command = _wrap_for_background_pids(command, pid_file)

        output_parts: list[str] = []
        last_update = time.monotonic()
        interval = config.shell_update_interval_seconds

        async def on_event(event: OutputEvent) -> None:
            nonlocal last_update
            if isinstance(event, DataEvent):
                output_parts.append(event.chunk)
                display = "".join(output_parts)
            elif isinstance(event, BinaryDetectedEvent):
                display = "[Binary output detected. Halting stream...]"
            elif isinstance(event, BinaryProgressEvent):
                display = f"[Receiving binary output... {event.bytes_received} bytes received]"
            else:
                return
            if update_output is None:
                return
            now = time.monotonic()
            if now - last_update > interval:
                last_update = now
                await update_output(display)

        handle = await self._tool.runner.execute(
            command, cwd, on_event, abort_event,
        )
        result = await handle.wait()

        background_pids: list[int] = []
        if pid_file is not None:
            background_pids = _read_background_pids(pid_file, result.pid)

        return self._format_result(result, background_pids)

    def _format_result(self, result: ProcessResult, background_pids: list[int]) -> ToolResult:
        output = result.output
        if result.binary_detected:
            output = f"[Command produced binary output, {len(result.raw_output)} bytes]"

        if result.aborted:
            llm_content = "Command was cancelled by user before it could complete."
            if output.strip():
                llm_content += (
                    " Below is the output (on stdout and stderr) before it "
                    f"was cancelled:\n{output}"
                )
            else:
                llm_content += " There was no output before it was cancelled."
        else:
            stdout = result.stdout
            stderr = result.stderr
            if result.binary_detected:
                stdout, stderr = output, ""
            llm_content = "\n".join([
                f"Command: {self.command}",
                f"Directory: {self.params.get('directory') or '(root)'}",
                f"Stdout: {stdout or '(empty)'}",
                f"Stderr: {stderr or '(empty)'}",
                f"Error: {result.error if result.error is not None else '(none)'}",
                f"Exit Code: {result.exit_code if result.exit_code is not None else '(none)'}",
                f"Signal: {result.signal if result.signal is not None else '(none)'}",
                "Background PIDs: "
                + (", ".join(str(p) for p in background_pids) if background_pids else "(none)"),
                f"Process Group PGID: {result.pid if result.pid is not None else '(none)'}",
            ])

        if output.strip():
            display = output
        elif result.aborted:
            display = "Command cancelled by user."
        elif result.signal is not None:
            display = f"Command terminated by signal: {result.signal}"
        elif result.error is not None:
            display = f"Command failed: {result.error}"
        elif result.exit_code not in (None, 0):
            display = f"Command exited with code: {result.exit_code}"
        else:
            display = ""

        if result.error is not None and not result.aborted:
            return ToolResult(
                llm_content=llm_content,
                return_display=display,
                error=ToolError(
                    message=f"Command failed: {result.error}",
                    type=ToolErrorType.SHELL_EXECUTE_ERROR,
                ),
            )
        return ToolResult(llm_content=llm_content, return_display=display)


class ShellTool(DeclarativeTool):
    """Runs commands through ProcessRunner, gated by command policy."""

    def __init__(self, config: EngineConfig, runner: ProcessRunner | None = None) -> None:
        super().__init__(
            SHELL_TOOL_NAME,
            "Shell",
            _DESCRIPTION,
            Icon.TERMINAL,
            _SCHEMA,
            is_output_markdown=False,
            can_update_output=True,
        )
        self.config = config
        self.runner = runner or ProcessRunner()

    def validate_params(self, params: dict[str, Any]) -> str | None:
        command = params.get("command", "")
        if not command.strip():
            return "Command cannot be empty."
        permission = check_command_permissions(command, self.config.command_policy)
        if not permission.all_allowed:
            return permission.block_reason or f"Command is not allowed: {command}"
        if not get_command_root(command):
            return "Could not identify command root to obtain permission from user."
        directory = params.get("directory")
        if directory:
            if os.path.isabs(directory):
                return (
                    "Directory cannot be absolute. Must be relative to the "
                    "project root directory."
                )
            root = os.path.realpath(self.config.target_dir)
            resolved = os.path.realpath(os.path.join(root, directory))
            if os.path.commonpath([root, resolved]) != root:
                return f"Directory must be within the root directory ({root}): {directory}"
            if not os.path.isdir(resolved):
                return "Directory must exist."
        return None

    def create_invocation(self, params: dict[str, Any]) -> ShellInvocation:
        return ShellInvocation(self, params)
