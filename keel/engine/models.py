"""Core data models for the tool execution engine.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ApprovalMode(str, Enum):
    """Session-wide confirmation behaviour."""
    DEFAULT = "default"
    AUTO_EDIT = "auto_edit"
    YOLO = "yolo"


class Icon(str, Enum):
    FILE_SEARCH = "fileSearch"
    FOLDER = "folder"
    GLOBE = "globe"
    HAMMER = "hammer"
    LIGHT_BULB = "lightBulb"
    PENCIL = "pencil"
    REGEX = "regex"
    TERMINAL = "terminal"


class ToolConfirmationOutcome(str, Enum):
    """User answer to a confirmation prompt."""
    PROCEED_ONCE = "proceed_once"
    PROCEED_ALWAYS = "proceed_always"
    PROCEED_ALWAYS_SERVER = "proceed_always_server"
    PROCEED_ALWAYS_TOOL = "proceed_always_tool"
    MODIFY_WITH_EDITOR = "modify_with_editor"
    CANCEL = "cancel"


class ConfirmationKind(str, Enum):
    """What an invocation asks the user to approve."""
    EDIT = "edit"
    EXEC = "exec"
    MCP = "mcp"
    INFO = "info"


class ToolErrorType(str, Enum):
    """Machine-readable failure kinds carried in ToolResult.error."""
    INVALID_TOOL_PARAMS = "invalid_tool_params"
    TOOL_NOT_REGISTERED = "tool_not_registered"
    UNKNOWN = "unknown"
    UNHANDLED_EXCEPTION = "unhandled_exception"
    EXECUTION_FAILED = "execution_failed"
    PERMISSION_DENIED = "permission_denied"
    CANCELLED = "cancelled"
    # File system
    FILE_NOT_FOUND = "file_not_found"
    FILE_WRITE_FAILURE = "file_write_failure"
    READ_CONTENT_FAILURE = "read_content_failure"
    ATTEMPT_TO_CREATE_EXISTING_FILE = "attempt_to_create_existing_file"
    PATH_NOT_IN_WORKSPACE = "path_not_in_workspace"
    # Edit
    EDIT_PREPARATION_FAILURE = "edit_preparation_failure"
    EDIT_NO_OCCURRENCE_FOUND = "edit_no_occurrence_found"
    EDIT_EXPECTED_OCCURRENCE_MISMATCH = "edit_expected_occurrence_mismatch"
    EDIT_NO_CHANGE = "edit_no_change"
    # Shell
    SHELL_EXECUTE_ERROR = "shell_execute_error"
    # Web fetch
    WEB_FETCH_NO_URL_IN_PROMPT = "web_fetch_no_url_in_prompt"
    WEB_FETCH_FALLBACK_FAILED = "web_fetch_fallback_failed"
    WEB_FETCH_PROCESSING_ERROR = "web_fetch_processing_error"
    # MCP
    MCP_TOOL_ERROR = "mcp_tool_error"


def _make_id() -> str:
    return str(uuid.uuid4())


# ── Results ──────────────────────────────────────────────────────────


@dataclass
class FileDiff:
    """Display payload for an edit: unified diff plus both versions."""
    file_diff: str
    file_name: str
    original_content: str | None = None
    new_content: str = ""


@dataclass
class ToolError:
    message: str
    type: ToolErrorType = ToolErrorType.UNKNOWN


@dataclass
class ToolResult:
    """What a tool returns.

    ``llm_content`` goes back to the model; ``return_display`` is for
    the user. A set ``error`` marks the call as failed.
    """
    llm_content: str
    return_display: str | FileDiff = ""
    error: ToolError | None = None
    summary: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def error_result(message: str, error_type: ToolErrorType, display: str | None = None) -> ToolResult:
    return ToolResult(
        llm_content=message,
        return_display=display if display is not None else message,
        error=ToolError(message=message, type=error_type),
    )


@dataclass
class ToolLocation:
    """A file (and optional line) a tool call will touch."""
    path: str
    line: int | None = None


# ── Confirmation details ────────────────────────────────────────────

# Signature: async def on_confirm(outcome, payload=None) -> None
ConfirmCallback = Callable[
    [ToolConfirmationOutcome, "dict[str, Any] | None"], Awaitable[None]
]


async def _noop_confirm(
    outcome: ToolConfirmationOutcome, payload: dict[str, Any] | None = None,
) -> None:
    return None


@dataclass
class ConfirmationDetails:
    """Base for the four confirmation variants."""
    title: str
    on_confirm: ConfirmCallback = field(default=_noop_confirm, repr=False)


@dataclass
class EditConfirmationDetails(ConfirmationDetails):
    file_name: str = ""
    file_path: str = ""
    file_diff: str = ""
    original_content: str | None = None
    new_content: str = ""


@dataclass
class ExecConfirmationDetails(ConfirmationDetails):
    command: str = ""
    root_command: str = ""
    # Sub-command roots that still need approval
    roots_to_allow: list[str] = field(default_factory=list)


@dataclass
class McpConfirmationDetails(ConfirmationDetails):
    server_name: str = ""
    tool_name: str = ""
    tool_display_name: str = ""


@dataclass
class InfoConfirmationDetails(ConfirmationDetails):
    prompt: str = ""
    urls: list[str] = field(default_factory=list)


# ── Requests ─────────────────────────────────────────────────────────


@dataclass
class ToolCallRequest:
    """One function call emitted by the model."""
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    call_id: str = field(default_factory=_make_id)


@dataclass
class ToolCallResponse:
    """Outcome of one ToolCallRequest, ready to send back to the model."""
    call_id: str
    name: str
    result: ToolResult
    cancelled: bool = False

    def to_function_response(self) -> dict[str, Any]:
        """Shape expected by function-calling APIs."""
        if self.result.error is not None:
            output: dict[str, Any] = {"error": self.result.llm_content}
        else:
            output = {"output": self.result.llm_content}
        return {"id": self.call_id, "name": self.name, "response": output}
