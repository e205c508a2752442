"""Tools proxied to an MCP server session."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from ..models import (
    ConfirmationKind,
    Icon,
    McpConfirmationDetails,
    ToolError,
    ToolErrorType,
    ToolResult,
    error_result,
)
from .base import DeclarativeTool, ToolInvocation, UpdateOutput

logger = logging.getLogger(__name__)


class McpSession(Protocol):
    """The slice of ``mcp.ClientSession`` a tool needs."""

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any: ...


def _part_to_dict(part: Any) -> dict[str, Any]:
    if hasattr(part, "model_dump"):
        return part.model_dump(mode="json", exclude_none=True)
    if isinstance(part, dict):
        return part
    return {"type": "unknown", "value": str(part)}


def _part_text(part: Any) -> str | None:
    if getattr(part, "type", None) == "text":
        return getattr(part, "text", "")
    if isinstance(part, dict) and part.get("type") == "text":
        return str(part.get("text", ""))
    return None


def stringify_result(content: list[Any]) -> str:
    """Display form of a call result.

    All-text results are joined as plain text; anything else is shown as
    a fenced JSON block of the content parts.
    """
    texts = [_part_text(part) for part in content]
    if content and all(t is not None for t in texts):
        return "\n".join(t for t in texts if t is not None)
    body = json.dumps([_part_to_dict(p) for p in content], indent=2)
    return f"```json\n{body}\n```"


def _llm_content(content: list[Any]) -> str:
    chunks: list[str] = []
    for part in content:
        text = _part_text(part)
        if text is not None:
            chunks.append(text)
        else:
            chunks.append(json.dumps(_part_to_dict(part)))
    return "\n".join(chunks)


class McpInvocation(ToolInvocation):
    confirmation_kind = ConfirmationKind.MCP

    def __init__(self, tool: McpTool, params: dict[str, Any]) -> None:
        super().__init__(tool, params)
        self._tool = tool

    @property
    def trusted(self) -> bool:
        return self._tool.trust

    def get_description(self) -> str:
        return json.dumps(self.params)

    async def build_confirmation(
        self, abort_event: asyncio.Event | None = None,
    ) -> McpConfirmationDetails:
        return McpConfirmationDetails(
            title="Confirm MCP Tool Execution",
            server_name=self._tool.server_name,
            tool_name=self._tool.server_tool_name,
            tool_display_name=self._tool.display_name,
        )

    async def execute(
        self,
        abort_event: asyncio.Event,
        update_output: UpdateOutput | None = None,
    ) -> ToolResult:
        tool = self._tool
        call = asyncio.ensure_future(asyncio.wait_for(
            tool.session.call_tool(tool.server_tool_name, arguments=self.params),
            timeout=tool.timeout,
        ))
        abort_task = asyncio.ensure_future(abort_event.wait())
        try:
            done, _ = await asyncio.wait(
                {call, abort_task}, return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            abort_task.cancel()
        if call not in done:
            call.cancel()
            await asyncio.gather(call, return_exceptions=True)
            return error_result(
                f"MCP tool '{tool.server_tool_name}' was cancelled.",
                ToolErrorType.CANCELLED,
            )

        try:
            result = call.result()
        except asyncio.TimeoutError:
            return error_result(
                f"MCP tool '{tool.server_tool_name}' timed out after {tool.timeout}s.",
                ToolErrorType.MCP_TOOL_ERROR,
            )
        except Exception as exc:
            logger.warning(
                "MCP tool %s on %s failed: %s",
                tool.server_tool_name, tool.server_name, exc,
            )
            return error_result(
                f"Error calling MCP tool '{tool.server_tool_name}': {exc}",
                ToolErrorType.MCP_TOOL_ERROR,
            )

        content = list(getattr(result, "content", None) or [])
        llm_content = _llm_content(content)
        display = stringify_result(content)
        if getattr(result, "isError", False):
            return ToolResult(
                llm_content=llm_content,
                return_display=display,
                error=ToolError(
                    message=f"MCP tool '{tool.server_tool_name}' reported an error: {llm_content}",
                    type=ToolErrorType.MCP_TOOL_ERROR,
                ),
            )
        return ToolResult(llm_content=llm_content, return_display=display)


class McpTool(DeclarativeTool):
    """A tool discovered on an MCP server.

    ``name`` is the model-facing (sanitized, possibly namespaced) name;
    ``server_tool_name`` is what the server calls it.
    """

    def __init__(
        self,
        session: McpSession,
        server_name: str,
        server_tool_name: str,
        name: str,
        description: str,
        parameter_schema: dict[str, Any],
        *,
        timeout: float,
        trust: bool = False,
    ) -> None:
        super().__init__(
            name,
            f"{server_tool_name} ({server_name} MCP Server)",
            description,
            Icon.HAMMER,
            parameter_schema,
            is_output_markdown=True,
        )
        self.session = session
        self.server_name = server_name
        self.server_tool_name = server_tool_name
        self.timeout = timeout
        self.trust = trust

    def create_invocation(self, params: dict[str, Any]) -> McpInvocation:
        return McpInvocation(self, params)
