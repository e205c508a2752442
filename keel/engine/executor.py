"""ToolExecutor: run model-requested tool calls to completion.

Takes the calls of one model turn through build -> confirm -> execute
and turns every per-call failure into that call's ToolResult, so one bad
call never stops its siblings. Only loop detection and the turn's abort
event stop the remaining calls.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Union

from .confirmation import ConfirmationGate
from .config import EventCallback, fire_event
from .errors import PermissionDeniedError, ToolNotFoundError, ToolValidationError
from .loop_guard import GenerationEvent, GenerationEventType, LoopGuard
from .models import (
    ConfirmationDetails,
    ToolCallRequest,
    ToolCallResponse,
    ToolConfirmationOutcome,
    ToolErrorType,
    error_result,
)
from .tools.base import ToolInvocation, UpdateOutput
from .tools.catalog import ToolCatalog

logger = logging.getLogger(__name__)

# Signature: async def handler(invocation, details) -> outcome | (outcome, payload)
ConfirmHandlerResult = Union[
    ToolConfirmationOutcome,
    tuple[ToolConfirmationOutcome, "dict[str, Any] | None"],
]
ConfirmHandler = Callable[
    [ToolInvocation, ConfirmationDetails], Awaitable[ConfirmHandlerResult]
]


class ToolExecutor:
    """Sequential, non-interactive scheduler for tool calls.

    Without a ``confirm_handler`` any call that needs approval is refused
    with PERMISSION_DENIED.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        gate: ConfirmationGate,
        confirm_handler: ConfirmHandler | None = None,
        *,
        loop_guard: LoopGuard | None = None,
        event_callback: EventCallback | None = None,
    ) -> None:
        self.catalog = catalog
        self.gate = gate
        self.confirm_handler = confirm_handler
        self.loop_guard = loop_guard
        self._event_callback = event_callback or gate.config.event_callback
        self.loop_detected = False

    async def execute_tool_call(
        self,
        request: ToolCallRequest,
        abort_event: asyncio.Event,
        update_output: UpdateOutput | None = None,
    ) -> ToolCallResponse:
        """Run one call. Never raises for per-call failures."""
        if abort_event.is_set():
            return self._cancelled(request, "Tool call cancelled before it started.")

        try:
            invocation = self.catalog.build(request.name, request.args)
        except ToolNotFoundError as exc:
            return self._failed(request, str(exc), ToolErrorType.TOOL_NOT_REGISTERED)
        except ToolValidationError as exc:
            return self._failed(request, str(exc), ToolErrorType.INVALID_TOOL_PARAMS)

        await fire_event(self._event_callback, {
            "event": "tool_call_started",
            "call_id": request.call_id,
            "name": request.name,
            "description": invocation.get_description(),
        })
        start = time.monotonic()
        try:
            response = await self._confirm_and_execute(
                request, invocation, abort_event, update_output,
            )
        except Exception as exc:
            logger.exception("Tool %s raised", request.name)
            response = self._failed(
                request, f"Tool {request.name} failed: {exc}",
                ToolErrorType.UNHANDLED_EXCEPTION,
            )

        await fire_event(self._event_callback, {
            "event": "tool_call_finished",
            "call_id": request.call_id,
            "name": request.name,
            "success": response.result.ok,
            "cancelled": response.cancelled,
            "error_type": response.result.error.type.value if response.result.error else None,
            "duration_seconds": time.monotonic() - start,
        })
        return response

    async def _confirm_and_execute(
        self,
        request: ToolCallRequest,
        invocation: ToolInvocation,
        abort_event: asyncio.Event,
        update_output: UpdateOutput | None,
    ) -> ToolCallResponse:
        try:
            details = await self.gate.should_confirm(invocation, abort_event)
        except PermissionDeniedError as exc:
            logger.info("Tool %s refused: %s", request.name, exc.reason)
            return self._failed(request, exc.reason, ToolErrorType.PERMISSION_DENIED)

        if details:
            if self.confirm_handler is None:
                return self._failed(
                    request,
                    f"Tool {request.name} requires confirmation and no "
                    "confirmation handler is available.",
                    ToolErrorType.PERMISSION_DENIED,
                )
            answer = await self.confirm_handler(invocation, details)
            outcome, payload = answer if isinstance(answer, tuple) else (answer, None)
            await details.on_confirm(outcome, payload)
            if outcome == ToolConfirmationOutcome.CANCEL:
                return self._cancelled(request, "User declined the tool call.")

        if abort_event.is_set():
            return self._cancelled(request, "Tool call cancelled before it started.")

        result = await invocation.execute(abort_event, update_output)
        cancelled = result.error is not None and result.error.type == ToolErrorType.CANCELLED
        return ToolCallResponse(request.call_id, request.name, result, cancelled=cancelled)

    async def execute_tool_calls(
        self,
        requests: list[ToolCallRequest],
        abort_event: asyncio.Event,
    ) -> list[ToolCallResponse]:
        """Run *requests* in order; one response per request."""
        responses: list[ToolCallResponse] = []
        stop_reason: str | None = None
        for request in requests:
            if stop_reason is None and abort_event.is_set():
                stop_reason = "Turn cancelled before this tool call ran."
            if stop_reason is None and self.loop_guard is not None:
                if self.loop_guard.add_and_check(GenerationEvent(
                    GenerationEventType.TOOL_CALL_REQUEST,
                    {"name": request.name, "args": request.args},
                )):
                    self.loop_detected = True
                    stop_reason = "Repetitive tool calls detected; turn stopped."
            if stop_reason is not None:
                responses.append(self._cancelled(request, stop_reason))
                continue
            responses.append(await self.execute_tool_call(request, abort_event))
        return responses

    @staticmethod
    def _failed(request: ToolCallRequest, message: str, error_type: ToolErrorType) -> ToolCallResponse:
        return ToolCallResponse(request.call_id, request.name, error_result(message, error_type))

    @staticmethod
    def _cancelled(request: ToolCallRequest, message: str) -> ToolCallResponse:
        return ToolCallResponse(
            request.call_id,
            request.name,
            error_result(message, ToolErrorType.CANCELLED),
            cancelled=True,
        )
