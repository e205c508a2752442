"""ConfirmationGate: decide whether a tool call needs user approval.

The gate owns the session's approval mode and reads/writes the injected
SessionAllowlist. should_confirm() returns False when the call may run
straight away, otherwise confirmation details whose ``on_confirm``
records "always allow" answers back into the session.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal

from keel.shared.services.allowlist import SessionAllowlist
from keel.shared.services.command_policy import (
    check_command_permissions,
    get_command_root,
)

from .config import EngineConfig
from .errors import PermissionDeniedError
from .models import (
    ApprovalMode,
    ConfirmationDetails,
    ConfirmationKind,
    EditConfirmationDetails,
    ExecConfirmationDetails,
    InfoConfirmationDetails,
    McpConfirmationDetails,
    ToolConfirmationOutcome,
)
from .tools.base import ToolInvocation

logger = logging.getLogger(__name__)


class ConfirmationGate:
    """Per-session confirmation policy."""

    def __init__(self, config: EngineConfig, allowlist: SessionAllowlist | None = None) -> None:
        self.config = config
        self.allowlist = allowlist if allowlist is not None else SessionAllowlist()
        self.approval_mode = config.approval_mode

    def set_approval_mode(self, mode: ApprovalMode) -> None:
        if mode != self.approval_mode:
            logger.info("Approval mode %s -> %s", self.approval_mode.value, mode.value)
        self.approval_mode = mode

    async def should_confirm(
        self,
        invocation: ToolInvocation,
        abort_event: asyncio.Event | None = None,
    ) -> ConfirmationDetails | Literal[False]:
        """Return confirmation details, or False if no approval is needed.

        Raises PermissionDeniedError for shell commands that policy refuses
        outright; those can never be approved.
        """
        kind = invocation.confirmation_kind
        if kind is None or self.approval_mode == ApprovalMode.YOLO:
            return False
        if kind in (ConfirmationKind.EDIT, ConfirmationKind.INFO) and (
            self.approval_mode == ApprovalMode.AUTO_EDIT
        ):
            return False

        if kind == ConfirmationKind.MCP and self._mcp_preapproved(invocation):
            return False

        details = await invocation.build_confirmation(abort_event)
        if details is None:
            return False

        if isinstance(details, McpConfirmationDetails):
            if self.allowlist.allows_mcp(details.server_name, details.tool_name):
                return False
        elif isinstance(details, ExecConfirmationDetails):
            permission = check_command_permissions(
                details.command,
                self.config.command_policy,
                self.allowlist.shell_prefixes,
            )
            if permission.is_hard_denial:
                raise PermissionDeniedError(
                    permission.block_reason or f"Command is not allowed: {details.command}",
                    hard=True,
                    commands=permission.disallowed_commands,
                )
            if permission.all_allowed:
                return False
            roots = [get_command_root(cmd) for cmd in permission.disallowed_commands]
            details.roots_to_allow = list(dict.fromkeys(r for r in roots if r))
        elif not isinstance(details, (EditConfirmationDetails, InfoConfirmationDetails)):
            raise TypeError(f"Unknown confirmation details type: {type(details).__name__}")

        details.on_confirm = self._make_on_confirm(invocation, details)
        return details

    def _mcp_preapproved(self, invocation: ToolInvocation) -> bool:
        if invocation.trusted:
            return True
        tool = invocation.tool
        server_name = getattr(tool, "server_name", None)
        tool_name = getattr(tool, "server_tool_name", None)
        if server_name is None or tool_name is None:
            return False
        return self.allowlist.allows_mcp(server_name, tool_name)

    def _make_on_confirm(self, invocation: ToolInvocation, details: ConfirmationDetails):
        async def on_confirm(
            outcome: ToolConfirmationOutcome, payload: dict[str, Any] | None = None,
        ) -> None:
            await self._apply_outcome(invocation, details, outcome, payload)
        return on_confirm

    async def _apply_outcome(
        self,
        invocation: ToolInvocation,
        details: ConfirmationDetails,
        outcome: ToolConfirmationOutcome,
        payload: dict[str, Any] | None,
    ) -> None:
        logger.debug("Confirmation outcome for %s: %s", invocation.tool.name, outcome.value)
        if outcome == ToolConfirmationOutcome.MODIFY_WITH_EDITOR:
            if payload is not None:
                await invocation.apply_modification(payload)
            return
        if outcome in (ToolConfirmationOutcome.PROCEED_ONCE, ToolConfirmationOutcome.CANCEL):
            return

        if isinstance(details, McpConfirmationDetails):
            if outcome == ToolConfirmationOutcome.PROCEED_ALWAYS_SERVER:
                self.allowlist.add_server(details.server_name)
            elif outcome in (
                ToolConfirmationOutcome.PROCEED_ALWAYS_TOOL,
                ToolConfirmationOutcome.PROCEED_ALWAYS,
            ):
                self.allowlist.add_tool(details.server_name, details.tool_name)
        elif isinstance(details, ExecConfirmationDetails):
            if outcome == ToolConfirmationOutcome.PROCEED_ALWAYS:
                self.allowlist.add_shell_prefixes(details.roots_to_allow)
        elif isinstance(details, (EditConfirmationDetails, InfoConfirmationDetails)):
            if outcome == ToolConfirmationOutcome.PROCEED_ALWAYS:
                self.set_approval_mode(ApprovalMode.AUTO_EDIT)
        else:
            raise TypeError(f"Unknown confirmation details type: {type(details).__name__}")
