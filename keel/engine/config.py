"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via KEEL_* env vars.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from keel.shared.services.command_policy import CommandPolicy

from .mcp_client.config import McpServerConfig
from .models import ApprovalMode

logger = logging.getLogger(__name__)


# Optional async callback for real-time event observation.
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]

# Optional async callback for streamed tool output.
# Signature: async def callback(output: str) -> None
OutputCallback = Callable[[str], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set, logging and swallowing errors."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.debug("Event callback raised for %s", event.get("event"), exc_info=True)


def _split_list(value: str) -> list[str]:
    """Comma-separated env value to list; commas inside parentheses are kept."""
    items: list[str] = []
    depth = 0
    current = ""
    for ch in value:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        if ch == "," and depth == 0:
            if current.strip():
                items.append(current.strip())
            current = ""
            continue
        current += ch
    if current.strip():
        items.append(current.strip())
    return items


def parse_approval_mode(value: str | ApprovalMode | None) -> ApprovalMode:
    """Parse an approval mode string, falling back to DEFAULT."""
    if isinstance(value, ApprovalMode):
        return value
    if not value:
        return ApprovalMode.DEFAULT
    mapping = {
        "default": ApprovalMode.DEFAULT,
        "auto_edit": ApprovalMode.AUTO_EDIT,
        "autoEdit": ApprovalMode.AUTO_EDIT,
        "auto-edit": ApprovalMode.AUTO_EDIT,
        "yolo": ApprovalMode.YOLO,
    }
    mode = mapping.get(str(value).strip())
    if mode is None:
        logger.warning("Unknown approval mode '%s', using default", value)
        return ApprovalMode.DEFAULT
    return mode


@dataclass
class EngineConfig:
    """Tool execution engine configuration."""

    # Root directory tools may touch; edit paths must live under it.
    target_dir: str = "."
    approval_mode: ApprovalMode = ApprovalMode.DEFAULT

    # Tool lists. "run_shell_command(git)" entries scope the shell tool
    # to command prefixes; a bare "run_shell_command" allows everything.
    core_tools: list[str] = field(default_factory=list)
    exclude_tools: list[str] = field(default_factory=list)

    # MCP servers keyed by name
    mcp_servers: dict[str, McpServerConfig] = field(default_factory=dict)
    # Default per-server connect/call timeout in seconds
    mcp_timeout_seconds: float = 600.0

    # Model used by the edit reconciler for anchor repair
    correction_model: str | None = None

    # Minimum seconds between streamed shell output updates
    shell_update_interval_seconds: float = 1.0

    # Logging
    log_level: str = "INFO"

    # Optional async callback for real-time event observation.
    # Receives dicts like {"event": "tool_call_started", "name": "...", ...}
    event_callback: EventCallback | None = field(default=None, repr=False)

    @property
    def command_policy(self) -> CommandPolicy:
        return CommandPolicy(
            core_tools=list(self.core_tools),
            exclude_tools=list(self.exclude_tools),
        )

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from KEEL_* environment variables."""
        keel_vars = {
            k: v for k, v in os.environ.items() if k.startswith("KEEL_")
        }
        if keel_vars:
            logger.info(
                "EngineConfig.from_env: KEEL_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(keel_vars.items())),
            )
        else:
            logger.debug("EngineConfig.from_env: no KEEL_* env vars set, using defaults")

        config = cls(
            target_dir=os.getenv("KEEL_TARGET_DIR", cls.target_dir),
            approval_mode=parse_approval_mode(os.getenv("KEEL_APPROVAL_MODE")),
            core_tools=_split_list(os.getenv("KEEL_CORE_TOOLS", "")),
            exclude_tools=_split_list(os.getenv("KEEL_EXCLUDE_TOOLS", "")),
            mcp_timeout_seconds=float(os.getenv(
                "KEEL_MCP_TIMEOUT", str(cls.mcp_timeout_seconds)
            )),
            correction_model=os.getenv("KEEL_CORRECTION_MODEL") or None,
            shell_update_interval_seconds=float(os.getenv(
                "KEEL_SHELL_UPDATE_INTERVAL",
                str(cls.shell_update_interval_seconds),
            )),
            log_level=os.getenv("KEEL_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "EngineConfig.from_env: target_dir=%s approval_mode=%s log_level=%s",
            config.target_dir, config.approval_mode.value, config.log_level,
        )
        return config
