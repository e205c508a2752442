"""CLI entry point for the tool execution engine.

Usage:
    keel check "git status && rm -rf build"
    keel run "ls -la"
    keel --config keel.yaml mcp-tools
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from keel.shared.services.allowlist import SessionAllowlist
from keel.shared.services.command_policy import check_command_permissions

from .config import EngineConfig
from .confirmation import ConfirmationGate
from .executor import ToolExecutor
from .mcp_client.bridge import ExternalToolBridge
from .models import (
    ConfirmationDetails,
    ExecConfirmationDetails,
    ToolCallRequest,
    ToolConfirmationOutcome,
)
from .tools import SHELL_TOOL_NAME, create_default_catalog
from .tools.base import ToolInvocation
from .yaml_config import load_yaml_config

logger = logging.getLogger(__name__)


def _load_config(args: argparse.Namespace) -> EngineConfig:
    config = load_yaml_config(args.config) if args.config else EngineConfig.from_env()
    if args.cwd is not None:
        config.target_dir = args.cwd
    return config


async def _prompt_confirmation(
    invocation: ToolInvocation, details: ConfirmationDetails,
) -> ToolConfirmationOutcome:
    print(f"\n{details.title}")
    if isinstance(details, ExecConfirmationDetails):
        print(f"  {details.command}")
        if details.roots_to_allow:
            print(f"  (always allow: {', '.join(details.roots_to_allow)})")
    else:
        print(f"  {invocation.get_description()}")
    answer = await asyncio.to_thread(input, "Proceed? [y/N/a(lways)] ")
    answer = answer.strip().lower()
    if answer in ("y", "yes"):
        return ToolConfirmationOutcome.PROCEED_ONCE
    if answer in ("a", "always"):
        return ToolConfirmationOutcome.PROCEED_ALWAYS
    return ToolConfirmationOutcome.CANCEL


async def _run_command(config: EngineConfig, command: str) -> int:
    catalog = create_default_catalog(config)
    gate = ConfirmationGate(config, SessionAllowlist())
    executor = ToolExecutor(catalog, gate, _prompt_confirmation)

    async def show(output: str) -> None:
        print(output, flush=True)

    abort_event = asyncio.Event()
    response = await executor.execute_tool_call(
        ToolCallRequest(SHELL_TOOL_NAME, {"command": command}),
        abort_event,
        update_output=show,
    )
    print(response.result.llm_content)
    return 0 if response.result.ok else 1


def _check_command(config: EngineConfig, command: str) -> int:
    result = check_command_permissions(command, config.command_policy)
    if result.all_allowed:
        print(f"allowed: {command}")
        return 0
    kind = "hard" if result.is_hard_denial else "soft"
    print(f"denied ({kind}): {result.block_reason}")
    for cmd in result.disallowed_commands:
        print(f"  - {cmd}")
    return 2 if result.is_hard_denial else 1


async def _list_mcp_tools(config: EngineConfig) -> int:
    if not config.mcp_servers:
        print("No MCP servers configured.")
        return 1
    catalog = create_default_catalog(config)
    bridge = ExternalToolBridge(catalog, default_timeout=config.mcp_timeout_seconds)
    try:
        discovered = await bridge.discover(config.mcp_servers)
        for server_name in config.mcp_servers:
            status = bridge.get_status(server_name).value
            print(f"{server_name} ({status})")
            for tool in catalog.get_by_server(server_name):
                print(f"  {tool.name}: {tool.description.splitlines()[0] if tool.description else ''}")
    finally:
        await bridge.aclose()
    return 0 if discovered else 1


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="keel",
        description="Tool execution core for LLM coding agents",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file (default: KEEL_* environment variables)",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Target directory for tools (default: from config)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="subcommand", required=True)

    run_parser = subparsers.add_parser("run", help="Run a shell command through the engine")
    run_parser.add_argument("command", help="Shell command to run")

    check_parser = subparsers.add_parser("check", help="Print the policy verdict for a command")
    check_parser.add_argument("command", help="Shell command to check")

    subparsers.add_parser("mcp-tools", help="Discover and list MCP server tools")

    args = parser.parse_args()

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )

    config = _load_config(args)

    try:
        if args.subcommand == "check":
            code = _check_command(config, args.command)
        elif args.subcommand == "run":
            code = asyncio.run(_run_command(config, args.command))
        else:
            code = asyncio.run(_list_mcp_tools(config))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
