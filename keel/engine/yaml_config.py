"""YAML configuration loader.

Loads a single YAML file into an EngineConfig. Keys that are absent
keep the EngineConfig defaults.

Example YAML:
    engine:
      target_dir: /path/to/project
      approval_mode: default       # default | auto_edit | yolo
      mcp_timeout_seconds: 60
      correction_model: gemini-2.5-flash
      shell_update_interval_seconds: 1.0
      log_level: INFO

    tools:
      core:
        - run_shell_command(git)
        - run_shell_command(ls)
      exclude:
        - run_shell_command(rm)

    mcp_servers:
      filesystem:
        command: npx
        args: ["-y", "@modelcontextprotocol/server-filesystem", "."]
        timeout: 30
      search:
        url: http://localhost:8080/sse
        trust: true
"""
from __future__ import annotations

import logging
from pathlib import Path

import yaml

from .config import EngineConfig, parse_approval_mode
from .mcp_client.config import parse_mcp_servers

logger = logging.getLogger(__name__)


def _as_list(value: object, section: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    logger.warning("Ignoring non-list value for %s: %r", section, value)
    return []


def load_yaml_config(path: str | Path) -> EngineConfig:
    """Load and parse a YAML config file.

    Raises FileNotFoundError for a missing file and yaml.YAMLError for
    invalid YAML, after logging either.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists()
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        logger.info("load_yaml_config: successfully read and parsed %s", path)
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute()
        )
        raise
    except yaml.YAMLError as exc:
        logger.error(
            "load_yaml_config: YAML parse error in %s: %s",
            path, exc
        )
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"Config root in {path} must be a mapping")

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    # ── Engine section ─────────────────────────────────────────
    engine_raw = raw.get("engine") or {}
    correction_model = engine_raw.get(
        "correction_model", EngineConfig.correction_model
    )
    config = EngineConfig(
        target_dir=str(engine_raw.get("target_dir", EngineConfig.target_dir)),
        approval_mode=parse_approval_mode(engine_raw.get("approval_mode")),
        mcp_timeout_seconds=float(engine_raw.get(
            "mcp_timeout_seconds", EngineConfig.mcp_timeout_seconds
        )),
        correction_model=str(correction_model) if correction_model else None,
        shell_update_interval_seconds=float(engine_raw.get(
            "shell_update_interval_seconds",
            EngineConfig.shell_update_interval_seconds,
        )),
        log_level=str(engine_raw.get("log_level", EngineConfig.log_level)),
    )

    # ── Tool lists ─────────────────────────────────────────────
    tools_raw = raw.get("tools") or {}
    config.core_tools = _as_list(tools_raw.get("core"), "tools.core")
    config.exclude_tools = _as_list(tools_raw.get("exclude"), "tools.exclude")

    # ── MCP servers ────────────────────────────────────────────
    servers_raw = raw.get("mcp_servers")
    if servers_raw is None:
        servers_raw = raw.get("mcpServers")
    config.mcp_servers = parse_mcp_servers(servers_raw)

    logger.info(
        "Loaded config: approval_mode=%s core_tools=%d exclude_tools=%d "
        "mcp_servers=%d",
        config.approval_mode.value, len(config.core_tools),
        len(config.exclude_tools), len(config.mcp_servers),
    )
    return config
