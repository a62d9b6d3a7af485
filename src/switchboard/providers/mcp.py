"""MCP server and skill settings handed to CLI providers.

MCP servers are merged from three files, later ones winning per server name:
the Claude user settings, the switchboard data dir, then an explicit path.
Each file is either ``{"mcpServers": {...}}`` or a bare ``{name: server}`` map.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from switchboard.agent.models import McpConfig, SkillsConfig
from switchboard.config import get_data_dir

logger = logging.getLogger(__name__)

MCP_CONFIG_FILENAME = "mcp.json"
SKILLS_DIRNAME = "skills"


def claude_dir() -> Path:
    return Path.home() / ".claude"


def user_mcp_config_path() -> Path:
    return claude_dir() / "settings.json"


def app_mcp_config_path() -> Path:
    return get_data_dir() / MCP_CONFIG_FILENAME


def _normalize_server(name: str, raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    if raw.get("url"):
        server: dict[str, Any] = {
            "type": "sse" if raw.get("type") == "sse" else "http",
            "url": raw["url"],
        }
        if raw.get("headers"):
            server["headers"] = raw["headers"]
        return server
    if raw.get("command"):
        server = {"type": "stdio", "command": raw["command"]}
        for key in ("args", "env"):
            if raw.get(key):
                server[key] = raw[key]
        return server
    logger.debug("Skipping MCP server %s: neither url nor command", name)
    return None


def load_mcp_servers_from_file(path: Path) -> dict[str, dict[str, Any]]:
    """Servers declared in *path*; a missing or unreadable file declares none."""
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return {}
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring MCP config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        return {}
    declared = data["mcpServers"] if "mcpServers" in data else data
    if not isinstance(declared, dict):
        return {}

    servers = {}
    for name, raw in declared.items():
        server = _normalize_server(name, raw)
        if server is not None:
            servers[name] = server
    if servers:
        logger.info("Loaded %d MCP server(s) from %s", len(servers), path)
    return servers


def load_mcp_servers(config: McpConfig | None) -> dict[str, dict[str, Any]]:
    config = config or McpConfig()
    if not config.enabled:
        return {}
    paths: list[Path] = []
    if config.user_dir_enabled:
        paths.append(user_mcp_config_path())
    if config.app_dir_enabled:
        paths.append(app_mcp_config_path())
    if config.mcp_config_path:
        paths.append(Path(config.mcp_config_path).expanduser())

    servers: dict[str, dict[str, Any]] = {}
    for path in paths:
        servers.update(load_mcp_servers_from_file(path))
    return servers


def setting_sources(config: SkillsConfig | None) -> list[str]:
    """Claude setting sources: user skills load from ~/.claude, project ones from the workspace."""
    config = config or SkillsConfig()
    if not config.enabled or not config.user_dir_enabled:
        return ["project"]
    return ["user", "project"]


def app_skills_dir(config: SkillsConfig | None) -> Path | None:
    """The switchboard skills directory to expose to the agent, if enabled and present."""
    config = config or SkillsConfig()
    if not config.enabled or not config.app_dir_enabled:
        return None
    path = Path(config.skills_path).expanduser() if config.skills_path else get_data_dir() / SKILLS_DIRNAME
    return path if path.is_dir() else None
