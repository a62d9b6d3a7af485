"""Claude Code CLI provider (``claude -p --output-format stream-json``)."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from switchboard.agent.models import (
    DEFAULT_ALLOWED_TOOLS,
    AgentConfig,
    AgentMessage,
    AgentMessageType,
    AgentOptions,
)
from switchboard.agent.plugin import CLAUDE_METADATA, define_agent_plugin
from switchboard.providers.cli_agent import CliAgent, StreamState
from switchboard.providers.mcp import app_skills_dir, load_mcp_servers, setting_sources

logger = logging.getLogger(__name__)

_LOGIN_HINT_RE = re.compile(r"\s*[-·•]?\s*Please run /login\.?", re.IGNORECASE)
_API_KEY_ERROR_RE = re.compile(
    r"invalid api key|invalid_api_key|api key.*invalid|authentication.*fail|unauthorized",
    re.IGNORECASE,
)
API_KEY_ERROR_TEXT = "Authentication failed. Check the API key in the provider configuration."


def sanitize_text(text: str) -> str:
    """Hide CLI login hints and collapse auth failures into one message."""
    if _API_KEY_ERROR_RE.search(text):
        return API_KEY_ERROR_TEXT
    return _LOGIN_HINT_RE.sub("", text)


def _tool_output(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content)


def map_claude_event(event: dict[str, Any], state: StreamState) -> list[AgentMessage]:
    """Map one stream-json event to messages, skipping repeated text and tool ids."""
    messages: list[AgentMessage] = []
    event_type = event.get("type")
    content = (event.get("message") or {}).get("content")

    if event_type == "system":
        state.cli_session_id = event.get("session_id") or state.cli_session_id

    elif event_type == "assistant" and isinstance(content, list):
        for block in content:
            if not isinstance(block, dict):
                continue
            if "text" in block:
                text = sanitize_text(str(block["text"]))
                if state.first_text(text):
                    messages.append(AgentMessage.text(text))
            elif "name" in block and "id" in block:
                if state.first_tool(str(block["id"])):
                    messages.append(
                        AgentMessage(
                            type=AgentMessageType.TOOL_USE,
                            id=str(block["id"]),
                            name=str(block["name"]),
                            input=block.get("input"),
                        )
                    )

    elif event_type == "user" and isinstance(content, list):
        for block in content:
            if not isinstance(block, dict) or block.get("type") != "tool_result":
                continue
            tool_use_id = block.get("tool_use_id", block.get("toolUseId"))
            is_error = block.get("is_error", block.get("isError"))
            messages.append(
                AgentMessage(
                    type=AgentMessageType.TOOL_RESULT,
                    tool_use_id=str(tool_use_id or ""),
                    output=_tool_output(block.get("content")),
                    is_error=is_error if isinstance(is_error, bool) else False,
                )
            )

    elif event_type == "result":
        messages.append(
            AgentMessage(
                type=AgentMessageType.RESULT,
                content=event.get("subtype"),
                cost=event.get("total_cost_usd"),
                duration=event.get("duration_ms"),
                is_error=bool(event.get("is_error", False)),
            )
        )

    elif event_type == "raw":
        logger.debug("claude: %s", event.get("text"))

    return messages


class ClaudeAgent(CliAgent):
    provider = "claude"
    cli_name = "claude"
    cli_env_var = "CLAUDE_PATH"
    search_paths = (
        Path.home() / ".local" / "bin" / "claude",
        Path("/usr/local/bin/claude"),
        Path("/opt/homebrew/bin/claude"),
        Path.home() / ".npm-global" / "bin" / "claude",
        Path.home() / ".claude" / "local" / "claude",
    )

    @property
    def name(self) -> str:
        return "Claude Agent"

    def build_command(
        self, cli: str, prompt: str, options: AgentOptions, *, planning: bool, cwd: Path
    ) -> list[str]:
        cmd = [cli, "-p", prompt, "--output-format", "stream-json", "--verbose"]
        if self.config.model:
            cmd += ["--model", self.config.model]
        if planning or options.permission_mode == "plan":
            cmd += ["--permission-mode", "plan"]
        else:
            tools = list(options.allowed_tools or DEFAULT_ALLOWED_TOOLS)
            if options.sandbox is not None and options.sandbox.enabled:
                tools.append("mcp__sandbox__sandbox_run_script")
            cmd += ["--allowedTools", ",".join(tools), "--dangerously-skip-permissions"]
        cmd += ["--setting-sources", ",".join(setting_sources(options.skills_config))]
        skills_dir = app_skills_dir(options.skills_config)
        if skills_dir is not None:
            cmd += ["--add-dir", str(skills_dir)]
        servers = load_mcp_servers(options.mcp_config)
        if servers:
            logger.info("MCP servers for %s: %s", self.provider, ", ".join(servers))
            cmd += ["--mcp-config", json.dumps({"mcpServers": servers})]
        return cmd

    def env_overrides(self) -> dict[str, str | None]:
        return {
            "ANTHROPIC_API_KEY": self.config.api_key,
            "ANTHROPIC_BASE_URL": self.config.base_url,
        }

    def map_event(self, event: dict[str, Any], state: StreamState) -> list[AgentMessage]:
        return map_claude_event(event, state)

    def get_capabilities(self) -> dict[str, Any]:
        capabilities = super().get_capabilities()
        capabilities["supports_sandbox"] = True
        return capabilities


def create_claude_agent(config: AgentConfig) -> ClaudeAgent:
    return ClaudeAgent(config)


claude_plugin = define_agent_plugin(CLAUDE_METADATA, create_claude_agent)
