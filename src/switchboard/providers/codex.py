"""OpenAI Codex CLI provider (``codex exec --json``)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from switchboard.agent.models import AgentConfig, AgentMessage, AgentMessageType, AgentOptions
from switchboard.agent.plugin import CODEX_METADATA, define_agent_plugin
from switchboard.providers.cli_agent import CliAgent, StreamState

logger = logging.getLogger(__name__)


def _tool_use(item: dict[str, Any]) -> AgentMessage | None:
    item_type = item.get("type")
    if item_type == "command_execution":
        return AgentMessage(
            type=AgentMessageType.TOOL_USE,
            id=str(item.get("id", "")),
            name="Bash",
            input={"command": item.get("command", "")},
        )
    if item_type == "file_change":
        return AgentMessage(
            type=AgentMessageType.TOOL_USE,
            id=str(item.get("id", "")),
            name="Edit",
            input={"changes": item.get("changes", [])},
        )
    return None


def map_codex_event(event: dict[str, Any], state: StreamState) -> list[AgentMessage]:
    """Map one ``codex exec --json`` event to messages."""
    messages: list[AgentMessage] = []
    event_type = event.get("type")
    item = event.get("item") if isinstance(event.get("item"), dict) else {}
    item_id = str(item.get("id", ""))

    if event_type == "thread.started":
        state.cli_session_id = event.get("thread_id")

    elif event_type == "item.started":
        tool = _tool_use(item)
        if tool is not None and state.first_tool(item_id):
            messages.append(tool)

    elif event_type == "item.completed":
        item_type = item.get("type")
        if item_type == "agent_message":
            text = str(item.get("text", ""))
            if text and state.first_text(text):
                messages.append(AgentMessage.text(text))
        elif item_type in ("command_execution", "file_change"):
            tool = _tool_use(item)
            if tool is not None and state.first_tool(item_id):
                messages.append(tool)
            exit_code = item.get("exit_code")
            failed = item.get("status") == "failed" or exit_code not in (None, 0)
            messages.append(
                AgentMessage(
                    type=AgentMessageType.TOOL_RESULT,
                    tool_use_id=item_id,
                    output=str(item.get("aggregated_output", item.get("status", ""))),
                    is_error=failed,
                )
            )
        elif item_type == "error":
            logger.warning("codex: %s", item.get("message"))

    elif event_type == "turn.completed":
        messages.append(AgentMessage(type=AgentMessageType.RESULT, content="success", is_error=False))

    elif event_type == "turn.failed":
        error = event.get("error") or {}
        messages.append(AgentMessage.error(str(error.get("message") or "Codex turn failed")))

    elif event_type == "error":
        messages.append(AgentMessage.error(str(event.get("message") or "Codex error")))

    elif event_type == "raw":
        logger.debug("codex: %s", event.get("text"))

    return messages


class CodexAgent(CliAgent):
    provider = "codex"
    cli_name = "codex"
    cli_env_var = "CODEX_PATH"
    search_paths = (
        Path("/usr/local/bin/codex"),
        Path("/opt/homebrew/bin/codex"),
        Path.home() / ".local" / "bin" / "codex",
        Path.home() / ".npm-global" / "bin" / "codex",
    )

    @property
    def name(self) -> str:
        return "Codex CLI"

    def build_command(
        self, cli: str, prompt: str, options: AgentOptions, *, planning: bool, cwd: Path
    ) -> list[str]:
        cmd = [cli, "exec", "--json", "--skip-git-repo-check", "--cd", str(cwd)]
        if self.config.model:
            cmd += ["--model", self.config.model]
        if planning or options.permission_mode == "plan":
            cmd += ["--sandbox", "read-only"]
        elif options.permission_mode == "execute":
            cmd += ["--full-auto"]
        else:
            cmd += ["--dangerously-bypass-approvals-and-sandbox"]
        cmd.append(prompt)
        return cmd

    def env_overrides(self) -> dict[str, str | None]:
        return {
            "OPENAI_API_KEY": self.config.api_key,
            "OPENAI_BASE_URL": self.config.base_url,
        }

    def map_event(self, event: dict[str, Any], state: StreamState) -> list[AgentMessage]:
        return map_codex_event(event, state)


def create_codex_agent(config: AgentConfig) -> CodexAgent:
    return CodexAgent(config)


codex_plugin = define_agent_plugin(CODEX_METADATA, create_codex_agent)
