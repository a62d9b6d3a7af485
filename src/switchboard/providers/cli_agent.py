"""Shared machinery for agents backed by a JSON-lines command-line tool.

Subclasses supply the command line, the environment and a mapping from the
tool's events to AgentMessages. Everything else (working directories, prompt
assembly, plan extraction, step bookkeeping) lives here.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from switchboard.agent.base import BaseAgent
from switchboard.agent.models import (
    AgentConfig,
    AgentMessage,
    AgentMessageType,
    AgentOptions,
    AgentSession,
    ExecuteOptions,
    TaskPlan,
)
from switchboard.agent.planning import (
    DEFAULT_MAX_HISTORY_TOKENS,
    PLANNING_INSTRUCTION,
    DirectAnswer,
    PlanResponse,
    format_conversation_history,
    format_plan_for_execution,
    get_workspace_instruction,
    parse_plan_from_response,
    parse_planning_response,
)
from switchboard.providers._subprocess import build_env, resolve_cli, stream_json_lines
from switchboard.providers.workspace import get_session_work_dir, image_instruction, save_images

logger = logging.getLogger(__name__)


@dataclass
class StreamState:
    """Per-invocation dedupe bookkeeping for event mapping."""

    sent_text: set[str] = field(default_factory=set)
    sent_tools: set[str] = field(default_factory=set)
    cli_session_id: str | None = None

    def first_text(self, text: str) -> bool:
        key = text[:100]
        if key in self.sent_text:
            return False
        self.sent_text.add(key)
        return True

    def first_tool(self, tool_id: str) -> bool:
        if tool_id in self.sent_tools:
            return False
        self.sent_tools.add(tool_id)
        return True


class CliAgent(BaseAgent):
    cli_name: str = ""
    cli_env_var: str | None = None
    search_paths: tuple[Path, ...] = ()

    def __init__(self, config: AgentConfig) -> None:
        super().__init__(config)
        self._cli_path: str | None = None

    # -- Hooks ---------------------------------------------------------------

    @abstractmethod
    def build_command(
        self, cli: str, prompt: str, options: AgentOptions, *, planning: bool, cwd: Path
    ) -> list[str]:
        """Command line for one invocation."""

    @abstractmethod
    def env_overrides(self) -> dict[str, str | None]:
        """Credentials and settings passed through the environment."""

    @abstractmethod
    def map_event(self, event: dict[str, Any], state: StreamState) -> list[AgentMessage]:
        """Translate one decoded output line into zero or more messages."""

    # -- Helpers -------------------------------------------------------------

    def find_cli(self) -> str | None:
        if self._cli_path is None:
            configured = self.config.provider_config.get("cliPath")
            self._cli_path = resolve_cli(configured or self.cli_name, self.search_paths, self.cli_env_var)
        return self._cli_path

    def cli_missing(self) -> AgentMessage:
        return AgentMessage.error(
            f"{self.cli_name} CLI not found. Install it or set cliPath in the provider config."
        )

    def session_cwd(self, options: AgentOptions, prompt: str) -> Path:
        return get_session_work_dir(options.cwd or self.config.work_dir, prompt, options.task_id)

    def compose_prompt(self, prompt: str, options: AgentOptions, cwd: Path) -> str:
        max_tokens = int(self.config.provider_config.get("maxHistoryTokens", DEFAULT_MAX_HISTORY_TOKENS))
        history = format_conversation_history(options.conversation, max_tokens)
        workspace = get_workspace_instruction(str(cwd), options.sandbox)
        images = image_instruction(save_images(options.images, cwd))
        if images:
            return f"{images}{prompt}\n\n{workspace}{history}"
        return f"{workspace}{history}{prompt}"

    async def stream_cli(
        self,
        cli: str,
        prompt: str,
        options: AgentOptions,
        session: AgentSession,
        *,
        planning: bool,
        cwd: Path,
    ) -> AsyncIterator[AgentMessage]:
        cmd = self.build_command(cli, prompt, options, planning=planning, cwd=cwd)
        state = StreamState()
        logger.info("[%s %s] Working directory: %s", self.provider, session.id, cwd)
        async for event in stream_json_lines(
            cmd, cwd=cwd, env=build_env(self.env_overrides()), abort=session.abort
        ):
            for message in self.map_event(event, state):
                yield message

    # -- BaseAgent -----------------------------------------------------------

    async def is_available(self) -> bool:
        return self.find_cli() is not None

    async def _run(
        self, prompt: str, options: AgentOptions, session: AgentSession
    ) -> AsyncIterator[AgentMessage]:
        cli = self.find_cli()
        if cli is None:
            yield self.cli_missing()
            return
        cwd = self.session_cwd(options, prompt)
        full_prompt = self.compose_prompt(prompt, options, cwd)
        async for message in self.stream_cli(cli, full_prompt, options, session, planning=False, cwd=cwd):
            yield message

    async def _plan(
        self, prompt: str, options: AgentOptions, session: AgentSession
    ) -> AsyncIterator[AgentMessage]:
        cli = self.find_cli()
        if cli is None:
            yield self.cli_missing()
            return
        cwd = self.session_cwd(options, prompt)
        history = format_conversation_history(options.conversation)
        planning_prompt = get_workspace_instruction(str(cwd)) + history + PLANNING_INSTRUCTION + prompt

        chunks: list[str] = []
        async for message in self.stream_cli(cli, planning_prompt, options, session, planning=True, cwd=cwd):
            if message.type == AgentMessageType.TEXT and message.content:
                chunks.append(message.content)
            if message.type == AgentMessageType.RESULT:
                continue
            yield message

        full_response = "\n".join(chunks)
        result = parse_planning_response(full_response)
        if isinstance(result, DirectAnswer):
            yield AgentMessage(type=AgentMessageType.DIRECT_ANSWER, content=result.answer)
            return
        if isinstance(result, PlanResponse) and result.plan.steps:
            yield AgentMessage(type=AgentMessageType.PLAN, plan=result.plan)
            return
        plan = parse_plan_from_response(full_response)
        if plan is not None and plan.steps:
            yield AgentMessage(type=AgentMessageType.PLAN, plan=plan)
            return
        logger.info("[%s %s] No plan found, treating as direct answer", self.provider, session.id)
        yield AgentMessage(type=AgentMessageType.DIRECT_ANSWER, content=full_response.strip())

    async def _execute(
        self, plan: TaskPlan, options: ExecuteOptions, session: AgentSession
    ) -> AsyncIterator[AgentMessage]:
        cli = self.find_cli()
        if cli is None:
            yield self.cli_missing()
            return
        cwd = self.session_cwd(options, options.original_prompt)
        prompt = (
            format_plan_for_execution(plan, str(cwd), options.sandbox)
            + options.original_prompt
        )
        logger.info("[%s %s] Using plan: %s (%s)", self.provider, session.id, plan.id, plan.goal)

        step = plan.next_pending()
        if step is not None:
            self.begin_step(plan, step)
        ok = False
        try:
            async for message in self.stream_cli(cli, prompt, options, session, planning=False, cwd=cwd):
                if message.type == AgentMessageType.RESULT:
                    ok = not message.is_error
                yield message
        finally:
            self.finish_plan(plan, ok)
