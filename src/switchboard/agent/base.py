"""BaseAgent: the contract every agent provider implements.

Providers implement the protected generators ``_run``, ``_plan`` and
``_execute``. The public ``run``, ``plan`` and ``execute`` wrap them so that
every provider, whatever it talks to, behaves the same way:

- the stream opens with a ``session`` message
- the stream closes with exactly one ``done`` or ``error`` (see ``guard_stream``)
- plans emitted by ``plan`` are stored on the instance, keyed by id
- ``execute`` refuses unknown plan ids without doing anything
- the session returns to ``idle`` once the stream ends
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from typing import Any

from switchboard.agent.abort import AbortHandle
from switchboard.agent.models import (
    AgentConfig,
    AgentMessage,
    AgentMessageType,
    AgentOptions,
    AgentSession,
    ExecuteOptions,
    PlanStep,
    SessionPhase,
    StepStatus,
    TaskPlan,
)
from switchboard.agent.stream import guard_stream
from switchboard.config import SESSION_MAX_AGE_SEC

logger = logging.getLogger(__name__)


class BaseAgent(ABC):
    """Session bookkeeping and plan storage shared by all providers."""

    provider: str = "custom"
    version: str = "1.0.0"

    def __init__(self, config: AgentConfig) -> None:
        self.config = config
        self.sessions: dict[str, AgentSession] = {}
        self.plans: dict[str, TaskPlan] = {}

    @property
    def type(self) -> str:
        return self.provider

    @property
    def name(self) -> str:
        return f"{self.provider} Agent"

    # -- Sessions ------------------------------------------------------------

    def create_session(
        self,
        phase: SessionPhase = SessionPhase.IDLE,
        *,
        session_id: str | None = None,
        abort: AbortHandle | None = None,
    ) -> AgentSession:
        kwargs: dict[str, Any] = {"phase": phase, "config": self.config}
        if session_id:
            kwargs["id"] = session_id
        if abort is not None:
            kwargs["abort"] = abort
        session = AgentSession(**kwargs)
        self.sessions[session.id] = session
        return session

    def get_session(self, session_id: str) -> AgentSession | None:
        return self.sessions.get(session_id)

    def update_session_phase(self, session_id: str, phase: SessionPhase) -> None:
        session = self.sessions.get(session_id)
        if session is not None:
            session.phase = phase

    def cleanup_sessions(self, max_age: float = SESSION_MAX_AGE_SEC) -> int:
        """Drop idle sessions older than *max_age* seconds. Returns the count removed."""
        cutoff = datetime.now(UTC) - timedelta(seconds=max_age)
        stale = [
            sid
            for sid, s in self.sessions.items()
            if s.created_at < cutoff and s.phase == SessionPhase.IDLE
        ]
        for sid in stale:
            del self.sessions[sid]
        return len(stale)

    async def stop(self, session_id: str) -> None:
        """Ask the session's stream to stop. Unknown or finished sessions are a no-op."""
        session = self.sessions.get(session_id)
        if session is None:
            return
        session.is_aborted = True
        session.abort.abort("stopped")
        session.phase = SessionPhase.IDLE

    # -- Plans ---------------------------------------------------------------

    def store_plan(self, plan: TaskPlan) -> None:
        self.plans[plan.id] = plan

    def get_plan(self, plan_id: str) -> TaskPlan | None:
        return self.plans.get(plan_id)

    def delete_plan(self, plan_id: str) -> None:
        self.plans.pop(plan_id, None)

    def begin_step(self, plan: TaskPlan, step: PlanStep) -> None:
        plan.mark_step(step.id, StepStatus.IN_PROGRESS)

    def complete_step(self, plan: TaskPlan, step: PlanStep) -> None:
        plan.mark_step(step.id, StepStatus.COMPLETED)

    def fail_step(self, plan: TaskPlan, step: PlanStep) -> None:
        plan.mark_step(step.id, StepStatus.FAILED)

    def finish_plan(self, plan: TaskPlan, ok: bool) -> None:
        """Settle step statuses once a single-shot execution ends.

        On success every unfinished step is completed. On failure the step in
        progress, or else the first pending one, is marked failed.
        """
        if ok:
            for step in plan.steps:
                if step.status == StepStatus.FAILED:
                    plan.mark_step(step.id, StepStatus.IN_PROGRESS)
                if step.status != StepStatus.COMPLETED:
                    plan.mark_step(step.id, StepStatus.COMPLETED)
            return
        for step in plan.steps:
            if step.status == StepStatus.IN_PROGRESS:
                plan.mark_step(step.id, StepStatus.FAILED)
                return
        pending = plan.next_pending()
        if pending is not None and pending.status == StepStatus.PENDING:
            plan.mark_step(pending.id, StepStatus.FAILED)

    # -- Public contract -----------------------------------------------------

    async def run(self, prompt: str, options: AgentOptions | None = None) -> AsyncIterator[AgentMessage]:
        """Direct, single-phase execution."""
        options = options or AgentOptions()
        session = self.create_session(
            SessionPhase.EXECUTING, session_id=options.session_id, abort=options.abort
        )
        async for message in self._drive(session, self._run(prompt, options, session)):
            yield message

    async def plan(self, prompt: str, options: AgentOptions | None = None) -> AsyncIterator[AgentMessage]:
        """Planning phase only: yields a plan (or a direct answer), performs no actions."""
        options = options or AgentOptions()
        session = self.create_session(
            SessionPhase.PLANNING, session_id=options.session_id, abort=options.abort
        )
        async for message in self._drive(session, self._plan(prompt, options, session)):
            if message.type == AgentMessageType.PLAN and message.plan is not None:
                self.store_plan(message.plan)
                logger.info(
                    "[%s %s] Plan created: %s with %d steps",
                    self.provider,
                    session.id,
                    message.plan.id,
                    len(message.plan.steps),
                )
            yield message

    async def execute(self, options: ExecuteOptions) -> AsyncIterator[AgentMessage]:
        """Execute an approved plan, inline or looked up by ``plan_id``."""
        session = self.create_session(
            SessionPhase.EXECUTING, session_id=options.session_id, abort=options.abort
        )
        plan = options.plan or self.get_plan(options.plan_id)
        if plan is None:
            logger.warning("[%s %s] Plan not found: %s", self.provider, session.id, options.plan_id)
            yield AgentMessage(type=AgentMessageType.SESSION, session_id=session.id)
            yield AgentMessage.error(f"Plan not found: {options.plan_id}", session.id)
            session.phase = SessionPhase.IDLE
            return
        if options.plan is not None and plan.id not in self.plans:
            self.store_plan(plan)

        async for message in self._drive(session, self._execute(plan, options, session)):
            yield message

    async def _drive(
        self, session: AgentSession, source: AsyncIterator[AgentMessage]
    ) -> AsyncIterator[AgentMessage]:
        try:
            yield AgentMessage(type=AgentMessageType.SESSION, session_id=session.id)
            async for message in guard_stream(source, session_id=session.id, abort=session.abort):
                yield message
        finally:
            session.phase = SessionPhase.IDLE
            if session.abort.aborted:
                session.is_aborted = True

    @abstractmethod
    def _run(
        self, prompt: str, options: AgentOptions, session: AgentSession
    ) -> AsyncIterator[AgentMessage]:
        """Provider-specific direct execution."""

    @abstractmethod
    def _plan(
        self, prompt: str, options: AgentOptions, session: AgentSession
    ) -> AsyncIterator[AgentMessage]:
        """Provider-specific planning."""

    @abstractmethod
    def _execute(
        self, plan: TaskPlan, options: ExecuteOptions, session: AgentSession
    ) -> AsyncIterator[AgentMessage]:
        """Provider-specific execution of *plan*'s steps."""

    # -- Lifecycle -----------------------------------------------------------

    async def is_available(self) -> bool:
        return True

    async def init(self, **overrides: Any) -> None:
        if overrides:
            self.config = self.config.model_copy(update=overrides)

    async def shutdown(self) -> None:
        for session_id, session in list(self.sessions.items()):
            if not session.is_aborted:
                await self.stop(session_id)
        self.sessions.clear()
        self.plans.clear()

    def get_capabilities(self) -> dict[str, Any]:
        return {
            "features": ["run", "plan", "execute", "stop"],
            "supports_plan": True,
            "supports_streaming": True,
            "supports_sandbox": False,
        }
