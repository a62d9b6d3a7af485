"""AgentService: turns API requests into agent calls and tracks plan lineage.

Each plan is remembered together with the agent instance, provider and
session that produced it. Execution always runs on that instance, and a
request that names a different provider or session is rejected.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime

from switchboard.agent.base import BaseAgent
from switchboard.agent.models import (
    AgentConfig,
    AgentMessage,
    AgentMessageType,
    AgentOptions,
    AgentRequest,
    AgentSession,
    ExecuteOptions,
    ModelConfig,
    RequestPhase,
    SessionPhase,
    TaskPlan,
)
from switchboard.agent.registry import AgentRegistry
from switchboard.config import Config
from switchboard.orchestration.background import BackgroundTask, BackgroundTaskCoordinator
from switchboard.orchestration.sessions import SessionStore, check_transition

logger = logging.getLogger(__name__)

MAX_TRANSCRIPTS = 100


class PlanNotFoundError(LookupError):
    """The plan id was never produced by this service, or was deleted."""


class PlanLineageError(LookupError):
    """Execution named a provider or session other than the plan's producer."""


@dataclass
class PlanRecord:
    plan: TaskPlan
    agent: BaseAgent
    provider: str
    session_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class AgentService:
    def __init__(
        self,
        registry: AgentRegistry,
        *,
        sessions: SessionStore | None = None,
        background: BackgroundTaskCoordinator | None = None,
        config: Config | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or Config()
        self.sessions = sessions or SessionStore()
        self.background = background or BackgroundTaskCoordinator(self.config.background_removal_delay)
        self._plans: dict[str, PlanRecord] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._transcripts: dict[str, list[AgentMessage]] = {}

    # -- Agents --------------------------------------------------------------

    def _agent_config(self, provider: str, model_config: ModelConfig | None) -> AgentConfig:
        mc = model_config or ModelConfig()
        return AgentConfig(
            provider=provider,
            api_key=mc.api_key,
            base_url=mc.base_url,
            model=mc.model or self.config.default_model,
            work_dir=self.config.work_dir,
        )

    async def get_agent(
        self, provider: str | None = None, model_config: ModelConfig | None = None
    ) -> BaseAgent:
        """A fresh agent for requests with their own credentials, else the shared instance.

        Raises:
            ProviderNotFoundError: the provider is not registered.
        """
        provider = provider or self.config.default_provider
        config = self._agent_config(provider, model_config)
        if model_config is not None and model_config.is_custom:
            return self.registry.create(config)
        return await self.registry.get_instance(provider, config)

    # -- Sessions ------------------------------------------------------------

    def create_session(self, phase: SessionPhase = SessionPhase.IDLE) -> AgentSession:
        return self.sessions.create(phase)

    def get_session(self, session_id: str) -> AgentSession | None:
        return self.sessions.get(session_id)

    def delete_session(self, session_id: str) -> bool:
        return self.sessions.delete(session_id)

    def stop_agent(self, session_id: str) -> bool:
        return self.sessions.stop(session_id)

    def _options(self, request: AgentRequest, session: AgentSession) -> dict[str, object]:
        return {
            "session_id": session.id,
            "conversation": request.conversation,
            "cwd": request.work_dir,
            "task_id": request.task_id,
            "abort": session.abort,
            "sandbox": request.sandbox_config,
            "images": request.images,
            "skills_config": request.skills_config,
            "mcp_config": request.mcp_config,
        }

    def _check_phase(self, session: AgentSession, phase: SessionPhase) -> None:
        if session.phase != phase:
            check_transition(session.phase, phase)

    async def _retiring(
        self, session: AgentSession, phase: SessionPhase, stream: AsyncIterator[AgentMessage]
    ) -> AsyncIterator[AgentMessage]:
        """Hold *session* in *phase* only while the stream is being consumed."""
        self.sessions.transition(session.id, phase)
        try:
            async for message in stream:
                yield message
        finally:
            if self.sessions.get(session.id) is session:
                self.sessions.retire(session.id)

    # -- Phases --------------------------------------------------------------

    async def run_planning_phase(self, request: AgentRequest) -> AsyncIterator[AgentMessage]:
        """Resolve agent and session, then return the planning stream."""
        agent = await self.get_agent(request.provider, request.model_config_)
        session = self.sessions.get_or_create(request.session_id)
        self._check_phase(session, SessionPhase.PLANNING)
        options = AgentOptions(**self._options(request, session))
        stream = self._record_plans(agent, session, agent.plan(request.prompt, options))
        return self._retiring(session, SessionPhase.PLANNING, stream)

    async def _record_plans(
        self, agent: BaseAgent, session: AgentSession, stream: AsyncIterator[AgentMessage]
    ) -> AsyncIterator[AgentMessage]:
        async for message in stream:
            if message.type == AgentMessageType.PLAN and message.plan is not None:
                self._plans[message.plan.id] = PlanRecord(
                    plan=message.plan,
                    agent=agent,
                    provider=agent.provider,
                    session_id=session.id,
                )
            yield message

    def resolve_plan(self, request: AgentRequest) -> PlanRecord:
        """Find the plan's lineage record and check the request against it.

        Raises:
            PlanNotFoundError: unknown plan id.
            PlanLineageError: provider or session differs from the producer.
        """
        plan_id = request.plan_id or ""
        record = self._plans.get(plan_id)
        if record is None:
            raise PlanNotFoundError(f"Plan not found: {plan_id}")
        if request.provider and request.provider != record.provider:
            raise PlanLineageError(
                f"Plan {plan_id} was produced by provider {record.provider!r}, "
                f"not {request.provider!r}"
            )
        if request.session_id and request.session_id != record.session_id:
            raise PlanLineageError(
                f"Plan {plan_id} belongs to session {record.session_id!r}, "
                f"not {request.session_id!r}"
            )
        return record

    async def run_execution_phase(self, request: AgentRequest) -> AsyncIterator[AgentMessage]:
        """Resolve the plan lineage, then return the execution stream."""
        record = self.resolve_plan(request)
        session = self.sessions.get_or_create(record.session_id)
        self._check_phase(session, SessionPhase.EXECUTING)
        options = ExecuteOptions(
            **self._options(request, session),
            plan_id=record.plan.id,
            original_prompt=request.prompt,
            plan=record.plan,
        )
        logger.info("Executing plan %s on %s (session %s)", record.plan.id, record.provider, session.id)
        return self._retiring(session, SessionPhase.EXECUTING, record.agent.execute(options))

    async def run_agent(self, request: AgentRequest) -> AsyncIterator[AgentMessage]:
        """Resolve agent and session, then return a direct-execution stream."""
        agent = await self.get_agent(request.provider, request.model_config_)
        session = self.sessions.get_or_create(request.session_id)
        self._check_phase(session, SessionPhase.EXECUTING)
        options = AgentOptions(**self._options(request, session))
        return self._retiring(session, SessionPhase.EXECUTING, agent.run(request.prompt, options))

    async def open_stream(self, request: AgentRequest) -> AsyncIterator[AgentMessage]:
        if request.phase == RequestPhase.PLAN:
            return await self.run_planning_phase(request)
        if request.phase == RequestPhase.EXECUTE:
            return await self.run_execution_phase(request)
        return await self.run_agent(request)

    async def stream(self, request: AgentRequest) -> AsyncIterator[AgentMessage]:
        """Like :meth:`open_stream`, but resolution errors become a terminal error message."""
        try:
            messages = await self.open_stream(request)
        except (LookupError, ValueError) as e:
            logger.warning("Request rejected: %s", e)
            yield AgentMessage.error(str(e), request.session_id)
            return
        async for message in messages:
            yield message

    # -- Plans ---------------------------------------------------------------

    def get_plan(self, plan_id: str) -> TaskPlan | None:
        record = self._plans.get(plan_id)
        return record.plan if record else None

    def get_plan_record(self, plan_id: str) -> PlanRecord | None:
        return self._plans.get(plan_id)

    def delete_plan(self, plan_id: str) -> bool:
        record = self._plans.pop(plan_id, None)
        if record is None:
            return False
        record.agent.delete_plan(plan_id)
        return True

    # -- Background ----------------------------------------------------------

    def _background_session_id(self, request: AgentRequest) -> str:
        if request.phase == RequestPhase.EXECUTE and not request.session_id:
            record = self._plans.get(request.plan_id or "")
            if record is not None:
                return record.session_id
        return self.sessions.get_or_create(request.session_id).id

    async def start_background(self, request: AgentRequest, task_id: str) -> BackgroundTask:
        """Run *request* as an asyncio task tracked by the coordinator.

        Raises:
            ValueError: a task with this id is still running.
        """
        if self.background.is_running(task_id):
            raise ValueError(f"Background task already running: {task_id}")

        session_id = self._background_session_id(request)
        request = request.model_copy(update={"session_id": session_id, "task_id": task_id})
        session = self.sessions.get_or_create(session_id)
        task = self.background.add(task_id, session.id, session.abort, request.prompt)

        transcript: list[AgentMessage] = []
        self._transcripts[task_id] = transcript
        while len(self._transcripts) > MAX_TRANSCRIPTS:
            oldest = next(iter(self._transcripts))
            del self._transcripts[oldest]

        self._tasks[task_id] = asyncio.create_task(
            self._consume(request, task, transcript), name=f"background-{task_id}"
        )
        return task

    async def _consume(
        self, request: AgentRequest, record: BackgroundTask, transcript: list[AgentMessage]
    ) -> None:
        task_id = record.task_id
        current = asyncio.current_task()
        try:
            async for message in self.stream(request):
                transcript.append(message)
        except asyncio.CancelledError:
            logger.info("Background task %s cancelled", task_id)
            raise
        except Exception as e:
            logger.exception("Background task %s failed", task_id)
            transcript.append(AgentMessage.error(str(e) or type(e).__name__, request.session_id))
        finally:
            # A stopped task id may already belong to a newer run.
            if self._tasks.get(task_id) is current:
                del self._tasks[task_id]
            if self.background.get(task_id) is record:
                self.background.update_status(task_id, False)

    def get_background_messages(self, task_id: str) -> list[AgentMessage] | None:
        return self._transcripts.get(task_id)

    def stop_background(self, task_id: str) -> bool:
        """Signal the task's abort handle; its stream ends at the next yield point."""
        return self.background.stop(task_id)

    def get_background_task(self, task_id: str) -> asyncio.Task[None] | None:
        return self._tasks.get(task_id)

    def clear_background(self) -> None:
        self.background.clear_all()

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.background.clear_all()
        self.background.shutdown()
        self.sessions.stop_all()
        logger.info("Agent service stopped")
