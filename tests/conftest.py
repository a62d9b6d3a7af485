"""Shared fixtures for switchboard tests."""

import asyncio

import pytest

from switchboard.agent.base import BaseAgent
from switchboard.agent.models import (
    AgentConfig,
    AgentMessage,
    AgentMessageType,
    PlanStep,
    TaskPlan,
    new_id,
)
from switchboard.agent.plugin import define_agent_plugin
from switchboard.agent.registry import AgentRegistry
from switchboard.config import Config
from switchboard.orchestration.service import AgentService


def make_plan(*descriptions: str, goal: str = "Build the report") -> TaskPlan:
    """Build a plan whose step ids are "1", "2", ..."""
    descriptions = descriptions or ("Collect the source data", "Write the summary file")
    return TaskPlan(
        goal=goal,
        steps=[PlanStep(id=str(i), description=d) for i, d in enumerate(descriptions, 1)],
    )


class StubAgent(BaseAgent):
    """Agent with scripted streams, recording what it was asked to do."""

    provider = "stub"

    def __init__(self, config: AgentConfig) -> None:
        super().__init__(config)
        self.run_prompts: list[str] = []
        self.executed: list[TaskPlan] = []
        self.plan_to_emit: TaskPlan | None = make_plan()
        self.run_messages: list[AgentMessage] = [AgentMessage.text("hello")]
        self.block_run = False

    async def _run(self, prompt, options, session):
        self.run_prompts.append(prompt)
        for message in self.run_messages:
            yield message
        while self.block_run:
            await asyncio.sleep(0.01)

    async def _plan(self, prompt, options, session):
        if self.plan_to_emit is None:
            yield AgentMessage(type=AgentMessageType.DIRECT_ANSWER, content="42")
            return
        plan = self.plan_to_emit.model_copy(deep=True, update={"id": new_id()})
        yield AgentMessage(type=AgentMessageType.PLAN, plan=plan)

    async def _execute(self, plan, options, session):
        self.executed.append(plan)
        for step in plan.steps:
            self.begin_step(plan, step)
            yield AgentMessage.text(f"doing {step.id}")
            self.complete_step(plan, step)
        yield AgentMessage(type=AgentMessageType.RESULT, content="success", is_error=False)


def stub_plugin(provider: str = "stub", **metadata):
    def factory(config: AgentConfig) -> StubAgent:
        agent = StubAgent(config)
        agent.provider = provider
        return agent

    return define_agent_plugin(
        {"type": provider, "name": f"{provider} agent", "supports_plan": True, **metadata},
        factory,
    )


async def collect(stream) -> list[AgentMessage]:
    return [m async for m in stream]


@pytest.fixture
def config(tmp_path):
    return Config(
        default_provider="stub",
        work_dir=str(tmp_path / "work"),
        background_removal_delay=0.05,
    )


@pytest.fixture
def registry():
    reg = AgentRegistry()
    reg.register(stub_plugin("stub"))
    reg.register(stub_plugin("other"))
    return reg


@pytest.fixture
def service(registry, config):
    return AgentService(registry, config=config)


@pytest.fixture
def stub_agent():
    return StubAgent(AgentConfig(provider="stub"))
