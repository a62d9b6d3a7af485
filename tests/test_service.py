"""Tests for AgentService: plan lineage, phases and background runs."""

import asyncio

import pytest

from switchboard.agent.models import (
    AgentMessageType,
    AgentRequest,
    ModelConfig,
    RequestPhase,
    SessionPhase,
)
from switchboard.agent.registry import ProviderNotFoundError
from switchboard.orchestration.service import PlanLineageError, PlanNotFoundError

from conftest import collect


async def _plan(service, **fields):
    request = AgentRequest(prompt="make a report", phase=RequestPhase.PLAN, **fields)
    messages = await collect(await service.open_stream(request))
    plan_message = next(m for m in messages if m.type == AgentMessageType.PLAN)
    return plan_message, messages


async def _wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestGetAgent:
    @pytest.mark.asyncio
    async def test_shared_instance(self, service):
        assert await service.get_agent("stub") is await service.get_agent("stub")

    @pytest.mark.asyncio
    async def test_default_provider_from_config(self, service):
        agent = await service.get_agent()
        assert agent.provider == "stub"

    @pytest.mark.asyncio
    async def test_custom_credentials_get_fresh_agent(self, service):
        shared = await service.get_agent("stub")
        custom = await service.get_agent("stub", ModelConfig(api_key="sk-test"))
        assert custom is not shared
        assert custom.config.api_key == "sk-test"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, service):
        with pytest.raises(ProviderNotFoundError):
            await service.get_agent("nope")


class TestPlanExecute:
    @pytest.mark.asyncio
    async def test_round_trip_preserves_steps(self, service):
        plan_message, messages = await _plan(service)
        plan = plan_message.plan
        step_ids = plan.step_ids()
        assert messages[-1].type == AgentMessageType.DONE

        request = AgentRequest(prompt="make a report", phase=RequestPhase.EXECUTE, plan_id=plan.id)
        out = await collect(await service.open_stream(request))

        agent = service.get_plan_record(plan.id).agent
        assert agent.executed[0].step_ids() == step_ids
        assert out[0].type == AgentMessageType.SESSION
        assert out[0].session_id == plan_message.session_id
        assert out[-1].type == AgentMessageType.DONE
        assert service.get_plan(plan.id).is_complete

    @pytest.mark.asyncio
    async def test_session_returns_to_idle(self, service):
        plan_message, _ = await _plan(service)
        session = service.get_session(plan_message.session_id)
        assert session.phase == SessionPhase.IDLE

    @pytest.mark.asyncio
    async def test_fabricated_plan_id(self, service):
        request = AgentRequest(phase=RequestPhase.EXECUTE, plan_id="fabricated")
        with pytest.raises(PlanNotFoundError, match="Plan not found: fabricated"):
            await service.open_stream(request)

    @pytest.mark.asyncio
    async def test_other_provider_rejected(self, service):
        plan_message, _ = await _plan(service)
        request = AgentRequest(
            phase=RequestPhase.EXECUTE, plan_id=plan_message.plan.id, provider="other"
        )
        with pytest.raises(PlanLineageError, match="provider"):
            await service.open_stream(request)

    @pytest.mark.asyncio
    async def test_other_session_rejected(self, service):
        plan_message, _ = await _plan(service)
        request = AgentRequest(
            phase=RequestPhase.EXECUTE, plan_id=plan_message.plan.id, session_id="someone-else"
        )
        with pytest.raises(PlanLineageError, match="session"):
            await service.open_stream(request)

    @pytest.mark.asyncio
    async def test_executes_on_producing_instance(self, service):
        plan_message, _ = await _plan(service, provider="other")
        record = service.get_plan_record(plan_message.plan.id)
        assert record.provider == "other"
        request = AgentRequest(phase=RequestPhase.EXECUTE, plan_id=plan_message.plan.id)
        await collect(await service.open_stream(request))
        assert len(record.agent.executed) == 1

    @pytest.mark.asyncio
    async def test_deleted_plan_not_executable(self, service):
        plan_message, _ = await _plan(service)
        plan_id = plan_message.plan.id
        assert service.delete_plan(plan_id)
        assert not service.delete_plan(plan_id)
        with pytest.raises(PlanNotFoundError):
            await service.open_stream(AgentRequest(phase=RequestPhase.EXECUTE, plan_id=plan_id))

    @pytest.mark.asyncio
    async def test_stream_turns_errors_into_messages(self, service):
        request = AgentRequest(phase=RequestPhase.EXECUTE, plan_id="fabricated")
        out = await collect(service.stream(request))
        assert len(out) == 1
        assert out[0].type == AgentMessageType.ERROR

    @pytest.mark.asyncio
    async def test_busy_session_rejects_new_plan(self, service):
        session = service.create_session(SessionPhase.EXECUTING)
        request = AgentRequest(prompt="x", phase=RequestPhase.PLAN, session_id=session.id)
        with pytest.raises(ValueError):
            await service.open_stream(request)

    @pytest.mark.asyncio
    async def test_unconsumed_stream_leaves_session_idle(self, service):
        await service.open_stream(AgentRequest(prompt="x", session_id="s1"))
        assert service.get_session("s1").phase == SessionPhase.IDLE

        plan_message, messages = await _plan(service, session_id="s1")
        assert plan_message.session_id == "s1"
        assert messages[-1].type == AgentMessageType.DONE

    @pytest.mark.asyncio
    async def test_session_busy_while_consumed(self, service):
        stream = await service.open_stream(AgentRequest(prompt="hi", session_id="s1"))
        first = await anext(stream)
        assert first.type == AgentMessageType.SESSION
        assert service.get_session("s1").phase == SessionPhase.EXECUTING
        await collect(stream)
        assert service.get_session("s1").phase == SessionPhase.IDLE


class TestRun:
    @pytest.mark.asyncio
    async def test_direct_run(self, service):
        out = await collect(await service.open_stream(AgentRequest(prompt="hi")))
        assert [m.type for m in out] == [
            AgentMessageType.SESSION,
            AgentMessageType.TEXT,
            AgentMessageType.DONE,
        ]

    @pytest.mark.asyncio
    async def test_stop_agent(self, service):
        agent = await service.get_agent("stub")
        agent.block_run = True
        out = []
        async for message in await service.open_stream(AgentRequest(prompt="hi", session_id="s1")):
            out.append(message)
            if message.type == AgentMessageType.TEXT:
                assert service.stop_agent("s1")
        assert out[-1].content == "aborted"
        assert not service.stop_agent("missing")


class TestBackground:
    @pytest.mark.asyncio
    async def test_runs_to_completion(self, service):
        task = await service.start_background(AgentRequest(prompt="hi"), "t1")
        assert task.is_running
        await service.get_background_task("t1")
        messages = service.get_background_messages("t1")
        assert messages[-1].type == AgentMessageType.DONE
        assert not service.background.is_running("t1")

    @pytest.mark.asyncio
    async def test_removed_after_delay(self, service):
        await service.start_background(AgentRequest(prompt="hi"), "t1")
        await service.get_background_task("t1")
        assert service.background.get("t1") is not None
        await _wait_for(lambda: service.background.get("t1") is None)
        assert service.get_background_messages("t1") is not None

    @pytest.mark.asyncio
    async def test_duplicate_running_task(self, service):
        agent = await service.get_agent("stub")
        agent.block_run = True
        await service.start_background(AgentRequest(prompt="hi"), "t1")
        with pytest.raises(ValueError, match="already running"):
            await service.start_background(AgentRequest(prompt="hi"), "t1")
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_stop_background(self, service):
        agent = await service.get_agent("stub")
        agent.block_run = True
        await service.start_background(AgentRequest(prompt="hi"), "t1")
        await _wait_for(lambda: len(service.get_background_messages("t1")) >= 2)
        assert service.stop_background("t1")
        await asyncio.wait_for(service.get_background_task("t1"), timeout=2)
        messages = service.get_background_messages("t1")
        assert messages[-1].type == AgentMessageType.DONE
        assert messages[-1].content == "aborted"
        assert service.background.get("t1") is None

    @pytest.mark.asyncio
    async def test_failed_request_recorded(self, service):
        request = AgentRequest(phase=RequestPhase.EXECUTE, plan_id="fabricated")
        await service.start_background(request, "t1")
        await service.get_background_task("t1")
        messages = service.get_background_messages("t1")
        assert messages[-1].type == AgentMessageType.ERROR
        assert not service.background.is_running("t1")

    @pytest.mark.asyncio
    async def test_background_execute_uses_plan_session(self, service):
        plan_message, _ = await _plan(service)
        request = AgentRequest(phase=RequestPhase.EXECUTE, plan_id=plan_message.plan.id)
        task = await service.start_background(request, "t1")
        assert task.session_id == plan_message.session_id
        await service.get_background_task("t1")
        assert service.get_background_messages("t1")[-1].type == AgentMessageType.DONE

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running(self, service):
        agent = await service.get_agent("stub")
        agent.block_run = True
        await service.start_background(AgentRequest(prompt="hi"), "t1")
        task = service.get_background_task("t1")
        await service.shutdown()
        assert task.done()
        assert service.background.get_all() == []

    @pytest.mark.asyncio
    async def test_restart_after_stop_keeps_new_run(self, service):
        agent = await service.get_agent("stub")
        agent.block_run = True
        await service.start_background(AgentRequest(prompt="hi"), "t1")
        await _wait_for(lambda: len(service.get_background_messages("t1")) >= 2)
        first = service.get_background_task("t1")
        assert service.stop_background("t1")

        await service.start_background(AgentRequest(prompt="again"), "t1")
        second = service.get_background_task("t1")
        await asyncio.wait_for(first, timeout=2)
        await asyncio.sleep(0.02)

        assert second is not first
        assert not second.done()
        assert service.get_background_task("t1") is second
        assert service.background.is_running("t1")
        await service.shutdown()
        assert second.done()
