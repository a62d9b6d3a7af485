"""Tests for agent models: plans, messages and wire format."""

import pytest

from switchboard.agent.models import (
    AgentMessage,
    AgentMessageType,
    AgentOptions,
    AgentRequest,
    AgentSession,
    SessionPhase,
    StepStatus,
    TaskPlan,
)
from switchboard.agent.abort import AbortHandle

from conftest import make_plan


class TestTaskPlan:
    def test_ids_are_unique(self):
        assert make_plan().id != make_plan().id

    def test_step_ids_in_order(self):
        assert make_plan("a long first step", "a long second step").step_ids() == ["1", "2"]

    def test_get_unknown_step_raises(self):
        with pytest.raises(KeyError):
            make_plan().get_step("99")

    def test_mark_step_valid_transition(self):
        plan = make_plan()
        plan.mark_step("1", StepStatus.IN_PROGRESS)
        plan.mark_step("1", StepStatus.COMPLETED)
        assert plan.get_step("1").status == StepStatus.COMPLETED

    def test_completed_is_final(self):
        plan = make_plan()
        plan.mark_step("1", StepStatus.COMPLETED)
        with pytest.raises(ValueError, match="Invalid step transition"):
            plan.mark_step("1", StepStatus.IN_PROGRESS)

    def test_failed_step_can_be_retried(self):
        plan = make_plan()
        plan.mark_step("1", StepStatus.FAILED)
        plan.mark_step("1", StepStatus.IN_PROGRESS)
        assert plan.get_step("1").status == StepStatus.IN_PROGRESS

    def test_same_status_is_noop(self):
        plan = make_plan()
        plan.mark_step("1", StepStatus.PENDING)
        assert plan.get_step("1").status == StepStatus.PENDING

    def test_next_pending_skips_completed(self):
        plan = make_plan()
        plan.mark_step("1", StepStatus.COMPLETED)
        assert plan.next_pending().id == "2"

    def test_is_complete(self):
        plan = make_plan()
        assert not plan.is_complete
        for step_id in plan.step_ids():
            plan.mark_step(step_id, StepStatus.COMPLETED)
        assert plan.is_complete


class TestAgentMessage:
    def test_terminal_types(self):
        assert AgentMessage.done().is_terminal
        assert AgentMessage.error("boom").is_terminal
        assert not AgentMessage.text("hi").is_terminal

    def test_wire_uses_camel_case(self):
        message = AgentMessage(
            type=AgentMessageType.TOOL_RESULT, session_id="s1", tool_use_id="t1", is_error=False
        )
        assert message.to_wire() == {
            "type": "tool_result",
            "sessionId": "s1",
            "toolUseId": "t1",
            "isError": False,
        }

    def test_accepts_camel_case(self):
        message = AgentMessage.model_validate({"type": "text", "sessionId": "s1", "content": "x"})
        assert message.session_id == "s1"

    def test_plan_message_round_trips_step_ids(self):
        plan = make_plan()
        wire = AgentMessage(type=AgentMessageType.PLAN, plan=plan).to_wire()
        parsed = AgentMessage.model_validate(wire)
        assert parsed.plan.id == plan.id
        assert parsed.plan.step_ids() == plan.step_ids()


class TestAgentRequest:
    def test_model_config_alias(self):
        request = AgentRequest.model_validate(
            {"prompt": "hi", "modelConfig": {"apiKey": "k", "model": "m"}, "planId": "p1"}
        )
        assert request.model_config_.api_key == "k"
        assert request.model_config_.is_custom
        assert request.plan_id == "p1"

    def test_unknown_phase_rejected(self):
        with pytest.raises(ValueError):
            AgentRequest.model_validate({"prompt": "hi", "phase": "later"})


class TestAgentOptions:
    def test_abort_not_serialized(self):
        options = AgentOptions(session_id="s1", abort=AbortHandle())
        assert "abort" not in options.to_wire()


class TestAgentSession:
    def test_to_dict(self):
        session = AgentSession(id="s1", phase=SessionPhase.PLANNING)
        data = session.to_dict()
        assert data["id"] == "s1"
        assert data["phase"] == "planning"
        assert data["isAborted"] is False

    def test_aborted_handle_reported(self):
        session = AgentSession()
        session.abort.abort()
        assert session.to_dict()["isAborted"] is True


def test_plan_defaults():
    plan = TaskPlan(goal="g")
    assert plan.steps == []
    assert plan.notes is None
