"""Tests for guard_stream terminal-message handling."""

import asyncio

import pytest

from switchboard.agent.abort import AbortHandle
from switchboard.agent.models import AgentMessage, AgentMessageType
from switchboard.agent.stream import ABORTED_CONTENT, guard_stream

from conftest import collect


async def _source(*messages, fail: Exception | None = None):
    for message in messages:
        yield message
    if fail is not None:
        raise fail


def _types(messages):
    return [m.type for m in messages]


class TestGuardStream:
    @pytest.mark.asyncio
    async def test_appends_done_when_missing(self):
        out = await collect(guard_stream(_source(AgentMessage.text("hi")), session_id="s1"))
        assert _types(out) == [AgentMessageType.TEXT, AgentMessageType.DONE]
        assert out[-1].session_id == "s1"

    @pytest.mark.asyncio
    async def test_drops_messages_after_terminal(self):
        source = _source(AgentMessage.text("a"), AgentMessage.done(), AgentMessage.text("late"))
        out = await collect(guard_stream(source))
        assert _types(out) == [AgentMessageType.TEXT, AgentMessageType.DONE]

    @pytest.mark.asyncio
    async def test_error_is_terminal(self):
        source = _source(AgentMessage.error("bad"), AgentMessage.done())
        out = await collect(guard_stream(source))
        assert _types(out) == [AgentMessageType.ERROR]

    @pytest.mark.asyncio
    async def test_exception_becomes_error(self):
        source = _source(AgentMessage.text("a"), fail=RuntimeError("exploded"))
        out = await collect(guard_stream(source, session_id="s1"))
        assert _types(out) == [AgentMessageType.TEXT, AgentMessageType.ERROR]
        assert out[-1].message == "exploded"
        assert out[-1].session_id == "s1"

    @pytest.mark.asyncio
    async def test_stamps_session_id(self):
        source = _source(AgentMessage.text("a"), AgentMessage.text("b", session_id="mine"))
        out = await collect(guard_stream(source, session_id="s1"))
        assert [m.session_id for m in out] == ["s1", "mine", "s1"]

    @pytest.mark.asyncio
    async def test_pre_aborted_ends_with_aborted_done(self):
        abort = AbortHandle()
        abort.abort()
        out = await collect(guard_stream(_source(AgentMessage.text("a")), abort=abort))
        assert len(out) == 1
        assert out[0].type == AgentMessageType.DONE
        assert out[0].content == ABORTED_CONTENT

    @pytest.mark.asyncio
    async def test_abort_interrupts_blocked_provider(self):
        abort = AbortHandle()
        closed = asyncio.Event()

        async def slow():
            try:
                yield AgentMessage.text("start")
                await asyncio.sleep(30)
                yield AgentMessage.text("never")
            finally:
                closed.set()

        out = []
        async for message in guard_stream(slow(), abort=abort):
            out.append(message)
            if message.type == AgentMessageType.TEXT:
                asyncio.get_running_loop().call_later(0.01, abort.abort)

        assert _types(out) == [AgentMessageType.TEXT, AgentMessageType.DONE]
        assert out[-1].content == ABORTED_CONTENT
        assert closed.is_set()

    @pytest.mark.asyncio
    async def test_exactly_one_terminal(self):
        source = _source(AgentMessage.text("a"), AgentMessage.done(), AgentMessage.error("x"))
        out = await collect(guard_stream(source))
        assert sum(1 for m in out if m.is_terminal) == 1
