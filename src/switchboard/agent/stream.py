"""Stream guard: every agent stream ends with exactly one terminal message."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import cast

from switchboard.agent.abort import AbortHandle
from switchboard.agent.models import AgentMessage

logger = logging.getLogger(__name__)

ABORTED_CONTENT = "aborted"

_EXHAUSTED = object()


class _Aborted(Exception):
    pass


async def _pull(iterator: AsyncIterator[AgentMessage]) -> object:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return _EXHAUSTED


async def _next_or_abort(
    iterator: AsyncIterator[AgentMessage], abort: AbortHandle | None
) -> object:
    """Next message from *iterator*, or _Aborted as soon as *abort* fires."""
    if abort is None:
        return await _pull(iterator)
    if abort.aborted:
        raise _Aborted

    next_task = asyncio.ensure_future(_pull(iterator))
    abort_task = asyncio.ensure_future(abort.wait())
    try:
        done, _ = await asyncio.wait({next_task, abort_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        next_task.cancel()
        raise
    finally:
        abort_task.cancel()

    if next_task in done:
        return next_task.result()

    # Provider did not yield in time; abandon its pending step.
    next_task.cancel()
    await asyncio.gather(next_task, return_exceptions=True)
    raise _Aborted


async def _aclose(iterator: AsyncIterator[AgentMessage]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except RuntimeError as e:
        logger.debug("Could not close agent stream: %s", e)


async def guard_stream(
    source: AsyncIterator[AgentMessage],
    *,
    session_id: str | None = None,
    abort: AbortHandle | None = None,
) -> AsyncIterator[AgentMessage]:
    """Relay *source* so the caller sees exactly one terminal message.

    - messages after the first ``done``/``error`` are dropped
    - an exception escaping the provider becomes a terminal ``error``
    - a stream that ends without a terminal message gets a ``done``
    - when *abort* fires, the stream ends with ``done`` (content "aborted")
    - messages without a session id are stamped with *session_id*
    """
    iterator = aiter(source)
    terminal: AgentMessage | None = None
    failure: AgentMessage | None = None
    aborted = False

    try:
        while True:
            try:
                item = await _next_or_abort(iterator, abort)
            except _Aborted:
                aborted = True
                break
            except Exception as e:
                logger.exception("Agent stream failed (session=%s)", session_id)
                failure = AgentMessage.error(str(e) or type(e).__name__, session_id)
                break

            if item is _EXHAUSTED:
                break
            message = cast(AgentMessage, item)
            if session_id is not None and message.session_id is None:
                message = message.model_copy(update={"session_id": session_id})
            yield message
            if message.is_terminal:
                terminal = message
                break
            if abort is not None and abort.aborted:
                aborted = True
                break
    finally:
        await _aclose(iterator)

    if terminal is not None:
        return
    if failure is not None:
        yield failure
    elif aborted:
        yield AgentMessage.done(session_id, content=ABORTED_CONTENT)
    else:
        yield AgentMessage.done(session_id)
