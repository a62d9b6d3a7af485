"""Cooperative cancellation handle shared by sessions, streams and background tasks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


def _run_callback(callback: Callable[[], object]) -> None:
    try:
        callback()
    except Exception:
        logger.exception("Abort callback failed")


class AbortHandle:
    """Signals a running stream that it should stop at its next safe point.

    Aborting is idempotent. Callbacks registered with :meth:`add_callback` run
    exactly once, synchronously, on the first :meth:`abort` call.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._callbacks: list[Callable[[], object]] = []

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def abort(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            _run_callback(callback)

    def add_callback(self, callback: Callable[[], object]) -> None:
        """Register *callback*, or run it now if the handle is already aborted."""
        if self._event.is_set():
            _run_callback(callback)
            return
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], object]) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"aborted, reason={self._reason!r}" if self.aborted else "active"
        return f"AbortHandle({state})"
