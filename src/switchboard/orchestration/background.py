"""Background task coordinator: agent runs that continue outside the caller's view.

Tracks one record per task id, notifies subscribers after every mutation in
mutation order, and removes finished tasks after a short debounce window so
completion can be observed before the record disappears.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from switchboard.agent.abort import AbortHandle
from switchboard.config import BACKGROUND_REMOVAL_DELAY_SEC

logger = logging.getLogger(__name__)


@dataclass
class BackgroundTask:
    task_id: str
    session_id: str
    abort: AbortHandle
    is_running: bool = True
    prompt: str = ""
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def snapshot(self) -> BackgroundTaskSnapshot:
        return BackgroundTaskSnapshot(
            task_id=self.task_id,
            session_id=self.session_id,
            is_running=self.is_running,
            started_at=self.started_at,
            prompt=self.prompt,
        )


class BackgroundTaskSnapshot(BaseModel):
    """Immutable view of a background task handed to listeners and the API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    task_id: str
    session_id: str
    is_running: bool
    started_at: datetime
    prompt: str


BackgroundTaskListener = Callable[[list[BackgroundTaskSnapshot]], object]


class BackgroundTaskCoordinator:
    def __init__(self, removal_delay: float = BACKGROUND_REMOVAL_DELAY_SEC) -> None:
        self.removal_delay = removal_delay
        self._tasks: dict[str, BackgroundTask] = {}
        self._listeners: list[BackgroundTaskListener] = []
        self._removals: dict[str, asyncio.TimerHandle] = {}
        self._pending: deque[list[BackgroundTaskSnapshot]] = deque()
        self._notifying = False

    # -- Notification --------------------------------------------------------

    def snapshot(self) -> list[BackgroundTaskSnapshot]:
        return [t.snapshot() for t in self._tasks.values()]

    def _notify(self) -> None:
        """Queue the current snapshot and deliver queued snapshots in order.

        A listener that mutates the coordinator only enqueues; the outer
        drain loop delivers that snapshot after the current one.
        """
        self._pending.append(self.snapshot())
        if self._notifying:
            return
        self._notifying = True
        try:
            while self._pending:
                snapshot = self._pending.popleft()
                for listener in list(self._listeners):
                    self._deliver(listener, snapshot)
        finally:
            self._notifying = False

    @staticmethod
    def _deliver(listener: BackgroundTaskListener, snapshot: list[BackgroundTaskSnapshot]) -> None:
        try:
            listener(snapshot)
        except Exception:
            logger.exception("Background task listener failed")

    def subscribe(self, listener: BackgroundTaskListener) -> Callable[[], None]:
        """Register *listener*; it is called at once with the current snapshot."""
        self._listeners.append(listener)
        self._deliver(listener, self.snapshot())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- Removal timers ------------------------------------------------------

    def _cancel_removal(self, task_id: str) -> None:
        handle = self._removals.pop(task_id, None)
        if handle is not None:
            handle.cancel()

    def _schedule_removal(self, task_id: str) -> None:
        self._cancel_removal(task_id)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.remove(task_id)
            return
        self._removals[task_id] = loop.call_later(self.removal_delay, self._auto_remove, task_id)

    def _auto_remove(self, task_id: str) -> None:
        self._removals.pop(task_id, None)
        task = self._tasks.get(task_id)
        if task is not None and not task.is_running:
            logger.debug("Auto-removing finished background task %s", task_id)
            self.remove(task_id)

    # -- Mutations -----------------------------------------------------------

    def add(
        self,
        task_id: str,
        session_id: str,
        abort: AbortHandle | None = None,
        prompt: str = "",
        is_running: bool = True,
    ) -> BackgroundTask:
        """Insert or replace the record for *task_id*."""
        self._cancel_removal(task_id)
        task = BackgroundTask(
            task_id=task_id,
            session_id=session_id,
            abort=abort or AbortHandle(),
            is_running=is_running,
            prompt=prompt,
        )
        self._tasks[task_id] = task
        logger.info("Added background task %s (session %s)", task_id, session_id)
        self._notify()
        return task

    def remove(self, task_id: str) -> None:
        self._cancel_removal(task_id)
        if self._tasks.pop(task_id, None) is None:
            return
        logger.info("Removed background task %s", task_id)
        self._notify()

    def update_status(self, task_id: str, is_running: bool) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return
        task.is_running = is_running
        self._notify()
        if is_running:
            self._cancel_removal(task_id)
        else:
            self._schedule_removal(task_id)

    def stop(self, task_id: str) -> bool:
        """Abort and remove at once, skipping the debounce window."""
        task = self._tasks.get(task_id)
        if task is None:
            return False
        task.abort.abort("stopped")
        task.is_running = False
        self.remove(task_id)
        return True

    def clear_all(self) -> None:
        for task_id, task in self._tasks.items():
            self._cancel_removal(task_id)
            task.abort.abort("cleared")
        self._tasks.clear()
        self._notify()

    def shutdown(self) -> None:
        for task_id in list(self._removals):
            self._cancel_removal(task_id)

    # -- Queries -------------------------------------------------------------

    def get(self, task_id: str) -> BackgroundTask | None:
        return self._tasks.get(task_id)

    def get_all(self) -> list[BackgroundTask]:
        return list(self._tasks.values())

    def running_count(self) -> int:
        return sum(1 for t in self._tasks.values() if t.is_running)

    def is_running(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        return task.is_running if task is not None else False


# ---------------------------------------------------------------------------
# Process-wide coordinator
# ---------------------------------------------------------------------------

_coordinator: BackgroundTaskCoordinator | None = None


def get_background_coordinator() -> BackgroundTaskCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = BackgroundTaskCoordinator()
    return _coordinator


def reset_background_coordinator() -> None:
    """Drop the process-wide coordinator (for tests)."""
    global _coordinator
    if _coordinator is not None:
        _coordinator.shutdown()
    _coordinator = None


def add_background_task(
    task_id: str,
    session_id: str,
    abort: AbortHandle | None = None,
    prompt: str = "",
    is_running: bool = True,
) -> BackgroundTask:
    return get_background_coordinator().add(task_id, session_id, abort, prompt, is_running)


def remove_background_task(task_id: str) -> None:
    get_background_coordinator().remove(task_id)


def update_background_task_status(task_id: str, is_running: bool) -> None:
    get_background_coordinator().update_status(task_id, is_running)


def stop_background_task(task_id: str) -> bool:
    return get_background_coordinator().stop(task_id)


def subscribe_to_background_tasks(listener: BackgroundTaskListener) -> Callable[[], None]:
    return get_background_coordinator().subscribe(listener)


def clear_all_background_tasks() -> None:
    get_background_coordinator().clear_all()


def get_background_task(task_id: str) -> BackgroundTask | None:
    return get_background_coordinator().get(task_id)


def get_all_background_tasks() -> list[BackgroundTask]:
    return get_background_coordinator().get_all()


def get_running_task_count() -> int:
    return get_background_coordinator().running_count()


def is_task_running_in_background(task_id: str) -> bool:
    return get_background_coordinator().is_running(task_id)
