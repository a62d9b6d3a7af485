"""Session orchestration: session store, background tasks, and the agent service."""

from switchboard.orchestration.background import (
    BackgroundTask,
    BackgroundTaskCoordinator,
    BackgroundTaskSnapshot,
    add_background_task,
    clear_all_background_tasks,
    get_all_background_tasks,
    get_background_coordinator,
    get_background_task,
    get_running_task_count,
    is_task_running_in_background,
    remove_background_task,
    reset_background_coordinator,
    stop_background_task,
    subscribe_to_background_tasks,
    update_background_task_status,
)
from switchboard.orchestration.service import (
    AgentService,
    PlanLineageError,
    PlanNotFoundError,
    PlanRecord,
)
from switchboard.orchestration.sessions import VALID_TRANSITIONS, SessionStore

__all__ = [
    "VALID_TRANSITIONS",
    "AgentService",
    "BackgroundTask",
    "BackgroundTaskCoordinator",
    "BackgroundTaskSnapshot",
    "PlanLineageError",
    "PlanNotFoundError",
    "PlanRecord",
    "SessionStore",
    "add_background_task",
    "clear_all_background_tasks",
    "get_all_background_tasks",
    "get_background_coordinator",
    "get_background_task",
    "get_running_task_count",
    "is_task_running_in_background",
    "remove_background_task",
    "reset_background_coordinator",
    "stop_background_task",
    "subscribe_to_background_tasks",
    "update_background_task_status",
]
