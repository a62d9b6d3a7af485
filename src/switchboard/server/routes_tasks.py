"""Background task routes: start, inspect, stop and clear background agent runs."""

from __future__ import annotations

from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from switchboard.agent.models import RequestPhase
from switchboard.orchestration.background import BackgroundTaskSnapshot
from switchboard.server.routes_agent import parse_agent_request


def _snapshot_json(snapshot: BackgroundTaskSnapshot) -> dict[str, Any]:
    return snapshot.model_dump(mode="json", by_alias=True)


async def list_tasks(request: Request) -> JSONResponse:
    coordinator = request.app.state.service.background
    return JSONResponse(
        {
            "tasks": [_snapshot_json(s) for s in coordinator.snapshot()],
            "runningCount": coordinator.running_count(),
        }
    )


async def start_task(request: Request) -> JSONResponse:
    """POST /tasks/background: start an agent run tracked as a background task."""
    parsed = await parse_agent_request(request)
    if isinstance(parsed, JSONResponse):
        return parsed
    if not parsed.task_id:
        return JSONResponse({"error": "taskId is required"}, status_code=400)
    if parsed.phase == RequestPhase.EXECUTE:
        if not parsed.plan_id:
            return JSONResponse({"error": "planId is required"}, status_code=400)
    elif not parsed.prompt:
        return JSONResponse({"error": "prompt is required"}, status_code=400)

    service = request.app.state.service
    try:
        task = await service.start_background(parsed, parsed.task_id)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    return JSONResponse({"task": _snapshot_json(task.snapshot())}, status_code=202)


async def get_task(request: Request) -> JSONResponse:
    task_id = request.path_params["task_id"]
    service = request.app.state.service
    task = service.background.get(task_id)
    messages = service.get_background_messages(task_id)
    if task is None and messages is None:
        return JSONResponse({"error": f"Background task not found: {task_id}"}, status_code=404)
    return JSONResponse(
        {
            "task": _snapshot_json(task.snapshot()) if task is not None else None,
            "messages": [m.to_wire() for m in messages or []],
        }
    )


async def stop_task(request: Request) -> JSONResponse:
    task_id = request.path_params["task_id"]
    if not request.app.state.service.stop_background(task_id):
        return JSONResponse({"error": f"Background task not found: {task_id}"}, status_code=404)
    return JSONResponse({"status": "stopped"})


async def clear_tasks(request: Request) -> JSONResponse:
    request.app.state.service.clear_background()
    return JSONResponse({"status": "cleared"})


routes = [
    Route("/tasks/background", list_tasks, methods=["GET"]),
    Route("/tasks/background", start_task, methods=["POST"]),
    Route("/tasks/background", clear_tasks, methods=["DELETE"]),
    Route("/tasks/background/{task_id}", get_task, methods=["GET"]),
    Route("/tasks/background/{task_id}/stop", stop_task, methods=["POST"]),
]
