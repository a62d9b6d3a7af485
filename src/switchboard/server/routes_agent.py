"""Agent routes: plan, execute and run as server-sent events; stop; session and plan lookup."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from switchboard.agent.models import AgentMessage, AgentRequest, RequestPhase
from switchboard.agent.registry import ProviderNotFoundError
from switchboard.orchestration.service import PlanLineageError, PlanNotFoundError

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_frame(message: AgentMessage) -> str:
    return f"data: {message.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


async def _frames(messages: AsyncIterator[AgentMessage]) -> AsyncIterator[str]:
    try:
        async for message in messages:
            yield sse_frame(message)
    except Exception as e:
        logger.exception("Agent stream failed")
        yield sse_frame(AgentMessage.error(str(e) or type(e).__name__))


def sse_response(messages: AsyncIterator[AgentMessage]) -> StreamingResponse:
    return StreamingResponse(_frames(messages), media_type="text/event-stream", headers=SSE_HEADERS)


async def parse_agent_request(request: Request) -> AgentRequest | JSONResponse:
    """Validated AgentRequest, or a 422 response for malformed input."""
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid JSON"}, status_code=422)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Request body must be a JSON object"}, status_code=422)
    try:
        return AgentRequest.model_validate(body)
    except ValidationError as e:
        return JSONResponse(
            {"error": "Invalid request", "details": json.loads(e.json(include_url=False))},
            status_code=422,
        )


async def open_stream(request: Request, agent_request: AgentRequest) -> Response:
    """Resolve the request, mapping resolution errors to status codes, then stream."""
    service = request.app.state.service
    try:
        messages = await service.open_stream(agent_request)
    except PlanNotFoundError as e:
        return JSONResponse({"error": str(e)}, status_code=404)
    except PlanLineageError as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    except ProviderNotFoundError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    return sse_response(messages)


async def plan(request: Request) -> Response:
    """POST /agent/plan: planning phase only."""
    parsed = await parse_agent_request(request)
    if isinstance(parsed, JSONResponse):
        return parsed
    if not parsed.prompt:
        return JSONResponse({"error": "prompt is required"}, status_code=400)
    return await open_stream(request, parsed.model_copy(update={"phase": RequestPhase.PLAN}))


async def execute(request: Request) -> Response:
    """POST /agent/execute: run an approved plan."""
    parsed = await parse_agent_request(request)
    if isinstance(parsed, JSONResponse):
        return parsed
    if not parsed.plan_id:
        return JSONResponse({"error": "planId is required"}, status_code=400)
    return await open_stream(request, parsed.model_copy(update={"phase": RequestPhase.EXECUTE}))


async def run(request: Request) -> Response:
    """POST /agent: direct execution, or dispatch on ``phase``."""
    parsed = await parse_agent_request(request)
    if isinstance(parsed, JSONResponse):
        return parsed
    if parsed.phase == RequestPhase.EXECUTE:
        if not parsed.plan_id:
            return JSONResponse({"error": "planId is required"}, status_code=400)
    elif not parsed.prompt:
        return JSONResponse({"error": "prompt is required"}, status_code=400)
    return await open_stream(request, parsed)


async def stop(request: Request) -> JSONResponse:
    session_id = request.path_params["session_id"]
    if not request.app.state.service.stop_agent(session_id):
        return JSONResponse({"error": f"Session not found: {session_id}"}, status_code=404)
    return JSONResponse({"status": "stopped"})


async def get_session(request: Request) -> JSONResponse:
    session_id = request.path_params["session_id"]
    session = request.app.state.service.get_session(session_id)
    if session is None:
        return JSONResponse({"error": f"Session not found: {session_id}"}, status_code=404)
    return JSONResponse(session.to_dict())


async def get_plan(request: Request) -> JSONResponse:
    plan_id = request.path_params["plan_id"]
    found = request.app.state.service.get_plan(plan_id)
    if found is None:
        return JSONResponse({"error": f"Plan not found: {plan_id}"}, status_code=404)
    return JSONResponse(found.to_wire())


async def delete_plan(request: Request) -> JSONResponse:
    plan_id = request.path_params["plan_id"]
    if not request.app.state.service.delete_plan(plan_id):
        return JSONResponse({"error": f"Plan not found: {plan_id}"}, status_code=404)
    return JSONResponse({"status": "deleted"})


routes = [
    Route("/agent", run, methods=["POST"]),
    Route("/agent/plan", plan, methods=["POST"]),
    Route("/agent/execute", execute, methods=["POST"]),
    Route("/agent/stop/{session_id}", stop, methods=["POST"]),
    Route("/agent/session/{session_id}", get_session, methods=["GET"]),
    Route("/agent/plan/{plan_id}", get_plan, methods=["GET"]),
    Route("/agent/plan/{plan_id}", delete_plan, methods=["DELETE"]),
]
