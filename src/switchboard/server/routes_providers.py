"""Provider routes: registered agent providers and their metadata."""

from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route


async def list_agents(request: Request) -> JSONResponse:
    """GET /providers/agents: metadata for every registered provider."""
    registry = request.app.state.registry
    current = request.app.state.config.default_provider
    available = set(await registry.get_available())
    agents = [
        {**m.to_wire(), "available": m.type in available, "current": m.type == current}
        for m in registry.get_all_metadata()
    ]
    return JSONResponse({"agents": agents, "current": current})


async def available_agents(request: Request) -> JSONResponse:
    registry = request.app.state.registry
    return JSONResponse({"providers": await registry.get_available()})


async def get_agent(request: Request) -> JSONResponse:
    provider_type = request.path_params["provider_type"]
    metadata = request.app.state.registry.get_metadata(provider_type)
    if metadata is None:
        return JSONResponse({"error": f"Unknown agent provider: {provider_type}"}, status_code=404)
    return JSONResponse(metadata.to_wire())


routes = [
    Route("/providers/agents", list_agents, methods=["GET"]),
    Route("/providers/agents/available", available_agents, methods=["GET"]),
    Route("/providers/agents/{provider_type}", get_agent, methods=["GET"]),
]
