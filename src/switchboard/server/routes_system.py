"""System routes: health, version."""

from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from switchboard import __version__ as VERSION


async def health(request: Request) -> JSONResponse:
    registry = request.app.state.registry
    return JSONResponse(
        {
            "status": "ok",
            "version": VERSION,
            "providers": registry.get_registered(),
            "backgroundTasks": request.app.state.service.background.running_count(),
        }
    )


async def version(request: Request) -> JSONResponse:
    return JSONResponse({"version": VERSION})


routes = [
    Route("/health", health),
    Route("/version", version),
]
