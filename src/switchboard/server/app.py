"""Starlette app factory with lifespan for agent provider management."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from starlette.applications import Starlette

from switchboard.agent.factory import register_builtin_agent_providers
from switchboard.agent.registry import AgentRegistry
from switchboard.config import Config, load_config
from switchboard.orchestration.service import AgentService
from switchboard.server.routes_agent import routes as agent_routes
from switchboard.server.routes_providers import routes as provider_routes
from switchboard.server.routes_system import routes as system_routes
from switchboard.server.routes_tasks import routes as task_routes

logger = logging.getLogger(__name__)


def create_app(
    config: Config | None = None,
    registry: AgentRegistry | None = None,
    service: AgentService | None = None,
) -> Starlette:
    """Create the API app.

    Without an explicit registry a fresh one is built with the built-in
    providers registered. Plugin hooks run on startup; background tasks,
    sessions and agent instances are shut down when the app stops.
    """
    if config is None:
        config = load_config()
    if registry is None:
        registry = service.registry if service is not None else AgentRegistry()
        if service is None:
            register_builtin_agent_providers(registry)
    if service is None:
        service = AgentService(registry, config=config)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        await registry.init_plugins()
        logger.info("Agent providers ready: %s", ", ".join(registry.get_registered()) or "none")
        yield
        await service.shutdown()
        await registry.stop_all()

    app = Starlette(
        routes=system_routes + agent_routes + provider_routes + task_routes,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.registry = registry
    app.state.service = service
    return app
