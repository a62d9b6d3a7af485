"""Built-in plugin bootstrap and convenience constructors."""

from __future__ import annotations

import logging
import os
from typing import Any

from switchboard.agent.base import BaseAgent
from switchboard.agent.models import AgentConfig
from switchboard.agent.plugin import AgentPlugin
from switchboard.agent.registry import AgentRegistry, get_agent_registry
from switchboard.config import DEFAULT_AGENT_MODEL, DEFAULT_AGENT_PROVIDER, DEFAULT_WORK_DIR

logger = logging.getLogger(__name__)

DEFAULT_AGENT_CONFIG = AgentConfig(
    provider=DEFAULT_AGENT_PROVIDER,
    model=DEFAULT_AGENT_MODEL,
    work_dir=DEFAULT_WORK_DIR,
)

_initialized = False


def builtin_agent_plugins() -> list[AgentPlugin]:
    from switchboard.providers.claude import claude_plugin
    from switchboard.providers.codex import codex_plugin

    return [claude_plugin, codex_plugin]


def register_builtin_agent_providers(registry: AgentRegistry | None = None) -> None:
    registry = registry or get_agent_registry()
    for plugin in builtin_agent_plugins():
        if not registry.has(plugin.type):
            registry.register(plugin)


def create_agent(config: AgentConfig, registry: AgentRegistry | None = None) -> BaseAgent:
    """Create an agent, registering the built-in providers first if nothing is registered."""
    registry = registry or get_agent_registry()
    if not registry.get_registered():
        register_builtin_agent_providers(registry)
    return registry.create(config)


def create_default_agent(**overrides: Any) -> BaseAgent:
    config = DEFAULT_AGENT_CONFIG.model_copy(update=overrides)
    return create_agent(config)


def get_provider_from_env() -> str:
    return os.environ.get("AGENT_PROVIDER") or DEFAULT_AGENT_PROVIDER


def create_agent_from_env(**overrides: Any) -> BaseAgent:
    config = AgentConfig(
        provider=get_provider_from_env(),
        api_key=os.environ.get("ANTHROPIC_API_KEY"),
        base_url=os.environ.get("ANTHROPIC_BASE_URL"),
        model=os.environ.get("ANTHROPIC_MODEL") or os.environ.get("AGENT_MODEL"),
        work_dir=os.environ.get("AGENT_WORK_DIR") or DEFAULT_WORK_DIR,
    )
    if overrides:
        config = config.model_copy(update=overrides)
    return create_agent(config)


def init_agents() -> None:
    """Register the built-in providers with the process-wide registry. Safe to call twice."""
    global _initialized
    if _initialized:
        return
    register_builtin_agent_providers()
    _initialized = True
    logger.info("Agent providers initialized: %s", ", ".join(get_agent_registry().get_registered()))


def reset_agents() -> None:
    """Forget that init_agents ran (for tests)."""
    global _initialized
    _initialized = False
