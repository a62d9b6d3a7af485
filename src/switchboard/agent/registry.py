"""AgentRegistry: register provider plugins and resolve configs to agents."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, overload

from switchboard.agent.models import AgentConfig
from switchboard.agent.plugin import (
    AgentFactory,
    AgentPlugin,
    AgentProviderMetadata,
    define_agent_plugin,
    validate_plugin,
)

if TYPE_CHECKING:
    from switchboard.agent.base import BaseAgent

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_PRIORITY = ("claude", "codex")


class ProviderNotFoundError(LookupError):
    """Raised when a config names a provider that is not registered."""


class InstanceState(StrEnum):
    READY = "ready"
    ERROR = "error"
    STOPPED = "stopped"


@dataclass
class AgentInstance:
    agent: BaseAgent
    config: AgentConfig
    state: InstanceState = InstanceState.READY
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_used_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def stable_dumps(value: Any) -> str:
    """Serialize with sorted keys and None values dropped, for config comparison."""
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json", exclude_none=True)
    return json.dumps(value, sort_keys=True, default=str)


def configs_equal(a: Any, b: Any) -> bool:
    return stable_dumps(a) == stable_dumps(b)


class AgentRegistry:
    """Plugin table keyed by provider type, plus a cache of shared instances."""

    def __init__(self) -> None:
        self._plugins: dict[str, AgentPlugin] = {}
        self._instances: dict[str, AgentInstance] = {}
        self._initialized: set[str] = set()

    # -- Registration --------------------------------------------------------

    @overload
    def register(self, plugin: AgentPlugin, /) -> None: ...

    @overload
    def register(self, provider: str, factory: AgentFactory, /) -> None: ...

    def register(
        self, plugin_or_provider: AgentPlugin | str, factory: AgentFactory | None = None, /
    ) -> None:
        """Register a plugin, or a bare provider name + factory.

        A second registration for the same type replaces the first.
        """
        if isinstance(plugin_or_provider, str):
            plugin = define_agent_plugin(
                AgentProviderMetadata(
                    type=plugin_or_provider,
                    name=plugin_or_provider,
                    description=f"{plugin_or_provider} agent provider",
                ),
                factory,  # type: ignore[arg-type]
            )
        else:
            plugin = validate_plugin(plugin_or_provider)
        self._register_plugin(plugin)

    def _register_plugin(self, plugin: AgentPlugin) -> None:
        provider_type = plugin.metadata.type
        if provider_type in self._plugins:
            logger.warning("Overwriting existing agent provider: %s", provider_type)
            self._instances.pop(provider_type, None)
            self._initialized.discard(provider_type)
        self._plugins[provider_type] = plugin
        logger.info("Registered agent provider: %s (%s)", provider_type, plugin.metadata.name)

    def unregister(self, provider_type: str) -> None:
        self._plugins.pop(provider_type, None)
        self._instances.pop(provider_type, None)
        self._initialized.discard(provider_type)

    def has(self, provider_type: str) -> bool:
        return provider_type in self._plugins

    # -- Lookup --------------------------------------------------------------

    def get(self, provider: str) -> AgentFactory | None:
        return self.get_factory(provider)

    def get_factory(self, provider_type: str) -> AgentFactory | None:
        plugin = self._plugins.get(provider_type)
        return plugin.factory if plugin else None

    def get_plugin(self, provider_type: str) -> AgentPlugin | None:
        return self._plugins.get(provider_type)

    def get_metadata(self, provider_type: str) -> AgentProviderMetadata | None:
        plugin = self._plugins.get(provider_type)
        return plugin.metadata if plugin else None

    def get_all_metadata(self) -> list[AgentProviderMetadata]:
        return [p.metadata for p in self._plugins.values()]

    def get_registered(self) -> list[str]:
        return list(self._plugins)

    async def get_available(self) -> list[str]:
        return self.get_registered()

    def get_with_planning(self) -> list[str]:
        return [m.type for m in self.get_all_metadata() if m.supports_plan]

    def get_with_streaming(self) -> list[str]:
        return [m.type for m in self.get_all_metadata() if m.supports_streaming]

    def get_with_sandbox(self) -> list[str]:
        return [m.type for m in self.get_all_metadata() if m.supports_sandbox]

    async def get_default_provider(self) -> str | None:
        available = await self.get_available()
        for provider_type in DEFAULT_PROVIDER_PRIORITY:
            if provider_type in available:
                return provider_type
        return available[0] if available else None

    # -- Creation ------------------------------------------------------------

    def _require_plugin(self, provider_type: str) -> AgentPlugin:
        plugin = self._plugins.get(provider_type)
        if plugin is None:
            available = ", ".join(self.get_registered()) or "none"
            raise ProviderNotFoundError(
                f"Unknown agent provider: {provider_type!r}. Available: {available}"
            )
        return plugin

    @overload
    def create(self, config: AgentConfig, /) -> BaseAgent: ...

    @overload
    def create(self, provider: str, config: AgentConfig | None = None, /) -> BaseAgent: ...

    def create(
        self, config_or_provider: AgentConfig | str, config: AgentConfig | None = None, /
    ) -> BaseAgent:
        """Build a new agent with the registered factory.

        Raises:
            ProviderNotFoundError: the provider type is not registered.
        """
        if isinstance(config_or_provider, str):
            plugin = self._require_plugin(config_or_provider)
            return plugin.factory(config or AgentConfig(provider=config_or_provider))
        plugin = self._require_plugin(config_or_provider.provider)
        return plugin.factory(config_or_provider)

    async def get_instance(self, provider_type: str, config: AgentConfig | None = None) -> BaseAgent:
        """Return a shared agent for *provider_type*, rebuilt when the config changes."""
        base = config.model_dump() if config is not None else {}
        effective = AgentConfig.model_validate({**base, "provider": provider_type})

        instance = self._instances.get(provider_type)
        if instance is not None and instance.state == InstanceState.READY:
            if configs_equal(instance.config, effective):
                instance.last_used_at = datetime.now(UTC)
                return instance.agent
            await self._shutdown_instance(provider_type, instance)
        elif instance is not None:
            logger.info("Recreating agent provider %s after %s", provider_type, instance.state)
            self._instances.pop(provider_type, None)

        agent = self.create(provider_type, effective)
        self._instances[provider_type] = AgentInstance(agent=agent, config=effective)
        return agent

    async def _shutdown_instance(self, provider_type: str, instance: AgentInstance) -> None:
        try:
            await instance.agent.shutdown()
            instance.state = InstanceState.STOPPED
        except Exception:
            instance.state = InstanceState.ERROR
            logger.exception("Failed to shut down agent provider %s", provider_type)
        self._instances.pop(provider_type, None)

    # -- Lifecycle -----------------------------------------------------------

    async def init_plugins(self) -> None:
        """Run each plugin's on_init hook once."""
        for provider_type, plugin in list(self._plugins.items()):
            if provider_type in self._initialized:
                continue
            self._initialized.add(provider_type)
            if plugin.on_init is None:
                continue
            try:
                await plugin.on_init()
            except Exception:
                logger.exception("on_init failed for agent provider %s", provider_type)

    async def stop_all(self) -> None:
        """Shut down cached instances and run on_destroy hooks."""
        for provider_type, instance in list(self._instances.items()):
            await self._shutdown_instance(provider_type, instance)
        self._instances.clear()

        for provider_type, plugin in list(self._plugins.items()):
            if plugin.on_destroy is None:
                continue
            try:
                await plugin.on_destroy()
            except Exception:
                logger.exception("on_destroy failed for agent provider %s", provider_type)
        self._initialized.clear()
        logger.info("All agent instances cleared")


# ---------------------------------------------------------------------------
# Process-wide registry
# ---------------------------------------------------------------------------

_global_registry: AgentRegistry | None = None


def get_agent_registry() -> AgentRegistry:
    global _global_registry
    if _global_registry is None:
        _global_registry = AgentRegistry()
    return _global_registry


def reset_agent_registry() -> None:
    """Drop the process-wide registry (for tests)."""
    global _global_registry
    _global_registry = None


def register_agent_provider(provider: str, factory: AgentFactory) -> None:
    get_agent_registry().register(provider, factory)


def register_agent_plugin(plugin: AgentPlugin) -> None:
    get_agent_registry().register(plugin)


def create_agent_from_config(config: AgentConfig) -> BaseAgent:
    return get_agent_registry().create(config)


async def get_agent_instance(provider: str, config: AgentConfig | None = None) -> BaseAgent:
    return await get_agent_registry().get_instance(provider, config)


def get_registered_agent_providers() -> list[str]:
    return get_agent_registry().get_registered()


def get_all_agent_metadata() -> list[AgentProviderMetadata]:
    return get_agent_registry().get_all_metadata()


async def stop_all_agent_providers() -> None:
    await get_agent_registry().stop_all()
