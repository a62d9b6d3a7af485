"""Tests for agent plugins and the AgentRegistry."""

import logging
from unittest.mock import AsyncMock

import pytest

from switchboard.agent.factory import builtin_agent_plugins, register_builtin_agent_providers
from switchboard.agent.models import AgentConfig
from switchboard.agent.plugin import (
    AgentProviderMetadata,
    PluginConfigError,
    define_agent_plugin,
)
from switchboard.agent.registry import (
    AgentRegistry,
    ProviderNotFoundError,
    configs_equal,
    get_agent_registry,
    reset_agent_registry,
)

from conftest import StubAgent, stub_plugin


class TestDefineAgentPlugin:
    def test_from_dict(self):
        plugin = define_agent_plugin({"type": "x", "name": "X"}, StubAgent)
        assert plugin.type == "x"
        assert plugin.metadata.version == "1.0.0"

    def test_missing_type(self):
        with pytest.raises(PluginConfigError, match="type"):
            define_agent_plugin({"name": "X"}, StubAgent)

    def test_missing_name(self):
        with pytest.raises(PluginConfigError, match="name"):
            define_agent_plugin({"type": "x"}, StubAgent)

    def test_factory_not_callable(self):
        with pytest.raises(PluginConfigError, match="factory"):
            define_agent_plugin({"type": "x", "name": "X"}, "not a factory")

    def test_metadata_wire_format(self):
        metadata = AgentProviderMetadata(type="x", name="X", supports_plan=True)
        wire = metadata.to_wire()
        assert wire["supportsPlan"] is True
        assert "supportedModels" not in wire


class TestRegistration:
    def test_register_plugin(self, registry):
        assert registry.has("stub")
        assert registry.get_registered() == ["stub", "other"]

    def test_register_name_and_factory(self):
        registry = AgentRegistry()
        registry.register("plain", StubAgent)
        assert registry.get_metadata("plain").name == "plain"
        assert registry.get("plain") is StubAgent

    def test_overwrite_logs_warning(self, registry, caplog):
        with caplog.at_level(logging.WARNING):
            registry.register(stub_plugin("stub"))
        assert "Overwriting existing agent provider: stub" in caplog.text
        assert registry.get_registered().count("stub") == 1

    def test_unregister(self, registry):
        registry.unregister("other")
        assert not registry.has("other")
        registry.unregister("other")

    def test_capability_queries(self):
        registry = AgentRegistry()
        registry.register(stub_plugin("a", supports_streaming=True))
        registry.register(stub_plugin("b", supports_plan=False, supports_sandbox=True))
        assert registry.get_with_planning() == ["a"]
        assert registry.get_with_streaming() == ["a"]
        assert registry.get_with_sandbox() == ["b"]


class TestCreate:
    def test_create_by_config(self, registry):
        agent = registry.create(AgentConfig(provider="stub", model="m1"))
        assert isinstance(agent, StubAgent)
        assert agent.config.model == "m1"

    def test_create_by_name(self, registry):
        agent = registry.create("other")
        assert agent.provider == "other"
        assert agent.config.provider == "other"

    def test_unknown_provider(self, registry):
        with pytest.raises(ProviderNotFoundError, match="Available: stub, other"):
            registry.create("nope")

    def test_create_returns_new_instances(self, registry):
        assert registry.create("stub") is not registry.create("stub")


class TestGetInstance:
    @pytest.mark.asyncio
    async def test_cached_for_same_config(self, registry):
        first = await registry.get_instance("stub", AgentConfig(provider="stub", model="m"))
        second = await registry.get_instance("stub", AgentConfig(provider="stub", model="m"))
        assert first is second

    @pytest.mark.asyncio
    async def test_rebuilt_when_config_changes(self, registry):
        first = await registry.get_instance("stub", AgentConfig(provider="stub", model="m"))
        second = await registry.get_instance("stub", AgentConfig(provider="stub", model="n"))
        assert first is not second
        assert second.config.model == "n"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, registry):
        with pytest.raises(ProviderNotFoundError):
            await registry.get_instance("nope")

    @pytest.mark.asyncio
    async def test_default_provider_prefers_priority(self):
        registry = AgentRegistry()
        registry.register(stub_plugin("zeta"))
        registry.register(stub_plugin("codex"))
        assert await registry.get_default_provider() == "codex"

    @pytest.mark.asyncio
    async def test_default_provider_empty(self):
        assert await AgentRegistry().get_default_provider() is None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_init_hooks_run_once(self):
        on_init = AsyncMock()
        registry = AgentRegistry()
        registry.register(define_agent_plugin({"type": "x", "name": "X"}, StubAgent, on_init=on_init))
        await registry.init_plugins()
        await registry.init_plugins()
        on_init.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_init_hook_logged(self, caplog):
        registry = AgentRegistry()
        on_init = AsyncMock(side_effect=RuntimeError("boom"))
        registry.register(define_agent_plugin({"type": "x", "name": "X"}, StubAgent, on_init=on_init))
        await registry.init_plugins()
        assert "on_init failed for agent provider x" in caplog.text

    @pytest.mark.asyncio
    async def test_stop_all_shuts_down_instances(self):
        on_destroy = AsyncMock()
        registry = AgentRegistry()
        registry.register(
            define_agent_plugin({"type": "x", "name": "X"}, StubAgent, on_destroy=on_destroy)
        )
        agent = await registry.get_instance("x")
        agent.create_session()
        await registry.stop_all()
        assert agent.sessions == {}
        on_destroy.assert_awaited_once()
        assert await registry.get_instance("x") is not agent


class TestHelpers:
    def test_configs_equal_ignores_none(self):
        assert configs_equal({"a": 1, "b": None}, {"b": None, "a": 1})
        assert configs_equal(AgentConfig(provider="x"), AgentConfig(provider="x", model=None))
        assert not configs_equal(AgentConfig(provider="x"), AgentConfig(provider="x", model="m"))

    def test_global_registry_reset(self):
        reset_agent_registry()
        first = get_agent_registry()
        assert get_agent_registry() is first
        reset_agent_registry()
        assert get_agent_registry() is not first
        reset_agent_registry()


class TestBuiltins:
    def test_builtin_plugins(self):
        assert [p.type for p in builtin_agent_plugins()] == ["claude", "codex"]

    def test_register_builtins_keeps_existing(self, registry):
        registry.register(stub_plugin("claude"))
        register_builtin_agent_providers(registry)
        assert isinstance(registry.create("claude"), StubAgent)
        assert registry.get_metadata("codex").builtin
