"""Agent plugin definition: provider metadata, factory, lifecycle hooks."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from switchboard.agent.models import AgentConfig
from switchboard.config import DEFAULT_AGENT_MODEL, DEFAULT_CODEX_MODEL, DEFAULT_WORK_DIR

if TYPE_CHECKING:
    from switchboard.agent.base import BaseAgent

AgentFactory = Callable[[AgentConfig], "BaseAgent"]
LifecycleHook = Callable[[], Awaitable[None]]


class PluginConfigError(ValueError):
    """Raised when a plugin definition is incomplete."""


class AgentProviderMetadata(BaseModel):
    """Identity and capability descriptor of an agent provider."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    type: str
    name: str
    version: str = "1.0.0"
    description: str = ""
    config_schema: dict[str, Any] = Field(default_factory=dict)
    builtin: bool = False
    supports_plan: bool = False
    supports_streaming: bool = False
    supports_sandbox: bool = False
    supported_models: list[str] | None = None
    default_model: str | None = None
    tags: list[str] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class AgentPlugin:
    metadata: AgentProviderMetadata
    factory: AgentFactory
    on_init: LifecycleHook | None = None
    on_destroy: LifecycleHook | None = None

    @property
    def type(self) -> str:
        return self.metadata.type


def validate_plugin(plugin: AgentPlugin) -> AgentPlugin:
    if not plugin.metadata.type:
        raise PluginConfigError("Agent plugin must have a type")
    if not plugin.metadata.name:
        raise PluginConfigError("Agent plugin must have a name")
    if not callable(plugin.factory):
        raise PluginConfigError("Agent plugin must have a factory function")
    for hook_name in ("on_init", "on_destroy"):
        hook = getattr(plugin, hook_name)
        if hook is not None and not callable(hook):
            raise PluginConfigError(f"Agent plugin {hook_name} must be callable")
    return plugin


def define_agent_plugin(
    metadata: AgentProviderMetadata | dict[str, Any],
    factory: AgentFactory,
    *,
    on_init: LifecycleHook | None = None,
    on_destroy: LifecycleHook | None = None,
) -> AgentPlugin:
    """Build and validate a plugin. Invalid definitions never reach a registry.

    Raises:
        PluginConfigError: type or name missing, or factory not callable.
    """
    if isinstance(metadata, dict):
        data = {"type": "", "name": "", **metadata}
        metadata = AgentProviderMetadata.model_validate(data)
    plugin = AgentPlugin(
        metadata=metadata,
        factory=factory,
        on_init=on_init,
        on_destroy=on_destroy,
    )
    return validate_plugin(plugin)


# ---------------------------------------------------------------------------
# Built-in config schemas
# ---------------------------------------------------------------------------

CLAUDE_CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "apiKey": {"type": "string", "description": "Anthropic API key"},
        "baseUrl": {"type": "string", "description": "Custom API base URL"},
        "model": {
            "type": "string",
            "default": DEFAULT_AGENT_MODEL,
            "description": "Claude model to use",
        },
        "workDir": {
            "type": "string",
            "default": DEFAULT_WORK_DIR,
            "description": "Working directory for file operations",
        },
        "cliPath": {"type": "string", "description": "Path to the claude CLI executable"},
    },
}

CODEX_CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "apiKey": {"type": "string", "description": "OpenAI API key"},
        "baseUrl": {"type": "string", "description": "Custom API base URL"},
        "model": {
            "type": "string",
            "default": DEFAULT_CODEX_MODEL,
            "description": "OpenAI model to use",
        },
        "workDir": {
            "type": "string",
            "default": DEFAULT_WORK_DIR,
            "description": "Working directory for file operations",
        },
        "cliPath": {"type": "string", "description": "Path to the codex CLI executable"},
    },
}

# ---------------------------------------------------------------------------
# Built-in metadata
# ---------------------------------------------------------------------------

CLAUDE_METADATA = AgentProviderMetadata(
    type="claude",
    name="Claude Agent",
    version="1.0.0",
    description=(
        "Claude Code CLI integration with full planning and execution support. "
        "Uses Anthropic Claude models."
    ),
    config_schema=CLAUDE_CONFIG_SCHEMA,
    builtin=True,
    supports_plan=True,
    supports_streaming=True,
    supports_sandbox=True,
    supported_models=[
        "claude-sonnet-4-20250514",
        "claude-opus-4-20250514",
        "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku-20241022",
    ],
    default_model=DEFAULT_AGENT_MODEL,
    tags=["anthropic", "claude", "planning", "streaming"],
)

CODEX_METADATA = AgentProviderMetadata(
    type="codex",
    name="Codex CLI",
    version="1.0.0",
    description=(
        "OpenAI Codex CLI integration. Uses OpenAI models through the codex command-line tool."
    ),
    config_schema=CODEX_CONFIG_SCHEMA,
    builtin=True,
    supports_plan=True,
    supports_streaming=True,
    supports_sandbox=True,
    supported_models=["gpt-5-codex", "gpt-5", "o4-mini"],
    default_model=DEFAULT_CODEX_MODEL,
    tags=["openai", "codex", "cli"],
)
