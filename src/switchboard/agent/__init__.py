"""Agent provider abstraction: models, plugins, registry and the base agent contract."""

from switchboard.agent.abort import AbortHandle
from switchboard.agent.base import BaseAgent
from switchboard.agent.factory import (
    DEFAULT_AGENT_CONFIG,
    builtin_agent_plugins,
    create_agent,
    create_agent_from_env,
    create_default_agent,
    get_provider_from_env,
    init_agents,
    register_builtin_agent_providers,
)
from switchboard.agent.models import (
    DEFAULT_ALLOWED_TOOLS,
    AgentConfig,
    AgentMessage,
    AgentMessageType,
    AgentOptions,
    AgentRequest,
    AgentSession,
    ConversationMessage,
    ExecuteOptions,
    ImageAttachment,
    McpConfig,
    ModelConfig,
    PlanStep,
    SandboxConfig,
    SessionPhase,
    SkillsConfig,
    StepStatus,
    TaskPlan,
)
from switchboard.agent.plugin import (
    AgentPlugin,
    AgentProviderMetadata,
    PluginConfigError,
    define_agent_plugin,
)
from switchboard.agent.registry import (
    AgentRegistry,
    ProviderNotFoundError,
    create_agent_from_config,
    get_agent_instance,
    get_agent_registry,
    get_all_agent_metadata,
    get_registered_agent_providers,
    register_agent_plugin,
    register_agent_provider,
    reset_agent_registry,
    stop_all_agent_providers,
)
from switchboard.agent.stream import guard_stream

__all__ = [
    "DEFAULT_AGENT_CONFIG",
    "DEFAULT_ALLOWED_TOOLS",
    "AbortHandle",
    "AgentConfig",
    "AgentMessage",
    "AgentMessageType",
    "AgentOptions",
    "AgentPlugin",
    "AgentProviderMetadata",
    "AgentRegistry",
    "AgentRequest",
    "AgentSession",
    "BaseAgent",
    "ConversationMessage",
    "ExecuteOptions",
    "ImageAttachment",
    "McpConfig",
    "ModelConfig",
    "PlanStep",
    "PluginConfigError",
    "ProviderNotFoundError",
    "SandboxConfig",
    "SessionPhase",
    "SkillsConfig",
    "StepStatus",
    "TaskPlan",
    "builtin_agent_plugins",
    "create_agent",
    "create_agent_from_config",
    "create_agent_from_env",
    "create_default_agent",
    "define_agent_plugin",
    "get_agent_instance",
    "get_agent_registry",
    "get_all_agent_metadata",
    "get_provider_from_env",
    "get_registered_agent_providers",
    "guard_stream",
    "init_agents",
    "register_agent_plugin",
    "register_agent_provider",
    "register_builtin_agent_providers",
    "reset_agent_registry",
    "stop_all_agent_providers",
]
