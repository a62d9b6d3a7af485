"""Pydantic models and enums shared by every agent provider."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from switchboard.agent.abort import AbortHandle

DEFAULT_ALLOWED_TOOLS: list[str] = [
    "Read",
    "Edit",
    "Write",
    "Glob",
    "Grep",
    "Bash",
    "WebSearch",
    "WebFetch",
    "Skill",
    "Task",
    "LSP",
    "TodoWrite",
]


def _now() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return secrets.token_urlsafe(12)


class _WireModel(BaseModel):
    """Accepts and emits camelCase keys; snake_case works too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class AgentMessageType(StrEnum):
    SESSION = "session"
    TEXT = "text"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    RESULT = "result"
    ERROR = "error"
    DONE = "done"
    PLAN = "plan"
    DIRECT_ANSWER = "direct_answer"


TERMINAL_MESSAGE_TYPES = frozenset({AgentMessageType.DONE, AgentMessageType.ERROR})


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class StepStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


STEP_TRANSITIONS: dict[StepStatus, set[StepStatus]] = {
    StepStatus.PENDING: {StepStatus.IN_PROGRESS, StepStatus.COMPLETED, StepStatus.FAILED},
    StepStatus.IN_PROGRESS: {StepStatus.COMPLETED, StepStatus.FAILED},
    StepStatus.FAILED: {StepStatus.IN_PROGRESS},
    StepStatus.COMPLETED: set(),
}


class PlanStep(_WireModel):
    id: str
    description: str
    status: StepStatus = StepStatus.PENDING


class TaskPlan(_WireModel):
    id: str = Field(default_factory=new_id)
    goal: str
    steps: list[PlanStep] = Field(default_factory=list)
    notes: str | None = None
    created_at: datetime = Field(default_factory=_now)

    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]

    def get_step(self, step_id: str) -> PlanStep:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(f"Step {step_id!r} is not part of plan {self.id!r}")

    def mark_step(self, step_id: str, status: StepStatus) -> PlanStep:
        """Move one step to *status*, validating the transition.

        Raises KeyError for a step the plan does not enumerate and ValueError
        for a transition outside STEP_TRANSITIONS.
        """
        step = self.get_step(step_id)
        if status == step.status:
            return step
        allowed = STEP_TRANSITIONS[step.status]
        if status not in allowed:
            raise ValueError(
                f"Invalid step transition for {step_id!r}: {step.status!r} -> {status!r}"
            )
        step.status = status
        return step

    def next_pending(self) -> PlanStep | None:
        for step in self.steps:
            if step.status in (StepStatus.PENDING, StepStatus.FAILED):
                return step
        return None

    @property
    def is_complete(self) -> bool:
        return all(s.status == StepStatus.COMPLETED for s in self.steps)


class AgentMessage(_WireModel):
    """One event in an agent's progress stream."""

    type: AgentMessageType
    session_id: str | None = None
    content: str | None = None
    name: str | None = None
    id: str | None = None
    input: Any = None
    cost: float | None = None
    duration: float | None = None
    tool_use_id: str | None = None
    output: str | None = None
    is_error: bool | None = None
    plan: TaskPlan | None = None
    message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_MESSAGE_TYPES

    @classmethod
    def error(cls, message: str, session_id: str | None = None) -> AgentMessage:
        return cls(type=AgentMessageType.ERROR, message=message, session_id=session_id)

    @classmethod
    def done(cls, session_id: str | None = None, content: str | None = None) -> AgentMessage:
        return cls(type=AgentMessageType.DONE, session_id=session_id, content=content)

    @classmethod
    def text(cls, content: str, session_id: str | None = None) -> AgentMessage:
        return cls(type=AgentMessageType.TEXT, content=content, session_id=session_id)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ModelConfig(_WireModel):
    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None

    @property
    def is_custom(self) -> bool:
        return bool(self.api_key or self.base_url or self.model)


class AgentConfig(_WireModel):
    """Provider selection and credentials. Frozen once handed to a factory."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    provider: str
    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None
    work_dir: str | None = None
    provider_config: dict[str, Any] = Field(default_factory=dict)


class SandboxConfig(_WireModel):
    enabled: bool = False
    provider: str | None = None
    image: str | None = None
    api_endpoint: str | None = None
    provider_config: dict[str, Any] = Field(default_factory=dict)


class SkillsConfig(_WireModel):
    enabled: bool = True
    user_dir_enabled: bool = True
    app_dir_enabled: bool = True
    skills_path: str | None = None


class McpConfig(_WireModel):
    enabled: bool = True
    user_dir_enabled: bool = True
    app_dir_enabled: bool = True
    mcp_config_path: str | None = None


class ConversationMessage(_WireModel):
    role: Literal["user", "assistant"]
    content: str
    image_paths: list[str] | None = None


class ImageAttachment(_WireModel):
    data: str
    mime_type: str = "image/png"


# ---------------------------------------------------------------------------
# Call options
# ---------------------------------------------------------------------------


class AgentOptions(_WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, arbitrary_types_allowed=True
    )

    session_id: str | None = None
    conversation: list[ConversationMessage] = Field(default_factory=list)
    cwd: str | None = None
    allowed_tools: list[str] | None = None
    task_id: str | None = None
    abort: AbortHandle | None = Field(default=None, exclude=True)
    permission_mode: Literal["plan", "execute", "bypassPermissions"] | None = None
    sandbox: SandboxConfig | None = None
    images: list[ImageAttachment] = Field(default_factory=list)
    skills_config: SkillsConfig | None = None
    mcp_config: McpConfig | None = None


class ExecuteOptions(AgentOptions):
    plan_id: str
    original_prompt: str = ""
    plan: TaskPlan | None = None


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionPhase(StrEnum):
    PLANNING = "planning"
    EXECUTING = "executing"
    IDLE = "idle"


@dataclass
class AgentSession:
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=_now)
    phase: SessionPhase = SessionPhase.IDLE
    is_aborted: bool = False
    abort: AbortHandle = field(default_factory=AbortHandle)
    config: AgentConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at.isoformat(),
            "phase": self.phase.value,
            "isAborted": self.is_aborted or self.abort.aborted,
        }


# ---------------------------------------------------------------------------
# API request
# ---------------------------------------------------------------------------


class RequestPhase(StrEnum):
    PLAN = "plan"
    EXECUTE = "execute"


class AgentRequest(_WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )

    prompt: str = ""
    session_id: str | None = None
    conversation: list[ConversationMessage] = Field(default_factory=list)
    phase: RequestPhase | None = None
    plan_id: str | None = None
    work_dir: str | None = None
    task_id: str | None = None
    provider: str | None = None
    model_config_: ModelConfig | None = Field(default=None, alias="modelConfig")
    sandbox_config: SandboxConfig | None = None
    images: list[ImageAttachment] = Field(default_factory=list)
    skills_config: SkillsConfig | None = None
    mcp_config: McpConfig | None = None
