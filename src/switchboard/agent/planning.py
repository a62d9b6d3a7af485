"""Planning prompts and plan extraction from free-form model output."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Literal

from switchboard.agent.models import ConversationMessage, PlanStep, SandboxConfig, TaskPlan

logger = logging.getLogger(__name__)

_VAGUE_STEP_PHRASES = ("execute the task", "do the work", "complete the request")
_MIN_STEP_LENGTH = 10
_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```")

DEFAULT_MAX_HISTORY_TOKENS = 2000

PLANNING_INSTRUCTION = """You are an AI assistant that helps with various tasks. First, decide whether the user's request needs planning and execution, or is a simple question that can be answered directly.

## INTENT DETECTION

SIMPLE QUESTIONS (answer directly, no planning):
- Greetings, identity and capability questions
- General knowledge questions that need no tools or file operations
- Conversation and chitchat

COMPLEX TASKS (require planning):
- Creating, reading, modifying or deleting files
- Writing or modifying code
- Producing documents, presentations or spreadsheets
- Searching the web for specific information
- Any multi-step task that needs tools

## OUTPUT FORMAT

You are in the PLANNING PHASE. Output only a JSON object. Do not write code,
file contents or implementation details. Describe WHAT will be done, not HOW.

For simple questions:
```json
{"type": "direct_answer", "answer": "Your helpful response"}
```

For complex tasks:
```json
{
  "type": "plan",
  "goal": "Clear description of what will be accomplished",
  "steps": [
    {"id": "1", "description": "Brief description of step 1"},
    {"id": "2", "description": "Brief description of step 2"}
  ],
  "notes": "Any important considerations"
}
```

Keep step descriptions short (under 50 characters) and focused on outcomes.

Output ONLY the JSON.

User request: """


@dataclass
class DirectAnswer:
    answer: str
    type: Literal["direct_answer"] = "direct_answer"


@dataclass
class PlanResponse:
    plan: TaskPlan
    type: Literal["plan"] = "plan"


PlanningResponse = DirectAnswer | PlanResponse


def get_workspace_instruction(work_dir: str, sandbox: SandboxConfig | None = None) -> str:
    """Prompt section pinning every file the agent writes to *work_dir*."""
    instruction = f"""
## Workspace Configuration
MANDATORY OUTPUT DIRECTORY: {work_dir}

Rules:
1. Save every file you create under {work_dir}/ using absolute paths.
2. Never write to any other directory (no ~/, no /tmp/, no default paths).
3. Create subdirectories under {work_dir}/ when needed.
4. Scripts must define OUTPUT_DIR = "{work_dir}", create it first, and build
   every file path from it.

## Files outside the workspace
Before modifying or deleting anything outside {work_dir}, ask the user for
explicit confirmation, listing the exact paths and the operation, then copy the
originals to {work_dir}/_backups/ with a timestamp suffix before changing them.
Reading files is always allowed.
"""
    if sandbox is not None and sandbox.enabled:
        instruction += f"""
## Sandbox Mode (ENABLED)
Run every script through the `sandbox_run_script` tool, never through Bash.
Prefer Node.js scripts; use Python only when a Python-only library is required.
Once `sandbox_run_script` succeeds for a script, do not run it again.
Scripts must use OUTPUT_DIR = "{work_dir}" for all file operations.
"""
    return instruction


def format_plan_for_execution(
    plan: TaskPlan,
    work_dir: str | None = None,
    sandbox: SandboxConfig | None = None,
) -> str:
    """Execution prompt listing exactly the approved steps, in order."""
    steps_text = "\n".join(f"{i}. {step.description}" for i, step in enumerate(plan.steps, 1))
    workspace_note = get_workspace_instruction(work_dir, sandbox) if work_dir else ""
    notes = f"Notes: {plan.notes}\n" if plan.notes else ""
    return (
        "You are executing a pre-approved plan. Follow these steps in order and do not "
        "take actions outside them:\n"
        f"{workspace_note}\n"
        f"Goal: {plan.goal}\n\n"
        f"Steps:\n{steps_text}\n\n"
        f"{notes}\n"
        "Now execute this plan. You have full permissions to use all available tools.\n\n"
        "Original request: "
    )


def estimate_token_count(text: str) -> int:
    return (len(text) + 3) // 4


def _format_history_message(message: ConversationMessage) -> str:
    role = "User" if message.role == "user" else "Assistant"
    formatted = f"{role}: {message.content}"
    if message.image_paths:
        refs = "\n".join(f"  - Image {i}: {p}" for i, p in enumerate(message.image_paths, 1))
        formatted += (
            f"\n[Attached images in this message:\n{refs}\n"
            "Use Read tool to view these images if needed]"
        )
    return formatted


def format_conversation_history(
    conversation: list[ConversationMessage] | None,
    max_tokens: int = DEFAULT_MAX_HISTORY_TOKENS,
) -> str:
    """Prompt prefix carrying as much recent history as fits in *max_tokens*.

    Messages are taken newest first and the selection stops at the first one
    that does not fit, so the kept history is always a contiguous tail.
    """
    if not conversation:
        return ""

    formatted = [_format_history_message(m) for m in conversation]
    selected: list[str] = []
    total = 0
    for text in reversed(formatted):
        tokens = estimate_token_count(text)
        if total + tokens > max_tokens:
            break
        selected.insert(0, text)
        total += tokens

    if not selected:
        return ""

    logger.debug(
        "Conversation history: kept %d of %d messages (~%d tokens)",
        len(selected),
        len(conversation),
        total,
    )
    notice = ""
    if len(selected) < len(conversation):
        notice = (
            f"\n\n[Note: Conversation history truncated. Showing {len(selected)} of "
            f"{len(conversation)} messages to stay within token limits.]"
        )
    body = "\n\n".join(selected)
    return (
        "## Previous Conversation Context\n"
        "The following is the conversation history. Use this context to understand "
        "and respond to the current message appropriately.\n\n"
        f"{body}{notice}\n\n---\n## Current Request\n"
    )


def extract_json_object(text: str, start: int = 0) -> str | None:
    """Return the first balanced ``{...}`` at or after *start*, respecting strings."""
    first = text.find("{", start)
    if first == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False
    for i in range(first, len(text)):
        char = text[i]
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[first : i + 1]
    return None


def _find_json(text: str, anchor: str) -> str | None:
    match = _CODE_BLOCK_RE.search(text)
    if match:
        found = extract_json_object(match.group(1))
        if found:
            return found

    anchor_index = text.find(anchor)
    if anchor_index != -1:
        start = text.rfind("{", 0, anchor_index + 1)
        if start != -1:
            found = extract_json_object(text, start)
            if found:
                return found

    return extract_json_object(text)


def _build_steps(raw_steps: list[object]) -> list[PlanStep]:
    steps: list[PlanStep] = []
    for index, raw in enumerate(raw_steps, 1):
        if not isinstance(raw, dict):
            raw = {"description": str(raw)}
        steps.append(
            PlanStep(
                id=str(raw.get("id") or index),
                description=str(raw.get("description") or "Unknown step"),
            )
        )
    return steps


def _is_specific(step: PlanStep) -> bool:
    desc = step.description.lower()
    return len(desc) > _MIN_STEP_LENGTH and not any(p in desc for p in _VAGUE_STEP_PHRASES)


def parse_plan_from_response(response_text: str) -> TaskPlan | None:
    """Parse a TaskPlan from model output. Returns None when no usable plan is found."""
    json_string = _find_json(response_text, '"goal"')
    if json_string is None:
        logger.debug("No plan JSON found in response: %s", response_text[:200])
        return None

    try:
        parsed = json.loads(json_string)
    except json.JSONDecodeError:
        logger.debug("Plan JSON did not decode: %s", json_string[:200])
        return None

    if not isinstance(parsed, dict) or not parsed.get("goal") or not isinstance(
        parsed.get("steps"), list
    ):
        return None

    all_steps = _build_steps(parsed["steps"])
    specific = [s for s in all_steps if _is_specific(s)]
    notes = parsed.get("notes")
    return TaskPlan(
        goal=str(parsed["goal"]),
        steps=specific or all_steps,
        notes=str(notes) if notes else None,
    )


def parse_planning_response(response_text: str) -> PlanningResponse | None:
    """Classify planning output as a direct answer or a plan."""
    match = _CODE_BLOCK_RE.search(response_text)
    json_string = extract_json_object(match.group(1)) if match else None
    if json_string is None:
        type_index = response_text.find('{"type"')
        if type_index != -1:
            json_string = extract_json_object(response_text, type_index)
    if json_string is None:
        json_string = extract_json_object(response_text)

    if json_string is None:
        stripped = response_text.strip()
        if stripped and '"steps"' not in stripped:
            return DirectAnswer(answer=stripped)
        return None

    try:
        parsed = json.loads(json_string)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None

    if parsed.get("type") == "direct_answer" and parsed.get("answer"):
        return DirectAnswer(answer=str(parsed["answer"]))

    if parsed.get("type") == "plan" or (parsed.get("goal") and isinstance(parsed.get("steps"), list)):
        plan = parse_plan_from_response(response_text)
        if plan is not None:
            return PlanResponse(plan=plan)

    return None
