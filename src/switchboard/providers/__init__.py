"""Bundled agent providers backed by command-line tools."""

from switchboard.providers.claude import ClaudeAgent, claude_plugin
from switchboard.providers.codex import CodexAgent, codex_plugin

__all__ = [
    "ClaudeAgent",
    "CodexAgent",
    "claude_plugin",
    "codex_plugin",
]
