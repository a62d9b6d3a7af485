"""Run an agent CLI and stream its JSON-lines stdout."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from collections.abc import AsyncIterator, Iterable, Mapping
from pathlib import Path
from typing import Any

from switchboard.agent.abort import AbortHandle

logger = logging.getLogger(__name__)

TERMINATE_TIMEOUT_SEC = 5.0
_STDERR_TAIL = 2000
# stream-json lines carry whole tool outputs
STREAM_LIMIT = 16 * 1024 * 1024

# Must not leak into agent subprocesses; they make the CLI think it is nested.
STRIP_ENV_VARS = frozenset({"CLAUDECODE", "CLAUDE_CODE_ENTRYPOINT"})


class CliNotFoundError(FileNotFoundError):
    """Raised when an agent CLI executable cannot be located."""


class CliProcessError(RuntimeError):
    def __init__(self, returncode: int, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip()[-_STDERR_TAIL:] if stderr else ""
        super().__init__(f"CLI exited with code {returncode}" + (f": {detail}" if detail else ""))


def resolve_cli(name: str, search_paths: Iterable[Path] = (), env_var: str | None = None) -> str | None:
    """Locate *name*: absolute path, then PATH, then well-known locations, then *env_var*."""
    if os.path.isabs(name) and os.path.isfile(name):
        return name
    found = shutil.which(name)
    if found:
        return found
    for candidate in search_paths:
        if candidate.is_file() and os.access(candidate, os.X_OK):
            logger.info("Resolved %s CLI at %s (not on PATH)", name, candidate)
            return str(candidate)
    if env_var:
        override = os.environ.get(env_var)
        if override and os.path.isfile(override):
            return override
    logger.warning("Could not locate %s CLI", name)
    return None


def build_env(overrides: Mapping[str, str | None] | None = None) -> dict[str, str]:
    env = {k: v for k, v in os.environ.items() if k not in STRIP_ENV_VARS}
    for key, value in (overrides or {}).items():
        if value is not None:
            env[key] = value
    return env


def _decode(line: bytes) -> dict[str, Any] | None:
    text = line.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    try:
        event = json.loads(text)
    except json.JSONDecodeError:
        return {"type": "raw", "text": text}
    if not isinstance(event, dict):
        return {"type": "raw", "text": text}
    return event


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=TERMINATE_TIMEOUT_SEC)
    except TimeoutError:
        process.kill()
        await process.wait()


async def stream_json_lines(
    cmd: list[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    abort: AbortHandle | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """Spawn *cmd* and yield one decoded object per stdout line.

    Lines that are not JSON objects come through as ``{"type": "raw", "text": ...}``.
    The process is terminated when *abort* fires or the consumer stops early.

    Raises:
        CliNotFoundError: the executable does not exist.
        CliProcessError: the process exited non-zero without being aborted.
    """
    logger.debug("Spawning %s (cwd=%s)", cmd[0], cwd)
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            limit=STREAM_LIMIT,
        )
    except FileNotFoundError as e:
        raise CliNotFoundError(f"Executable not found: {cmd[0]}") from e

    stderr_task = asyncio.ensure_future(process.stderr.read())  # type: ignore[union-attr]

    def kill() -> None:
        asyncio.ensure_future(_terminate(process))

    if abort is not None:
        abort.add_callback(kill)

    try:
        while True:
            line = await process.stdout.readline()  # type: ignore[union-attr]
            if not line:
                break
            event = _decode(line)
            if event is not None:
                yield event
        returncode = await process.wait()
        stderr = (await stderr_task).decode("utf-8", errors="replace")
        if returncode != 0 and not (abort is not None and abort.aborted):
            raise CliProcessError(returncode, stderr)
    finally:
        if abort is not None:
            abort.remove_callback(kill)
        await _terminate(process)
        if not stderr_task.done():
            stderr_task.cancel()
