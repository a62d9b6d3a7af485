"""Async httpx client for the switchboard HTTP API."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from switchboard.agent.models import AgentMessage, TaskPlan

logger = logging.getLogger(__name__)


class AgentClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if base_url is None:
            from switchboard.server.runner import discover_api_url

            base_url = discover_api_url()
        self._base_url = base_url
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> AgentClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def health(self) -> dict:
        resp = await self._client.get("/health")
        resp.raise_for_status()
        return resp.json()

    # -- Streaming -----------------------------------------------------------

    async def _stream(self, path: str, body: dict[str, Any]) -> AsyncIterator[AgentMessage]:
        # Agent runs can take minutes between events.
        async with self._client.stream("POST", path, json=body, timeout=None) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                resp.raise_for_status()
            async for line in resp.aiter_lines():
                if not line.startswith("data:"):
                    continue
                payload = line[len("data:") :].strip()
                if not payload:
                    continue
                try:
                    yield AgentMessage.model_validate(json.loads(payload))
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning("Skipping malformed event: %s (%s)", payload[:200], e)

    def plan(self, prompt: str, **fields: Any) -> AsyncIterator[AgentMessage]:
        return self._stream("/agent/plan", {"prompt": prompt, **fields})

    def execute(self, plan_id: str, prompt: str = "", **fields: Any) -> AsyncIterator[AgentMessage]:
        return self._stream("/agent/execute", {"planId": plan_id, "prompt": prompt, **fields})

    def run(self, prompt: str, **fields: Any) -> AsyncIterator[AgentMessage]:
        return self._stream("/agent", {"prompt": prompt, **fields})

    # -- Sessions and plans --------------------------------------------------

    async def stop(self, session_id: str) -> bool:
        resp = await self._client.post(f"/agent/stop/{session_id}")
        if resp.status_code == 404:
            return False
        resp.raise_for_status()
        return True

    async def get_session(self, session_id: str) -> dict | None:
        resp = await self._client.get(f"/agent/session/{session_id}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def get_plan(self, plan_id: str) -> TaskPlan | None:
        resp = await self._client.get(f"/agent/plan/{plan_id}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return TaskPlan.model_validate(resp.json())

    async def delete_plan(self, plan_id: str) -> bool:
        resp = await self._client.delete(f"/agent/plan/{plan_id}")
        if resp.status_code == 404:
            return False
        resp.raise_for_status()
        return True

    # -- Providers -----------------------------------------------------------

    async def list_providers(self) -> list[dict]:
        resp = await self._client.get("/providers/agents")
        resp.raise_for_status()
        return resp.json()["agents"]

    # -- Background tasks ----------------------------------------------------

    async def background_tasks(self) -> list[dict]:
        resp = await self._client.get("/tasks/background")
        resp.raise_for_status()
        return resp.json()["tasks"]

    async def start_background(self, task_id: str, prompt: str, **fields: Any) -> dict:
        resp = await self._client.post(
            "/tasks/background", json={"taskId": task_id, "prompt": prompt, **fields}
        )
        resp.raise_for_status()
        return resp.json()["task"]

    async def get_background_task(self, task_id: str) -> dict | None:
        resp = await self._client.get(f"/tasks/background/{task_id}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def stop_background(self, task_id: str) -> bool:
        resp = await self._client.post(f"/tasks/background/{task_id}/stop")
        if resp.status_code == 404:
            return False
        resp.raise_for_status()
        return True
