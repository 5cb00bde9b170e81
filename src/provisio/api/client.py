"""Orchestration server client - apply YAML documents and follow their tasks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import ServerConfig

logger = logging.getLogger(__name__)

DONE_STATES = {"COMPLETED", "EXECUTED", "DONE"}
FAILED_STATES = {"FAILING", "CANCELING", "CANCELLED", "FAILED", "STOPPED", "ABORTED"}
IN_PROGRESS = "IN_PROGRESS"


class ApplyError(Exception):
    """Base exception for apply errors."""

    def __init__(self, message: str, status_code: int | None = None, response: Any = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)


class ApplyAuthError(ApplyError):
    """Authentication error."""

    pass


class TaskFailedError(ApplyError):
    """A task ended in a failure state or needs manual action."""

    def __init__(self, message: str, task_id: str, state: str):
        self.task_id = task_id
        self.state = state
        super().__init__(message)


@dataclass
class TaskInfo:
    id: str
    description: str = ""


@dataclass
class Changes:
    ids: list[dict[str, Any]] = field(default_factory=list)
    task: TaskInfo | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "Changes":
        changes = data.get("changes") or {}
        task = changes.get("task")
        return cls(
            ids=list(changes.get("ids") or []),
            task=TaskInfo(id=str(task["id"]), description=task.get("description", "")) if task else None,
        )


@dataclass
class CurrentStep:
    name: str
    state: str
    automated: bool = True


@dataclass
class TaskState:
    state: str
    current_steps: list[CurrentStep] = field(default_factory=list)

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "TaskState":
        return cls(
            state=str(data.get("state", "")),
            current_steps=[
                CurrentStep(
                    name=s.get("name", ""),
                    state=s.get("state", ""),
                    automated=bool(s.get("automated", True)),
                )
                for s in data.get("currentSteps") or []
            ],
        )


def _format_errors(errors: dict[str, Any]) -> str:
    parts = []
    for kind, detail in errors.items():
        if not detail:
            continue
        if isinstance(detail, list):
            detail = "; ".join(str(d) for d in detail)
        parts.append(f"{kind}: {detail}")
    return ", ".join(parts)


class OrchestrationClient:
    """Client for one orchestration server.

    Usage:
        async with OrchestrationClient(server) as client:
            changes = await client.apply(document_yaml)
            if changes.task:
                await client.wait_for_task(changes.task.id)
    """

    def __init__(self, server: ServerConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.server = server
        auth = (server.username, server.password or "") if server.username else None
        self._client = httpx.AsyncClient(
            base_url=server.url,
            auth=auth,
            headers={"Accept": "application/json"},
            timeout=60.0,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    def accepts(self, api_version: str) -> bool:
        return api_version in self.server.api_versions

    async def _request(
        self,
        method: str,
        path: str,
        content: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Make a request with error handling."""
        try:
            response = await self._client.request(method=method, url=path, content=content, headers=headers)

            if response.status_code == 401:
                raise ApplyAuthError(f"Invalid credentials for server {self.server.name}", 401)

            response.raise_for_status()
            return response.json() if response.content else {}

        except httpx.HTTPStatusError as e:
            body = e.response.text if e.response.content else None
            raise ApplyError(
                f"API error from {self.server.name}: {e.response.status_code}",
                e.response.status_code,
                body,
            )
        except httpx.TransportError as e:
            raise ApplyError(f"Could not reach server {self.server.name} at {self.server.url}: {e}")

    async def apply(self, document: str) -> Changes:
        """POST one YAML document to the apply endpoint."""
        logger.debug("[apply] sending document to %s%s", self.server.url, self.server.apply_path)
        data = await self._request(
            "POST",
            self.server.apply_path,
            content=document,
            headers={"Content-Type": "text/vnd.yaml"},
        )
        errors = data.get("errors") if isinstance(data, dict) else None
        if errors:
            raise ApplyError(f"Server {self.server.name} rejected document: {_format_errors(errors)}", response=errors)
        return Changes.from_response(data)

    async def task_state(self, task_id: str) -> TaskState:
        path = self.server.task_path.format(task_id=task_id)
        return TaskState.from_response(await self._request("GET", path))

    async def wait_for_task(
        self,
        task_id: str,
        poll_interval: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_poll: Callable[[TaskState], None] | None = None,
    ) -> TaskState:
        """Poll a task until it is done; raise on failure or a manual step."""
        while True:
            state = await self.task_state(task_id)
            logger.debug("[apply] task %s is %s", task_id, state.state)
            if on_poll:
                on_poll(state)

            if state.state in DONE_STATES:
                return state
            if state.state in FAILED_STATES:
                raise TaskFailedError(
                    f"Unable to complete the task {task_id} automatically as its state became {state.state}",
                    task_id, state.state,
                )
            if state.state == IN_PROGRESS and any(not s.automated for s in state.current_steps):
                raise TaskFailedError(
                    f"Unable to complete the task {task_id} automatically as its current active step is manual",
                    task_id, state.state,
                )
            await sleep(poll_interval)


def find_server(servers: list[ServerConfig], api_version: str) -> ServerConfig:
    """Pick the server handling a document's apiVersion."""
    if not api_version:
        raise ApplyError("apiVersion missing")
    for server in servers:
        if api_version in server.api_versions:
            return server
    raise ApplyError(f"unknown apiVersion: {api_version}")
