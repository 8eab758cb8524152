# src/daysync/net/remote_client.py

"""
Remote task-list service client.

One HTTP call per logical operation. Nothing here raises to the caller:
transport errors and non-2xx responses come back as RemoteResult values so
the sync coordinator can apply its retry policy.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..sync.operations import OperationPayload, OperationType
from ..tasks.task_models import RemoteTask

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "remote not configured"


@dataclass(frozen=True, slots=True)
class RemoteResult:
    success: bool
    status_code: int
    body: str

    def excerpt(self, limit: int = 200) -> str:
        s = (self.body or "").strip().replace("\n", " ")
        return s if len(s) <= limit else s[:limit] + "..."


def _as_positive_int(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw > 0 else None
    if isinstance(raw, str) and raw.strip().isdigit():
        v = int(raw.strip())
        return v if v > 0 else None
    return None


def _unwrap_todo(obj: Any) -> Any:
    # Some responses wrap the task: {"todo": {...}}
    if isinstance(obj, dict) and isinstance(obj.get("todo"), dict):
        return obj["todo"]
    return obj


def parse_created_id(body: str) -> int | None:
    """Server id from a CREATE response body, or None if it cannot be found."""
    try:
        data = json.loads(body or "")
    except (json.JSONDecodeError, TypeError):
        return None
    data = _unwrap_todo(data)
    if not isinstance(data, dict):
        return None
    return _as_positive_int(data.get("id"))


def _parse_remote_task(obj: Any) -> RemoteTask | None:
    obj = _unwrap_todo(obj)
    if not isinstance(obj, dict):
        return None
    server_id = _as_positive_int(obj.get("id"))
    day = obj.get("current_date")
    text = obj.get("text")
    if server_id is None or not isinstance(day, str) or not isinstance(text, str):
        return None
    return RemoteTask(server_id=server_id, text=text, done=bool(obj.get("done", False)), date=day)


def parse_task_list(body: str) -> list[RemoteTask]:
    """
    Tasks from a list response.

    Accepts a bare JSON array or an object carrying it under "todos".
    Malformed entries are skipped.
    """
    try:
        data = json.loads(body or "")
    except (json.JSONDecodeError, TypeError):
        logger.warning("Task list response is not JSON.")
        return []
    if isinstance(data, dict):
        data = data.get("todos", [])
    if not isinstance(data, list):
        return []

    out: list[RemoteTask] = []
    for item in data:
        task = _parse_remote_task(item)
        if task is None:
            logger.debug("Skipping malformed remote task: %r", item)
            continue
        out.append(task)
    return out


class HttpTaskClient:
    """
    httpx-based client for the workspace todo API.

    Routes live under {base_url}/workspaces/{workspace_id}. The client keeps
    one AsyncClient (connection pool) and must be used from a single event loop.
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str,
        workspace_id: int,
        *,
        connect_timeout_seconds: float = 15.0,
        read_timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base = (base_url or "").strip().rstrip("/")
        if not base:
            raise RuntimeError("Remote base URL is empty.")
        if not auth_token:
            raise RuntimeError("Remote auth token is missing.")

        self.base_url = base
        self.workspace_id = int(workspace_id)
        self._client = httpx.AsyncClient(
            base_url=f"{base}/workspaces/{self.workspace_id}",
            headers={
                "Authorization": auth_token,
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(
                connect=connect_timeout_seconds,
                read=read_timeout_seconds,
                write=10.0,
                pool=connect_timeout_seconds,
            ),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, *, transport: httpx.AsyncBaseTransport | None = None) -> HttpTaskClient:
        return cls(
            settings.base_url,
            settings.auth_token,
            settings.workspace_id,
            connect_timeout_seconds=settings.connect_timeout_seconds,
            read_timeout_seconds=settings.read_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def route(op_type: OperationType, server_id: int | None) -> tuple[str, str]:
        """(method, path) for an operation; path is relative to the workspace."""
        if op_type is OperationType.CREATE:
            return "POST", "/todos"
        if not server_id:
            raise ValueError(f"{op_type.value} needs a server id")
        if op_type is OperationType.UPDATE:
            return "PATCH", f"/todos/{server_id}"
        if op_type is OperationType.DELETE:
            return "DELETE", f"/todos/{server_id}"
        if op_type is OperationType.TOGGLE_DONE:
            return "POST", f"/todos/{server_id}/state"
        if op_type is OperationType.REPOSITION:
            return "POST", f"/todos/{server_id}/reposition"
        raise ValueError(f"{op_type.value} has no remote route")

    async def _send(self, method: str, path: str, **kwargs: Any) -> RemoteResult:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Remote %s %s timed out: %s", method, path, e)
            return RemoteResult(False, 0, f"timeout: {e}")
        except httpx.RequestError as e:
            logger.warning("Remote %s %s failed: %s", method, path, e)
            return RemoteResult(False, 0, f"network error: {e}")

        ok = 200 <= resp.status_code < 300
        if ok:
            logger.debug("Remote %s %s -> %s", method, path, resp.status_code)
        else:
            logger.info("Remote %s %s -> HTTP %s", method, path, resp.status_code)
        return RemoteResult(ok, resp.status_code, resp.text)

    async def execute(
        self,
        op_type: OperationType,
        server_id: int | None,
        payload: OperationPayload,
    ) -> RemoteResult:
        try:
            method, path = self.route(op_type, server_id)
        except ValueError as e:
            return RemoteResult(False, 0, str(e))

        if op_type is OperationType.DELETE:
            return await self._send(method, path)
        return await self._send(method, path, json=payload.to_wire())

    async def list_tasks(self, since: str, until: str) -> RemoteResult:
        return await self._send("GET", "/todos", params={"since": since, "until": until})


class UnconfiguredTaskClient:
    """Stand-in used when no base URL / token is configured: every call fails."""

    async def execute(
        self,
        op_type: OperationType,
        server_id: int | None,
        payload: OperationPayload,
    ) -> RemoteResult:
        return RemoteResult(False, 0, NOT_CONFIGURED)

    async def list_tasks(self, since: str, until: str) -> RemoteResult:
        return RemoteResult(False, 0, NOT_CONFIGURED)

    async def aclose(self) -> None:
        return None
