# tests/test_remote_client.py

from __future__ import annotations

import json

import httpx
import pytest

from daysync.net.remote_client import (
    HttpTaskClient,
    UnconfiguredTaskClient,
    parse_created_id,
    parse_task_list,
)
from daysync.sync.operations import (
    CreatePayload,
    DeletePayload,
    OperationType,
    RepositionPayload,
    ToggleDonePayload,
    UpdatePayload,
)
from daysync.tasks.task_models import RemoteTask


class Recorder:
    """MockTransport handler that records requests and answers from a table."""

    def __init__(self, status: int = 200, body: object | None = None) -> None:
        self.status = status
        self.body = body if body is not None else {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json=self.body)


def _client(handler) -> HttpTaskClient:
    return HttpTaskClient(
        "https://tasks.example.test/api/v4/",
        "Bearer secret",
        7,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("op_type", "server_id", "payload", "method", "path", "body"),
    [
        (
            OperationType.CREATE,
            None,
            CreatePayload("buy milk", "2025-10-17"),
            "POST",
            "/api/v4/workspaces/7/todos",
            {"text": "buy milk", "current_date": "2025-10-17"},
        ),
        (OperationType.UPDATE, 42, UpdatePayload("new"), "PATCH", "/api/v4/workspaces/7/todos/42", {"text": "new"}),
        (OperationType.DELETE, 42, DeletePayload(), "DELETE", "/api/v4/workspaces/7/todos/42", None),
        (
            OperationType.TOGGLE_DONE,
            42,
            ToggleDonePayload(True),
            "POST",
            "/api/v4/workspaces/7/todos/42/state",
            {"done": True},
        ),
        (
            OperationType.REPOSITION,
            42,
            RepositionPayload("2025-10-18", 1),
            "POST",
            "/api/v4/workspaces/7/todos/42/reposition",
            {"current_date": "2025-10-18", "position": 1},
        ),
    ],
)
async def test_execute_routes(op_type, server_id, payload, method, path, body) -> None:
    rec = Recorder(body={"id": 42})
    client = _client(rec)
    try:
        res = await client.execute(op_type, server_id, payload)
    finally:
        await client.aclose()

    assert res.success
    assert res.status_code == 200
    (req,) = rec.requests
    assert req.method == method
    assert req.url.path == path
    assert req.headers["Authorization"] == "Bearer secret"
    if body is None:
        assert req.content == b""
    else:
        assert json.loads(req.content) == body


@pytest.mark.asyncio
async def test_list_tasks_sends_window() -> None:
    rec = Recorder(body=[{"id": 1, "text": "a", "done": False, "current_date": "2025-10-17"}])
    client = _client(rec)
    try:
        res = await client.list_tasks("2025-10-14", "2025-10-20")
    finally:
        await client.aclose()

    assert res.success
    (req,) = rec.requests
    assert req.method == "GET"
    assert req.url.params["since"] == "2025-10-14"
    assert req.url.params["until"] == "2025-10-20"
    assert parse_task_list(res.body) == [RemoteTask(1, "a", False, "2025-10-17")]


@pytest.mark.asyncio
async def test_http_error_is_a_failed_result() -> None:
    client = _client(Recorder(status=500, body={"error": "nope"}))
    try:
        res = await client.execute(OperationType.UPDATE, 1, UpdatePayload("x"))
    finally:
        await client.aclose()

    assert not res.success
    assert res.status_code == 500
    assert "nope" in res.body


@pytest.mark.asyncio
async def test_transport_error_is_a_failed_result() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route to host", request=request)

    client = _client(handler)
    try:
        res = await client.execute(OperationType.DELETE, 1, DeletePayload())
    finally:
        await client.aclose()

    assert not res.success
    assert res.status_code == 0
    assert "no route to host" in res.body


@pytest.mark.asyncio
async def test_missing_server_id_is_not_sent() -> None:
    rec = Recorder()
    client = _client(rec)
    try:
        res = await client.execute(OperationType.UPDATE, None, UpdatePayload("x"))
    finally:
        await client.aclose()

    assert not res.success
    assert rec.requests == []


@pytest.mark.asyncio
async def test_unconfigured_client_always_fails() -> None:
    client = UnconfiguredTaskClient()
    res = await client.execute(OperationType.CREATE, None, CreatePayload("a", "2025-10-17"))
    assert not res.success
    assert res.body == "remote not configured"
    assert not (await client.list_tasks("2025-10-17", "2025-10-17")).success


def test_client_requires_token() -> None:
    with pytest.raises(RuntimeError):
        HttpTaskClient("https://tasks.example.test", "", 1)


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ('{"id": 42, "text": "a"}', 42),
        ('{"todo": {"id": 43}}', 43),
        ('{"id": "44"}', 44),
        ('{"id": 0}', None),
        ('{"id": true}', None),
        ('{"text": "no id"}', None),
        ("", None),
        ("<html>", None),
    ],
)
def test_parse_created_id(body: str, expected: int | None) -> None:
    assert parse_created_id(body) == expected


def test_parse_task_list_skips_malformed_entries() -> None:
    body = json.dumps(
        {
            "todos": [
                {"id": 1, "text": "ok", "done": True, "current_date": "2025-10-17"},
                {"id": 2, "text": "no date"},
                {"text": "no id", "current_date": "2025-10-17"},
                "junk",
            ]
        }
    )
    assert parse_task_list(body) == [RemoteTask(1, "ok", True, "2025-10-17")]
    assert parse_task_list("oops") == []
