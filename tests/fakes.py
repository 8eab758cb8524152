# tests/fakes.py

from __future__ import annotations

import asyncio
import json
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from daysync.net.remote_client import RemoteResult
from daysync.sync.operations import OperationPayload, OperationType


@dataclass(slots=True)
class RemoteCall:
    op: str  # OperationType value, or "LIST"
    server_id: int | None
    body: dict[str, Any]


@dataclass(slots=True)
class FakeRemoteClient:
    """
    Scripted RemoteTaskClient used by coordinator tests.

    - Captures calls for assertions
    - Pops scripted results in order; when the script is empty, succeeds
      (CREATE gets a fresh server id starting at next_server_id)
    - on_call runs after each call is recorded (e.g. to flip connectivity)
    - gate, when set, makes every call wait until it is released
    """

    script: deque[RemoteResult] = field(default_factory=deque)
    list_body: str = "[]"
    next_server_id: int = 1000
    calls: list[RemoteCall] = field(default_factory=list)
    on_call: Callable[[RemoteCall], None] | None = None
    gate: asyncio.Event | None = None

    def push(self, *results: RemoteResult) -> None:
        self.script.extend(results)

    def ops(self) -> list[str]:
        return [c.op for c in self.calls]

    async def _record(self, call: RemoteCall) -> None:
        self.calls.append(call)
        if self.on_call is not None:
            self.on_call(call)
        if self.gate is not None:
            await self.gate.wait()

    async def execute(
        self,
        op_type: OperationType,
        server_id: int | None,
        payload: OperationPayload,
    ) -> RemoteResult:
        await self._record(RemoteCall(op_type.value, server_id, payload.to_wire()))
        if self.script:
            return self.script.popleft()
        if op_type is OperationType.CREATE:
            sid = self.next_server_id
            self.next_server_id += 1
            return RemoteResult(True, 201, json.dumps({"id": sid, **payload.to_wire()}))
        return RemoteResult(True, 200, "{}")

    async def list_tasks(self, since: str, until: str) -> RemoteResult:
        await self._record(RemoteCall("LIST", None, {"since": since, "until": until}))
        if self.script:
            return self.script.popleft()
        return RemoteResult(True, 200, self.list_body)


def ok(body: Any = None, status: int = 200) -> RemoteResult:
    return RemoteResult(True, status, json.dumps(body if body is not None else {}))


def fail(status: int = 500, body: str = "boom") -> RemoteResult:
    return RemoteResult(False, status, body)
