# src/daysync/sync/operations.py

"""
Pending-operation model.

Each queued mutation carries a typed payload variant. JSON only exists at the
storage boundary (encode_payload / decode_payload) and uses the same field
names as the remote wire format: text, current_date, done, position.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class OperationType(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TOGGLE_DONE = "TOGGLE_DONE"
    REPOSITION = "REPOSITION"
    # CREATE that succeeded remotely but whose response carried no usable id.
    RECONCILE = "RECONCILE"


class PayloadError(ValueError):
    """Stored payload bytes do not match the operation type."""


@dataclass(frozen=True, slots=True)
class CreatePayload:
    text: str
    date: str

    @property
    def type(self) -> OperationType:
        return OperationType.CREATE

    def to_wire(self) -> dict[str, Any]:
        return {"text": self.text, "current_date": self.date}


@dataclass(frozen=True, slots=True)
class UpdatePayload:
    text: str

    @property
    def type(self) -> OperationType:
        return OperationType.UPDATE

    def to_wire(self) -> dict[str, Any]:
        return {"text": self.text}


@dataclass(frozen=True, slots=True)
class DeletePayload:
    @property
    def type(self) -> OperationType:
        return OperationType.DELETE

    def to_wire(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True, slots=True)
class ToggleDonePayload:
    done: bool

    @property
    def type(self) -> OperationType:
        return OperationType.TOGGLE_DONE

    def to_wire(self) -> dict[str, Any]:
        return {"done": self.done}


@dataclass(frozen=True, slots=True)
class RepositionPayload:
    date: str
    position: int = 0

    @property
    def type(self) -> OperationType:
        return OperationType.REPOSITION

    def to_wire(self) -> dict[str, Any]:
        return {"current_date": self.date, "position": self.position}


@dataclass(frozen=True, slots=True)
class ReconcilePayload:
    text: str
    date: str

    @property
    def type(self) -> OperationType:
        return OperationType.RECONCILE

    def to_wire(self) -> dict[str, Any]:
        return {"text": self.text, "current_date": self.date}


OperationPayload = (
    CreatePayload
    | UpdatePayload
    | DeletePayload
    | ToggleDonePayload
    | RepositionPayload
    | ReconcilePayload
)


@dataclass(frozen=True, slots=True)
class PendingOperation:
    id: int
    type: OperationType
    todo_id: int | None
    local_todo_id: int | None
    payload: OperationPayload | None  # None: stored bytes could not be decoded
    timestamp: int  # ms since epoch
    retry_count: int

    @property
    def is_resolved(self) -> bool:
        return bool(self.todo_id)


def encode_payload(payload: OperationPayload) -> str:
    return json.dumps(payload.to_wire(), ensure_ascii=False, separators=(",", ":"))


def _require(data: dict[str, Any], key: str, kind: type) -> Any:
    if key not in data:
        raise PayloadError(f"missing field {key!r}")
    val = data[key]
    # bool is an int subclass; keep the two apart.
    if kind is int and isinstance(val, bool):
        raise PayloadError(f"field {key!r} must be int")
    if not isinstance(val, kind):
        raise PayloadError(f"field {key!r} must be {kind.__name__}")
    return val


def decode_payload(op_type: OperationType | str, raw: str | None) -> OperationPayload:
    try:
        t = OperationType(op_type)
    except ValueError as e:
        raise PayloadError(f"unknown operation type {op_type!r}") from e

    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        raise PayloadError(f"payload is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise PayloadError("payload must be a JSON object")

    if t is OperationType.CREATE:
        return CreatePayload(text=_require(data, "text", str), date=_require(data, "current_date", str))
    if t is OperationType.UPDATE:
        return UpdatePayload(text=_require(data, "text", str))
    if t is OperationType.DELETE:
        return DeletePayload()
    if t is OperationType.TOGGLE_DONE:
        return ToggleDonePayload(done=_require(data, "done", bool))
    if t is OperationType.REPOSITION:
        return RepositionPayload(
            date=_require(data, "current_date", str),
            position=_require(data, "position", int),
        )
    return ReconcilePayload(text=_require(data, "text", str), date=_require(data, "current_date", str))
