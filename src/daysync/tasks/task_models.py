# src/daysync/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import date as _date
from enum import StrEnum


class SyncStatus(StrEnum):
    """Whether the local row matches what the remote service has acknowledged."""

    SYNCED = "synced"
    PENDING = "pending"

    @classmethod
    def from_db(cls, raw: str | int | None) -> SyncStatus:
        # Older stores kept 0/1 integers.
        if raw in (1, "1"):
            return cls.PENDING
        if raw in (None, "", 0, "0"):
            return cls.SYNCED
        try:
            return cls(str(raw))
        except Exception:
            return cls.SYNCED


@dataclass(frozen=True, slots=True)
class LocalRef:
    """Identity minted by the local store; valid until the task is synced."""

    id: int

    def __str__(self) -> str:
        return f"local:{self.id}"


@dataclass(frozen=True, slots=True)
class ServerRef:
    """Identity assigned by the remote service."""

    id: int

    def __str__(self) -> str:
        return f"server:{self.id}"


TaskRef = LocalRef | ServerRef


@dataclass(frozen=True, slots=True)
class Task:
    local_id: int
    server_id: int | None
    text: str
    done: bool
    date: str
    sync_status: SyncStatus

    @property
    def ref(self) -> TaskRef:
        if self.server_id is not None:
            return ServerRef(self.server_id)
        return LocalRef(self.local_id)

    @property
    def is_local_only(self) -> bool:
        return self.server_id is None

    @property
    def display_id(self) -> int:
        return self.server_id if self.server_id is not None else self.local_id


def validate_date(raw: str) -> str:
    """Return the ISO calendar date (YYYY-MM-DD) or raise ValueError."""
    s = (raw or "").strip()
    return _date.fromisoformat(s).isoformat()


@dataclass(frozen=True, slots=True)
class RemoteTask:
    """A task as reported by the remote service (list / create responses)."""

    server_id: int
    text: str
    done: bool
    date: str
