# src/daysync/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the sync core.

The coordinator depends on Protocols instead of concrete implementations.
This keeps storage/transport/connectivity swappable and makes testing easier.
"""

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..net.remote_client import RemoteResult
    from ..sync.operations import OperationPayload, OperationType, PendingOperation, ReconcilePayload
    from ..tasks.task_models import RemoteTask, SyncStatus, Task, TaskRef


class TaskRepo(Protocol):
    # Tasks
    def upsert_task(
        self,
        ref: TaskRef | None,
        *,
        text: str,
        done: bool,
        date: str,
        sync_status: SyncStatus = ...,
    ) -> int: ...
    def get_task(self, ref: TaskRef) -> Task | None: ...
    def get_task_by_any_id(self, task_id: int) -> Task | None: ...
    def list_tasks_in_range(self, start_date: str, end_date: str) -> list[Task]: ...
    def delete_task(self, ref: TaskRef) -> int: ...
    def mark_synced(self, ref: TaskRef) -> None: ...
    def replace_with_server_identity(self, local_id: int, server_id: int) -> Task | None: ...
    def replace_server_window(
        self,
        start_date: str,
        end_date: str,
        remote: Iterable[RemoteTask],
    ) -> tuple[int, int]: ...

    # Pending-operation queue
    def enqueue_operation(
        self,
        payload: OperationPayload,
        *,
        server_id: int | None = None,
        local_id: int | None = None,
    ) -> int: ...
    def list_pending_operations(self, *, after_id: int | None = None) -> list[PendingOperation]: ...
    def get_operation(self, op_id: int) -> PendingOperation | None: ...
    def remove_operation(self, op_id: int) -> int: ...
    def remove_operations_for_local(self, local_id: int) -> int: ...
    def increment_retry(self, op_id: int) -> None: ...
    def reassign_todo_id(self, local_id: int, server_id: int) -> int: ...
    def convert_to_reconcile(self, op_id: int, payload: ReconcilePayload) -> None: ...
    def has_pending_operations_for(self, ref: TaskRef) -> bool: ...
    def pending_operation_count(self) -> int: ...


class Connectivity(Protocol):
    def is_online(self) -> bool: ...
    def subscribe(self, listener: Callable[[bool], None]) -> None: ...
    def unsubscribe(self, listener: Callable[[bool], None]) -> None: ...


class RemoteTaskClient(Protocol):
    """One remote call per logical operation; failures are values, not exceptions."""

    async def execute(
        self,
        op_type: OperationType,
        server_id: int | None,
        payload: OperationPayload,
    ) -> RemoteResult: ...

    async def list_tasks(self, since: str, until: str) -> RemoteResult: ...
