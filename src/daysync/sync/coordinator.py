# src/daysync/sync/coordinator.py

from __future__ import annotations

"""
Sync coordinator.

Makes every task mutation offline-safe and replays the pending-operation
queue when connectivity returns:

- mutations write the local store first (optimistic), then either call the
  remote service directly (online) or append a pending operation (offline),
- a replay run walks the queue strictly in id order, one remote call at a
  time, re-targeting queued work when a CREATE yields its server id,
- failed operations are retried on later runs and dropped after
  max_retry_count attempts,
- losing connectivity mid-run stops the run; the remaining queue is untouched.

Transport, storage and connectivity are injected through the ports in
core/ports.py.
"""

import asyncio
import logging
import sqlite3
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum, StrEnum

from ..core.ports import Connectivity, RemoteTaskClient, TaskRepo
from ..net.remote_client import RemoteResult, parse_created_id, parse_task_list
from ..tasks.task_models import LocalRef, ServerRef, SyncStatus, Task, TaskRef, validate_date
from .operations import (
    CreatePayload,
    DeletePayload,
    OperationPayload,
    OperationType,
    PendingOperation,
    ReconcilePayload,
    RepositionPayload,
    ToggleDonePayload,
    UpdatePayload,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRY_COUNT = 3

ERR_OFFLINE = "Offline"
ERR_CONNECTION_LOST = "Connection lost"
ERR_NOT_FOUND = "Task not found"

SyncListener = Callable[[bool, str | None], None]


class SyncPhase(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True, slots=True)
class MutationResult:
    """
    Outcome of a user mutation.

    queued=True means the change was accepted locally and will be pushed by a
    later replay run.
    """

    success: bool
    error: str | None = None
    ref: TaskRef | None = None
    queued: bool = False


@dataclass(frozen=True, slots=True)
class SyncOutcome:
    phase: SyncPhase
    error: str | None = None
    processed: int = 0
    failed: int = 0
    dropped: int = 0

    @property
    def success(self) -> bool:
        return self.phase is SyncPhase.COMPLETED and self.error is None


@dataclass(slots=True)
class _RunStats:
    processed: int = 0
    failed: int = 0
    dropped: int = 0

    def outcome(self, phase: SyncPhase, error: str | None = None) -> SyncOutcome:
        return SyncOutcome(
            phase=phase,
            error=error,
            processed=self.processed,
            failed=self.failed,
            dropped=self.dropped,
        )


class _Step(Enum):
    DONE = "done"
    FAILED = "failed"
    # Ids changed under the queue; re-read it before continuing.
    RESUME = "resume"


def _failure_message(result: RemoteResult) -> str:
    if result.status_code:
        return f"HTTP {result.status_code}: {result.excerpt()}"
    return result.excerpt() or "request failed"


class SyncCoordinator:
    def __init__(
        self,
        store: TaskRepo,
        remote: RemoteTaskClient,
        connectivity: Connectivity,
        *,
        max_retry_count: int = DEFAULT_MAX_RETRY_COUNT,
    ) -> None:
        self._store = store
        self._remote = remote
        self._connectivity = connectivity
        self.max_retry_count = max(1, int(max_retry_count))

        self._phase = SyncPhase.IDLE
        self._last_outcome: SyncOutcome | None = None
        self._listeners: list[SyncListener] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._spawned: set[asyncio.Task[SyncOutcome | None]] = set()
        self._started = False
        # Local ids whose CREATE is being sent on the direct path.
        self._creating: set[int] = set()
        self._rerun_requested = False

    # ---- state ----

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def is_syncing(self) -> bool:
        return self._phase is SyncPhase.RUNNING

    @property
    def last_outcome(self) -> SyncOutcome | None:
        return self._last_outcome

    def get_pending_operation_count(self) -> int:
        return self._store.pending_operation_count()

    # ---- completion listeners ----

    def add_sync_listener(self, listener: SyncListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_sync_listener(self, listener: SyncListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, success: bool, error: str | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(success, error)
            except Exception:
                logger.exception("Sync listener failed.")

    # ---- lifecycle ----

    async def start(self) -> None:
        """Bind to the running loop and replay whenever connectivity comes back."""
        self._loop = asyncio.get_running_loop()
        if not self._started:
            self._connectivity.subscribe(self._on_connectivity_changed)
            self._started = True
        logger.info(
            "Sync coordinator started (online=%s pending=%s).",
            self._connectivity.is_online(),
            self.get_pending_operation_count(),
        )
        if self._connectivity.is_online() and self.get_pending_operation_count() > 0:
            self.request_sync()

    async def stop(self) -> None:
        if self._started:
            self._connectivity.unsubscribe(self._on_connectivity_changed)
            self._started = False
        if self._spawned:
            await asyncio.gather(*list(self._spawned), return_exceptions=True)
        logger.info("Sync coordinator stopped.")

    def _on_connectivity_changed(self, online: bool) -> None:
        if online:
            logger.info("Connectivity restored, replaying pending operations.")
            self.request_sync()

    def request_sync(self) -> None:
        """
        Schedule a replay run on the coordinator's loop.

        Safe to call from any thread. While a run is in progress the request
        is remembered and one more run starts after it finishes.
        """
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        loop = self._loop or running
        if loop is None or loop.is_closed():
            logger.debug("request_sync ignored: no event loop bound.")
            return

        if running is loop:
            self._spawn_sync(loop)
        else:
            loop.call_soon_threadsafe(self._spawn_sync, loop)

    def _spawn_sync(self, loop: asyncio.AbstractEventLoop) -> None:
        if self.is_syncing:
            self._rerun_requested = True
            return
        task = loop.create_task(self.sync_pending_operations())
        self._spawned.add(task)
        task.add_done_callback(self._spawned.discard)

    # ---- mutations ----

    async def create_task(self, text: str, date: str) -> MutationResult:
        text = (text or "").strip()
        if not text:
            return MutationResult(False, "Task text is empty")
        try:
            day = validate_date(date)
        except ValueError:
            return MutationResult(False, f"Invalid date: {date!r}")

        payload = CreatePayload(text=text, date=day)
        try:
            local_id = self._store.upsert_task(
                None, text=text, done=False, date=day, sync_status=SyncStatus.PENDING
            )
            ref = LocalRef(local_id)

            if not self._connectivity.is_online():
                self._store.enqueue_operation(payload, local_id=local_id)
                return MutationResult(True, None, ref, queued=True)

            self._creating.add(local_id)
            try:
                result = await self._remote.execute(OperationType.CREATE, None, payload)
            finally:
                self._creating.discard(local_id)
            if not result.success:
                logger.info("Create failed: %s", _failure_message(result))
                self._store.delete_task(ref)
                discarded = self._store.remove_operations_for_local(local_id)
                if discarded:
                    logger.warning(
                        "Discarded %d queued operation(s) for task local:%s whose create failed.",
                        discarded,
                        local_id,
                    )
                return MutationResult(False, _failure_message(result), None)

            server_id = parse_created_id(result.body)
            if server_id is None:
                logger.warning("Create succeeded but the response had no task id; queued for reconcile.")
                self._store.enqueue_operation(ReconcilePayload(text=text, date=day), local_id=local_id)
                self.request_sync()
                return MutationResult(True, None, ref, queued=True)

            self._adopt_server_identity(local_id, server_id)
            if self._store.has_pending_operations_for(ServerRef(server_id)):
                self.request_sync()
            return MutationResult(True, None, ServerRef(server_id))

        except sqlite3.Error as e:
            logger.exception("Local storage error while creating a task.")
            return MutationResult(False, f"Local storage error: {e}")

    async def update_task(self, ref: TaskRef, text: str) -> MutationResult:
        text = (text or "").strip()
        if not text:
            return MutationResult(False, "Task text is empty")
        return await self._mutate(ref, UpdatePayload(text=text), lambda t: self._write(t, text=text))

    async def toggle_done(self, ref: TaskRef, done: bool) -> MutationResult:
        done = bool(done)
        return await self._mutate(ref, ToggleDonePayload(done=done), lambda t: self._write(t, done=done))

    async def reposition_task(self, ref: TaskRef, date: str, position: int = 0) -> MutationResult:
        try:
            day = validate_date(date)
        except ValueError:
            return MutationResult(False, f"Invalid date: {date!r}")
        payload = RepositionPayload(date=day, position=int(position))
        return await self._mutate(ref, payload, lambda t: self._write(t, date=day))

    async def delete_task(self, ref: TaskRef) -> MutationResult:
        return await self._mutate(ref, DeletePayload(), lambda t: self._store.delete_task(t.ref))

    def _write(self, task: Task, **changes) -> None:
        self._store.upsert_task(
            task.ref,
            text=changes.get("text", task.text),
            done=changes.get("done", task.done),
            date=changes.get("date", task.date),
            sync_status=SyncStatus.PENDING,
        )

    def _restore(self, before: Task) -> None:
        self._store.upsert_task(
            before.ref,
            text=before.text,
            done=before.done,
            date=before.date,
            sync_status=before.sync_status,
        )

    def _must_defer(self, task: Task) -> bool:
        # Local-only tasks and tasks with queued work go through the queue so
        # a direct call can never overtake older operations for the same task.
        return task.is_local_only or self._store.has_pending_operations_for(task.ref)

    def _enqueue_for(self, task: Task, payload: OperationPayload) -> int:
        if task.is_local_only:
            return self._store.enqueue_operation(payload, local_id=task.local_id)
        return self._store.enqueue_operation(payload, server_id=task.server_id)

    async def _mutate(
        self,
        ref: TaskRef,
        payload: OperationPayload,
        apply_local: Callable[[Task], object],
    ) -> MutationResult:
        try:
            before = self._store.get_task(ref)
            if before is None:
                return MutationResult(False, ERR_NOT_FOUND, ref)

            online = self._connectivity.is_online()
            defer = self._must_defer(before)
            apply_local(before)

            if not online or defer:
                self._enqueue_for(before, payload)
                if online:
                    self.request_sync()
                return MutationResult(True, None, before.ref, queued=True)

            result = await self._remote.execute(payload.type, before.server_id, payload)
            if not result.success:
                logger.info("%s %s failed: %s", payload.type.value, before.ref, _failure_message(result))
                self._restore(before)
                return MutationResult(False, _failure_message(result), before.ref)

            if payload.type is not OperationType.DELETE:
                self._settle(before.ref)
            return MutationResult(True, None, before.ref)

        except sqlite3.Error as e:
            logger.exception("Local storage error during %s %s.", payload.type.value, ref)
            return MutationResult(False, f"Local storage error: {e}", ref)

    # ---- reconciliation helpers ----

    def _settle(self, ref: TaskRef) -> None:
        """Mark the row synced once nothing queued refers to it."""
        if not self._store.has_pending_operations_for(ref):
            self._store.mark_synced(ref)

    def _adopt_server_identity(self, local_id: int, server_id: int) -> None:
        # Re-target queued work even if the local row is already gone.
        self._store.reassign_todo_id(local_id, server_id)
        task = self._store.replace_with_server_identity(local_id, server_id)
        if task is None:
            logger.info("Local task %s vanished before its server id %s arrived.", local_id, server_id)
            return
        self._settle(ServerRef(server_id))

    # ---- remote refresh ----

    async def refresh_range(self, start_date: str, end_date: str) -> list[Task]:
        """
        Local tasks for [start_date, end_date], refreshed from the remote list when online.

        Rows with queued work and local-only rows keep their local state.
        """
        start = validate_date(start_date)
        end = validate_date(end_date)
        if self._connectivity.is_online():
            result = await self._remote.list_tasks(start, end)
            if result.success:
                try:
                    remote = parse_task_list(result.body)
                    self._store.replace_server_window(start, end, remote)
                    logger.info("Refreshed %s..%s: %d remote tasks.", start, end, len(remote))
                except sqlite3.Error:
                    logger.exception("Failed to store refreshed tasks for %s..%s.", start, end)
            else:
                logger.warning("Refresh %s..%s failed: %s", start, end, _failure_message(result))
        return self._store.list_tasks_in_range(start, end)

    # ---- queue replay ----

    async def sync_pending_operations(self) -> SyncOutcome | None:
        """
        Replay the pending-operation queue.

        Returns None (and does nothing) when a run is already in progress.
        Every other call ends with exactly one listener notification.
        """
        if self._phase is SyncPhase.RUNNING:
            logger.info("Sync already in progress, request ignored.")
            return None
        self._phase = SyncPhase.RUNNING

        stats = _RunStats()
        try:
            if not self._connectivity.is_online():
                logger.info("Sync requested while offline.")
                outcome = stats.outcome(SyncPhase.INTERRUPTED, ERR_OFFLINE)
            else:
                outcome = await self._replay(stats)
        except sqlite3.Error as e:
            logger.exception("Sync interrupted by a local storage error.")
            outcome = stats.outcome(SyncPhase.INTERRUPTED, f"Local storage error: {e}")
        except Exception as e:
            logger.exception("Sync crashed.")
            outcome = stats.outcome(SyncPhase.INTERRUPTED, f"Sync failed: {e}")
        finally:
            self._phase = SyncPhase.IDLE

        self._last_outcome = outcome
        logger.info(
            "Sync %s: processed=%d failed=%d dropped=%d%s",
            outcome.phase.value,
            outcome.processed,
            outcome.failed,
            outcome.dropped,
            f" ({outcome.error})" if outcome.error else "",
        )
        self._notify(outcome.success, outcome.error)

        if self._rerun_requested:
            self._rerun_requested = False
            if self._connectivity.is_online() and self.get_pending_operation_count() > 0:
                self.request_sync()
        return outcome

    async def _replay(self, stats: _RunStats) -> SyncOutcome:
        ops = self._store.list_pending_operations()
        if not ops:
            logger.info("No pending operations to sync.")
            return stats.outcome(SyncPhase.COMPLETED)

        logger.info("Syncing %d pending operation(s)...", len(ops))
        self._log_queue(ops)

        queue: deque[PendingOperation] = deque(ops)
        last_id = 0
        while True:
            while queue:
                op = queue.popleft()
                last_id = max(last_id, op.id)

                if not self._connectivity.is_online():
                    return stats.outcome(SyncPhase.INTERRUPTED, ERR_CONNECTION_LOST)

                # Re-read: a concurrent CREATE may have re-targeted it, or it may be gone.
                current = self._store.get_operation(op.id)
                if current is None:
                    continue

                step = await self._replay_one(current, stats)

                if step is _Step.RESUME:
                    queue = deque(self._store.list_pending_operations(after_id=current.id))
                    logger.debug("Queue re-read after op %s: %d remaining.", current.id, len(queue))
                elif step is _Step.FAILED and not self._connectivity.is_online():
                    logger.info("Connectivity lost during sync; stopping.")
                    return stats.outcome(SyncPhase.INTERRUPTED, ERR_CONNECTION_LOST)

            # Drain work queued by mutations while this run was in flight.
            tail = self._store.list_pending_operations(after_id=last_id)
            if not tail:
                break
            logger.info("%d operation(s) queued during sync, continuing.", len(tail))
            queue = deque(tail)

        error = f"{stats.failed} operation(s) failed" if stats.failed else None
        return stats.outcome(SyncPhase.COMPLETED, error)

    async def _replay_one(self, op: PendingOperation, stats: _RunStats) -> _Step:
        if op.retry_count >= self.max_retry_count:
            logger.warning(
                "Dropping operation %s (%s todo_id=%s local_todo_id=%s) after %d attempts.",
                op.id,
                op.type.value,
                op.todo_id,
                op.local_todo_id,
                op.retry_count,
            )
            self._store.remove_operation(op.id)
            stats.dropped += 1
            if op.is_resolved and op.todo_id is not None:
                self._settle(ServerRef(op.todo_id))
            return _Step.DONE

        if op.payload is None:
            return self._failed(op, stats, "unreadable payload")

        logger.info("Processing operation %s: %s (attempt %d)", op.id, op.type.value, op.retry_count + 1)

        if op.type is OperationType.CREATE:
            return await self._replay_create(op, stats)
        if op.type is OperationType.RECONCILE:
            return await self._replay_reconcile(op, stats)

        if not op.is_resolved and op.local_todo_id in self._creating:
            logger.info("Operation %s waits for its task to be created.", op.id)
            return _Step.DONE
        if not op.is_resolved or op.todo_id is None:
            return self._failed(op, stats, "server id not known yet")

        result = await self._remote.execute(op.type, op.todo_id, op.payload)
        if not result.success:
            return self._failed(op, stats, _failure_message(result))

        self._store.remove_operation(op.id)
        stats.processed += 1
        if op.type is not OperationType.DELETE:
            self._settle(ServerRef(op.todo_id))
        return _Step.DONE

    async def _replay_create(self, op: PendingOperation, stats: _RunStats) -> _Step:
        payload = op.payload
        if not isinstance(payload, CreatePayload):
            return self._failed(op, stats, "payload does not match CREATE")

        result = await self._remote.execute(OperationType.CREATE, None, payload)
        if not result.success:
            return self._failed(op, stats, _failure_message(result))

        server_id = parse_created_id(result.body)
        if server_id is None:
            logger.warning("CREATE %s succeeded but the response had no task id; reconciling.", op.id)
            reconcile = ReconcilePayload(text=payload.text, date=payload.date)
            self._store.convert_to_reconcile(op.id, reconcile)
            op = replace(op, type=OperationType.RECONCILE, payload=reconcile, retry_count=0)
            return await self._replay_reconcile(op, stats)

        return self._complete_create(op, server_id, stats)

    async def _replay_reconcile(self, op: PendingOperation, stats: _RunStats) -> _Step:
        payload = op.payload
        if not isinstance(payload, ReconcilePayload):
            return self._failed(op, stats, "payload does not match RECONCILE")

        result = await self._remote.list_tasks(payload.date, payload.date)
        if not result.success:
            return self._failed(op, stats, _failure_message(result))

        for remote in parse_task_list(result.body):
            if remote.text != payload.text or remote.date != payload.date:
                continue
            if self._store.get_task(ServerRef(remote.server_id)) is not None:
                continue
            logger.info("Reconciled operation %s with server task %s.", op.id, remote.server_id)
            return self._complete_create(op, remote.server_id, stats)

        return self._failed(op, stats, "no matching server task yet")

    def _complete_create(self, op: PendingOperation, server_id: int, stats: _RunStats) -> _Step:
        if op.local_todo_id is not None:
            logger.info("Task local:%s assigned server id %s.", op.local_todo_id, server_id)
            self._store.reassign_todo_id(op.local_todo_id, server_id)
            self._store.replace_with_server_identity(op.local_todo_id, server_id)
        self._store.remove_operation(op.id)
        stats.processed += 1
        self._settle(ServerRef(server_id))
        return _Step.RESUME

    def _failed(self, op: PendingOperation, stats: _RunStats, reason: str) -> _Step:
        self._store.increment_retry(op.id)
        stats.failed += 1
        logger.info(
            "Operation %s (%s) failed, attempt %d/%d: %s",
            op.id,
            op.type.value,
            op.retry_count + 1,
            self.max_retry_count,
            reason,
        )
        return _Step.FAILED

    def _log_queue(self, ops: list[PendingOperation]) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        logger.debug("%-6s %-12s %-10s %-10s %-6s", "id", "type", "todo_id", "local_id", "retry")
        for op in ops:
            logger.debug(
                "%-6s %-12s %-10s %-10s %-6s",
                op.id,
                op.type.value,
                op.todo_id,
                op.local_todo_id,
                op.retry_count,
            )
