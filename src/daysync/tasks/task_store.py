# src/daysync/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
import time
from collections.abc import Iterable, Iterator
from pathlib import Path

from ..sync.operations import (
    OperationPayload,
    OperationType,
    PayloadError,
    PendingOperation,
    ReconcilePayload,
    decode_payload,
    encode_payload,
)
from .task_models import LocalRef, RemoteTask, ServerRef, SyncStatus, Task, TaskRef, validate_date

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite store for tasks and the pending-operation queue.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    - writes are serialized by a process-wide lock, and every multi-statement
      write runs inside a single transaction
    """

    def __init__(self, db_path: str | Path = "daysync.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.RLock()
        self._ensure_schema()
        try:
            total = self.count_tasks()
            pending = self.pending_operation_count()
        except sqlite3.Error:
            total = pending = -1
        logger.info("TaskStore ready db=%s tasks=%s pending_ops=%s", self._db_path, total, pending)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """One serialized write transaction: commit on success, rollback on error."""
        with self._write_lock:
            conn = self._get_conn()
            try:
                yield conn
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
            finally:
                conn.close()

    def _ensure_schema(self) -> None:
        with self._write() as conn:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    server_id INTEGER,
                    text TEXT NOT NULL,
                    done INTEGER NOT NULL DEFAULT 0,
                    date TEXT NOT NULL,
                    sync_status TEXT NOT NULL DEFAULT 'synced',
                    updated_at REAL NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_operations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    operation_type TEXT NOT NULL,
                    todo_id INTEGER,
                    local_todo_id INTEGER,
                    payload TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    retry_count INTEGER NOT NULL DEFAULT 0
                )
                """
            )

            # Migrations (safe): add missing columns.
            def add_cols(table: str, wanted: list[tuple[str, str]]) -> None:
                cur.execute(f"PRAGMA table_info({table})")
                cols = {row["name"] for row in cur.fetchall()}
                for name, decl in wanted:
                    if name in cols:
                        continue
                    cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                    logger.info("TaskStore migration: added column %s.%s", table, name)

            add_cols(
                "tasks",
                [
                    ("server_id", "INTEGER"),
                    ("done", "INTEGER NOT NULL DEFAULT 0"),
                    ("sync_status", "TEXT NOT NULL DEFAULT 'synced'"),
                    ("updated_at", "REAL NOT NULL DEFAULT 0"),
                ],
            )
            add_cols(
                "pending_operations",
                [
                    ("local_todo_id", "INTEGER"),
                    ("timestamp", "INTEGER NOT NULL DEFAULT 0"),
                    ("retry_count", "INTEGER NOT NULL DEFAULT 0"),
                ],
            )

            cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_server_id ON tasks(server_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_date ON tasks(date, done, text)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_ops_targets ON pending_operations(local_todo_id, todo_id)"
            )

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            local_id=int(row["local_id"]),
            server_id=int(row["server_id"]) if row["server_id"] is not None else None,
            text=str(row["text"] or ""),
            done=bool(row["done"]),
            date=str(row["date"] or ""),
            sync_status=SyncStatus.from_db(row["sync_status"]),
        )

    @staticmethod
    def _row_to_operation(row: sqlite3.Row) -> PendingOperation:
        raw_type = str(row["operation_type"] or "")
        payload: OperationPayload | None
        try:
            op_type = OperationType(raw_type)
            payload = decode_payload(op_type, row["payload"])
        except (ValueError, PayloadError):
            logger.exception("Undecodable pending operation id=%s type=%s", row["id"], raw_type)
            op_type = OperationType(raw_type) if raw_type in OperationType.__members__ else OperationType.UPDATE
            payload = None

        return PendingOperation(
            id=int(row["id"]),
            type=op_type,
            todo_id=int(row["todo_id"]) if row["todo_id"] is not None else None,
            local_todo_id=int(row["local_todo_id"]) if row["local_todo_id"] is not None else None,
            payload=payload,
            timestamp=int(row["timestamp"] or 0),
            retry_count=int(row["retry_count"] or 0),
        )

    @staticmethod
    def _ref_where(ref: TaskRef) -> tuple[str, int]:
        if isinstance(ref, ServerRef):
            return "server_id = ?", int(ref.id)
        if isinstance(ref, LocalRef):
            return "local_id = ?", int(ref.id)
        raise TypeError(f"not a TaskRef: {ref!r}")

    # ---- tasks: reads ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def get_task(self, ref: TaskRef) -> Task | None:
        where, param = self._ref_where(ref)
        conn = self._get_conn()
        try:
            row = conn.execute(f"SELECT * FROM tasks WHERE {where}", (param,)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def get_task_by_any_id(self, task_id: int) -> Task | None:
        """
        Look up by server id first, then by local id.

        Lets callers that only hold a displayed number find the row without
        knowing which namespace it came from. Missing rows return None.
        """
        return self.get_task(ServerRef(int(task_id))) or self.get_task(LocalRef(int(task_id)))

    def list_tasks_in_range(self, start_date: str, end_date: str) -> list[Task]:
        start = validate_date(start_date)
        end = validate_date(end_date)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE date >= ? AND date <= ?
                ORDER BY date ASC, done ASC, text ASC
                """,
                (start, end),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    def list_tasks_by_date(self, day: str) -> list[Task]:
        return self.list_tasks_in_range(day, day)

    # ---- tasks: writes ----

    def upsert_task(
        self,
        ref: TaskRef | None,
        *,
        text: str,
        done: bool,
        date: str,
        sync_status: SyncStatus = SyncStatus.SYNCED,
    ) -> int:
        """
        Insert or update a task row and return its local id.

        - ServerRef: update the row holding that server id, or insert one.
        - LocalRef: update that local row.
        - None: insert a new local-only row.
        """
        if text is None:
            raise ValueError("text is required")
        day = validate_date(date)
        values = (str(text), 1 if done else 0, day, SyncStatus(sync_status).value, time.time())

        with self._write() as conn:
            if isinstance(ref, ServerRef):
                row = conn.execute("SELECT local_id FROM tasks WHERE server_id = ?", (ref.id,)).fetchone()
                if row is not None:
                    conn.execute(
                        """
                        UPDATE tasks
                        SET text = ?, done = ?, date = ?, sync_status = ?, updated_at = ?
                        WHERE server_id = ?
                        """,
                        (*values, ref.id),
                    )
                    return int(row["local_id"])
                cur = conn.execute(
                    """
                    INSERT INTO tasks(server_id, text, done, date, sync_status, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (ref.id, *values),
                )
            elif isinstance(ref, LocalRef):
                conn.execute(
                    """
                    UPDATE tasks
                    SET text = ?, done = ?, date = ?, sync_status = ?, updated_at = ?
                    WHERE local_id = ?
                    """,
                    (*values, ref.id),
                )
                return int(ref.id)
            else:
                cur = conn.execute(
                    """
                    INSERT INTO tasks(server_id, text, done, date, sync_status, updated_at)
                    VALUES (NULL, ?, ?, ?, ?, ?)
                    """,
                    values,
                )

            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
            logger.debug("Task inserted local_id=%s ref=%s date=%s", rowid, ref, day)
            return int(rowid)

    def delete_task(self, ref: TaskRef) -> int:
        where, param = self._ref_where(ref)
        with self._write() as conn:
            return int(conn.execute(f"DELETE FROM tasks WHERE {where}", (param,)).rowcount)

    def clear_all_tasks(self) -> None:
        with self._write() as conn:
            conn.execute("DELETE FROM tasks")
        logger.info("All tasks cleared")

    def mark_synced(self, ref: TaskRef) -> None:
        where, param = self._ref_where(ref)
        with self._write() as conn:
            conn.execute(
                f"UPDATE tasks SET sync_status = 'synced', updated_at = ? WHERE {where}",
                (time.time(), param),
            )

    def replace_with_server_identity(self, local_id: int, server_id: int) -> Task | None:
        """
        Swap a local-only row for a server-identified one, in one transaction.

        Returns the new row, or None if the local row no longer exists (for
        example it was deleted while its CREATE was still queued).
        """
        with self._write() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE local_id = ? AND server_id IS NULL", (int(local_id),)
            ).fetchone()
            if row is None:
                return None
            old = self._row_to_task(row)

            conn.execute("DELETE FROM tasks WHERE local_id = ?", (old.local_id,))
            values = (old.text, 1 if old.done else 0, old.date, old.sync_status.value, time.time())
            existing = conn.execute("SELECT local_id FROM tasks WHERE server_id = ?", (int(server_id),)).fetchone()
            if existing is not None:
                # A refresh already pulled the server copy; local fields win.
                conn.execute(
                    """
                    UPDATE tasks
                    SET text = ?, done = ?, date = ?, sync_status = ?, updated_at = ?
                    WHERE server_id = ?
                    """,
                    (*values, int(server_id)),
                )
                new_local_id = int(existing["local_id"])
            else:
                cur = conn.execute(
                    """
                    INSERT INTO tasks(server_id, text, done, date, sync_status, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (int(server_id), *values),
                )
                new_local_id = int(cur.lastrowid or 0)

        logger.info("Task local:%s now identified as server:%s", local_id, server_id)
        return Task(
            local_id=new_local_id,
            server_id=int(server_id),
            text=old.text,
            done=old.done,
            date=old.date,
            sync_status=old.sync_status,
        )

    @staticmethod
    def _awaiting_identity(conn: sqlite3.Connection) -> set[tuple[str, str]]:
        """(text, date) of queued creates that do not know their server id yet."""
        rows = conn.execute(
            """
            SELECT operation_type, payload FROM pending_operations
            WHERE operation_type IN (?, ?) AND (todo_id IS NULL OR todo_id = 0)
            """,
            (OperationType.CREATE.value, OperationType.RECONCILE.value),
        ).fetchall()
        out: set[tuple[str, str]] = set()
        for r in rows:
            try:
                payload = decode_payload(r["operation_type"], r["payload"])
            except PayloadError:
                continue
            out.add((payload.text, payload.date))
        return out

    def replace_server_window(
        self,
        start_date: str,
        end_date: str,
        remote: Iterable[RemoteTask],
    ) -> tuple[int, int]:
        """
        Make synced server rows in [start_date, end_date] match the remote list.

        Rows with queued work and local-only rows are left alone.
        Remote tasks that look like a queued create (same text and date) are not
        imported, so the create can still adopt their server id.
        Returns (upserted, deleted).
        """
        start = validate_date(start_date)
        end = validate_date(end_date)
        upserted = 0
        with self._write() as conn:
            protected = {
                int(r["todo_id"])
                for r in conn.execute(
                    "SELECT DISTINCT todo_id FROM pending_operations WHERE todo_id IS NOT NULL AND todo_id != 0"
                ).fetchall()
            }
            awaiting = self._awaiting_identity(conn)
            seen: set[int] = set()
            now = time.time()
            for item in remote:
                if not (start <= item.date <= end):
                    continue
                seen.add(item.server_id)
                if item.server_id in protected:
                    continue
                row = conn.execute(
                    "SELECT sync_status FROM tasks WHERE server_id = ?", (item.server_id,)
                ).fetchone()
                if row is not None and SyncStatus.from_db(row["sync_status"]) is SyncStatus.PENDING:
                    continue
                if row is None and (item.text, item.date) in awaiting:
                    # Left for the queued create to claim.
                    continue
                values = (item.text, 1 if item.done else 0, item.date, now)
                if row is None:
                    conn.execute(
                        """
                        INSERT INTO tasks(server_id, text, done, date, sync_status, updated_at)
                        VALUES (?, ?, ?, ?, 'synced', ?)
                        """,
                        (item.server_id, *values),
                    )
                else:
                    conn.execute(
                        """
                        UPDATE tasks
                        SET text = ?, done = ?, date = ?, sync_status = 'synced', updated_at = ?
                        WHERE server_id = ?
                        """,
                        (*values, item.server_id),
                    )
                upserted += 1

            stale = [
                int(r["server_id"])
                for r in conn.execute(
                    """
                    SELECT server_id FROM tasks
                    WHERE server_id IS NOT NULL
                      AND sync_status = 'synced'
                      AND date >= ? AND date <= ?
                    """,
                    (start, end),
                ).fetchall()
                if int(r["server_id"]) not in seen and int(r["server_id"]) not in protected
            ]
            if stale:
                ph = ",".join("?" for _ in stale)
                conn.execute(f"DELETE FROM tasks WHERE server_id IN ({ph})", stale)

        logger.debug("Window %s..%s refreshed upserted=%s deleted=%s", start, end, upserted, len(stale))
        return upserted, len(stale)

    # ---- pending operations ----

    def enqueue_operation(
        self,
        payload: OperationPayload,
        *,
        server_id: int | None = None,
        local_id: int | None = None,
    ) -> int:
        """Append an operation; the returned id is strictly greater than any id handed out before."""
        if server_id is None and local_id is None:
            raise ValueError("an operation needs a server id or a local id")
        raw = encode_payload(payload)
        with self._write() as conn:
            cur = conn.execute(
                """
                INSERT INTO pending_operations(
                    operation_type, todo_id, local_todo_id, payload, timestamp, retry_count
                )
                VALUES (?, ?, ?, ?, ?, 0)
                """,
                (payload.type.value, server_id, local_id, raw, int(time.time() * 1000)),
            )
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for pending_operations insert")
        op_id = int(rowid)
        logger.info(
            "Operation queued: %s (id=%s) todo_id=%s local_todo_id=%s",
            payload.type.value,
            op_id,
            server_id,
            local_id,
        )
        logger.debug("  payload: %s", raw)
        return op_id

    def list_pending_operations(self, *, after_id: int | None = None) -> list[PendingOperation]:
        """Queued operations in replay order (id ascending)."""
        conn = self._get_conn()
        try:
            if after_id is None:
                rows = conn.execute("SELECT * FROM pending_operations ORDER BY id ASC").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM pending_operations WHERE id > ? ORDER BY id ASC",
                    (int(after_id),),
                ).fetchall()
            return [self._row_to_operation(r) for r in rows]
        finally:
            conn.close()

    def get_operation(self, op_id: int) -> PendingOperation | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM pending_operations WHERE id = ?", (int(op_id),)).fetchone()
            return self._row_to_operation(row) if row else None
        finally:
            conn.close()

    def remove_operation(self, op_id: int) -> int:
        with self._write() as conn:
            deleted = int(conn.execute("DELETE FROM pending_operations WHERE id = ?", (int(op_id),)).rowcount)
        if deleted:
            logger.debug("Operation removed: %s", op_id)
        return deleted

    def remove_operations_for_local(self, local_id: int) -> int:
        """Drop queued operations that are still addressed to a local id only."""
        with self._write() as conn:
            deleted = int(
                conn.execute(
                    """
                    DELETE FROM pending_operations
                    WHERE local_todo_id = ? AND (todo_id IS NULL OR todo_id = 0)
                    """,
                    (int(local_id),),
                ).rowcount
            )
        return deleted

    def increment_retry(self, op_id: int) -> None:
        with self._write() as conn:
            conn.execute(
                "UPDATE pending_operations SET retry_count = retry_count + 1 WHERE id = ?",
                (int(op_id),),
            )

    def reassign_todo_id(self, local_id: int, server_id: int) -> int:
        """
        Point every queued operation for local task `local_id` at `server_id`.

        Only rows whose todo_id is still NULL/0 are touched, in one UPDATE,
        so no operation is reassigned twice and none is missed.
        """
        with self._write() as conn:
            n = int(
                conn.execute(
                    """
                    UPDATE pending_operations
                    SET todo_id = ?
                    WHERE local_todo_id = ?
                      AND (todo_id IS NULL OR todo_id = 0)
                    """,
                    (int(server_id), int(local_id)),
                ).rowcount
            )
        logger.info("Pending operations re-targeted: local:%s -> server:%s (%s rows)", local_id, server_id, n)
        return n

    def convert_to_reconcile(self, op_id: int, payload: ReconcilePayload) -> None:
        """Rewrite an operation in place (same id, so replay order is kept)."""
        with self._write() as conn:
            conn.execute(
                """
                UPDATE pending_operations
                SET operation_type = ?, payload = ?, retry_count = 0
                WHERE id = ?
                """,
                (payload.type.value, encode_payload(payload), int(op_id)),
            )

    def has_pending_operations_for(self, ref: TaskRef) -> bool:
        if isinstance(ref, ServerRef):
            sql = "SELECT 1 FROM pending_operations WHERE todo_id = ? LIMIT 1"
        else:
            sql = "SELECT 1 FROM pending_operations WHERE local_todo_id = ? LIMIT 1"
        conn = self._get_conn()
        try:
            return conn.execute(sql, (int(ref.id),)).fetchone() is not None
        finally:
            conn.close()

    def pending_operation_count(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM pending_operations").fetchone()
            return int(n)
        finally:
            conn.close()

    def clear_all_operations(self) -> None:
        with self._write() as conn:
            conn.execute("DELETE FROM pending_operations")
        logger.info("All pending operations cleared")
