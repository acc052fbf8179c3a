# src/taskpulse/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from ..core.errors import StoreUnavailableError
from .task_models import (
    ExecutionOutcome,
    ExecutionRecord,
    Task,
    TaskPriority,
    TaskState,
    TaskStats,
    WebhookLog,
)

logger = logging.getLogger(__name__)

# Marks an update_state() field as "leave untouched" (None means "set NULL").
_UNSET: Any = object()


class TaskStore:
    """
    SQLite task store: system of record for task state and execution history.

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except StoreUnavailableError:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Shutdown hook (no persistent connections to close)."""
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
        conn.execute("PRAGMA foreign_keys=ON")

    @contextlib.contextmanager
    def _session(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._get_conn()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(operation, str(exc)) from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StoreUnavailableError(operation, str(exc)) from exc
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._session("ensure_schema") as conn:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    label TEXT NOT NULL,
                    payload TEXT NOT NULL DEFAULT '{}',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    state TEXT NOT NULL DEFAULT 'queued',
                    schedule_pattern TEXT,
                    is_recurring INTEGER NOT NULL DEFAULT 0,
                    next_run_at REAL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_duration_ms INTEGER,
                    last_error TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    last_run_at REAL,
                    completed_at REAL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("last_duration_ms", "INTEGER")
            add_col("last_error", "TEXT")
            add_col("last_run_at", "REAL")
            add_col("completed_at", "REAL")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS execution_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    outcome TEXT NOT NULL,
                    started_at REAL NOT NULL,
                    finished_at REAL NOT NULL,
                    duration_ms INTEGER NOT NULL,
                    error TEXT
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS webhook_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT,
                    url TEXT NOT NULL,
                    payload TEXT NOT NULL DEFAULT '{}',
                    status_code INTEGER,
                    body TEXT,
                    success INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL
                )
                """
            )

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_due "
                "ON tasks(is_recurring, state, next_run_at)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_history_task ON execution_history(task_id, started_at)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_webhook_task ON webhook_logs(task_id)")

            conn.commit()

    @staticmethod
    def _json_dump(value: Any) -> str:
        try:
            return json.dumps(value if value is not None else {}, ensure_ascii=False)
        except (TypeError, ValueError):
            logger.exception("Failed to JSON-encode value; storing {}.")
            return "{}"

    @staticmethod
    def _json_load(s: str | None, default: Any = None) -> Any:
        if not s:
            return default
        try:
            return json.loads(s)
        except ValueError:
            return default

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        payload = self._json_load(row["payload"], {})
        return Task(
            id=str(row["id"]),
            label=str(row["label"] or ""),
            payload=payload if isinstance(payload, dict) else {},
            priority=TaskPriority.from_db(row["priority"]),
            state=TaskState.from_db(row["state"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            schedule_pattern=row["schedule_pattern"] or None,
            next_run_at=float(row["next_run_at"]) if row["next_run_at"] is not None else None,
            attempts=int(row["attempts"] or 0),
            last_duration_ms=int(row["last_duration_ms"]) if row["last_duration_ms"] is not None else None,
            last_error=row["last_error"],
            last_run_at=float(row["last_run_at"]) if row["last_run_at"] is not None else None,
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
        )

    @staticmethod
    def _fetch_task_row(conn: sqlite3.Connection, task_id: str) -> sqlite3.Row | None:
        cur = conn.execute("SELECT * FROM tasks WHERE id = ?", (str(task_id),))
        return cur.fetchone()

    # ---- tasks ----

    def count_tasks(self) -> int:
        with self._session("count_tasks") as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)

    def create(
        self,
        *,
        label: str,
        payload: dict[str, Any],
        priority: TaskPriority = TaskPriority.MEDIUM,
        schedule_pattern: str | None = None,
        next_run_at: float | None = None,
        task_id: str | None = None,
    ) -> Task:
        if not label or not label.strip():
            raise ValueError("label is required")

        now = time.time()
        task_id = task_id or str(uuid.uuid4())

        with self._session("create") as conn:
            conn.execute(
                """
                INSERT INTO tasks(
                    id, label, payload, priority, state,
                    schedule_pattern, is_recurring, next_run_at,
                    attempts, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    task_id,
                    label.strip(),
                    self._json_dump(payload),
                    TaskPriority(priority).value,
                    TaskState.QUEUED.value,
                    schedule_pattern,
                    1 if schedule_pattern else 0,
                    next_run_at,
                    now,
                    now,
                ),
            )
            conn.commit()
            row = self._fetch_task_row(conn, task_id)

        if row is None:
            raise StoreUnavailableError("create", f"row {task_id} missing after insert")
        logger.debug(
            "Task created id=%s label=%s recurring=%s next_run_at=%s",
            task_id,
            label,
            bool(schedule_pattern),
            next_run_at,
        )
        return self._row_to_task(row)

    def find_by_id(self, task_id: str) -> Task | None:
        with self._session("find_by_id") as conn:
            row = self._fetch_task_row(conn, task_id)
            return self._row_to_task(row) if row else None

    def find_all(
        self,
        *,
        state: TaskState | str | None = None,
        priority: TaskPriority | str | None = None,
        is_recurring: bool | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        """All tasks matching the filters, newest first."""
        clauses: list[str] = []
        params: list[Any] = []

        if state is not None:
            clauses.append("state = ?")
            params.append(TaskState(state).value)
        if priority is not None:
            clauses.append("priority = ?")
            params.append(TaskPriority(priority).value)
        if is_recurring is not None:
            clauses.append("is_recurring = ?")
            params.append(1 if is_recurring else 0)

        sql = "SELECT * FROM tasks"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._session("find_all") as conn:
            return [self._row_to_task(r) for r in conn.execute(sql, params).fetchall()]

    def find_due_recurring(self, now_ts: float, *, limit: int = 100) -> list[Task]:
        """
        Recurring tasks eligible for a scheduled run.

        'completed' is included so a task observed between the completed write
        and the requeue write is not skipped for a whole interval.
        """
        with self._session("find_due_recurring") as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE is_recurring = 1
                  AND next_run_at IS NOT NULL
                  AND next_run_at <= ?
                  AND state IN ('queued', 'completed')
                ORDER BY next_run_at ASC, created_at ASC
                    LIMIT ?
                """,
                (float(now_ts), int(limit)),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    def try_begin_run(self, task_id: str, *, now_ts: float | None = None) -> Task | None:
        """
        Atomically claim a task for execution.

          state != processing -> state = processing, attempts + 1,
                                 last_run_at = now, next_run_at = NULL

        Returns the claimed snapshot, or None if the row is missing or already
        processing.
        """
        now = time.time() if now_ts is None else float(now_ts)
        with self._session("try_begin_run") as conn:
            cur = conn.execute(
                """
                UPDATE tasks
                SET state = 'processing',
                    attempts = attempts + 1,
                    last_run_at = ?,
                    next_run_at = NULL,
                    last_error = NULL,
                    updated_at = ?
                WHERE id = ?
                  AND state != 'processing'
                """,
                (now, now, str(task_id)),
            )
            conn.commit()
            if cur.rowcount != 1:
                return None
            row = self._fetch_task_row(conn, task_id)
            return self._row_to_task(row) if row else None

    def update_state(
        self,
        task_id: str,
        new_state: TaskState,
        *,
        expected: Iterable[TaskState] | None = None,
        attempts: Any = _UNSET,
        last_duration_ms: Any = _UNSET,
        last_error: Any = _UNSET,
        next_run_at: Any = _UNSET,
        last_run_at: Any = _UNSET,
        completed_at: Any = _UNSET,
    ) -> Task | None:
        """
        Partial update of state plus any of the run bookkeeping fields.

        Omitted fields are left untouched; passing None clears a column.
        With `expected`, the update only applies when the current state is one
        of them. Returns the updated snapshot, or None when no row matched.
        """
        now = time.time()
        new_state = TaskState(new_state)

        fields: list[str] = ["state = ?", "updated_at = ?"]
        params: list[Any] = [new_state.value, now]

        def put(column: str, value: Any, cast=None) -> None:
            if value is _UNSET:
                return
            fields.append(f"{column} = ?")
            params.append(None if value is None or cast is None else cast(value))

        put("attempts", attempts, int)
        put("last_duration_ms", last_duration_ms, int)
        put("last_error", last_error, str)
        put("next_run_at", next_run_at, float)
        put("last_run_at", last_run_at, float)
        if completed_at is _UNSET and new_state == TaskState.COMPLETED:
            completed_at = now
        put("completed_at", completed_at, float)

        sql = f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?"
        params.append(str(task_id))

        if expected is not None:
            exp = [TaskState(e).value for e in expected]
            if not exp:
                return None
            sql += f" AND state IN ({','.join('?' for _ in exp)})"
            params.extend(exp)

        with self._session("update_state") as conn:
            cur = conn.execute(sql, params)
            conn.commit()
            if cur.rowcount != 1:
                return None
            row = self._fetch_task_row(conn, task_id)
            return self._row_to_task(row) if row else None

    def find_stale_processing(self, older_than_ts: float) -> list[Task]:
        """Tasks left 'processing' whose run started before older_than_ts."""
        with self._session("find_stale_processing") as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE state = 'processing'
                  AND (last_run_at IS NULL OR last_run_at < ?)
                ORDER BY last_run_at ASC
                """,
                (float(older_than_ts),),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    def delete(self, task_id: str) -> bool:
        with self._session("delete") as conn:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (str(task_id),))
            conn.commit()
            return cur.rowcount > 0

    def count_by_state(self) -> dict[str, int]:
        with self._session("count_by_state") as conn:
            rows = conn.execute("SELECT state, COUNT(*) AS n FROM tasks GROUP BY state").fetchall()
            return {str(r["state"]): int(r["n"]) for r in rows}

    def count_recurring(self) -> int:
        with self._session("count_recurring") as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks WHERE is_recurring = 1").fetchone()
            return int(n)

    def stats(self) -> TaskStats:
        by_state = self.count_by_state()
        return TaskStats(
            total=sum(by_state.values()),
            by_state=by_state,
            recurring=self.count_recurring(),
        )

    # ---- execution history ----

    def append_execution_history(
        self,
        task_id: str,
        outcome: ExecutionOutcome,
        started_at: float,
        finished_at: float,
        error: str | None = None,
    ) -> int:
        duration_ms = max(0, int(round((finished_at - started_at) * 1000)))
        with self._session("append_execution_history") as conn:
            cur = conn.execute(
                """
                INSERT INTO execution_history(task_id, outcome, started_at, finished_at, duration_ms, error)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    str(task_id),
                    ExecutionOutcome(outcome).value,
                    float(started_at),
                    float(finished_at),
                    duration_ms,
                    error,
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise StoreUnavailableError("append_execution_history", "no lastrowid")
            return int(rowid)

    def list_execution_history(self, task_id: str, *, limit: int = 50) -> list[ExecutionRecord]:
        with self._session("list_execution_history") as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM execution_history
                WHERE task_id = ?
                ORDER BY started_at DESC, id DESC
                    LIMIT ?
                """,
                (str(task_id), int(limit)),
            ).fetchall()
        return [
            ExecutionRecord(
                id=int(r["id"]),
                task_id=str(r["task_id"]),
                outcome=ExecutionOutcome(r["outcome"]),
                started_at=float(r["started_at"]),
                finished_at=float(r["finished_at"]),
                duration_ms=int(r["duration_ms"]),
                error=r["error"],
            )
            for r in rows
        ]

    # ---- webhook audit ----

    def log_webhook_delivery(
        self,
        *,
        task_id: str | None,
        url: str,
        payload: dict[str, Any],
        status_code: int | None,
        body: Any,
        success: bool,
    ) -> int:
        with self._session("log_webhook_delivery") as conn:
            cur = conn.execute(
                """
                INSERT INTO webhook_logs(task_id, url, payload, status_code, body, success, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task_id,
                    url,
                    self._json_dump(payload),
                    status_code,
                    self._json_dump(body) if body is not None else None,
                    1 if success else 0,
                    time.time(),
                ),
            )
            conn.commit()
            return int(cur.lastrowid or 0)

    def list_webhook_logs(self, *, task_id: str | None = None, limit: int = 50) -> list[WebhookLog]:
        sql = "SELECT * FROM webhook_logs"
        params: list[Any] = []
        if task_id:
            sql += " WHERE task_id = ?"
            params.append(str(task_id))
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(int(limit))

        with self._session("list_webhook_logs") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            WebhookLog(
                id=int(r["id"]),
                task_id=r["task_id"],
                url=str(r["url"]),
                payload=self._json_load(r["payload"], {}),
                status_code=int(r["status_code"]) if r["status_code"] is not None else None,
                body=self._json_load(r["body"]),
                success=bool(r["success"]),
                created_at=float(r["created_at"]),
            )
            for r in rows
        ]
