# src/nudge_companion/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .task_models import (
    Annoyance,
    HistoryMessage,
    Routine,
    RoutineStats,
    Task,
    TaskStatus,
    UserProfile,
)

logger = logging.getLogger(__name__)

_TASK_COLUMNS = frozenset(
    {
        "name",
        "routine_id",
        "due_at",
        "ping_at",
        "requires_action",
        "annoyance",
        "status",
        "postpone_count",
    }
)

_ROUTINE_COLUMNS = frozenset(
    {"name", "cron", "default_annoyance", "requires_action", "is_active"}
)


def new_short_id() -> str:
    """8-char id, short enough for the model to copy back reliably."""
    return uuid.uuid4().hex[:8]


def _to_db(value: Any) -> Any:
    if isinstance(value, (Annoyance, TaskStatus)):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


class TaskStore:
    """
    SQLite store for everything the assistant keeps per user:
    profile (goal, timezone, memory), routines, tasks and dialog history.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "nudge.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except Exception:
            total = -1
        logger.info("TaskStore ready db=%s tasks=%s", self._db_path, total)

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
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    goal TEXT,
                    timezone TEXT,
                    memory TEXT NOT NULL DEFAULT '{}',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS routines (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    cron TEXT NOT NULL,
                    default_annoyance TEXT NOT NULL DEFAULT 'low',
                    requires_action INTEGER NOT NULL DEFAULT 1,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    stats_completed INTEGER NOT NULL DEFAULT 0,
                    stats_failed INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    routine_id TEXT,
                    due_at REAL,
                    ping_at REAL NOT NULL,
                    requires_action INTEGER NOT NULL DEFAULT 0,
                    annoyance TEXT NOT NULL DEFAULT 'low',
                    status TEXT NOT NULL DEFAULT 'pending',
                    postpone_count INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at REAL NOT NULL
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
                logger.info("TaskStore migration: added column tasks.%s", name)

            add_col("due_at", "REAL")
            add_col("postpone_count", "INTEGER NOT NULL DEFAULT 0")
            add_col("updated_at", "REAL NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user_status ON tasks(user_id, status, ping_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_routine ON tasks(user_id, routine_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_routines_user ON routines(user_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_history_user ON history(user_id, id)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _memory_to_str(memory: dict[str, str] | None) -> str:
        if not memory:
            return "{}"
        try:
            return json.dumps(memory, ensure_ascii=False)
        except Exception:
            logger.exception("Failed to JSON-encode memory; storing {}.")
            return "{}"

    @staticmethod
    def _str_to_memory(s: str | None) -> dict[str, str]:
        if not s:
            return {}
        try:
            val = json.loads(s)
        except Exception:
            return {}
        if not isinstance(val, dict):
            return {}
        return {str(k): str(v) for k, v in val.items()}

    def _row_to_user(self, row: sqlite3.Row) -> UserProfile:
        return UserProfile(
            user_id=str(row["user_id"]),
            created_at=float(row["created_at"] or 0.0),
            goal=row["goal"],
            timezone=row["timezone"],
            memory=self._str_to_memory(row["memory"]),
        )

    @staticmethod
    def _row_to_routine(row: sqlite3.Row) -> Routine:
        return Routine(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            name=str(row["name"] or ""),
            cron=str(row["cron"] or ""),
            default_annoyance=Annoyance.from_db(row["default_annoyance"]),
            requires_action=bool(row["requires_action"]),
            is_active=bool(row["is_active"]),
            created_at=float(row["created_at"] or 0.0),
            stats=RoutineStats(
                completed=int(row["stats_completed"] or 0),
                failed=int(row["stats_failed"] or 0),
            ),
        )

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            name=str(row["name"] or ""),
            status=TaskStatus.from_db(row["status"]),
            annoyance=Annoyance.from_db(row["annoyance"]),
            requires_action=bool(row["requires_action"]),
            ping_at=float(row["ping_at"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            routine_id=row["routine_id"],
            due_at=float(row["due_at"]) if row["due_at"] is not None else None,
            postpone_count=int(row["postpone_count"] or 0),
        )

    # ---- users / profile ----

    def ensure_user(self, user_id: str) -> UserProfile:
        if not user_id:
            raise ValueError("user_id is required")
        now = time.time()
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT OR IGNORE INTO users(user_id, created_at, updated_at) VALUES (?, ?, ?)",
                (user_id, now, now),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
            return self._row_to_user(row)
        finally:
            conn.close()

    def get_user(self, user_id: str) -> UserProfile | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
            return self._row_to_user(row) if row else None
        finally:
            conn.close()

    def list_user_ids(self) -> list[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT user_id FROM users ORDER BY created_at ASC").fetchall()
            return [str(r["user_id"]) for r in rows]
        finally:
            conn.close()

    def _update_user(self, user_id: str, column: str, value: Any) -> None:
        self.ensure_user(user_id)
        conn = self._get_conn()
        try:
            conn.execute(
                f"UPDATE users SET {column} = ?, updated_at = ? WHERE user_id = ?",
                (value, time.time(), user_id),
            )
            conn.commit()
        finally:
            conn.close()

    def set_goal(self, user_id: str, goal: str | None) -> None:
        self._update_user(user_id, "goal", goal)

    def set_timezone(self, user_id: str, timezone: str | None) -> None:
        self._update_user(user_id, "timezone", timezone)

    # ---- memory (read-modify-write inside one transaction) ----

    def set_memory(self, user_id: str, key: str, value: str) -> None:
        self.ensure_user(user_id)
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT memory FROM users WHERE user_id = ?", (user_id,)).fetchone()
            memory = self._str_to_memory(row["memory"] if row else None)
            memory[key] = value
            conn.execute(
                "UPDATE users SET memory = ?, updated_at = ? WHERE user_id = ?",
                (self._memory_to_str(memory), time.time(), user_id),
            )
            conn.commit()
        finally:
            conn.close()

    def delete_memory(self, user_id: str, key: str) -> bool:
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT memory FROM users WHERE user_id = ?", (user_id,)).fetchone()
            if row is None:
                conn.rollback()
                return False
            memory = self._str_to_memory(row["memory"])
            if key not in memory:
                conn.rollback()
                return False
            del memory[key]
            conn.execute(
                "UPDATE users SET memory = ?, updated_at = ? WHERE user_id = ?",
                (self._memory_to_str(memory), time.time(), user_id),
            )
            conn.commit()
            return True
        finally:
            conn.close()

    # ---- routines ----

    def add_routine(
        self,
        user_id: str,
        *,
        name: str,
        cron: str,
        default_annoyance: Annoyance = Annoyance.LOW,
        requires_action: bool = True,
        is_active: bool = True,
    ) -> Routine:
        if not name or not name.strip():
            raise ValueError("name is required")
        if not cron or not cron.strip():
            raise ValueError("cron is required")

        self.ensure_user(user_id)
        routine = Routine(
            id=new_short_id(),
            user_id=user_id,
            name=name.strip(),
            cron=cron.strip(),
            default_annoyance=default_annoyance,
            requires_action=requires_action,
            is_active=is_active,
            created_at=time.time(),
        )

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO routines(
                    id, user_id, name, cron, default_annoyance,
                    requires_action, is_active, stats_completed, stats_failed, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0, ?)
                """,
                (
                    routine.id,
                    user_id,
                    routine.name,
                    routine.cron,
                    routine.default_annoyance.value,
                    int(routine.requires_action),
                    int(routine.is_active),
                    routine.created_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug("Routine added id=%s user=%s cron=%r", routine.id, user_id, routine.cron)
        return routine

    def get_routine(self, user_id: str, routine_id: str) -> Routine | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM routines WHERE user_id = ? AND id = ?",
                (user_id, routine_id),
            ).fetchone()
            return self._row_to_routine(row) if row else None
        finally:
            conn.close()

    def list_routines(self, user_id: str, *, active_only: bool = False) -> list[Routine]:
        sql = "SELECT * FROM routines WHERE user_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        sql += " ORDER BY created_at ASC"

        conn = self._get_conn()
        try:
            return [self._row_to_routine(r) for r in conn.execute(sql, (user_id,)).fetchall()]
        finally:
            conn.close()

    def update_routine(self, user_id: str, routine_id: str, **fields: Any) -> Routine | None:
        unknown = set(fields) - _ROUTINE_COLUMNS
        if unknown:
            raise ValueError(f"unknown routine fields: {sorted(unknown)}")

        if fields:
            assignments = ", ".join(f"{k} = ?" for k in fields)
            params = [_to_db(v) for v in fields.values()]
            conn = self._get_conn()
            try:
                conn.execute(
                    f"UPDATE routines SET {assignments} WHERE user_id = ? AND id = ?",
                    (*params, user_id, routine_id),
                )
                conn.commit()
            finally:
                conn.close()

        return self.get_routine(user_id, routine_id)

    def bump_routine_stats(
        self, user_id: str, routine_id: str, *, completed: int = 0, failed: int = 0
    ) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE routines
                SET stats_completed = stats_completed + ?,
                    stats_failed = stats_failed + ?
                WHERE user_id = ? AND id = ?
                """,
                (int(completed), int(failed), user_id, routine_id),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def delete_routine(self, user_id: str, routine_id: str) -> bool:
        # Tasks keep their routine_id: the back-reference is non-owning.
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "DELETE FROM routines WHERE user_id = ? AND id = ?",
                (user_id, routine_id),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    # ---- tasks ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(
        self,
        user_id: str,
        *,
        name: str,
        ping_at: float,
        routine_id: str | None = None,
        due_at: float | None = None,
        requires_action: bool = False,
        annoyance: Annoyance = Annoyance.LOW,
    ) -> Task:
        if not name or not name.strip():
            raise ValueError("name is required")

        self.ensure_user(user_id)
        now = time.time()
        task = Task(
            id=new_short_id(),
            user_id=user_id,
            name=name.strip(),
            status=TaskStatus.PENDING,
            annoyance=annoyance,
            requires_action=requires_action,
            ping_at=float(ping_at),
            created_at=now,
            updated_at=now,
            routine_id=routine_id,
            due_at=float(due_at) if due_at is not None else None,
            postpone_count=0,
        )

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tasks(
                    id, user_id, name, routine_id, due_at, ping_at,
                    requires_action, annoyance, status, postpone_count,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    task.id,
                    user_id,
                    task.name,
                    task.routine_id,
                    task.due_at,
                    task.ping_at,
                    int(task.requires_action),
                    task.annoyance.value,
                    task.status.value,
                    now,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug(
            "Task added id=%s user=%s routine=%s ping_at=%s",
            task.id,
            user_id,
            routine_id,
            task.ping_at,
        )
        return task

    def get_task(self, user_id: str, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM tasks WHERE user_id = ? AND id = ?",
                (user_id, task_id),
            ).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def list_tasks(
        self,
        user_id: str,
        *,
        status: TaskStatus | None = None,
        routine_id: str | None = None,
        ids: Iterable[str] | None = None,
    ) -> list[Task]:
        sql = "SELECT * FROM tasks WHERE user_id = ?"
        params: list[Any] = [user_id]

        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        if routine_id is not None:
            sql += " AND routine_id = ?"
            params.append(routine_id)
        if ids is not None:
            id_list = list(ids)
            if not id_list:
                return []
            sql += f" AND id IN ({','.join('?' for _ in id_list)})"
            params.extend(id_list)

        sql += " ORDER BY ping_at ASC, created_at ASC"

        conn = self._get_conn()
        try:
            return [self._row_to_task(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def list_open_tasks(self, user_id: str) -> list[Task]:
        """Non-terminal tasks, soonest ping first (prompt injection)."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE user_id = ?
                  AND status IN ('pending', 'needs_replanning')
                ORDER BY ping_at ASC
                """,
                (user_id,),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    def list_due_tasks(self, user_id: str, *, now_ts: float) -> list[Task]:
        """Tasks the scheduler must evaluate: open and ping_at <= now."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE user_id = ?
                  AND status IN ('pending', 'needs_replanning')
                  AND ping_at <= ?
                ORDER BY ping_at ASC, created_at ASC
                """,
                (user_id, float(now_ts)),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    def update_task(self, user_id: str, task_id: str, **fields: Any) -> Task | None:
        """
        Patch selected columns. Passing None explicitly clears nullable columns
        (e.g. due_at=None).
        """
        unknown = set(fields) - _TASK_COLUMNS
        if unknown:
            raise ValueError(f"unknown task fields: {sorted(unknown)}")

        if fields:
            assignments = ", ".join(f"{k} = ?" for k in fields)
            params = [_to_db(v) for v in fields.values()]
            conn = self._get_conn()
            try:
                conn.execute(
                    f"UPDATE tasks SET {assignments}, updated_at = ? WHERE user_id = ? AND id = ?",
                    (*params, time.time(), user_id, task_id),
                )
                conn.commit()
            finally:
                conn.close()

        return self.get_task(user_id, task_id)

    def delete_task(self, user_id: str, task_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE user_id = ? AND id = ?", (user_id, task_id))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def prune_finished_tasks(self, user_id: str, keep: int) -> int:
        """Drop completed/failed tasks beyond `keep`, oldest first."""
        keep = max(0, int(keep))
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                DELETE FROM tasks
                WHERE id IN (
                    SELECT id FROM tasks
                    WHERE user_id = ? AND status IN ('completed', 'failed')
                    ORDER BY updated_at DESC, created_at DESC
                    LIMIT -1 OFFSET ?
                )
                """,
                (user_id, keep),
            )
            conn.commit()
            removed = cur.rowcount or 0
        finally:
            conn.close()

        if removed:
            logger.info("Pruned %d finished tasks user=%s", removed, user_id)
        return removed

    # ---- dialog history ----

    def append_history(self, user_id: str, role: str, content: str, *, max_messages: int) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT INTO history(user_id, role, content, created_at) VALUES (?, ?, ?, ?)",
                (user_id, role, content, time.time()),
            )
            conn.execute(
                """
                DELETE FROM history
                WHERE id IN (
                    SELECT id FROM history
                    WHERE user_id = ?
                    ORDER BY id DESC
                    LIMIT -1 OFFSET ?
                )
                """,
                (user_id, max(1, int(max_messages))),
            )
            conn.commit()
        finally:
            conn.close()

    def list_history(self, user_id: str, *, limit: int | None = None) -> list[HistoryMessage]:
        """Oldest first. With a limit, the newest `limit` messages."""
        conn = self._get_conn()
        try:
            if limit is None:
                rows = conn.execute(
                    "SELECT * FROM history WHERE user_id = ? ORDER BY id ASC",
                    (user_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM (
                        SELECT * FROM history WHERE user_id = ? ORDER BY id DESC LIMIT ?
                    ) ORDER BY id ASC
                    """,
                    (user_id, max(0, int(limit))),
                ).fetchall()
            return [
                HistoryMessage(
                    id=int(r["id"]),
                    role=str(r["role"]),
                    content=str(r["content"]),
                    created_at=float(r["created_at"] or 0.0),
                )
                for r in rows
            ]
        finally:
            conn.close()

    def replace_history_run(self, user_id: str, message_ids: list[int], content: str) -> None:
        """
        Collapse several history rows into one assistant message.

        The replacement keeps the first row's id and timestamp so ordering holds.
        """
        if not message_ids:
            return
        first, rest = message_ids[0], message_ids[1:]
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE history SET role = 'assistant', content = ? WHERE user_id = ? AND id = ?",
                (content, user_id, first),
            )
            if rest:
                conn.execute(
                    f"DELETE FROM history WHERE user_id = ? AND id IN ({','.join('?' for _ in rest)})",
                    (user_id, *rest),
                )
            conn.commit()
        finally:
            conn.close()
