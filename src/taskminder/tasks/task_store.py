# src/taskminder/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from ..errors import InternalError
from .task_models import Priority, Recipient, RecurringConfig, ReminderConfig, ScanPage, Task

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite task store.

    Only the slice of task persistence the scheduling subsystem touches lives here:
    insert/get/delete, trigger-handle bookkeeping, the paginated template scan and
    the owner contact book.

    The schema is migration-safe:
    - create table if missing
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
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    title TEXT NOT NULL,
                    due_date TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("priority", "TEXT NOT NULL DEFAULT 'medium'")
            add_col("description", "TEXT")
            add_col("category_id", "TEXT")
            add_col("due_time", "TEXT")
            add_col("completed", "INTEGER NOT NULL DEFAULT 0")
            add_col("is_template", "INTEGER NOT NULL DEFAULT 0")
            add_col("recurring", "TEXT")
            add_col("reminder", "TEXT")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_template ON tasks(is_template, id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner_due ON tasks(owner, due_date)")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS contacts (
                    owner TEXT PRIMARY KEY,
                    email TEXT,
                    phone TEXT,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _json_or_none(data: dict[str, Any] | None) -> str | None:
        if data is None:
            return None
        return json.dumps(data, ensure_ascii=False)

    @staticmethod
    def _load_json(raw: str | None) -> dict[str, Any] | None:
        if not raw:
            return None
        val = json.loads(raw)
        return val if isinstance(val, dict) else None

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        recurring_raw = self._load_json(row["recurring"])
        reminder_raw = self._load_json(row["reminder"])
        return Task(
            id=str(row["id"]),
            owner=str(row["owner"]),
            title=str(row["title"]),
            due_date=str(row["due_date"]),
            priority=Priority.from_db(row["priority"]),
            description=row["description"],
            category_id=row["category_id"],
            due_time=row["due_time"],
            recurring=RecurringConfig.from_dict(recurring_raw) if recurring_raw else None,
            reminder=ReminderConfig.from_dict(reminder_raw) if reminder_raw else None,
            completed=bool(row["completed"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    def _update_reminder_json(self, conn: sqlite3.Connection, task_id: str, reminder: ReminderConfig | None) -> int:
        cur = conn.execute(
            "UPDATE tasks SET reminder = ?, updated_at = ? WHERE id = ?",
            (self._json_or_none(reminder.to_dict() if reminder else None), time.time(), task_id),
        )
        return cur.rowcount

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(self, task: Task) -> bool:
        """
        Insert a task. Returns False (and leaves the row untouched) if the id already exists.
        """
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO tasks(
                    id, owner, title, due_date, created_at, updated_at,
                    priority, description, category_id, due_time, completed,
                    is_template, recurring, reminder
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.owner,
                    task.title,
                    task.due_date,
                    task.created_at,
                    task.updated_at,
                    task.priority.value,
                    task.description,
                    task.category_id,
                    task.due_time,
                    int(task.completed),
                    int(task.is_template),
                    self._json_or_none(task.recurring.to_dict() if task.recurring else None),
                    self._json_or_none(task.reminder.to_dict() if task.reminder else None),
                ),
            )
            conn.commit()
            inserted = cur.rowcount == 1
            logger.debug("Task add id=%s inserted=%s template=%s", task.id, inserted, task.is_template)
            return inserted
        finally:
            conn.close()

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def delete_task(self, task_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def update_reminder(self, task_id: str, reminder: ReminderConfig | None) -> None:
        conn = self._get_conn()
        try:
            self._update_reminder_json(conn, task_id, reminder)
            conn.commit()
        finally:
            conn.close()

    def set_trigger_handle(self, task_id: str, handle: str) -> None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT reminder FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if row is None:
                raise InternalError(f"task {task_id} vanished before its trigger handle was stored")
            reminder = ReminderConfig.from_dict(self._load_json(row["reminder"]) or {"enabled": True})
            reminder.trigger_handle = handle
            self._update_reminder_json(conn, task_id, reminder)
            conn.commit()
        finally:
            conn.close()

    def clear_trigger_handle(self, task_id: str, *, expected: str | None = None) -> bool:
        """
        Compare-and-clear: drop the stored handle only if it still equals `expected`
        (or unconditionally when expected is None). Returns True if a handle was cleared.
        """
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT reminder FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if row is None:
                conn.rollback()
                return False
            data = self._load_json(row["reminder"])
            if not data or not data.get("trigger_handle"):
                conn.rollback()
                return False
            if expected is not None and data.get("trigger_handle") != expected:
                conn.rollback()
                return False
            reminder = ReminderConfig.from_dict(data)
            reminder.trigger_handle = None
            self._update_reminder_json(conn, task_id, reminder)
            conn.commit()
            return True
        finally:
            conn.close()

    def scan_templates(self, *, limit: int = 100, start_key: str | None = None) -> ScanPage:
        """
        One page of recurring templates ordered by id.

        Pass the returned last_key as start_key to continue; last_key is None once
        there are no more rows.
        """
        limit = max(1, int(limit))
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE is_template = 1
                  AND (? IS NULL OR id > ?)
                ORDER BY id ASC
                    LIMIT ?
                """,
                (start_key, start_key, limit + 1),
            ).fetchall()
        finally:
            conn.close()

        has_more = len(rows) > limit
        rows = rows[:limit]
        items: list[Task] = []
        for r in rows:
            try:
                items.append(self._row_to_task(r))
            except Exception:
                # A corrupt row must not hide the rest of the page.
                logger.exception("Skipping unreadable template row id=%s", r["id"])
        last_key = str(rows[-1]["id"]) if has_more and rows else None
        return ScanPage(items=items, last_key=last_key)

    def upsert_contact(self, owner: str, *, email: str | None = None, phone: str | None = None) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO contacts(owner, email, phone, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(owner) DO UPDATE SET
                    email = excluded.email,
                    phone = excluded.phone,
                    updated_at = excluded.updated_at
                """,
                (owner, email, phone, time.time()),
            )
            conn.commit()
        finally:
            conn.close()

    def get_contact(self, owner: str) -> Recipient | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT email, phone FROM contacts WHERE owner = ?", (owner,)).fetchone()
            if row is None:
                return None
            return Recipient(email=row["email"], phone=row["phone"])
        finally:
            conn.close()
