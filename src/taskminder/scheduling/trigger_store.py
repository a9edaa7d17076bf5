# src/taskminder/scheduling/trigger_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TriggerRecord:
    name: str
    fire_at: float
    revision: int
    state: str
    claimed_at: float | None
    description: str


@dataclass(slots=True, frozen=True)
class TriggerTarget:
    target_id: str
    destination: str
    input: dict[str, Any] = field(default_factory=dict)


class SqliteTriggerStore:
    """
    SQLite-backed one-shot trigger registry.

    Tables, shaped like a rule engine:
    - triggers: name -> fire time, revision, armed/firing state
    - trigger_targets: delivery targets bound to a trigger, each with its JSON input
    - trigger_revisions: last revision handed out per name

    States: armed -> firing (claimed by a worker); dead for triggers whose input
    could never be dispatched.

    Ordering by fire_at over idx_triggers_due makes the table a persistent min-heap
    for the polling worker. Each put_trigger bumps the revision, which lets a fire
    clean up with compare-and-delete without racing a concurrent re-arm.
    """

    def __init__(self, db_path: str | Path = "triggers.sqlite3", *, claim_ttl_seconds: float = 300.0) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._claim_ttl = max(1.0, float(claim_ttl_seconds))
        self._ensure_schema()
        logger.info("TriggerStore ready db=%s armed=%s", self._db_path, self.count_triggers())

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS triggers (
                    name TEXT PRIMARY KEY,
                    fire_at REAL NOT NULL,
                    revision INTEGER NOT NULL DEFAULT 1,
                    state TEXT NOT NULL DEFAULT 'armed',
                    claimed_at REAL,
                    description TEXT NOT NULL DEFAULT '',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS trigger_targets (
                    trigger_name TEXT NOT NULL REFERENCES triggers(name) ON DELETE CASCADE,
                    target_id TEXT NOT NULL,
                    destination TEXT NOT NULL,
                    input TEXT NOT NULL DEFAULT '{}',
                    PRIMARY KEY (trigger_name, target_id)
                )
                """
            )
            # Outlives the trigger row so a deleted-then-rearmed name never reuses a revision.
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS trigger_revisions (
                    name TEXT PRIMARY KEY,
                    revision INTEGER NOT NULL
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_triggers_due ON triggers(fire_at, state)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> TriggerRecord:
        return TriggerRecord(
            name=str(row["name"]),
            fire_at=float(row["fire_at"]),
            revision=int(row["revision"]),
            state=str(row["state"]),
            claimed_at=float(row["claimed_at"]) if row["claimed_at"] is not None else None,
            description=str(row["description"] or ""),
        )

    @staticmethod
    def _require(conn: sqlite3.Connection, name: str) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM triggers WHERE name = ?", (name,)).fetchone()
        if row is None:
            raise NotFoundError("Trigger", name)
        return row

    # ---- registry API ----

    def count_triggers(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM triggers").fetchone()
            return int(n)
        finally:
            conn.close()

    def locator_for(self, name: str) -> str:
        return f"sqlite://{self._db_path}#{name}"

    def get_trigger(self, name: str) -> TriggerRecord | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM triggers WHERE name = ?", (name,)).fetchone()
            return self._row_to_record(row) if row else None
        finally:
            conn.close()

    @staticmethod
    def _encode_input(data: dict[str, Any]) -> str:
        return json.dumps(data, ensure_ascii=False)

    def put_trigger(
        self,
        name: str,
        *,
        fire_at: float,
        description: str = "",
        bind_targets: Callable[[int], list[TriggerTarget]] | None = None,
    ) -> int:
        """
        Create or replace a trigger schedule. Returns the new revision.

        bind_targets receives the new revision and returns the targets to bind; they
        replace any earlier targets in the same transaction, so a failure leaves the
        previous revision and its targets untouched.
        """
        now = time.time()
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                """
                INSERT INTO trigger_revisions(name, revision) VALUES (?, 1)
                ON CONFLICT(name) DO UPDATE SET revision = trigger_revisions.revision + 1
                """,
                (name,),
            )
            (revision,) = conn.execute("SELECT revision FROM trigger_revisions WHERE name = ?", (name,)).fetchone()
            conn.execute(
                """
                INSERT INTO triggers(name, fire_at, revision, state, claimed_at, description, created_at, updated_at)
                VALUES (?, ?, ?, 'armed', NULL, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    fire_at = excluded.fire_at,
                    revision = excluded.revision,
                    state = 'armed',
                    claimed_at = NULL,
                    description = excluded.description,
                    updated_at = excluded.updated_at
                """,
                (name, float(fire_at), int(revision), description, now, now),
            )
            if bind_targets is not None:
                rows = [
                    (name, t.target_id, t.destination, self._encode_input(t.input)) for t in bind_targets(int(revision))
                ]
                conn.execute("DELETE FROM trigger_targets WHERE trigger_name = ?", (name,))
                conn.executemany(
                    "INSERT INTO trigger_targets(trigger_name, target_id, destination, input) VALUES (?, ?, ?, ?)",
                    rows,
                )
            conn.commit()
            logger.debug("Trigger put name=%s fire_at=%s revision=%s", name, fire_at, revision)
            return int(revision)
        finally:
            # Closing without commit rolls the transaction back.
            conn.close()

    def put_targets(self, name: str, targets: list[TriggerTarget]) -> None:
        conn = self._get_conn()
        try:
            self._require(conn, name)
            conn.executemany(
                """
                INSERT OR REPLACE INTO trigger_targets(trigger_name, target_id, destination, input)
                VALUES (?, ?, ?, ?)
                """,
                [(name, t.target_id, t.destination, self._encode_input(t.input)) for t in targets],
            )
            conn.commit()
        finally:
            conn.close()

    def list_targets(self, name: str) -> list[TriggerTarget]:
        conn = self._get_conn()
        try:
            self._require(conn, name)
            rows = conn.execute(
                "SELECT * FROM trigger_targets WHERE trigger_name = ? ORDER BY target_id ASC",
                (name,),
            ).fetchall()
            return [
                TriggerTarget(
                    target_id=str(r["target_id"]),
                    destination=str(r["destination"]),
                    input=json.loads(r["input"] or "{}"),
                )
                for r in rows
            ]
        finally:
            conn.close()

    def remove_targets(self, name: str, target_ids: list[str]) -> None:
        if not target_ids:
            return
        conn = self._get_conn()
        try:
            self._require(conn, name)
            conn.executemany(
                "DELETE FROM trigger_targets WHERE trigger_name = ? AND target_id = ?",
                [(name, tid) for tid in target_ids],
            )
            conn.commit()
        finally:
            conn.close()

    def delete_trigger(self, name: str, *, revision: int | None = None) -> bool:
        """
        Delete a trigger (and any targets still bound to it) in one transaction.

        Raises NotFoundError if absent. With a revision, deletes only if the stored
        revision still matches and returns False when the trigger was re-armed since.
        """
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = self._require(conn, name)
            if revision is not None and int(row["revision"]) != int(revision):
                conn.rollback()
                return False
            conn.execute("DELETE FROM trigger_targets WHERE trigger_name = ?", (name,))
            conn.execute("DELETE FROM triggers WHERE name = ?", (name,))
            conn.commit()
            return True
        finally:
            conn.close()

    # ---- worker API ----

    def list_due(self, *, now_ts: float, limit: int = 32) -> list[TriggerRecord]:
        """
        Triggers whose fire time has passed, earliest first.

        Claimed triggers become due again once their claim is older than the claim TTL.
        """
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM triggers
                WHERE fire_at <= ?
                  AND (state = 'armed' OR (state = 'firing' AND claimed_at < ?))
                ORDER BY fire_at ASC, name ASC
                    LIMIT ?
                """,
                (float(now_ts), float(now_ts) - self._claim_ttl, int(limit)),
            ).fetchall()
            return [self._row_to_record(r) for r in rows]
        finally:
            conn.close()

    def try_claim(self, name: str, *, revision: int, now_ts: float) -> bool:
        """
        Best-effort claim so that concurrent workers never fire the same revision twice.

        Atomically transitions: armed (or expired firing) -> firing.
        """
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE triggers
                SET state = 'firing', claimed_at = ?, updated_at = ?
                WHERE name = ?
                  AND revision = ?
                  AND (state = 'armed' OR (state = 'firing' AND claimed_at < ?))
                """,
                (float(now_ts), time.time(), name, int(revision), float(now_ts) - self._claim_ttl),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def mark_dead(self, name: str, *, revision: int) -> None:
        """Park a trigger that can never fire (malformed input); list_due skips it."""
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE triggers SET state = 'dead', updated_at = ? WHERE name = ? AND revision = ?",
                (time.time(), name, int(revision)),
            )
            conn.commit()
        finally:
            conn.close()
