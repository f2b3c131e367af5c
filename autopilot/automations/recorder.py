"""
Run history.

Every evaluation of an automation leaves a run row that starts as
``running`` and moves exactly once to ``completed``, ``failed`` or
``skipped``. Each state a run enters is also appended to an audit table
that is never updated.

Usage:
    recorder = RunRecorder("autopilot.db")
    run = recorder.start(automation)
    recorder.finalize(run, RunStatus.COMPLETED, result="Created: Launch recap")
    recent = recorder.query(automation_id=automation.id, status=RunStatus.FAILED)
"""
import json
import logging
import sqlite3
from datetime import datetime, timedelta
from threading import Lock
from typing import Optional

from .models import AutomationDefinition, Run, RunStatus, parse_datetime, to_utc, utc_now

logger = logging.getLogger(__name__)

STALE_RUN_ERROR = "Run timed out before completion"


class RunStateError(RuntimeError):
    """Raised when a run is finalized more than once."""


def _iso(value: Optional[datetime]) -> Optional[str]:
    return to_utc(value).isoformat() if value else None


class RunRecorder:
    """
    SQLite-backed run history with an append-only transition log.

    Features:
    - Single terminal transition per run, enforced in SQL
    - Queries by automation, status and time range
    - Reaping of runs left ``running`` by a crashed invocation
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the recorder.

        Args:
            db_path: Path to SQLite database. If None, uses in-memory.
        """
        self.db_path = db_path or ":memory:"
        self._db_lock = Lock()
        self._conn: Optional[sqlite3.Connection] = None
        if self.db_path == ":memory:":
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection, using persistent connection for in-memory."""
        if self._conn is not None:
            return self._conn
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Initialize SQLite database schema."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                id TEXT PRIMARY KEY,
                automation_id TEXT NOT NULL,
                workspace_id TEXT NOT NULL,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                duration_ms INTEGER,
                result TEXT,
                error TEXT,
                items_created INTEGER DEFAULT 0,
                trigger_data TEXT
            )
            """
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_runs_automation ON runs (automation_id, started_at)"
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS run_transitions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                status TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                detail TEXT
            )
            """
        )

        conn.commit()
        if self._conn is None:
            conn.close()

    def _append_transition(
        self,
        conn: sqlite3.Connection,
        run_id: str,
        status: RunStatus,
        at: datetime,
        detail: Optional[str] = None,
    ) -> None:
        conn.execute(
            "INSERT INTO run_transitions (run_id, status, timestamp, detail) VALUES (?, ?, ?, ?)",
            (run_id, status.value, _iso(at), detail),
        )

    def start(self, automation: AutomationDefinition, now: Optional[datetime] = None) -> Run:
        """Record a new ``running`` run for an automation."""
        return self.start_for(automation.id, automation.workspace_id, now)

    def start_for(
        self,
        automation_id: str,
        workspace_id: str,
        now: Optional[datetime] = None,
    ) -> Run:
        """Record a new ``running`` run by automation id, for rows that cannot be loaded."""
        run = Run(
            automation_id=automation_id,
            workspace_id=workspace_id,
            started_at=to_utc(now or utc_now()),
        )
        with self._db_lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT INTO runs
                    (id, automation_id, workspace_id, status, started_at, trigger_data)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        run.id,
                        run.automation_id,
                        run.workspace_id,
                        run.status.value,
                        _iso(run.started_at),
                        json.dumps(run.trigger_data),
                    ),
                )
                self._append_transition(conn, run.id, RunStatus.RUNNING, run.started_at)
                conn.commit()
            finally:
                if self._conn is None:
                    conn.close()
        return run

    def finalize(
        self,
        run: Run,
        status: RunStatus,
        result: Optional[str] = None,
        error: Optional[str] = None,
        items_created: int = 0,
        trigger_data: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> Run:
        """
        Move a running run to a terminal state.

        Args:
            run: Run to finalize
            status: Terminal status
            result: Human-readable summary
            error: Error message for failed runs
            items_created: Artifacts produced by the run
            trigger_data: Structured details of what the run did
            now: Completion instant

        Returns:
            The updated run

        Raises:
            RunStateError: If the run is not ``running`` anymore
            ValueError: If ``status`` is not terminal
        """
        if not status.is_terminal:
            raise ValueError(f"Cannot finalize a run as {status.value}")

        completed_at = to_utc(now or utc_now())
        duration_ms = max(0, int((completed_at - to_utc(run.started_at)).total_seconds() * 1000))
        data = trigger_data if trigger_data is not None else run.trigger_data

        with self._db_lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(
                    """
                    UPDATE runs
                    SET status = ?, completed_at = ?, duration_ms = ?, result = ?,
                        error = ?, items_created = ?, trigger_data = ?
                    WHERE id = ? AND status = ?
                    """,
                    (
                        status.value,
                        _iso(completed_at),
                        duration_ms,
                        result,
                        error,
                        items_created,
                        json.dumps(data, default=str),
                        run.id,
                        RunStatus.RUNNING.value,
                    ),
                )
                if cursor.rowcount != 1:
                    conn.rollback()
                    raise RunStateError(f"Run {run.id} is already finalized")
                self._append_transition(conn, run.id, status, completed_at, error or result)
                conn.commit()
            finally:
                if self._conn is None:
                    conn.close()

        run.status = status
        run.completed_at = completed_at
        run.duration_ms = duration_ms
        run.result = result
        run.error = error
        run.items_created = items_created
        run.trigger_data = data
        logger.info(f"Run {run.id} for automation {run.automation_id}: {status.value}")
        return run

    def record_skipped(
        self,
        automation: AutomationDefinition,
        reason: str,
        now: Optional[datetime] = None,
    ) -> Run:
        """Record a run that was skipped before any work started."""
        run = self.start(automation, now)
        return self.finalize(run, RunStatus.SKIPPED, result=reason, now=now)

    def record_failed(
        self,
        automation_id: str,
        workspace_id: str,
        error: str,
        now: Optional[datetime] = None,
    ) -> Run:
        """Record a run that failed before the automation could be executed."""
        run = self.start_for(automation_id, workspace_id, now)
        return self.finalize(run, RunStatus.FAILED, error=error, now=now)

    def _row_to_run(self, row: sqlite3.Row) -> Run:
        return Run(
            id=row["id"],
            automation_id=row["automation_id"],
            workspace_id=row["workspace_id"],
            status=RunStatus(row["status"]),
            started_at=parse_datetime(row["started_at"]),
            completed_at=parse_datetime(row["completed_at"]),
            duration_ms=row["duration_ms"],
            result=row["result"],
            error=row["error"],
            items_created=row["items_created"] or 0,
            trigger_data=json.loads(row["trigger_data"]) if row["trigger_data"] else {},
        )

    def _fetch(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._db_lock:
            conn = self._get_connection()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                if self._conn is None:
                    conn.close()

    def get_run(self, run_id: str) -> Optional[Run]:
        rows = self._fetch("SELECT * FROM runs WHERE id = ?", (run_id,))
        return self._row_to_run(rows[0]) if rows else None

    def query(
        self,
        automation_id: Optional[str] = None,
        status: Optional[RunStatus] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[Run]:
        """
        Query runs, newest first.

        Args:
            automation_id: Filter by automation
            status: Filter by status
            since: Only runs started at or after this instant
            until: Only runs started before this instant
            limit: Maximum number of runs

        Returns:
            Matching runs
        """
        sql = "SELECT * FROM runs WHERE 1=1"
        params: list = []

        if automation_id:
            sql += " AND automation_id = ?"
            params.append(automation_id)
        if status:
            sql += " AND status = ?"
            params.append(status.value)
        if since:
            sql += " AND started_at >= ?"
            params.append(_iso(since))
        if until:
            sql += " AND started_at < ?"
            params.append(_iso(until))

        sql += " ORDER BY started_at DESC LIMIT ?"
        params.append(limit)

        return [self._row_to_run(row) for row in self._fetch(sql, tuple(params))]

    def transitions(self, run_id: str) -> list[dict]:
        """Audit trail of a run, oldest first."""
        rows = self._fetch(
            "SELECT status, timestamp, detail FROM run_transitions WHERE run_id = ? ORDER BY id",
            (run_id,),
        )
        return [
            {"status": row["status"], "timestamp": row["timestamp"], "detail": row["detail"]}
            for row in rows
        ]

    def reap_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> list[Run]:
        """
        Fail runs that have been ``running`` for longer than ``max_age``.

        Returns:
            The runs that were finalized
        """
        now = to_utc(now or utc_now())
        rows = self._fetch(
            "SELECT * FROM runs WHERE status = ? AND started_at < ?",
            (RunStatus.RUNNING.value, _iso(now - max_age)),
        )

        reaped = []
        for row in rows:
            run = self._row_to_run(row)
            try:
                reaped.append(self.finalize(run, RunStatus.FAILED, error=STALE_RUN_ERROR, now=now))
            except RunStateError:
                # Finished concurrently
                continue

        if reaped:
            logger.warning(f"Reaped {len(reaped)} stale runs")
        return reaped
