"""PostgreSQL storage backend for the dashboard.

Beginner terms:
- Migration: creating/updating database tables before normal reads/writes.
- Compare-and-swap (CAS): an UPDATE that only applies when the row still has
  the expected status, so two writers cannot clobber each other.
- SKIP LOCKED: lets several workers claim different due rows without waiting
  on each other.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any

from task_dashboard_api.app.errors import StorageError
from task_dashboard_api.app.models import (
    Run,
    RunLog,
    RunLogEntry,
    RunStatus,
    RunTransition,
    TaskDefinition,
    TransitionTarget,
    User,
)

logger = logging.getLogger(__name__)


class PostgresDashboardStorage:
    """Persist catalog, runs, run logs, and transitions in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url
        # Lock guards DB operations done through this storage instance.
        self._lock = threading.Lock()
        self._psycopg, self._dict_row = self._load_psycopg()

    def migrate(self) -> None:
        """Create required tables and indexes if they do not already exist."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_definitions (
                    key TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id UUID PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id UUID PRIMARY KEY,
                    task_key TEXT NOT NULL REFERENCES task_definitions(key),
                    user_id UUID NOT NULL REFERENCES users(id),
                    status TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    started_at TIMESTAMPTZ,
                    finished_at TIMESTAMPTZ
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_task_key_created_at
                ON runs(task_key, created_at DESC)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS run_logs (
                    id BIGSERIAL PRIMARY KEY,
                    run_id UUID NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
                    ts TIMESTAMPTZ NOT NULL,
                    level TEXT NOT NULL,
                    message TEXT NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_run_logs_run_id_ts
                ON run_logs(run_id, ts)
                """)
            # Transitions deliberately do not reference runs: a run removed
            # before its transition fires must leave the item claimable.
            conn.execute("""
                CREATE TABLE IF NOT EXISTS run_transitions (
                    id BIGSERIAL PRIMARY KEY,
                    run_id UUID NOT NULL,
                    target_status TEXT NOT NULL,
                    due_at TIMESTAMPTZ NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    state TEXT NOT NULL DEFAULT 'pending',
                    last_error TEXT,
                    locked_until TIMESTAMPTZ,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_run_transitions_pending_due
                ON run_transitions(due_at)
                WHERE state = 'pending'
                """)

    def close(self) -> None:
        return None

    def upsert_task_definition(self, definition: TaskDefinition) -> TaskDefinition:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO task_definitions (key, name, description)
                VALUES (%s, %s, %s)
                ON CONFLICT (key) DO NOTHING
                """,
                (definition.key, definition.name, definition.description),
            )
            row = conn.execute(
                "SELECT * FROM task_definitions WHERE key = %s",
                (definition.key,),
            ).fetchone()
        if row is None:
            raise StorageError(f"Failed to load task definition {definition.key}")
        return self._row_to_task_definition(row)

    def get_task_definition(self, key: str) -> TaskDefinition | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM task_definitions WHERE key = %s",
                (key,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task_definition(row)

    def list_task_definitions(self) -> list[TaskDefinition]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM task_definitions ORDER BY key ASC").fetchall()
        return [self._row_to_task_definition(row) for row in rows]

    def upsert_user(self, email: str, *, password_hash: str) -> User:
        # DO UPDATE (rather than DO NOTHING) so RETURNING yields the existing row.
        with self._transaction() as conn:
            row = conn.execute(
                """
                INSERT INTO users (id, email, password_hash)
                VALUES (%s, %s, %s)
                ON CONFLICT (email) DO UPDATE SET email = EXCLUDED.email
                RETURNING *
                """,
                (uuid.uuid4(), email, password_hash),
            ).fetchone()
        if row is None:
            raise StorageError(f"Failed to upsert user {email}")
        return User(id=str(row["id"]), email=row["email"], password_hash=row["password_hash"])

    def create_run(
        self,
        *,
        task_key: str,
        user_id: str,
        created_at: datetime,
        logs: list[RunLogEntry],
        transitions: list[tuple[TransitionTarget, datetime]],
    ) -> Run:
        run_id = uuid.uuid4()
        # One transaction: the run, its first log line, and its scheduled
        # transitions are visible together or not at all.
        with self._transaction() as conn:
            row = conn.execute(
                """
                INSERT INTO runs (id, task_key, user_id, status, created_at)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (run_id, task_key, user_id, "queued", created_at),
            ).fetchone()
            self._insert_logs(conn, str(run_id), logs)
            for target_status, due_at in transitions:
                conn.execute(
                    """
                    INSERT INTO run_transitions (
                        run_id,
                        target_status,
                        due_at,
                        created_at,
                        updated_at
                    ) VALUES (%s, %s, %s, %s, %s)
                    """,
                    (run_id, target_status, due_at, created_at, created_at),
                )
        if row is None:
            raise StorageError("Failed to persist run")
        return self._row_to_run(row)

    def get_run(self, run_id: str) -> Run | None:
        run_uuid = self._parse_uuid(run_id)
        if run_uuid is None:
            return None
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM runs WHERE id = %s",
                (run_uuid,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_run(row)

    def list_recent_runs(self, task_key: str, *, limit: int) -> list[Run]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM runs
                WHERE task_key = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (task_key, limit),
            ).fetchall()
        return [self._row_to_run(row) for row in rows]

    def list_run_logs(self, run_id: str) -> list[RunLog]:
        run_uuid = self._parse_uuid(run_id)
        if run_uuid is None:
            return []
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM run_logs
                WHERE run_id = %s
                ORDER BY ts ASC, id ASC
                """,
                (run_uuid,),
            ).fetchall()
        return [self._row_to_run_log(row) for row in rows]

    def apply_run_transition(
        self,
        run_id: str,
        *,
        expected_status: RunStatus | tuple[RunStatus, ...],
        status: RunStatus,
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
        logs: list[RunLogEntry],
    ) -> Run | None:
        run_uuid = self._parse_uuid(run_id)
        if run_uuid is None:
            return None
        expected = [expected_status] if isinstance(expected_status, str) else list(expected_status)
        with self._transaction() as conn:
            row = conn.execute(
                """
                UPDATE runs
                SET status = %s,
                    started_at = COALESCE(%s, started_at),
                    finished_at = COALESCE(%s, finished_at)
                WHERE id = %s
                  AND status = ANY(%s)
                  AND finished_at IS NULL
                RETURNING *
                """,
                (status, started_at, finished_at, run_uuid, expected),
            ).fetchone()
            if row is None:
                return None
            self._insert_logs(conn, run_id, logs)
        return self._row_to_run(row)

    def claim_due_transitions(
        self,
        *,
        now: datetime,
        limit: int,
        lease_s: float,
    ) -> list[RunTransition]:
        locked_until = now + timedelta(seconds=lease_s)
        with self._transaction() as conn:
            rows = conn.execute(
                """
                UPDATE run_transitions
                SET locked_until = %s,
                    updated_at = %s
                WHERE id IN (
                    SELECT id
                    FROM run_transitions
                    WHERE state = 'pending'
                      AND due_at <= %s
                      AND (locked_until IS NULL OR locked_until <= %s)
                    ORDER BY due_at ASC
                    LIMIT %s
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING *
                """,
                (locked_until, now, now, now, limit),
            ).fetchall()
        items = [self._row_to_transition(row) for row in rows]
        return sorted(items, key=lambda item: item.due_at)

    def complete_transition(self, transition_id: str, *, now: datetime) -> None:
        self._update_transition(
            transition_id,
            "state = 'done', locked_until = NULL, updated_at = %s",
            (now,),
        )

    def reschedule_transition(
        self,
        transition_id: str,
        *,
        due_at: datetime,
        attempts: int,
        error: str | None,
        now: datetime,
    ) -> None:
        self._update_transition(
            transition_id,
            "due_at = %s, attempts = %s, last_error = %s, locked_until = NULL, updated_at = %s",
            (due_at, attempts, error, now),
        )

    def fail_transition(
        self,
        transition_id: str,
        *,
        attempts: int,
        error: str,
        now: datetime,
    ) -> None:
        self._update_transition(
            transition_id,
            "state = 'failed', attempts = %s, last_error = %s, locked_until = NULL, updated_at = %s",
            (attempts, error, now),
        )

    def _update_transition(self, transition_id: str, assignments: str, params: tuple[Any, ...]) -> None:
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE run_transitions SET {assignments} WHERE id = %s",  # noqa: S608
                (*params, int(transition_id)),
            )
            if cursor.rowcount == 0:
                raise KeyError(f"Transition {transition_id} does not exist")

    @staticmethod
    def _insert_logs(conn: Any, run_id: str, logs: list[RunLogEntry]) -> None:
        for entry in logs:
            conn.execute(
                """
                INSERT INTO run_logs (run_id, ts, level, message)
                VALUES (%s::uuid, %s, %s, %s)
                """,
                (run_id, entry.ts, entry.level, entry.message),
            )

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        """Open a connection, commit on success, and wrap driver errors."""
        try:
            with self._lock, self._connect() as conn:
                yield conn
                conn.commit()
        except self._psycopg.Error as exc:
            logger.exception("storage event=error backend=postgres")
            raise StorageError(f"PostgreSQL storage error: {exc}") from exc

    def _connect(self) -> Any:
        """Open a psycopg connection that yields dict-like rows."""
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        """Import psycopg with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row

    @staticmethod
    def _parse_uuid(raw: str) -> uuid.UUID | None:
        """Parse a run id; ids that are not UUIDs cannot match any row."""
        try:
            return uuid.UUID(raw)
        except (ValueError, TypeError, AttributeError):
            return None

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        """Parse datetime value from database driver output."""
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _parse_datetime_optional(cls, raw: Any) -> datetime | None:
        if raw is None:
            return None
        return cls._parse_datetime(raw)

    @staticmethod
    def _row_to_task_definition(row: Any) -> TaskDefinition:
        return TaskDefinition(key=row["key"], name=row["name"], description=row["description"])

    @classmethod
    def _row_to_run(cls, row: Any) -> Run:
        return Run(
            id=str(row["id"]),
            task_key=row["task_key"],
            user_id=str(row["user_id"]),
            status=row["status"],
            created_at=cls._parse_datetime(row["created_at"]),
            started_at=cls._parse_datetime_optional(row["started_at"]),
            finished_at=cls._parse_datetime_optional(row["finished_at"]),
        )

    @classmethod
    def _row_to_run_log(cls, row: Any) -> RunLog:
        return RunLog(
            id=str(row["id"]),
            run_id=str(row["run_id"]),
            ts=cls._parse_datetime(row["ts"]),
            level=row["level"],
            message=row["message"],
        )

    @classmethod
    def _row_to_transition(cls, row: Any) -> RunTransition:
        return RunTransition(
            id=str(row["id"]),
            run_id=str(row["run_id"]),
            target_status=row["target_status"],
            due_at=cls._parse_datetime(row["due_at"]),
            attempts=int(row["attempts"]),
            state=row["state"],
            last_error=row["last_error"],
            locked_until=cls._parse_datetime_optional(row["locked_until"]),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )
