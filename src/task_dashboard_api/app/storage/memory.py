"""In-memory storage backend for tests and local development."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from uuid import uuid4

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


class InMemoryDashboardStorage:
    """Dict-backed implementation of DashboardStorage guarded by one lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tasks: dict[str, TaskDefinition] = {}
        self._users: dict[str, User] = {}
        self._runs: dict[str, Run] = {}
        self._logs: list[RunLog] = []
        self._transitions: dict[str, RunTransition] = {}

    def migrate(self) -> None:
        return None

    def close(self) -> None:
        return None

    def upsert_task_definition(self, definition: TaskDefinition) -> TaskDefinition:
        with self._lock:
            existing = self._tasks.get(definition.key)
            if existing is not None:
                return existing
            self._tasks[definition.key] = definition
            return definition

    def get_task_definition(self, key: str) -> TaskDefinition | None:
        with self._lock:
            return self._tasks.get(key)

    def list_task_definitions(self) -> list[TaskDefinition]:
        with self._lock:
            return [self._tasks[key] for key in sorted(self._tasks)]

    def upsert_user(self, email: str, *, password_hash: str) -> User:
        with self._lock:
            user = self._users.get(email)
            if user is None:
                user = User(id=str(uuid4()), email=email, password_hash=password_hash)
                self._users[email] = user
            return user

    def create_run(
        self,
        *,
        task_key: str,
        user_id: str,
        created_at: datetime,
        logs: list[RunLogEntry],
        transitions: list[tuple[TransitionTarget, datetime]],
    ) -> Run:
        run = Run(
            id=str(uuid4()),
            task_key=task_key,
            user_id=user_id,
            status="queued",
            created_at=created_at,
        )
        with self._lock:
            self._runs[run.id] = run
            self._append_logs(run.id, logs)
            for target_status, due_at in transitions:
                item = RunTransition(
                    id=str(uuid4()),
                    run_id=run.id,
                    target_status=target_status,
                    due_at=due_at,
                    created_at=created_at,
                    updated_at=created_at,
                )
                self._transitions[item.id] = item
        return run

    def get_run(self, run_id: str) -> Run | None:
        with self._lock:
            return self._runs.get(run_id)

    def list_recent_runs(self, task_key: str, *, limit: int) -> list[Run]:
        with self._lock:
            runs = [run for run in self._runs.values() if run.task_key == task_key]
        # Dict order is insertion order, so a stable sort keeps same-timestamp
        # runs newest-first once reversed.
        runs.reverse()
        runs.sort(key=lambda run: run.created_at, reverse=True)
        return runs[:limit]

    def list_run_logs(self, run_id: str) -> list[RunLog]:
        with self._lock:
            logs = [line for line in self._logs if line.run_id == run_id]
        return sorted(logs, key=lambda line: line.ts)

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
        expected = (expected_status,) if isinstance(expected_status, str) else expected_status
        with self._lock:
            current = self._runs.get(run_id)
            if current is None or current.status not in expected or current.finished_at:
                return None
            update: dict[str, object] = {"status": status}
            if started_at is not None:
                update["started_at"] = started_at
            if finished_at is not None:
                update["finished_at"] = finished_at
            updated = current.model_copy(update=update)
            self._runs[run_id] = updated
            self._append_logs(run_id, logs)
            return updated

    def claim_due_transitions(
        self,
        *,
        now: datetime,
        limit: int,
        lease_s: float,
    ) -> list[RunTransition]:
        claimed: list[RunTransition] = []
        with self._lock:
            due = sorted(
                (
                    item
                    for item in self._transitions.values()
                    if item.state == "pending"
                    and item.due_at <= now
                    and (item.locked_until is None or item.locked_until <= now)
                ),
                key=lambda item: item.due_at,
            )
            for item in due[:limit]:
                leased = item.model_copy(
                    update={"locked_until": now + timedelta(seconds=lease_s), "updated_at": now}
                )
                self._transitions[item.id] = leased
                claimed.append(leased)
        return claimed

    def complete_transition(self, transition_id: str, *, now: datetime) -> None:
        self._update_transition(transition_id, state="done", locked_until=None, updated_at=now)

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
            due_at=due_at,
            attempts=attempts,
            last_error=error,
            locked_until=None,
            updated_at=now,
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
            state="failed",
            attempts=attempts,
            last_error=error,
            locked_until=None,
            updated_at=now,
        )

    def list_transitions(self, run_id: str) -> list[RunTransition]:
        """Test helper: all work items for one run ordered by due time."""
        with self._lock:
            items = [item for item in self._transitions.values() if item.run_id == run_id]
        return sorted(items, key=lambda item: item.due_at)

    def delete_run(self, run_id: str) -> None:
        """Test helper: drop a run and its logs, leaving transitions in place."""
        with self._lock:
            self._runs.pop(run_id, None)
            self._logs = [line for line in self._logs if line.run_id != run_id]

    def _append_logs(self, run_id: str, logs: list[RunLogEntry]) -> None:
        for entry in logs:
            self._logs.append(
                RunLog(
                    id=str(uuid4()),
                    run_id=run_id,
                    ts=entry.ts,
                    level=entry.level,
                    message=entry.message,
                )
            )

    def _update_transition(self, transition_id: str, **update: object) -> None:
        with self._lock:
            current = self._transitions.get(transition_id)
            if current is None:
                raise KeyError(f"Transition {transition_id} does not exist")
            self._transitions[transition_id] = current.model_copy(update=update)
