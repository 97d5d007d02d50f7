"""Storage interface for the task catalog, runs, run logs, and run transitions."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

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


class DashboardStorage(Protocol):
    def migrate(self) -> None: ...

    def close(self) -> None: ...

    def upsert_task_definition(self, definition: TaskDefinition) -> TaskDefinition: ...

    def get_task_definition(self, key: str) -> TaskDefinition | None: ...

    def list_task_definitions(self) -> list[TaskDefinition]: ...

    def upsert_user(self, email: str, *, password_hash: str) -> User: ...

    def create_run(
        self,
        *,
        task_key: str,
        user_id: str,
        created_at: datetime,
        logs: list[RunLogEntry],
        transitions: list[tuple[TransitionTarget, datetime]],
    ) -> Run: ...

    def get_run(self, run_id: str) -> Run | None: ...

    def list_recent_runs(self, task_key: str, *, limit: int) -> list[Run]: ...

    def list_run_logs(self, run_id: str) -> list[RunLog]: ...

    def apply_run_transition(
        self,
        run_id: str,
        *,
        expected_status: RunStatus | tuple[RunStatus, ...],
        status: RunStatus,
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
        logs: list[RunLogEntry],
    ) -> Run | None: ...

    def claim_due_transitions(
        self,
        *,
        now: datetime,
        limit: int,
        lease_s: float,
    ) -> list[RunTransition]: ...

    def complete_transition(self, transition_id: str, *, now: datetime) -> None: ...

    def reschedule_transition(
        self,
        transition_id: str,
        *,
        due_at: datetime,
        attempts: int,
        error: str | None,
        now: datetime,
    ) -> None: ...

    def fail_transition(
        self,
        transition_id: str,
        *,
        attempts: int,
        error: str,
        now: datetime,
    ) -> None: ...
