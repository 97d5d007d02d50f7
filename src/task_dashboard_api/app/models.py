"""Pydantic models shared across API, catalog, lifecycle, worker, and storage.

Beginner terms used in this file:
- Model: a typed schema class used for validation/serialization.
- Literal: restricts a field to a fixed set of allowed string values.
- Alias: the camelCase name a field uses on the wire (for example, taskKey).
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Run lifecycle states used by storage + API responses.
RunStatus = Literal["queued", "running", "success", "failed"]
LogLevel = Literal["info", "warn", "error"]

# Deferred transition targets and work-item states.
TransitionTarget = Literal["running", "success"]
TransitionState = Literal["pending", "done", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"success", "failed"})


class WireModel(BaseModel):
    """Base model that speaks camelCase JSON but accepts snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskDefinition(WireModel):
    """Catalog entry. Immutable once seeded."""

    key: str
    name: str
    description: str


class User(WireModel):
    id: str
    email: str
    # Opaque placeholder; there is no authentication.
    password_hash: str = Field(exclude=True)


class Run(WireModel):
    """One execution attempt of a task definition."""

    id: str
    task_key: str
    user_id: str
    status: RunStatus = "queued"
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES or self.finished_at is not None


class RunLog(WireModel):
    """One append-only log line attached to a run."""

    id: str
    run_id: str
    ts: datetime
    level: LogLevel = "info"
    message: str


class RunLogEntry(BaseModel):
    """Log line to be appended; storage assigns id and run_id."""

    ts: datetime
    level: LogLevel = "info"
    message: str


class RunTransition(BaseModel):
    """Persisted deferred status change for a run (durable work item)."""

    id: str
    run_id: str
    target_status: TransitionTarget
    due_at: datetime
    attempts: int = 0
    state: TransitionState = "pending"
    last_error: str | None = None
    locked_until: datetime | None = None
    created_at: datetime
    updated_at: datetime


class RunSummary(WireModel):
    """Run fields returned by POST /runs and embedded in GET /tasks."""

    id: str
    task_key: str
    status: RunStatus
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_run(cls, run: Run) -> RunSummary:
        return cls(
            id=run.id,
            task_key=run.task_key,
            status=run.status,
            created_at=run.created_at,
            started_at=run.started_at,
            finished_at=run.finished_at,
        )


class RunDetail(RunSummary):
    """Response body for GET /runs/{run_id}."""

    logs: list[RunLog] = Field(default_factory=list)


class TaskWithRuns(TaskDefinition):
    """Response item for GET /tasks."""

    recent_runs: list[RunSummary] = Field(default_factory=list)


class CreateRunRequest(WireModel):
    """Request body for POST /runs.

    task_key is optional here so that a missing key is reported as a 400
    by the lifecycle instead of FastAPI's generic 422.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=False, extra="ignore")

    task_key: str | None = None
