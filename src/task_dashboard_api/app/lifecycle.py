"""Run lifecycle: create runs, read run detail, and apply deferred transitions.

A run moves queued -> running -> success. Creating a run persists two
RunTransition work items (due 300ms and 1500ms after creation); the
TransitionWorker later hands each due item back to apply_transition().

Every transition is a compare-and-swap on the run's current status, so an
item delivered twice (at-least-once) is a no-op the second time, and a run
that was failed or removed in the meantime is never clobbered.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Literal

from .errors import NotFoundError, ValidationError
from .models import Run, RunDetail, RunLogEntry, RunTransition
from .storage.base import DashboardStorage

logger = logging.getLogger(__name__)

RUNNING_DELAY = timedelta(milliseconds=300)
SUCCESS_DELAY = timedelta(milliseconds=1500)

DEV_USER_EMAIL = "dev@local"
DEV_USER_PASSWORD_HASH = "dev"

MSG_QUEUED = "Queued"
MSG_STARTED = "Started"
MSG_STEPS = "Performing task steps…"
MSG_FINISHED = "Finished successfully"

# applied: status changed; skipped: run already at/after the target;
# deferred: run not ready yet, try again later; dropped: run no longer exists.
TransitionOutcome = Literal["applied", "skipped", "deferred", "dropped"]

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class RunLifecycle:
    def __init__(
        self,
        storage: DashboardStorage,
        *,
        clock: Clock = utc_now,
        dev_user_email: str = DEV_USER_EMAIL,
        running_delay: timedelta = RUNNING_DELAY,
        success_delay: timedelta = SUCCESS_DELAY,
    ) -> None:
        self.storage = storage
        self.clock = clock
        self.dev_user_email = dev_user_email
        self.running_delay = running_delay
        self.success_delay = success_delay

    def create_run(self, task_key: str | None) -> Run:
        """Create a queued run and schedule its two transitions.

        Returns before either transition fires.
        """
        if not task_key:
            raise ValidationError("taskKey is required")

        if self.storage.get_task_definition(task_key) is None:
            raise NotFoundError("task not found")

        # Single hardcoded development identity until auth exists.
        user = self.storage.upsert_user(self.dev_user_email, password_hash=DEV_USER_PASSWORD_HASH)

        created_at = self.clock()
        run = self.storage.create_run(
            task_key=task_key,
            user_id=user.id,
            created_at=created_at,
            logs=[RunLogEntry(ts=created_at, level="info", message=MSG_QUEUED)],
            transitions=[
                ("running", created_at + self.running_delay),
                ("success", created_at + self.success_delay),
            ],
        )
        logger.info(
            "run_lifecycle event=created run_id=%s task_key=%s user_id=%s status=%s",
            run.id,
            task_key,
            user.id,
            run.status,
        )
        return run

    def get_run(self, run_id: str) -> RunDetail:
        run = self.storage.get_run(run_id)
        if run is None:
            raise NotFoundError("run not found")
        logs = self.storage.list_run_logs(run_id)
        return RunDetail(
            id=run.id,
            task_key=run.task_key,
            status=run.status,
            created_at=run.created_at,
            started_at=run.started_at,
            finished_at=run.finished_at,
            logs=logs,
        )

    def apply_transition(self, item: RunTransition) -> TransitionOutcome:
        """Apply one due work item. Storage errors propagate to the caller."""
        run = self.storage.get_run(item.run_id)
        if run is None:
            logger.warning(
                "run_lifecycle event=run_missing run_id=%s target=%s",
                item.run_id,
                item.target_status,
            )
            return "dropped"

        if item.target_status == "running":
            return self._start(run)
        return self._finish(run)

    def fail_run(self, run_id: str, *, target_status: str, error: str) -> Run | None:
        """Move a non-terminal run to failed with an error log line."""
        now = self.clock()
        updated = self.storage.apply_run_transition(
            run_id,
            expected_status=("queued", "running"),
            status="failed",
            finished_at=now,
            logs=[
                RunLogEntry(
                    ts=now,
                    level="error",
                    message=f"Transition to {target_status} failed: {error}",
                )
            ],
        )
        if updated is not None:
            logger.error(
                "run_lifecycle event=failed run_id=%s target=%s error=%s",
                run_id,
                target_status,
                error,
            )
        return updated

    def _start(self, run: Run) -> TransitionOutcome:
        if run.status != "queued":
            return "skipped"
        now = self.clock()
        updated = self.storage.apply_run_transition(
            run.id,
            expected_status="queued",
            status="running",
            started_at=now,
            logs=[
                RunLogEntry(ts=now, level="info", message=MSG_STARTED),
                RunLogEntry(ts=now, level="info", message=MSG_STEPS),
            ],
        )
        if updated is None:
            # Lost a race; re-read on the next delivery.
            return "deferred"
        logger.info("run_lifecycle event=started run_id=%s task_key=%s", run.id, run.task_key)
        return "applied"

    def _finish(self, run: Run) -> TransitionOutcome:
        if run.is_terminal:
            return "skipped"
        if run.status == "queued":
            return "deferred"
        now = self.clock()
        updated = self.storage.apply_run_transition(
            run.id,
            expected_status="running",
            status="success",
            finished_at=now,
            logs=[RunLogEntry(ts=now, level="info", message=MSG_FINISHED)],
        )
        if updated is None:
            return "deferred"
        logger.info("run_lifecycle event=finished run_id=%s task_key=%s", run.id, run.task_key)
        return "applied"
