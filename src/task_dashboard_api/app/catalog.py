"""Task catalog: default definitions, seeding, and the task list view."""

from __future__ import annotations

import logging

from .models import RunSummary, TaskDefinition, TaskWithRuns
from .storage.base import DashboardStorage

logger = logging.getLogger(__name__)

RECENT_RUNS_LIMIT = 5

DEFAULT_TASK_DEFINITIONS: tuple[TaskDefinition, ...] = (
    TaskDefinition(
        key="health_check",
        name="Health Check",
        description="Calls a public API and logs status/latency.",
    ),
    TaskDefinition(
        key="csv_export",
        name="CSV Export",
        description="Generates a small CSV report and stores it locally.",
    ),
    TaskDefinition(
        key="data_sync",
        name="Data Sync",
        description="Fetches paginated data from a public API and stores a summary.",
    ),
)


def seed_catalog(
    storage: DashboardStorage,
    definitions: tuple[TaskDefinition, ...] = DEFAULT_TASK_DEFINITIONS,
) -> list[TaskDefinition]:
    """Insert missing definitions; existing rows are left untouched."""
    seeded = [storage.upsert_task_definition(definition) for definition in definitions]
    logger.info("catalog event=seeded count=%s keys=%s", len(seeded), [d.key for d in seeded])
    return seeded


def list_tasks(storage: DashboardStorage, *, recent_runs_limit: int = RECENT_RUNS_LIMIT) -> list[TaskWithRuns]:
    """Return every definition sorted by key, each with its newest runs first."""
    tasks: list[TaskWithRuns] = []
    for definition in sorted(storage.list_task_definitions(), key=lambda item: item.key):
        runs = storage.list_recent_runs(definition.key, limit=recent_runs_limit)
        tasks.append(
            TaskWithRuns(
                key=definition.key,
                name=definition.name,
                description=definition.description,
                recent_runs=[RunSummary.from_run(run) for run in runs[:recent_runs_limit]],
            )
        )
    return tasks
