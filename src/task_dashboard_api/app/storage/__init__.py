"""Storage backends."""

from task_dashboard_api.app.settings import Settings
from task_dashboard_api.app.storage.base import DashboardStorage
from task_dashboard_api.app.storage.memory import InMemoryDashboardStorage
from task_dashboard_api.app.storage.postgres import PostgresDashboardStorage


def build_storage(settings: Settings) -> DashboardStorage:
    """Construct the configured backend; fail fast on missing configuration."""
    if settings.storage_backend == "memory":
        return InMemoryDashboardStorage()
    database_url = settings.resolved_database_url()
    if not database_url:
        raise RuntimeError(
            "Missing database URL. Set TASK_DASHBOARD_DATABASE_URL "
            "or DATABASE_URL before starting the app."
        )
    return PostgresDashboardStorage(database_url)


__all__ = [
    "DashboardStorage",
    "InMemoryDashboardStorage",
    "PostgresDashboardStorage",
    "build_storage",
]
