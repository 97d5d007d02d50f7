from __future__ import annotations

import argparse
import logging

from .app.catalog import seed_catalog
from .app.logging_setup import configure_logging
from .app.settings import get_settings
from .app.storage import PostgresDashboardStorage

logger = logging.getLogger(__name__)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create dashboard tables and insert the default task definitions."
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="PostgreSQL connection URL (default: TASK_DASHBOARD_DATABASE_URL or DATABASE_URL).",
    )
    return parser.parse_args()


def seed(*, database_url: str) -> int:
    storage = PostgresDashboardStorage(database_url)
    storage.migrate()
    seeded = seed_catalog(storage)
    storage.close()
    return len(seeded)


def main() -> None:
    args = _parse_args()
    settings = get_settings()
    configure_logging(settings.log_level)
    database_url = args.database_url or settings.resolved_database_url()
    if not database_url:
        raise SystemExit("A database URL is required (--database-url or TASK_DASHBOARD_DATABASE_URL).")
    count = seed(database_url=database_url)
    print(f"Seeded {count} task definitions.")


if __name__ == "__main__":
    main()
