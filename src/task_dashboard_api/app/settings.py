"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "task-dashboard-api"
    app_env: str = "dev"
    log_level: str = "INFO"
    database_url: str = ""
    storage_backend: Literal["postgres", "memory"] = "postgres"
    web_origin: str = "http://localhost:5173"
    recent_runs_limit: int = Field(default=5, ge=1)
    dev_user_email: str = "dev@local"
    seed_catalog_on_startup: bool = True
    worker_enabled: bool = True
    worker_poll_interval_s: float = Field(default=0.1, gt=0.0)
    worker_batch_size: int = Field(default=32, ge=1)
    worker_lease_s: float = Field(default=30.0, gt=0.0)
    transition_max_attempts: int = Field(default=3, ge=1)
    transition_retry_backoff_s: float = Field(default=0.5, ge=0.0)

    model_config = SettingsConfigDict(
        env_prefix="TASK_DASHBOARD_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
