"""Application settings loaded from environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    DATABASE_URL: str = "sqlite+aiosqlite:///./data/job_coordinator.db"
    HOST: str = "0.0.0.0"
    PORT: int = Field(default=8000, ge=1, le=65535)
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "text"
    LOG_FILE: Path | None = None
    LOG_FILE_MAX_BYTES: int = Field(default=10_485_760, ge=1)
    LOG_FILE_BACKUP_COUNT: int = Field(default=5, ge=1)
    WORKER_POOL: str = Field(default="job_worker", min_length=1, max_length=64)
    WORKER_AUTOSTART: bool = False
    WORKER_POLL_INTERVAL_SECONDS: float = Field(default=5.0, gt=0)
    WORKER_HEARTBEAT_INTERVAL_SECONDS: float = Field(default=10.0, gt=0)
    WORKER_LIVENESS_WINDOW_SECONDS: int = Field(default=30, ge=1)
    WORKER_LEASE_TTL_SECONDS: int = Field(default=30, ge=1)
    WORKER_REQUIRE_DEPENDENCIES: bool = False
    STALLED_RUN_THRESHOLD_SECONDS: int = Field(default=300, ge=1)
    REAPER_INTERVAL_SECONDS: int = Field(default=60, ge=1)
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_JOBSTORE_URL: str = "sqlite:///./scheduler-jobs.sqlite"
    JOB_MODULES: list[str] = Field(default_factory=list)
    JOB_SCHEDULES: list[dict[str, Any]] = Field(default_factory=list)
    SHUTDOWN_GRACE_PERIOD_SECONDS: int = Field(default=30, ge=1)

    @field_validator("LOG_FILE", mode="before")
    @classmethod
    def parse_log_file(cls, value: object) -> object:
        if value in (None, ""):
            return None
        return value

    @property
    def liveness_window_ms(self) -> int:
        return self.WORKER_LIVENESS_WINDOW_SECONDS * 1000

    @property
    def stalled_threshold_ms(self) -> int:
        return self.STALLED_RUN_THRESHOLD_SECONDS * 1000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()
