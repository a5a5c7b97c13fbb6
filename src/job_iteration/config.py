"""Application settings."""

import json
import logging
from enum import StrEnum
from typing import Annotated

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from job_iteration.application.iteration import IterationConfig


class QueueBackend(StrEnum):
    """Available persistence adapters for the job queue."""

    IN_MEMORY = "in_memory"
    POSTGRES = "postgres"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "Job Iteration"
    api_prefix: str = ""
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    max_job_runtime_seconds: float | None = None
    default_retry_backoff_seconds: float | None = None
    queue_backend: QueueBackend = QueueBackend.IN_MEMORY
    postgres_dsn: str | None = None
    postgres_pool_min_size: int = 1
    postgres_pool_max_size: int = 10
    worker_enabled: bool = True
    worker_id: str = "worker-local"
    worker_poll_seconds: float = 1.0
    worker_batch_size: int = 10
    worker_lease_seconds: float = 300.0
    worker_max_retries: int = 25
    worker_retry_base_delay_seconds: float = 2.0
    worker_retry_max_delay_seconds: float = 300.0
    job_modules: Annotated[list[str], NoDecode] = Field(default_factory=list)

    @field_validator("job_modules", mode="before")
    @classmethod
    def parse_csv_list(cls, value: object) -> object:
        """Support comma-separated env var values in addition to JSON arrays."""

        if not isinstance(value, str):
            return value
        if value.strip().startswith("["):
            return json.loads(value)
        return [item.strip() for item in value.split(",") if item.strip()]

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        """Accept level names in any case."""

        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level '{value}'.")
        return level

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Ensure backend and worker settings are valid."""

        if self.queue_backend == QueueBackend.POSTGRES and not self.postgres_dsn:
            raise ValueError(
                "JOB_ITERATION_POSTGRES_DSN is required when JOB_ITERATION_QUEUE_BACKEND=postgres."
            )
        if self.postgres_pool_min_size < 1:
            raise ValueError("JOB_ITERATION_POSTGRES_POOL_MIN_SIZE must be >= 1.")
        if self.postgres_pool_max_size < self.postgres_pool_min_size:
            raise ValueError(
                "JOB_ITERATION_POSTGRES_POOL_MAX_SIZE must be >= "
                "JOB_ITERATION_POSTGRES_POOL_MIN_SIZE."
            )
        if self.max_job_runtime_seconds is not None and self.max_job_runtime_seconds <= 0:
            raise ValueError("JOB_ITERATION_MAX_JOB_RUNTIME_SECONDS must be > 0.")
        if (
            self.default_retry_backoff_seconds is not None
            and self.default_retry_backoff_seconds < 0
        ):
            raise ValueError("JOB_ITERATION_DEFAULT_RETRY_BACKOFF_SECONDS must be >= 0.")
        if self.worker_poll_seconds <= 0:
            raise ValueError("JOB_ITERATION_WORKER_POLL_SECONDS must be > 0.")
        if self.worker_batch_size < 1:
            raise ValueError("JOB_ITERATION_WORKER_BATCH_SIZE must be >= 1.")
        if self.worker_lease_seconds <= 0:
            raise ValueError("JOB_ITERATION_WORKER_LEASE_SECONDS must be > 0.")
        if self.worker_max_retries < 0:
            raise ValueError("JOB_ITERATION_WORKER_MAX_RETRIES must be >= 0.")
        if self.worker_retry_max_delay_seconds < self.worker_retry_base_delay_seconds:
            raise ValueError(
                "JOB_ITERATION_WORKER_RETRY_MAX_DELAY_SECONDS must be >= "
                "JOB_ITERATION_WORKER_RETRY_BASE_DELAY_SECONDS."
            )
        return self

    def iteration_config(self) -> IterationConfig:
        """Return the settings every job instance is created with."""

        return IterationConfig(
            max_job_runtime=self.max_job_runtime_seconds,
            default_retry_backoff=self.default_retry_backoff_seconds,
            logger=logging.getLogger("job_iteration"),
        )

    model_config = SettingsConfigDict(env_prefix="JOB_ITERATION_", extra="ignore")


__all__ = ["QueueBackend", "Settings"]
