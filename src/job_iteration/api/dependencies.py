"""Dependency providers for FastAPI routes."""

from functools import lru_cache

from job_iteration.application.job_monitoring import JobMonitoringService
from job_iteration.bootstrap import build_monitoring_service
from job_iteration.config import Settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return singleton settings."""

    return Settings()


@lru_cache(maxsize=1)
def get_monitoring_service() -> JobMonitoringService:
    """Return singleton service graph."""

    return build_monitoring_service(get_settings())


__all__ = ["get_monitoring_service", "get_settings"]
