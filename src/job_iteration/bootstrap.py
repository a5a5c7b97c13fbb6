"""Application bootstrap/wiring."""

import logging

from job_iteration.application.job_monitoring import JobMonitoringService
from job_iteration.application.registry import JobRegistry
from job_iteration.application.worker import IterationWorker
from job_iteration.config import QueueBackend, Settings
from job_iteration.domain.ports import JobQueueRepository
from job_iteration.infrastructure.queues import InMemoryJobQueue, PostgresJobQueue

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: Settings) -> None:
    """Apply the configured log level to the package loggers."""

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=_LOG_FORMAT)
    logging.getLogger("job_iteration").setLevel(settings.log_level)


def build_job_queue(settings: Settings) -> JobQueueRepository:
    if settings.queue_backend == QueueBackend.POSTGRES:
        if settings.postgres_dsn is None:
            raise ValueError(
                "JOB_ITERATION_POSTGRES_DSN is required when JOB_ITERATION_QUEUE_BACKEND=postgres."
            )
        return PostgresJobQueue(
            dsn=settings.postgres_dsn,
            min_pool_size=settings.postgres_pool_min_size,
            max_pool_size=settings.postgres_pool_max_size,
        )
    return InMemoryJobQueue()


def build_job_registry(settings: Settings) -> JobRegistry:
    registry = JobRegistry.discover(settings.job_modules)
    logger.info("Registered %d iterable job(s): %s", len(registry), ", ".join(registry.names()))
    return registry


def build_worker(
    settings: Settings,
    queue: JobQueueRepository,
    registry: JobRegistry,
) -> IterationWorker:
    return IterationWorker(
        queue,
        registry,
        config=settings.iteration_config(),
        worker_id=settings.worker_id,
        poll_interval_seconds=settings.worker_poll_seconds,
        batch_size=settings.worker_batch_size,
        lease_seconds=settings.worker_lease_seconds,
        max_retries=settings.worker_max_retries,
        retry_base_delay_seconds=settings.worker_retry_base_delay_seconds,
        retry_max_delay_seconds=settings.worker_retry_max_delay_seconds,
    )


def build_monitoring_service(settings: Settings) -> JobMonitoringService:
    """Build the queue, registry and worker graph behind the management API."""

    configure_logging(settings)
    queue = build_job_queue(settings)
    registry = build_job_registry(settings)
    worker = build_worker(settings, queue, registry)
    return JobMonitoringService(queue, worker)


__all__ = [
    "build_job_queue",
    "build_job_registry",
    "build_monitoring_service",
    "build_worker",
    "configure_logging",
]
