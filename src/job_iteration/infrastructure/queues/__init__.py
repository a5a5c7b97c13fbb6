"""Job queue implementations."""

from job_iteration.infrastructure.queues.in_memory_job_queue import InMemoryJobQueue
from job_iteration.infrastructure.queues.postgres_job_queue import PostgresJobQueue

__all__ = ["InMemoryJobQueue", "PostgresJobQueue"]
