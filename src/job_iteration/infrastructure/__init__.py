"""Infrastructure layer public API."""

from job_iteration.infrastructure.queues import InMemoryJobQueue, PostgresJobQueue

__all__ = ["InMemoryJobQueue", "PostgresJobQueue"]
