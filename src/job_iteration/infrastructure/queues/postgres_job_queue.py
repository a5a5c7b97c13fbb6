"""PostgreSQL job queue implementation."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from uuid import uuid4

import asyncpg  # type: ignore[import-untyped]

from job_iteration.domain.errors import JobNotFoundError, LeaseLostError
from job_iteration.domain.jobs import ClaimedJob, JobStatus, QueuedJob
from job_iteration.domain.ports import JobQueueRepository

_SELECT_COLUMNS = """
    job_id,
    job_name,
    arguments,
    status,
    attempt,
    run_at,
    created_at,
    updated_at,
    lease_owner,
    lease_until,
    last_error
"""


class PostgresJobQueue(JobQueueRepository):
    """Job queue backed by PostgreSQL with lease-based claims."""

    def __init__(
        self,
        dsn: str,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
    ) -> None:
        self._dsn = dsn
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def enqueue(
        self,
        job_name: str,
        arguments: list[Any],
        *,
        delay_seconds: float = 0.0,
    ) -> str:
        """Insert one queued job."""

        job_id = str(uuid4())
        pool = await self._get_pool()
        await pool.execute(
            """
            INSERT INTO iteration_jobs (job_id, job_name, arguments, status, attempt, run_at)
            VALUES (
                $1, $2, $3::jsonb, 'QUEUED', 0,
                NOW() + ($4::double precision * INTERVAL '1 second')
            )
            """,
            job_id,
            job_name,
            json.dumps(list(arguments)),
            max(delay_seconds, 0.0),
        )
        return job_id

    async def claim_due_jobs(
        self,
        *,
        lease_owner: str,
        limit: int,
        lease_seconds: float,
    ) -> list[ClaimedJob]:
        """Claim due queued jobs and running jobs whose lease expired."""

        if limit <= 0:
            return []

        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            WITH due AS (
                SELECT job_id
                FROM iteration_jobs
                WHERE (status = 'QUEUED' AND run_at <= NOW())
                   OR (status = 'RUNNING' AND lease_until <= NOW())
                ORDER BY run_at ASC, created_at ASC, job_id ASC
                FOR UPDATE SKIP LOCKED
                LIMIT $1
            )
            UPDATE iteration_jobs AS jobs
            SET
                status = 'RUNNING',
                lease_owner = $2,
                lease_until = NOW() + ($3::double precision * INTERVAL '1 second'),
                attempt = jobs.attempt + 1,
                updated_at = NOW()
            FROM due
            WHERE jobs.job_id = due.job_id
            RETURNING
                jobs.job_id,
                jobs.job_name,
                jobs.arguments,
                jobs.lease_owner,
                jobs.attempt
            """,
            limit,
            lease_owner,
            max(lease_seconds, 0.0),
        )
        return [self._to_claimed_job(row) for row in rows]

    async def extend_lease(self, job_id: str, *, lease_owner: str, lease_seconds: float) -> None:
        pool = await self._get_pool()
        result = await pool.execute(
            """
            UPDATE iteration_jobs
            SET
                lease_until = NOW() + ($3::double precision * INTERVAL '1 second'),
                updated_at = NOW()
            WHERE job_id = $1 AND lease_owner = $2 AND status = 'RUNNING'
            """,
            job_id,
            lease_owner,
            max(lease_seconds, 0.0),
        )
        await self._ensure_owned(pool, result, job_id, lease_owner)

    async def mark_completed(self, job_id: str, *, lease_owner: str) -> None:
        pool = await self._get_pool()
        result = await pool.execute(
            """
            UPDATE iteration_jobs
            SET
                status = 'COMPLETED',
                lease_owner = NULL,
                lease_until = NULL,
                updated_at = NOW()
            WHERE job_id = $1 AND lease_owner = $2 AND status = 'RUNNING'
            """,
            job_id,
            lease_owner,
        )
        await self._ensure_owned(pool, result, job_id, lease_owner)

    async def schedule_retry(
        self,
        job_id: str,
        *,
        lease_owner: str,
        arguments: list[Any],
        delay_seconds: float,
        error: str,
    ) -> None:
        pool = await self._get_pool()
        result = await pool.execute(
            """
            UPDATE iteration_jobs
            SET
                status = 'QUEUED',
                arguments = $3::jsonb,
                run_at = NOW() + ($4::double precision * INTERVAL '1 second'),
                lease_owner = NULL,
                lease_until = NULL,
                last_error = $5,
                updated_at = NOW()
            WHERE job_id = $1 AND lease_owner = $2 AND status = 'RUNNING'
            """,
            job_id,
            lease_owner,
            json.dumps(list(arguments)),
            max(delay_seconds, 0.0),
            error,
        )
        await self._ensure_owned(pool, result, job_id, lease_owner)

    async def mark_failed(self, job_id: str, *, lease_owner: str, error: str) -> None:
        pool = await self._get_pool()
        result = await pool.execute(
            """
            UPDATE iteration_jobs
            SET
                status = 'FAILED',
                lease_owner = NULL,
                lease_until = NULL,
                last_error = $3,
                updated_at = NOW()
            WHERE job_id = $1 AND lease_owner = $2 AND status = 'RUNNING'
            """,
            job_id,
            lease_owner,
            error,
        )
        await self._ensure_owned(pool, result, job_id, lease_owner)

    async def get_job(self, job_id: str) -> QueuedJob | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"SELECT {_SELECT_COLUMNS} FROM iteration_jobs WHERE job_id = $1",
            job_id,
        )
        if row is None:
            return None
        return self._to_queued_job(row)

    async def list_jobs(self, status: JobStatus | None = None) -> list[QueuedJob]:
        pool = await self._get_pool()
        if status is None:
            rows = await pool.fetch(
                f"SELECT {_SELECT_COLUMNS} FROM iteration_jobs ORDER BY created_at ASC, job_id ASC",
            )
        else:
            rows = await pool.fetch(
                f"SELECT {_SELECT_COLUMNS} FROM iteration_jobs WHERE status = $1 "
                "ORDER BY created_at ASC, job_id ASC",
                JobStatus(status).value,
            )
        return [self._to_queued_job(row) for row in rows]

    async def close(self) -> None:
        """Close the pool if it was initialized."""

        pool = self._pool
        self._pool = None
        if pool is not None:
            await pool.close()

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            pool = self._pool
            if pool is None:
                pool = await asyncpg.create_pool(
                    dsn=self._dsn,
                    min_size=self._min_pool_size,
                    max_size=self._max_pool_size,
                )
                await self._ensure_schema(pool)
                self._pool = pool
        return pool

    async def _ensure_schema(self, pool: asyncpg.Pool) -> None:
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS iteration_jobs (
                job_id TEXT PRIMARY KEY,
                job_name TEXT NOT NULL,
                arguments JSONB NOT NULL DEFAULT '[]'::jsonb,
                status TEXT NOT NULL,
                attempt INTEGER NOT NULL DEFAULT 0,
                run_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                lease_owner TEXT,
                lease_until TIMESTAMPTZ,
                last_error TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            CREATE INDEX IF NOT EXISTS idx_iteration_jobs_due
                ON iteration_jobs (status, run_at, created_at, job_id)
                WHERE status IN ('QUEUED', 'RUNNING');
            """
        )

    async def _ensure_owned(
        self,
        pool: asyncpg.Pool,
        result: str,
        job_id: str,
        lease_owner: str,
    ) -> None:
        if not result.endswith(" 0"):
            return
        exists = await pool.fetchval("SELECT 1 FROM iteration_jobs WHERE job_id = $1", job_id)
        if exists is None:
            raise JobNotFoundError(f"Job '{job_id}' not found.")
        raise LeaseLostError(f"Job '{job_id}' is not leased by '{lease_owner}'.")

    def _to_claimed_job(self, row: asyncpg.Record) -> ClaimedJob:
        return ClaimedJob(
            job_id=str(row["job_id"]),
            job_name=str(row["job_name"]),
            arguments=self._decode_arguments(row["arguments"]),
            lease_owner=str(row["lease_owner"]),
            attempt=int(row["attempt"]),
        )

    def _to_queued_job(self, row: asyncpg.Record) -> QueuedJob:
        return QueuedJob(
            job_id=str(row["job_id"]),
            job_name=str(row["job_name"]),
            arguments=self._decode_arguments(row["arguments"]),
            status=JobStatus(str(row["status"])),
            attempt=int(row["attempt"]),
            run_at=row["run_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            lease_owner=self._as_optional_str(row["lease_owner"]),
            lease_until=row["lease_until"],
            last_error=self._as_optional_str(row["last_error"]),
        )

    def _decode_arguments(self, value: object) -> list[Any]:
        decoded = json.loads(value) if isinstance(value, str) else value
        if not isinstance(decoded, list):
            raise TypeError(f"Expected list payload for arguments, got {type(decoded)!r}.")
        return decoded

    def _as_optional_str(self, value: object) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            return value
        raise TypeError(f"Expected optional string value, got {type(value)!r}.")


__all__ = ["PostgresJobQueue"]
