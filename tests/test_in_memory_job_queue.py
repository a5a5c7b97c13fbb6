from __future__ import annotations

import asyncio

import pytest

from job_iteration.domain.errors import JobNotFoundError, LeaseLostError
from job_iteration.domain.jobs import JobStatus
from job_iteration.infrastructure.queues import InMemoryJobQueue


def test_enqueued_job_is_queued_with_zero_attempts() -> None:
    queue = InMemoryJobQueue()

    async def scenario() -> None:
        job_id = await queue.enqueue("reports.rebuild", ["tenant-1"])
        job = await queue.get_job(job_id)

        assert job is not None
        assert job.job_name == "reports.rebuild"
        assert job.arguments == ["tenant-1"]
        assert job.status is JobStatus.QUEUED
        assert job.attempt == 0
        assert job.lease_owner is None

    asyncio.run(scenario())


def test_claim_leases_due_jobs_and_counts_attempts() -> None:
    queue = InMemoryJobQueue()

    async def scenario() -> None:
        first_id = await queue.enqueue("a", [1])
        second_id = await queue.enqueue("b", [2])

        claimed = await queue.claim_due_jobs(lease_owner="worker-1", limit=10, lease_seconds=60)
        assert {job.job_id for job in claimed} == {first_id, second_id}
        assert all(job.attempt == 1 for job in claimed)
        assert all(job.lease_owner == "worker-1" for job in claimed)

        assert await queue.claim_due_jobs(lease_owner="worker-2", limit=10, lease_seconds=60) == []

        stored = await queue.get_job(first_id)
        assert stored is not None
        assert stored.status is JobStatus.RUNNING
        assert stored.lease_until is not None

    asyncio.run(scenario())


def test_claim_respects_limit_and_delay() -> None:
    queue = InMemoryJobQueue()

    async def scenario() -> None:
        await queue.enqueue("later", [], delay_seconds=3600)
        await queue.enqueue("now-1", [])
        await queue.enqueue("now-2", [])

        assert await queue.claim_due_jobs(lease_owner="w", limit=0, lease_seconds=60) == []
        first = await queue.claim_due_jobs(lease_owner="w", limit=1, lease_seconds=60)
        rest = await queue.claim_due_jobs(lease_owner="w", limit=10, lease_seconds=60)
        assert len(first) == 1
        assert sorted(job.job_name for job in first + rest) == ["now-1", "now-2"]

    asyncio.run(scenario())


def test_job_with_expired_lease_is_claimed_again() -> None:
    queue = InMemoryJobQueue()

    async def scenario() -> None:
        job_id = await queue.enqueue("crashy", [])
        await queue.claim_due_jobs(lease_owner="worker-1", limit=1, lease_seconds=0)

        reclaimed = await queue.claim_due_jobs(lease_owner="worker-2", limit=1, lease_seconds=60)

        assert [job.job_id for job in reclaimed] == [job_id]
        assert reclaimed[0].attempt == 2
        assert reclaimed[0].lease_owner == "worker-2"

    asyncio.run(scenario())


def test_schedule_retry_requeues_with_new_arguments() -> None:
    queue = InMemoryJobQueue()

    async def scenario() -> None:
        job_id = await queue.enqueue("flaky", ["original"])
        await queue.claim_due_jobs(lease_owner="w", limit=1, lease_seconds=60)

        await queue.schedule_retry(
            job_id,
            lease_owner="w",
            arguments=["original", {"checkpoint": 3}],
            delay_seconds=0,
            error="RuntimeError: boom",
        )

        job = await queue.get_job(job_id)
        assert job is not None
        assert job.status is JobStatus.QUEUED
        assert job.arguments == ["original", {"checkpoint": 3}]
        assert job.last_error == "RuntimeError: boom"
        assert job.lease_owner is None

        claimed = await queue.claim_due_jobs(lease_owner="w", limit=1, lease_seconds=60)
        assert claimed[0].attempt == 2

    asyncio.run(scenario())


def test_terminal_jobs_are_not_claimed_and_can_be_filtered() -> None:
    queue = InMemoryJobQueue()

    async def scenario() -> None:
        done_id = await queue.enqueue("done", [])
        failed_id = await queue.enqueue("failed", [])
        waiting_id = await queue.enqueue("waiting", [], delay_seconds=3600)
        await queue.claim_due_jobs(lease_owner="w", limit=10, lease_seconds=0)
        await queue.mark_completed(done_id, lease_owner="w")
        await queue.mark_failed(failed_id, lease_owner="w", error="ValueError: bad input")

        assert await queue.claim_due_jobs(lease_owner="w", limit=10, lease_seconds=60) == []

        completed = await queue.list_jobs(JobStatus.COMPLETED)
        failed = await queue.list_jobs(JobStatus.FAILED)
        queued = await queue.list_jobs(JobStatus.QUEUED)
        everything = await queue.list_jobs()

        assert [job.job_id for job in completed] == [done_id]
        assert [job.job_id for job in failed] == [failed_id]
        assert failed[0].last_error == "ValueError: bad input"
        assert [job.job_id for job in queued] == [waiting_id]
        assert len(everything) == 3

    asyncio.run(scenario())


def test_returned_jobs_are_copies() -> None:
    queue = InMemoryJobQueue()

    async def scenario() -> None:
        arguments = [{"ids": [1, 2]}]
        job_id = await queue.enqueue("copy", arguments)
        arguments[0]["ids"].append(3)

        job = await queue.get_job(job_id)
        assert job is not None
        job.arguments[0]["ids"].append(4)

        claimed = await queue.claim_due_jobs(lease_owner="w", limit=1, lease_seconds=60)
        assert claimed[0].arguments == [{"ids": [1, 2]}]

    asyncio.run(scenario())


def test_unknown_job_ids() -> None:
    queue = InMemoryJobQueue()

    async def scenario() -> None:
        assert await queue.get_job("missing") is None
        with pytest.raises(JobNotFoundError):
            await queue.mark_completed("missing", lease_owner="w")
        with pytest.raises(JobNotFoundError):
            await queue.mark_failed("missing", lease_owner="w", error="x")
        with pytest.raises(JobNotFoundError):
            await queue.schedule_retry(
                "missing", lease_owner="w", arguments=[], delay_seconds=0, error="x"
            )
        with pytest.raises(JobNotFoundError):
            await queue.extend_lease("missing", lease_owner="w", lease_seconds=1)

    asyncio.run(scenario())


def test_updates_require_the_current_lease_owner() -> None:
    queue = InMemoryJobQueue()

    async def scenario() -> None:
        job_id = await queue.enqueue("guarded", [])
        await queue.claim_due_jobs(lease_owner="w1", limit=1, lease_seconds=0)

        with pytest.raises(LeaseLostError):
            await queue.mark_completed(job_id, lease_owner="w2")

        # The expired lease is picked up by another worker.
        reclaimed = await queue.claim_due_jobs(lease_owner="w2", limit=1, lease_seconds=60)
        assert [job.job_id for job in reclaimed] == [job_id]

        with pytest.raises(LeaseLostError):
            await queue.mark_completed(job_id, lease_owner="w1")
        with pytest.raises(LeaseLostError):
            await queue.mark_failed(job_id, lease_owner="w1", error="late")
        with pytest.raises(LeaseLostError):
            await queue.schedule_retry(
                job_id, lease_owner="w1", arguments=[], delay_seconds=0, error="late"
            )
        with pytest.raises(LeaseLostError):
            await queue.extend_lease(job_id, lease_owner="w1", lease_seconds=60)

        job = await queue.get_job(job_id)
        assert job is not None
        assert job.status is JobStatus.RUNNING
        assert job.lease_owner == "w2"
        assert job.last_error is None

        await queue.mark_completed(job_id, lease_owner="w2")
        with pytest.raises(LeaseLostError):
            await queue.mark_failed(job_id, lease_owner="w2", error="twice")

        job = await queue.get_job(job_id)
        assert job is not None
        assert job.status is JobStatus.COMPLETED

    asyncio.run(scenario())


def test_extend_lease_keeps_the_job_from_being_reclaimed() -> None:
    queue = InMemoryJobQueue()

    async def scenario() -> None:
        job_id = await queue.enqueue("long", [])
        await queue.claim_due_jobs(lease_owner="w1", limit=1, lease_seconds=0)

        await queue.extend_lease(job_id, lease_owner="w1", lease_seconds=3600)

        assert await queue.claim_due_jobs(lease_owner="w2", limit=1, lease_seconds=60) == []
        job = await queue.get_job(job_id)
        assert job is not None
        assert job.lease_owner == "w1"
        assert job.lease_until is not None
        assert job.lease_until > job.created_at

    asyncio.run(scenario())
