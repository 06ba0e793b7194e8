"""Unit tests for the job metadata tracker."""

from __future__ import annotations

import pytest

from course_ingest.models.jobs import JobStatus, JobType


class TestJobTracker:
    @pytest.mark.asyncio
    async def test_create_starts_pending(self, job_tracker) -> None:
        record = await job_tracker.create("job-1", JobType.EXTRACTION, "material", "m1")

        assert record.job_id == "job-1"
        assert record.status == JobStatus.PENDING
        assert record.attempts == 0
        assert record.entity_id == "m1"

    @pytest.mark.asyncio
    async def test_lifecycle_to_completed(self, job_tracker) -> None:
        await job_tracker.create("job-1", JobType.EXTRACTION, "material", "m1")

        await job_tracker.mark_started("job-1")
        await job_tracker.update_progress("job-1", 40)
        mid = await job_tracker.find_by_job_id("job-1")
        assert mid.status == JobStatus.PROCESSING
        assert mid.progress == 40
        assert mid.started_at is not None

        await job_tracker.mark_completed("job-1")
        done = await job_tracker.find_by_job_id("job-1")
        assert done.status == JobStatus.COMPLETED
        assert done.progress == 100
        assert done.completed_at is not None

    @pytest.mark.asyncio
    async def test_retry_then_failure(self, job_tracker) -> None:
        await job_tracker.create("job-1", JobType.EMBEDDING, "material", "m1")

        await job_tracker.mark_started("job-1")
        await job_tracker.mark_retrying("job-1", "connection refused")
        retrying = await job_tracker.find_by_job_id("job-1")
        assert retrying.status == JobStatus.PENDING
        assert retrying.error_message == "connection refused"

        await job_tracker.mark_started("job-1")
        await job_tracker.mark_failed("job-1", "connection refused")
        failed = await job_tracker.find_by_job_id("job-1")
        assert failed.status == JobStatus.FAILED
        assert failed.attempts == 2

    @pytest.mark.asyncio
    async def test_requeued_run_returns_to_pending(self, job_tracker) -> None:
        await job_tracker.create("job-1", JobType.EMBEDDING, "material", "m1")
        await job_tracker.mark_started("job-1")
        await job_tracker.update_progress("job-1", 70)

        await job_tracker.mark_requeued("job-1")

        requeued = await job_tracker.find_by_job_id("job-1")
        assert requeued.status == JobStatus.PENDING
        assert requeued.progress == 0
        assert requeued.error_message is None
        assert requeued.attempts == 1

    @pytest.mark.asyncio
    async def test_find_by_entity_newest_first(self, job_tracker) -> None:
        await job_tracker.create("job-1", JobType.EXTRACTION, "material", "m1")
        await job_tracker.create("job-2", JobType.EMBEDDING, "material", "m1")
        await job_tracker.create("job-3", JobType.EXTRACTION, "material", "m2")

        records = await job_tracker.find_by_entity("material", "m1")

        assert [r.job_id for r in records] == ["job-2", "job-1"]

    @pytest.mark.asyncio
    async def test_find_pending_by_type(self, job_tracker) -> None:
        await job_tracker.create("job-1", JobType.EXTRACTION, "material", "m1")
        await job_tracker.create("job-2", JobType.EXTRACTION, "material", "m2")
        await job_tracker.mark_started("job-1")

        pending = await job_tracker.find_pending_by_type(JobType.EXTRACTION)

        assert [r.job_id for r in pending] == ["job-2"]

    @pytest.mark.asyncio
    async def test_unknown_job_returns_none(self, job_tracker) -> None:
        assert await job_tracker.find_by_job_id("missing") is None
