"""Unit tests for the durable SQLite job queue."""

from __future__ import annotations

import asyncio

import pytest

from course_ingest.models.jobs import JobType, QueueState, RetryPolicy
from course_ingest.providers.queue.sqlite_job_queue import SQLiteJobQueue
from course_ingest.utils.errors import DuplicateJobError

DOC = "document-processing"


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
async def clock_queue(db_path, queue_config_factory):
    clock = _Clock()
    queue = SQLiteJobQueue(queue_config_factory(backoff=5.0), db_path=db_path, clock=clock)
    await queue.initialize()
    return queue, clock


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_enqueue_uses_queue_defaults(self, job_queue) -> None:
        job = await job_queue.enqueue(JobType.EXTRACTION, {"material_id": "m1"}, dedupe_key="extract:m1")

        assert job.queue_name == DOC
        assert job.state == QueueState.WAITING
        assert job.priority == 1
        assert job.max_attempts == 3
        assert job.payload == {"material_id": "m1"}

    @pytest.mark.asyncio
    async def test_duplicate_open_key_rejected(self, job_queue) -> None:
        first = await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1")

        with pytest.raises(DuplicateJobError) as exc_info:
            await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1")

        assert exc_info.value.existing_job_id == first.id
        assert exc_info.value.dedupe_key == "extract:m1"

    @pytest.mark.asyncio
    async def test_duplicate_rejected_while_active(self, job_queue) -> None:
        await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1")
        await job_queue.claim_next(DOC)

        with pytest.raises(DuplicateJobError):
            await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1")

    @pytest.mark.asyncio
    async def test_key_reusable_after_completion(self, job_queue) -> None:
        first = await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1")
        await job_queue.claim_next(DOC)
        await job_queue.complete(first.id, {"ok": True})

        second = await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1")

        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_concurrent_enqueues_admit_exactly_one(self, job_queue) -> None:
        results = await asyncio.gather(
            *(job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1") for _ in range(5)),
            return_exceptions=True,
        )

        accepted = [r for r in results if not isinstance(r, BaseException)]
        rejected = [r for r in results if isinstance(r, DuplicateJobError)]
        assert len(accepted) == 1
        assert len(rejected) == 4


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_empty_queue_returns_none(self, job_queue) -> None:
        assert await job_queue.claim_next(DOC) is None

    @pytest.mark.asyncio
    async def test_claim_orders_by_priority_then_fifo(self, job_queue) -> None:
        low = await job_queue.enqueue(JobType.EXTRACTION, {}, priority=5)
        first = await job_queue.enqueue(JobType.EXTRACTION, {}, priority=1)
        second = await job_queue.enqueue(JobType.EXTRACTION, {}, priority=1)

        claimed = [(await job_queue.claim_next(DOC)).id for _ in range(3)]

        assert claimed == [first.id, second.id, low.id]

    @pytest.mark.asyncio
    async def test_claim_marks_active_and_counts_attempt(self, job_queue) -> None:
        await job_queue.enqueue(JobType.EXTRACTION, {})
        job = await job_queue.claim_next(DOC)

        assert job.state == QueueState.ACTIVE
        assert job.attempts_made == 1
        assert await job_queue.claim_next(DOC) is None

    @pytest.mark.asyncio
    async def test_queues_are_isolated(self, job_queue) -> None:
        await job_queue.enqueue(JobType.EMBEDDING, {})
        assert await job_queue.claim_next(DOC) is None
        assert await job_queue.claim_next("embedding-generation") is not None

    @pytest.mark.asyncio
    async def test_parallel_claims_never_share_a_job(self, job_queue) -> None:
        for _ in range(4):
            await job_queue.enqueue(JobType.EXTRACTION, {})

        claimed = await asyncio.gather(*(job_queue.claim_next(DOC) for _ in range(6)))
        ids = [job.id for job in claimed if job is not None]

        assert len(ids) == 4
        assert len(set(ids)) == 4


class TestRetry:
    @pytest.mark.asyncio
    async def test_failed_attempt_is_delayed_with_backoff(self, clock_queue) -> None:
        queue, clock = clock_queue
        job = await queue.enqueue(JobType.EXTRACTION, {})
        await queue.claim_next(DOC)

        updated = await queue.fail(job.id, "boom", RetryPolicy(attempts=3, backoff_base_seconds=5.0))

        assert updated.state == QueueState.DELAYED
        assert updated.failed_reason == "boom"
        assert updated.available_at == pytest.approx(clock.now + 5.0)
        assert await queue.claim_next(DOC) is None
        assert await queue.next_delay(DOC) == pytest.approx(5.0)

        clock.now += 5.0
        retried = await queue.claim_next(DOC)
        assert retried.id == job.id
        assert retried.attempts_made == 2

    @pytest.mark.asyncio
    async def test_backoff_doubles(self, clock_queue) -> None:
        queue, clock = clock_queue
        policy = RetryPolicy(attempts=3, backoff_base_seconds=5.0)
        job = await queue.enqueue(JobType.EXTRACTION, {})

        await queue.claim_next(DOC)
        await queue.fail(job.id, "first", policy)
        clock.now += 5.0
        await queue.claim_next(DOC)
        second = await queue.fail(job.id, "second", policy)

        assert second.available_at == pytest.approx(clock.now + 10.0)

    @pytest.mark.asyncio
    async def test_exhausted_attempts_are_terminal(self, job_queue) -> None:
        policy = RetryPolicy(attempts=3, backoff_base_seconds=0.0)
        job = await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1")

        for _ in range(3):
            claimed = await job_queue.claim_next(DOC)
            assert claimed is not None
            final = await job_queue.fail(job.id, "still broken", policy)

        assert final.state == QueueState.FAILED
        assert final.attempts_made == 3
        assert await job_queue.claim_next(DOC) is None
        assert [j.id for j in await job_queue.list_failed(DOC)] == [job.id]
        # Terminal jobs release the dedupe key.
        await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1")


class TestInspection:
    @pytest.mark.asyncio
    async def test_progress_is_clamped(self, job_queue) -> None:
        job = await job_queue.enqueue(JobType.EXTRACTION, {})
        await job_queue.update_progress(job.id, 140)
        assert (await job_queue.get_job(job.id)).progress == 100.0

    @pytest.mark.asyncio
    async def test_complete_stores_result(self, job_queue) -> None:
        job = await job_queue.enqueue(JobType.EXTRACTION, {})
        await job_queue.claim_next(DOC)
        done = await job_queue.complete(job.id, {"chunks": 5})

        assert done.state == QueueState.COMPLETED
        assert done.progress == 100.0
        assert done.result == {"chunks": 5}

    @pytest.mark.asyncio
    async def test_stats_count_states(self, job_queue) -> None:
        await job_queue.enqueue(JobType.EXTRACTION, {})
        await job_queue.enqueue(JobType.EXTRACTION, {})
        await job_queue.claim_next(DOC)

        stats = await job_queue.get_stats(DOC)

        assert stats.waiting == 1
        assert stats.active == 1
        assert stats.failed == 0

    @pytest.mark.asyncio
    async def test_recover_stalled_returns_active_jobs(self, job_queue) -> None:
        job = await job_queue.enqueue(JobType.EXTRACTION, {})
        await job_queue.claim_next(DOC)

        assert await job_queue.recover_stalled(DOC) == 1
        reclaimed = await job_queue.claim_next(DOC)
        assert reclaimed.id == job.id
        assert reclaimed.attempts_made == 2

    @pytest.mark.asyncio
    async def test_find_open_job(self, job_queue) -> None:
        job = await job_queue.enqueue(JobType.EMBEDDING, {}, dedupe_key="embed:m1")
        assert (await job_queue.find_open_job("embed:m1")).id == job.id
        assert await job_queue.find_open_job("embed:other") is None


class TestHeldJobs:
    @pytest.mark.asyncio
    async def test_held_job_is_not_claimable_until_released(self, job_queue) -> None:
        job = await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1", hold=True)

        assert job.state == QueueState.HELD
        assert await job_queue.claim_next(DOC) is None
        assert await job_queue.next_delay(DOC) is None

        released = await job_queue.release(job.id)

        assert released.state == QueueState.WAITING
        assert (await job_queue.claim_next(DOC)).id == job.id

    @pytest.mark.asyncio
    async def test_held_job_keeps_its_dedupe_key(self, job_queue) -> None:
        job = await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1", hold=True)

        with pytest.raises(DuplicateJobError) as exc_info:
            await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1")

        assert exc_info.value.existing_job_id == job.id

    @pytest.mark.asyncio
    async def test_discard_frees_the_key(self, job_queue) -> None:
        job = await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1", hold=True)

        assert await job_queue.discard(job.id) is True
        assert await job_queue.get_job(job.id) is None
        await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1")

    @pytest.mark.asyncio
    async def test_discard_leaves_released_jobs(self, job_queue) -> None:
        job = await job_queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:m1")

        assert await job_queue.discard(job.id) is False
        assert (await job_queue.get_job(job.id)).state == QueueState.WAITING

    @pytest.mark.asyncio
    async def test_recover_stalled_releases_only_old_held_jobs(self, clock_queue) -> None:
        queue, clock = clock_queue
        old = await queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:old", hold=True)
        clock.now += 120
        fresh = await queue.enqueue(JobType.EXTRACTION, {}, dedupe_key="extract:new", hold=True)

        assert await queue.recover_stalled(DOC) == 1
        assert (await queue.get_job(old.id)).state == QueueState.WAITING
        assert (await queue.get_job(fresh.id)).state == QueueState.HELD


class TestRerun:
    @pytest.mark.asyncio
    async def test_rerun_of_active_job_requeues_on_completion(self, job_queue) -> None:
        job = await job_queue.enqueue(JobType.EMBEDDING, {"text": "old"}, dedupe_key="embed:m1")
        await job_queue.claim_next("embedding-generation")

        assert await job_queue.request_rerun(job.id, payload_patch={"text": None}) is True
        requeued = await job_queue.complete(job.id, {"chunks_created": 3})

        assert requeued.state == QueueState.WAITING
        assert requeued.attempts_made == 0
        assert requeued.progress == 0.0
        assert requeued.finished_at is None
        assert requeued.payload == {}

        again = await job_queue.claim_next("embedding-generation")
        assert again.id == job.id
        done = await job_queue.complete(job.id, {"chunks_created": 4})
        assert done.state == QueueState.COMPLETED

    @pytest.mark.asyncio
    async def test_rerun_of_waiting_job_only_patches_payload(self, job_queue) -> None:
        job = await job_queue.enqueue(
            JobType.EMBEDDING, {"material_id": "m1", "text": "old"}, dedupe_key="embed:m1"
        )

        assert await job_queue.request_rerun(job.id, payload_patch={"text": None}) is True

        claimed = await job_queue.claim_next("embedding-generation")
        assert claimed.payload == {"material_id": "m1"}
        assert claimed.rerun_requested is False
        assert (await job_queue.complete(job.id)).state == QueueState.COMPLETED

    @pytest.mark.asyncio
    async def test_rerun_of_finished_job_is_refused(self, job_queue) -> None:
        job = await job_queue.enqueue(JobType.EMBEDDING, {}, dedupe_key="embed:m1")
        await job_queue.claim_next("embedding-generation")
        await job_queue.complete(job.id)

        assert await job_queue.request_rerun(job.id) is False
        assert (await job_queue.get_job(job.id)).state == QueueState.COMPLETED

    @pytest.mark.asyncio
    async def test_terminal_failure_with_rerun_runs_again(self, job_queue) -> None:
        policy = RetryPolicy(attempts=1, backoff_base_seconds=0.0)
        job = await job_queue.enqueue(JobType.EMBEDDING, {}, dedupe_key="embed:m1")
        await job_queue.claim_next("embedding-generation")
        await job_queue.request_rerun(job.id)

        updated = await job_queue.fail(job.id, "backend down", policy)

        assert updated.state == QueueState.WAITING
        assert updated.attempts_made == 0
        assert updated.failed_reason == "backend down"
        assert (await job_queue.claim_next("embedding-generation")).id == job.id
