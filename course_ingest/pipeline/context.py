"""Explicit dependency container shared by workers, the API and the CLI.

Built once at startup by :func:`course_ingest.main.build_context` and passed
to whatever needs queue handles or services.  Tests assemble their own
context from doubles.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from course_ingest.config.settings import Settings
from course_ingest.interfaces.course_repository import ICourseRepository
from course_ingest.pipeline.job_submitter import JobSubmitter
from course_ingest.pipeline.progress_emitter import ProgressEmitter
from course_ingest.pipeline.worker_pool import WorkerPool
from course_ingest.providers.queue.sqlite_job_queue import SQLiteJobQueue
from course_ingest.providers.queue.sqlite_job_tracker import SQLiteJobTracker
from course_ingest.services.chapter_aggregator import ChapterAggregator
from course_ingest.services.ingestion.embedding_generator import EmbeddingGenerator


@dataclass
class PipelineContext:
    settings: Settings
    repository: ICourseRepository
    queue: SQLiteJobQueue
    tracker: SQLiteJobTracker
    aggregator: ChapterAggregator
    emitter: ProgressEmitter
    submitter: JobSubmitter
    embedding_generator: EmbeddingGenerator
    pools: dict[str, WorkerPool] = field(default_factory=dict)
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def initialize(self) -> None:
        """Create storage tables for the repository, queue and tracker."""
        await self.repository.initialize()
        await self.queue.initialize()
        await self.tracker.initialize()

    async def aclose(self) -> None:
        for pool in self.pools.values():
            await pool.stop()
        for closer in self.closers:
            await closer()
