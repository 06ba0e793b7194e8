"""Job submission surface: the only place jobs enter the queue.

Every enqueue creates the matching job tracker row.  Extraction requests
also reset the material to ``pending`` and recompute its chapter, so a
failed material re-enters processing with a fresh job.

Jobs are inserted ``held`` and released only after that bookkeeping is
done.  A worker can therefore never claim (and finish) a job whose tracker
row is missing or whose material reset has not happened yet.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from course_ingest.interfaces.course_repository import ICourseRepository
from course_ingest.models.jobs import EmbeddingPayload, ExtractionPayload, JobType, QueuedJob
from course_ingest.providers.queue.sqlite_job_queue import SQLiteJobQueue
from course_ingest.providers.queue.sqlite_job_tracker import SQLiteJobTracker
from course_ingest.services.chapter_aggregator import ChapterAggregator
from course_ingest.utils.errors import DuplicateJobError, EntityNotFoundError

logger = structlog.get_logger(logger_name=__name__)

MATERIAL_ENTITY = "material"

PrepareHook = Callable[[], Awaitable[Any]]


def extraction_dedupe_key(material_id: str) -> str:
    return f"extract:{material_id}"


def embedding_dedupe_key(material_id: str) -> str:
    return f"embed:{material_id}"


class JobSubmitter:
    """Enqueue extraction and embedding jobs with tracker bookkeeping."""

    def __init__(
        self,
        queue: SQLiteJobQueue,
        tracker: SQLiteJobTracker,
        repository: ICourseRepository,
        aggregator: ChapterAggregator,
    ) -> None:
        self._queue = queue
        self._tracker = tracker
        self._repository = repository
        self._aggregator = aggregator
        self._listeners: list[Callable[[JobType], None]] = []

    def add_enqueue_listener(self, callback: Callable[[JobType], None]) -> None:
        """Call *callback* with the job type after every successful enqueue."""
        self._listeners.append(callback)

    async def enqueue_extraction(
        self,
        material_id: str,
        file_path: str,
        mime_type: str,
        chapter_id: str,
        course_language: str = "en",
        priority: int | None = None,
        prepare: PrepareHook | None = None,
    ) -> QueuedJob:
        """Queue text extraction for a material.

        *prepare* runs after the duplicate check and before the job can be
        claimed (reprocessing uses it to drop the material's old chunks).

        Raises
        ------
        DuplicateJobError
            If an extraction job for the material is already pending or active.
        EntityNotFoundError
            If the material does not exist.
        """
        material = await self._repository.get_material(material_id)
        if material is None:
            raise EntityNotFoundError(message=f"Material {material_id} not found")

        payload = ExtractionPayload(
            material_id=material_id,
            chapter_id=chapter_id,
            file_path=file_path,
            mime_type=mime_type,
            course_language=course_language,
        )
        held = await self._queue.enqueue(
            JobType.EXTRACTION,
            payload.model_dump(),
            dedupe_key=extraction_dedupe_key(material_id),
            priority=priority,
            hold=True,
        )

        async def bookkeeping() -> None:
            await self._tracker.create(held.id, JobType.EXTRACTION, MATERIAL_ENTITY, material_id)
            await self._repository.reset_material(material_id)
            await self._aggregator.recompute(chapter_id)
            if prepare is not None:
                await prepare()

        job = await self._release_after(held, bookkeeping)

        logger.info("extraction_enqueued", job_id=job.id, material_id=material_id, chapter_id=chapter_id)
        self._notify(JobType.EXTRACTION)
        return job

    async def enqueue_embedding(
        self,
        chapter_id: str,
        material_id: str,
        text: str | None = None,
        language: str = "en",
        priority: int | None = None,
    ) -> QueuedJob:
        """Queue embedding generation for a material's text.

        With ``text=None`` the worker embeds the material's stored text.

        Raises
        ------
        DuplicateJobError
            If an embedding job for the material is already pending or active.
        """
        payload = EmbeddingPayload(chapter_id=chapter_id, material_id=material_id, text=text, language=language)
        held = await self._queue.enqueue(
            JobType.EMBEDDING,
            payload.model_dump(),
            dedupe_key=embedding_dedupe_key(material_id),
            priority=priority,
            hold=True,
        )

        async def bookkeeping() -> None:
            await self._tracker.create(held.id, JobType.EMBEDDING, MATERIAL_ENTITY, material_id)

        job = await self._release_after(held, bookkeeping)

        logger.info("embedding_enqueued", job_id=job.id, material_id=material_id, chapter_id=chapter_id)
        self._notify(JobType.EMBEDDING)
        return job

    async def request_embedding(self, chapter_id: str, material_id: str, language: str = "en") -> QueuedJob:
        """Make sure the material's stored text gets embedded after this call.

        Queues a job that reads the stored text when it runs.  If one is
        already open it is reused: any explicit text is dropped from its
        payload, and a running job is asked to run again.
        """
        try:
            return await self.enqueue_embedding(chapter_id, material_id, None, language)
        except DuplicateJobError as exc:
            # A waiting job loses any explicit text; an active one is flagged
            # to run again once it finishes.  Both read the stored text.
            if exc.existing_job_id and await self._queue.request_rerun(
                exc.existing_job_id, payload_patch={"text": None}
            ):
                logger.info(
                    "embedding_already_queued",
                    material_id=material_id,
                    existing_job_id=exc.existing_job_id,
                )
                existing = await self._queue.get_job(exc.existing_job_id)
                if existing is not None:
                    self._notify(JobType.EMBEDDING)
                    return existing

        # The open job finished between the two calls.
        return await self.enqueue_embedding(chapter_id, material_id, None, language)

    async def _release_after(self, held: QueuedJob, bookkeeping: PrepareHook) -> QueuedJob:
        try:
            await bookkeeping()
        except Exception as exc:
            # Drop the held job so its dedupe key does not block a later retry.
            await self._queue.discard(held.id)
            await self._tracker.mark_failed(held.id, f"Enqueue aborted: {exc}")
            logger.warning("enqueue_aborted", job_id=held.id, job_type=held.job_type.value, error=str(exc))
            raise
        return await self._queue.release(held.id)

    def _notify(self, job_type: JobType) -> None:
        for callback in self._listeners:
            callback(job_type)
