"""Facade over the ingestion pipeline for the API and CLI.

Wraps the job submission surface and adds the maintenance operations a
complete deployment needs: reprocessing, embedding-only regeneration,
deletion with chunk cleanup, job/queue inspection and worker control.
"""

from __future__ import annotations

from typing import Any

import structlog

from course_ingest.models.course import Material, MaterialStatus
from course_ingest.models.jobs import JobType, QueuedJob, QueueStats
from course_ingest.models.rag import RetrievedChunk
from course_ingest.pipeline.context import PipelineContext
from course_ingest.pipeline.job_submitter import MATERIAL_ENTITY
from course_ingest.utils.errors import EntityNotFoundError, JobQueueError

logger = structlog.get_logger(logger_name=__name__)


class IngestionPipeline:
    """High-level operations over a :class:`PipelineContext`."""

    def __init__(self, context: PipelineContext) -> None:
        self._ctx = context

    @property
    def context(self) -> PipelineContext:
        return self._ctx

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def enqueue_extraction(
        self,
        material_id: str,
        file_path: str,
        mime_type: str,
        chapter_id: str,
        course_language: str = "en",
    ) -> QueuedJob:
        return await self._ctx.submitter.enqueue_extraction(
            material_id, file_path, mime_type, chapter_id, course_language
        )

    async def enqueue_embedding(
        self,
        chapter_id: str,
        material_id: str,
        text: str | None = None,
        language: str = "en",
    ) -> QueuedJob:
        return await self._ctx.submitter.enqueue_embedding(chapter_id, material_id, text, language)

    async def process_material(self, material_id: str) -> QueuedJob:
        """Queue extraction for a stored material using its own file metadata."""
        material, language = await self._material_with_language(material_id)
        return await self.enqueue_extraction(
            material.id, material.file.file_path, material.file.mime_type, material.chapter_id, language
        )

    async def reprocess_material(self, material_id: str) -> QueuedJob:
        """Drop a material's chunks and text, then run extraction again.

        The duplicate check comes first, so a rejected request touches
        nothing.  The old chunks are removed before the new job can be
        claimed.

        Raises
        ------
        DuplicateJobError
            If an extraction for the material is still pending or active.
        """
        material, language = await self._material_with_language(material_id)
        course_id = await self._course_id(material.chapter_id)
        removed = 0

        async def drop_chunks() -> None:
            nonlocal removed
            removed = await self._ctx.embedding_generator.delete_material_embeddings(course_id, material_id)

        job = await self._ctx.submitter.enqueue_extraction(
            material.id,
            material.file.file_path,
            material.file.mime_type,
            material.chapter_id,
            language,
            prepare=drop_chunks,
        )
        logger.info("material_reprocess_requested", material_id=material_id, job_id=job.id, chunks_removed=removed)
        return job

    async def regenerate_embeddings(self, material_id: str) -> QueuedJob:
        """Queue an embedding job alone, reusing the stored extracted text."""
        material, language = await self._material_with_language(material_id)
        if material.status != MaterialStatus.COMPLETED or not material.extracted_text:
            raise JobQueueError(
                message=f"Material {material_id} has no extracted text yet (status {material.status.value})"
            )
        return await self.enqueue_embedding(material.chapter_id, material.id, None, language)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_material(self, material_id: str) -> dict[str, Any]:
        """Remove a material's chunks and record, then recompute its chapter."""
        material = await self._require_material(material_id)
        course_id = await self._course_id(material.chapter_id)
        removed = await self._ctx.embedding_generator.delete_material_embeddings(course_id, material_id)
        await self._ctx.repository.delete_material(material_id)
        aggregation = await self._ctx.aggregator.recompute(material.chapter_id)
        logger.info("material_deleted", material_id=material_id, chunks_removed=removed)
        return {
            "material_id": material_id,
            "chunks_removed": removed,
            "chapter_status": aggregation.status.value,
        }

    async def delete_chapter(self, chapter_id: str) -> dict[str, Any]:
        """Remove a chapter's chunks and (by cascade) its materials."""
        course_id = await self._course_id(chapter_id)
        removed = await self._ctx.embedding_generator.delete_chapter_embeddings(course_id, chapter_id)
        await self._ctx.repository.delete_chapter(chapter_id)
        logger.info("chapter_deleted_with_chunks", chapter_id=chapter_id, chunks_removed=removed)
        return {"chapter_id": chapter_id, "chunks_removed": removed}

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def get_job_status(self, job_id: str) -> dict[str, Any]:
        job = await self._ctx.queue.get_job(job_id)
        record = await self._ctx.tracker.find_by_job_id(job_id)
        if job is None and record is None:
            raise EntityNotFoundError(message=f"Job {job_id} not found")
        return {
            "job_id": job_id,
            "job_type": (job.job_type if job else record.job_type).value,
            "queue_state": job.state.value if job else None,
            "status": record.status.value if record else None,
            "progress": job.progress if job else record.progress,
            "attempts": job.attempts_made if job else record.attempts,
            "max_attempts": job.max_attempts if job else None,
            "error": (job.failed_reason if job else None) or (record.error_message if record else None),
            "result": job.result if job else None,
            "entity_id": record.entity_id if record else None,
            "live": self._ctx.emitter.get_status(job_id),
        }

    async def list_material_jobs(self, material_id: str) -> list[dict[str, Any]]:
        records = await self._ctx.tracker.find_by_entity(MATERIAL_ENTITY, material_id)
        return [r.model_dump(mode="json") for r in records]

    async def get_queue_stats(self) -> list[QueueStats]:
        stats = []
        for name in self._ctx.queue.configs:
            queue_stats = await self._ctx.queue.get_stats(name)
            pool = self._ctx.pools.get(name)
            stats.append(queue_stats.model_copy(update={"paused": bool(pool and pool.paused)}))
        return stats

    async def list_failed_jobs(self, queue_name: str, limit: int = 50) -> list[QueuedJob]:
        return await self._ctx.queue.list_failed(queue_name, limit)

    async def query(
        self, course_id: str, query_text: str, top_k: int = 5, chapter_id: str | None = None
    ) -> list[RetrievedChunk]:
        return await self._ctx.embedding_generator.query(course_id, query_text, top_k, chapter_id)

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def start_workers(self) -> None:
        for pool in self._ctx.pools.values():
            await pool.start()

    async def stop_workers(self) -> None:
        for pool in self._ctx.pools.values():
            await pool.stop()

    def pause_queue(self, queue_name: str) -> None:
        self._pool(queue_name).pause()

    def resume_queue(self, queue_name: str) -> None:
        self._pool(queue_name).resume()

    async def drain(self) -> int:
        """Run every queue to quiescence in-process; returns attempts executed.

        Extraction jobs enqueue embedding jobs, so queues are drained in a
        loop until a full pass does no work.
        """
        total = 0
        while True:
            processed = 0
            for job_type in (JobType.EXTRACTION, JobType.EMBEDDING):
                pool = self._ctx.pools.get(self._ctx.queue.config_for(job_type).name)
                if pool is not None:
                    processed += await pool.drain()
            total += processed
            if processed == 0:
                return total

    # -- helpers ------------------------------------------------------------

    def _pool(self, queue_name: str):  # noqa: ANN202
        pool = self._ctx.pools.get(queue_name)
        if pool is None:
            raise EntityNotFoundError(message=f"Unknown queue '{queue_name}'")
        return pool

    async def _require_material(self, material_id: str) -> Material:
        material = await self._ctx.repository.get_material(material_id)
        if material is None:
            raise EntityNotFoundError(message=f"Material {material_id} not found")
        return material

    async def _course_id(self, chapter_id: str) -> str:
        chapter = await self._ctx.repository.get_chapter(chapter_id)
        if chapter is None:
            raise EntityNotFoundError(message=f"Chapter {chapter_id} not found")
        return chapter.course_id

    async def _material_with_language(self, material_id: str) -> tuple[Material, str]:
        material = await self._require_material(material_id)
        chapter = await self._ctx.repository.get_chapter(material.chapter_id)
        if chapter is None:
            raise EntityNotFoundError(message=f"Chapter {material.chapter_id} not found")
        course = await self._ctx.repository.get_course(chapter.course_id)
        return material, course.language if course else "en"
