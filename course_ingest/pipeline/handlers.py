"""Job handlers for the two queues.

:class:`DocumentProcessingHandler` (``document-processing`` queue)
    extract -> bound length -> structure -> normalize -> persist text
    atomically with ``completed`` -> enqueue embedding -> recompute chapter.

:class:`EmbeddingGenerationHandler` (``embedding-generation`` queue)
    resolve text -> chunk -> embed -> replace the material's chunks.

Both report progress to the job (persisted by the queue) and to the
progress emitter (forwarded to notification sinks).  Stage order and
percentages:

    extraction: started 5, extracting 10, processing_pages 40,
                structuring 60, generating_embeddings 80, done 100
    embedding:  started 10, chunking 30, embedding 70, done 100
"""

from __future__ import annotations

from typing import Any

import structlog

from course_ingest.interfaces.content_structurer import IContentStructurer
from course_ingest.interfaces.course_repository import ICourseRepository
from course_ingest.models.course import MaterialStatus
from course_ingest.models.jobs import EmbeddingPayload, ExtractionPayload, JobType, QueuedJob
from course_ingest.models.pipeline import PipelineStage
from course_ingest.pipeline.job_submitter import JobSubmitter
from course_ingest.pipeline.progress_emitter import ProgressEmitter
from course_ingest.pipeline.worker_pool import JobHandler, JobReporter
from course_ingest.services.chapter_aggregator import ChapterAggregator
from course_ingest.services.ingestion.embedding_generator import EmbeddingGenerator
from course_ingest.services.ingestion.extractor import DocumentExtractor
from course_ingest.utils.errors import DuplicateJobError, EmptyExtractionError, EntityNotFoundError
from course_ingest.utils.text_normalizer import normalize_text, truncate_text

logger = structlog.get_logger(logger_name=__name__)


class DocumentProcessingHandler(JobHandler):
    """Extraction job: uploaded file -> completed material with text.

    Parameters
    ----------
    max_text_length:
        Extracted text beyond this many characters is cut before structuring.
    min_text_length:
        Final text shorter than this fails the job with EmptyExtractionError.
    """

    job_type = JobType.EXTRACTION

    def __init__(
        self,
        repository: ICourseRepository,
        extractor: DocumentExtractor,
        structurer: IContentStructurer,
        submitter: JobSubmitter,
        aggregator: ChapterAggregator,
        emitter: ProgressEmitter,
        max_text_length: int = 50_000,
        min_text_length: int = 50,
    ) -> None:
        self._repository = repository
        self._extractor = extractor
        self._structurer = structurer
        self._submitter = submitter
        self._aggregator = aggregator
        self._emitter = emitter
        self._max_text_length = max_text_length
        self._min_text_length = min_text_length

    async def process(self, job: QueuedJob, reporter: JobReporter) -> dict[str, Any]:
        payload = ExtractionPayload.model_validate(job.payload)
        user_id = await self._repository.get_owner_user_id(payload.chapter_id)

        async def stage(percentage: float, name: PipelineStage, **metadata: Any) -> None:
            await reporter.progress(percentage)
            await self._emitter.emit_progress(
                user_id, job.id, percentage, name, {"material_id": payload.material_id, **metadata}
            )

        await self._repository.update_material_status(payload.material_id, MaterialStatus.PROCESSING)
        await self._aggregator.recompute(payload.chapter_id)
        await stage(5, PipelineStage.STARTED)

        await stage(10, PipelineStage.EXTRACTING)
        extraction = await self._extractor.extract_async(payload.file_path, payload.mime_type)
        await stage(40, PipelineStage.PROCESSING_PAGES, total_pages=extraction.page_count)

        text, truncated = truncate_text(extraction.full_text, self._max_text_length)
        if truncated:
            logger.warning(
                "extracted_text_truncated",
                job_id=job.id,
                material_id=payload.material_id,
                original_length=len(extraction.full_text),
                max_length=self._max_text_length,
            )

        await stage(60, PipelineStage.STRUCTURING)
        structured = await self._structurer.structure(text, payload.course_language)
        final_text = normalize_text(structured)
        if len(final_text) < self._min_text_length:
            raise EmptyExtractionError(
                message=f"Could not extract meaningful text from the document ({len(final_text)} characters)"
            )

        await self._repository.complete_material(payload.material_id, final_text)

        await stage(80, PipelineStage.GENERATING_EMBEDDINGS)
        # The embedding job reads the stored text when it runs, never a copy
        # taken here, so an older open job cannot write stale chunks.
        embedding_job_id = None
        try:
            embedding_job = await self._submitter.request_embedding(
                payload.chapter_id, payload.material_id, payload.course_language
            )
            embedding_job_id = embedding_job.id
        except DuplicateJobError as exc:
            # Another producer queued one in between; it reads the same text.
            logger.warning(
                "embedding_already_queued",
                job_id=job.id,
                material_id=payload.material_id,
                existing_job_id=exc.existing_job_id,
            )
            embedding_job_id = exc.existing_job_id

        aggregation = await self._aggregator.recompute(payload.chapter_id)
        await reporter.progress(100)

        result = {
            "material_id": payload.material_id,
            "chapter_id": payload.chapter_id,
            "text_length": len(final_text),
            "page_count": extraction.page_count,
            "truncated": truncated,
            "structured": structured != text,
            "embedding_job_id": embedding_job_id,
            "chapter_status": aggregation.status.value,
        }
        await self._emitter.emit_complete(user_id, job.id, result)
        return result

    async def on_failed(self, job: QueuedJob, error: BaseException, final: bool) -> None:
        payload = ExtractionPayload.model_validate(job.payload)
        message = job.failed_reason or str(error)
        user_id = await self._repository.get_owner_user_id(payload.chapter_id)

        try:
            if final:
                await self._repository.fail_material(payload.material_id, message)
            else:
                await self._repository.update_material_status(payload.material_id, MaterialStatus.PENDING)
        except EntityNotFoundError:
            logger.warning("material_gone_before_failure_recorded", job_id=job.id, material_id=payload.material_id)
            return

        await self._aggregator.recompute(payload.chapter_id)

        if final:
            await self._emitter.emit_failed(user_id, job.id, message)
        else:
            await self._emitter.emit_progress(
                user_id,
                job.id,
                0,
                PipelineStage.RETRYING,
                {"material_id": payload.material_id, "attempt": job.attempts_made, "error": message},
            )


class EmbeddingGenerationHandler(JobHandler):
    """Embedding job: material text -> chunks in the course collection.

    Text source, first non-empty wins: job payload, the material's stored
    text, the chapter's merged content.  Without payload text the job is
    skipped (and leaves chunks alone) unless the material is ``completed``.
    """

    job_type = JobType.EMBEDDING

    def __init__(
        self,
        repository: ICourseRepository,
        generator: EmbeddingGenerator,
        emitter: ProgressEmitter,
    ) -> None:
        self._repository = repository
        self._generator = generator
        self._emitter = emitter

    async def process(self, job: QueuedJob, reporter: JobReporter) -> dict[str, Any]:
        payload = EmbeddingPayload.model_validate(job.payload)
        chapter = await self._repository.get_chapter(payload.chapter_id)
        if chapter is None:
            raise EntityNotFoundError(message=f"Chapter {payload.chapter_id} not found")
        user_id = await self._repository.get_owner_user_id(payload.chapter_id)

        async def stage(percentage: float, name: PipelineStage | str) -> None:
            await reporter.progress(percentage)
            await self._emitter.emit_progress(
                user_id, job.id, percentage, name, {"material_id": payload.material_id}
            )

        await stage(10, PipelineStage.STARTED)

        text = payload.text
        if not text:
            material = await self._repository.get_material(payload.material_id)
            if material is None or material.status != MaterialStatus.COMPLETED:
                # Extraction is (re)running or the material is gone; a
                # finishing extraction requests embeddings again.
                await reporter.progress(100)
                outcome = {
                    "material_id": payload.material_id,
                    "chapter_id": payload.chapter_id,
                    "skipped": True,
                    "material_status": material.status.value if material else None,
                }
                logger.info("embedding_skipped_material_not_ready", job_id=job.id, **outcome)
                await self._emitter.emit_complete(user_id, job.id, outcome)
                return outcome
            text = material.extracted_text or chapter.processed_content
        if not text or not text.strip():
            raise EmptyExtractionError(message="No content available for embedding generation")

        result = await self._generator.add_document_embeddings(
            chapter.course_id,
            payload.chapter_id,
            payload.material_id,
            text,
            on_progress=stage,
        )
        await reporter.progress(100)

        outcome = {
            "material_id": payload.material_id,
            "chapter_id": payload.chapter_id,
            "chunks_created": result.chunks_added,
            "chunks_replaced": result.chunks_replaced,
            "collection": result.collection,
        }
        await self._emitter.emit_complete(user_id, job.id, outcome)
        return outcome

    async def on_failed(self, job: QueuedJob, error: BaseException, final: bool) -> None:
        payload = EmbeddingPayload.model_validate(job.payload)
        message = job.failed_reason or str(error)
        user_id = await self._repository.get_owner_user_id(payload.chapter_id)
        if final:
            # The material keeps its extracted text; embeddings can be regenerated alone.
            await self._emitter.emit_failed(user_id, job.id, message)
        else:
            await self._emitter.emit_progress(
                user_id,
                job.id,
                0,
                PipelineStage.RETRYING,
                {"material_id": payload.material_id, "attempt": job.attempts_made, "error": message},
            )
