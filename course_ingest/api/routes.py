"""REST endpoints for submitting and inspecting ingestion jobs.

Endpoint                                      Method  Description
/api/v1/health                                GET     Liveness + provider names
/api/v1/materials/{id}/process                POST    Queue extraction
/api/v1/materials/{id}/reprocess              POST    Drop chunks and re-extract
/api/v1/materials/{id}/embeddings             POST    Queue embedding generation
/api/v1/materials/{id}                        DELETE  Delete material and chunks
/api/v1/materials/{id}/jobs                   GET     Tracker rows for a material
/api/v1/chapters/{id}                         DELETE  Delete chapter and chunks
/api/v1/courses/{id}/query                    POST    Similarity search
/api/v1/jobs/{job_id}                         GET     Job status
/api/v1/queues/stats                          GET     Per-queue counts
/api/v1/queues/{name}/failed                  GET     Terminally failed jobs
/api/v1/queues/{name}/pause|resume            POST    Worker control
/ws/jobs/{job_id}                             WS      Live progress stream (see websocket.py)
"""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query, Request

from course_ingest import __version__
from course_ingest.api.schemas import (
    DeleteResponse,
    EmbeddingRequest,
    HealthResponse,
    JobAcceptedResponse,
    JobStatusResponse,
    ProcessMaterialRequest,
    QueryRequest,
    QueryResponse,
    QueueStatsResponse,
)
from course_ingest.models.jobs import QueuedJob
from course_ingest.pipeline.ingestion_pipeline import IngestionPipeline
from course_ingest.utils.errors import EntityNotFoundError
from course_ingest.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")


def _get_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.pipeline


PipelineDep = Annotated[IngestionPipeline, Depends(_get_pipeline)]


def _accepted(job: QueuedJob, material_id: str) -> JobAcceptedResponse:
    return JobAcceptedResponse(
        job_id=job.id,
        queue=job.queue_name,
        job_type=job.job_type.value,
        material_id=material_id,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse)
async def health(pipeline: PipelineDep) -> HealthResponse:
    generator = pipeline.context.embedding_generator
    return HealthResponse(
        status="healthy",
        version=__version__,
        providers={
            "embedding": generator.embedding_provider_name,
            "vector_store": generator.vector_store_name,
            "queues": sorted(pipeline.context.queue.configs),
        },
    )


# ---------------------------------------------------------------------------
# Materials
# ---------------------------------------------------------------------------


@router.post("/materials/{material_id}/process", response_model=JobAcceptedResponse, status_code=202)
async def process_material(
    material_id: str,
    pipeline: PipelineDep,
    body: ProcessMaterialRequest | None = None,
) -> JobAcceptedResponse:
    if body is None or not (body.file_path and body.mime_type):
        job = await pipeline.process_material(material_id)
    else:
        material = await pipeline.context.repository.get_material(material_id)
        if material is None:
            raise EntityNotFoundError(message=f"Material {material_id} not found")
        job = await pipeline.enqueue_extraction(
            material_id,
            body.file_path,
            body.mime_type,
            material.chapter_id,
            body.course_language or "en",
        )
    return _accepted(job, material_id)


@router.post("/materials/{material_id}/reprocess", response_model=JobAcceptedResponse, status_code=202)
async def reprocess_material(material_id: str, pipeline: PipelineDep) -> JobAcceptedResponse:
    job = await pipeline.reprocess_material(material_id)
    return _accepted(job, material_id)


@router.post("/materials/{material_id}/embeddings", response_model=JobAcceptedResponse, status_code=202)
async def generate_embeddings(
    material_id: str,
    pipeline: PipelineDep,
    body: EmbeddingRequest | None = None,
) -> JobAcceptedResponse:
    if body is None or body.text is None:
        job = await pipeline.regenerate_embeddings(material_id)
    else:
        material = await pipeline.context.repository.get_material(material_id)
        if material is None:
            raise EntityNotFoundError(message=f"Material {material_id} not found")
        job = await pipeline.enqueue_embedding(material.chapter_id, material_id, body.text, body.language)
    return _accepted(job, material_id)


@router.delete("/materials/{material_id}", response_model=DeleteResponse)
async def delete_material(material_id: str, pipeline: PipelineDep) -> DeleteResponse:
    outcome = await pipeline.delete_material(material_id)
    return DeleteResponse(
        deleted=material_id,
        chunks_removed=outcome["chunks_removed"],
        chapter_status=outcome["chapter_status"],
    )


@router.get("/materials/{material_id}/jobs")
async def material_jobs(material_id: str, pipeline: PipelineDep) -> dict[str, Any]:
    return {"material_id": material_id, "jobs": await pipeline.list_material_jobs(material_id)}


@router.delete("/chapters/{chapter_id}", response_model=DeleteResponse)
async def delete_chapter(chapter_id: str, pipeline: PipelineDep) -> DeleteResponse:
    outcome = await pipeline.delete_chapter(chapter_id)
    return DeleteResponse(deleted=chapter_id, chunks_removed=outcome["chunks_removed"])


@router.post("/courses/{course_id}/query", response_model=QueryResponse)
async def query_course(course_id: str, body: QueryRequest, pipeline: PipelineDep) -> QueryResponse:
    hits = await pipeline.query(course_id, body.query, body.top_k, body.chapter_id)
    return QueryResponse(
        results=[
            {
                "chunk_id": hit.chunk.chunk_id,
                "material_id": hit.chunk.material_id,
                "chapter_id": hit.chunk.chapter_id,
                "text": hit.chunk.text,
                "similarity_score": hit.similarity_score,
            }
            for hit in hits
        ]
    )


# ---------------------------------------------------------------------------
# Jobs and queues
# ---------------------------------------------------------------------------


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def job_status(job_id: str, pipeline: PipelineDep) -> JobStatusResponse:
    return JobStatusResponse(**await pipeline.get_job_status(job_id))


@router.get("/queues/stats", response_model=QueueStatsResponse)
async def queue_stats(pipeline: PipelineDep) -> QueueStatsResponse:
    stats = await pipeline.get_queue_stats()
    return QueueStatsResponse(queues=[s.model_dump() for s in stats])


@router.get("/queues/{queue_name}/failed")
async def failed_jobs(
    queue_name: str,
    pipeline: PipelineDep,
    limit: int = Query(default=50, ge=1, le=500),
) -> dict[str, Any]:
    jobs = await pipeline.list_failed_jobs(queue_name, limit)
    return {"queue": queue_name, "jobs": [j.model_dump(mode="json") for j in jobs]}


@router.post("/queues/{queue_name}/pause")
async def pause_queue(queue_name: str, pipeline: PipelineDep) -> dict[str, Any]:
    pipeline.pause_queue(queue_name)
    _logger.info("queue_paused_via_api", queue=queue_name)
    return {"queue": queue_name, "paused": True}


@router.post("/queues/{queue_name}/resume")
async def resume_queue(queue_name: str, pipeline: PipelineDep) -> dict[str, Any]:
    pipeline.resume_queue(queue_name)
    return {"queue": queue_name, "paused": False}
