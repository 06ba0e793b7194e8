"""Request and response bodies for the REST API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None


class ProcessMaterialRequest(BaseModel):
    """Explicit extraction request; omitted fields come from the stored material."""

    file_path: str | None = None
    mime_type: str | None = None
    course_language: str | None = None


class EmbeddingRequest(BaseModel):
    text: str | None = Field(default=None, description="Text to embed; the stored text is used when omitted.")
    language: str = "en"


class JobAcceptedResponse(BaseModel):
    """Returned when a job enters the queue."""

    job_id: str
    queue: str
    job_type: str
    material_id: str


class JobStatusResponse(BaseModel):
    job_id: str
    job_type: str
    queue_state: str | None = None
    status: str | None = None
    progress: float = 0.0
    attempts: int = 0
    max_attempts: int | None = None
    error: str | None = None
    result: dict[str, Any] | None = None
    entity_id: str | None = None
    live: dict[str, Any] = Field(default_factory=dict)


class DeleteResponse(BaseModel):
    deleted: str
    chunks_removed: int
    chapter_status: str | None = None


class QueueStatsResponse(BaseModel):
    queues: list[dict[str, Any]]


class QueryRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)
    top_k: int = Field(default=5, ge=1, le=50)
    chapter_id: str | None = None


class QueryResponse(BaseModel):
    results: list[dict[str, Any]]
