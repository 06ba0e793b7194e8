"""Job queue, job tracker and queue configuration models.

A *queued job* is the queue's own view of a unit of work (state, attempts,
backoff schedule, persisted progress).  A *job record* is the audit row the
job tracker keeps for the same job id, independent of queue bookkeeping.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobType(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    EXTRACTION = "extraction"
    EMBEDDING = "embedding-generation"


class QueueState(str, Enum):  # noqa: UP042
    """Lifecycle of a job inside the queue.

    ``held`` jobs hold their dedupe key but cannot be claimed until the
    producer releases them.
    """

    HELD = "held"
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(str, Enum):  # noqa: UP042
    """Lifecycle of a job as recorded by the job tracker."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Queue configuration
# ---------------------------------------------------------------------------

class RetryPolicy(BaseModel):
    """Attempt limit plus exponential backoff between attempts."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=5.0, ge=0.0)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        return self.backoff_base_seconds * (2 ** max(0, attempt - 1))


class RateLimit(BaseModel):
    """At most ``max_jobs`` job starts per ``window_seconds``."""

    model_config = ConfigDict(frozen=True)

    max_jobs: int = Field(default=0, ge=0, description="0 disables limiting.")
    window_seconds: float = Field(default=60.0, gt=0.0)


class QueueConfig(BaseModel):
    """Per-queue worker pool, rate limit and retry configuration."""

    model_config = ConfigDict(frozen=True)

    name: str
    job_type: JobType
    concurrency: int = Field(default=1, ge=1)
    rate_limit: RateLimit = Field(default_factory=RateLimit)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    default_priority: int = Field(default=5, description="Lower runs first.")
    job_timeout_seconds: float = Field(default=300.0, gt=0.0)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

class ExtractionPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    material_id: str
    chapter_id: str
    file_path: str
    mime_type: str
    course_language: str = "en"


class EmbeddingPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    chapter_id: str
    material_id: str
    text: str | None = Field(
        default=None,
        description="Text to embed; falls back to stored material/chapter text when absent.",
    )
    language: str = "en"


# ---------------------------------------------------------------------------
# Queue and tracker views
# ---------------------------------------------------------------------------

class QueuedJob(BaseModel):
    """Handle returned by the queue for an enqueued or claimed job."""

    model_config = ConfigDict(frozen=True)

    id: str
    queue_name: str
    job_type: JobType
    payload: dict[str, Any] = Field(default_factory=dict)
    dedupe_key: str | None = None
    priority: int = 5
    state: QueueState = QueueState.WAITING
    attempts_made: int = 0
    max_attempts: int = 3
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    failed_reason: str | None = None
    result: dict[str, Any] | None = None
    available_at: float = 0.0
    rerun_requested: bool = False
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class JobRecord(BaseModel):
    """Audit row kept by the job tracker, retained indefinitely."""

    model_config = ConfigDict(frozen=True)

    id: str
    job_id: str
    job_type: JobType
    entity_type: str
    entity_id: str
    status: JobStatus = JobStatus.PENDING
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    attempts: int = 0
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class QueueStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    queue_name: str
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0
    paused: bool = False
