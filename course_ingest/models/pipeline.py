"""Progress stages and notification event shapes."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PipelineStage(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    """Stage names reported alongside progress percentages."""

    STARTED = "started"
    EXTRACTING = "extracting"
    PROCESSING_PAGES = "processing_pages"
    STRUCTURING = "structuring"
    GENERATING_EMBEDDINGS = "generating_embeddings"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


class EventType(str, Enum):  # noqa: UP042
    PROGRESS = "job:progress"
    COMPLETE = "job:complete"
    FAILED = "job:failed"


class ProgressEvent(BaseModel):
    """Shape of every event handed to a notification sink."""

    model_config = ConfigDict(frozen=True)

    event: EventType
    user_id: str
    job_id: str
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    stage: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
