"""Course, chapter and material records touched by the ingestion pipeline.

Only the fields the pipeline reads or mutates are modelled here; course and
chapter CRUD beyond status bookkeeping lives outside this package.  All
models are frozen -- repository updates return fresh instances.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MaterialStatus(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    """Processing state of one uploaded file."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ChapterStatus(str, Enum):  # noqa: UP042
    """Derived state of a chapter.

    ``completed`` is terminal and only ever set by an explicit user action;
    the other three values are recomputed from the chapter's materials.
    """

    DRAFT = "draft"
    PROCESSING = "processing"
    READY = "ready"
    COMPLETED = "completed"


class Course(BaseModel):
    """Owner and language context for a set of chapters."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str = Field(description="Owner; receives progress notifications.")
    title: str = ""
    language: str = Field(default="en", description="ISO 639-1 code used for structuring prompts.")
    created_at: datetime | None = None


class Chapter(BaseModel):
    """A content unit aggregating one or more materials."""

    model_config = ConfigDict(frozen=True)

    id: str
    course_id: str
    title: str = ""
    status: ChapterStatus = ChapterStatus.DRAFT
    processed_content: str | None = Field(
        default=None,
        description="Merged text of all completed materials, set on reaching ready.",
    )
    created_at: datetime | None = None
    completed_at: datetime | None = None


class FileMetadata(BaseModel):
    """Where an uploaded file lives and what it claims to be."""

    model_config = ConfigDict(frozen=True)

    original_name: str
    file_path: str
    file_size: int = Field(default=0, ge=0)
    mime_type: str


class Material(BaseModel):
    """One uploaded source file belonging to a chapter."""

    model_config = ConfigDict(frozen=True)

    id: str
    chapter_id: str
    file: FileMetadata
    status: MaterialStatus = MaterialStatus.PENDING
    extracted_text: str | None = None
    processing_error: str | None = None
    created_at: datetime | None = None
    processed_at: datetime | None = None
