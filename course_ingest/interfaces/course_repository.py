"""Abstract base class for course/chapter/material persistence.

The pipeline only needs status bookkeeping: read records by id, atomically
update ``{status, extracted_text, processing_error}`` on a material and
``{status, processed_content}`` on a chapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from course_ingest.models.course import (
    Chapter,
    ChapterStatus,
    Course,
    FileMetadata,
    Material,
    MaterialStatus,
)


class ICourseRepository(ABC):
    """Contract for the records the ingestion pipeline reads and mutates."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create storage structures if they do not exist."""

    # -- courses / chapters -------------------------------------------------

    @abstractmethod
    async def create_course(self, user_id: str, title: str = "", language: str = "en") -> Course:
        """Insert a course and return it."""

    @abstractmethod
    async def get_course(self, course_id: str) -> Course | None:
        """Return a course by id, or ``None``."""

    @abstractmethod
    async def create_chapter(self, course_id: str, title: str = "") -> Chapter:
        """Insert a chapter in ``draft`` status and return it."""

    @abstractmethod
    async def get_chapter(self, chapter_id: str) -> Chapter | None:
        """Return a chapter by id, or ``None``."""

    @abstractmethod
    async def update_chapter(
        self,
        chapter_id: str,
        status: ChapterStatus,
        processed_content: str | None = None,
    ) -> Chapter | None:
        """Atomically set status (and content when given).

        A chapter already in ``completed`` is left untouched and returned
        unchanged.
        """

    @abstractmethod
    async def mark_chapter_completed(self, chapter_id: str) -> Chapter:
        """Apply the terminal ``completed`` status (explicit user action)."""

    @abstractmethod
    async def delete_chapter(self, chapter_id: str) -> bool:
        """Delete a chapter and, by cascade, its materials."""

    @abstractmethod
    async def get_owner_user_id(self, chapter_id: str) -> str | None:
        """Return the user owning the chapter's course."""

    # -- materials ----------------------------------------------------------

    @abstractmethod
    async def create_material(self, chapter_id: str, file: FileMetadata) -> Material:
        """Insert a material in ``pending`` status and return it."""

    @abstractmethod
    async def get_material(self, material_id: str) -> Material | None:
        """Return a material by id, or ``None``."""

    @abstractmethod
    async def list_materials(self, chapter_id: str) -> list[Material]:
        """Return a chapter's materials in creation order."""

    @abstractmethod
    async def update_material_status(self, material_id: str, status: MaterialStatus) -> Material:
        """Set status only (``pending`` / ``processing``)."""

    @abstractmethod
    async def complete_material(self, material_id: str, extracted_text: str) -> Material:
        """Atomically set ``completed``, the extracted text, and clear the error."""

    @abstractmethod
    async def fail_material(self, material_id: str, error_message: str) -> Material:
        """Atomically set ``failed`` with the persisted error message."""

    @abstractmethod
    async def reset_material(self, material_id: str) -> Material:
        """Return a material to ``pending`` with text and error cleared."""

    @abstractmethod
    async def delete_material(self, material_id: str) -> bool:
        """Delete a material record."""
