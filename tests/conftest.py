"""Shared pytest fixtures for the course-ingest test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from course_ingest.interfaces.vector_store_provider import IVectorStoreProvider
from course_ingest.models.course import Chapter, Course, FileMetadata, Material
from course_ingest.models.jobs import JobType, QueueConfig, RateLimit, RetryPolicy
from course_ingest.models.rag import DocumentChunk, RetrievedChunk
from course_ingest.providers.queue.sqlite_job_queue import SQLiteJobQueue
from course_ingest.providers.queue.sqlite_job_tracker import SQLiteJobTracker
from course_ingest.providers.storage.sqlite_course_repository import SQLiteCourseRepository

PDF_MIME = "application/pdf"


# ---------------------------------------------------------------------------
# In-memory vector store
# ---------------------------------------------------------------------------


class InMemoryVectorStore(IVectorStoreProvider):
    """Dict-backed vector store that records every call."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, tuple[DocumentChunk, list[float]]]] = {}
        self.fail_writes = False

    async def upsert(
        self,
        collection_id: str,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> int:
        if self.fail_writes:
            from course_ingest.utils.errors import VectorStoreWriteError

            raise VectorStoreWriteError(message="store offline", provider_name="memory")
        collection = self.collections.setdefault(collection_id, {})
        for chunk, vector in zip(chunks, embeddings):
            collection[chunk.chunk_id] = (chunk, vector)
        return len(chunks)

    async def delete_by_material(self, collection_id: str, material_id: str) -> int:
        return self._delete(collection_id, lambda c: c.material_id == material_id)

    async def delete_by_chapter(self, collection_id: str, chapter_id: str) -> int:
        return self._delete(collection_id, lambda c: c.chapter_id == chapter_id)

    async def delete_collection(self, collection_id: str) -> int:
        return len(self.collections.pop(collection_id, {}))

    async def count_by_material(self, collection_id: str, material_id: str) -> int:
        return len(self.chunks_for(collection_id, material_id))

    async def query(
        self,
        collection_id: str,
        query_vector: list[float],
        top_k: int = 5,
        filters: dict[str, Any] | None = None,
    ) -> list[RetrievedChunk]:
        items = list(self.collections.get(collection_id, {}).values())
        if filters:
            items = [(c, v) for c, v in items if all(getattr(c, k) == val for k, val in filters.items())]
        return [RetrievedChunk(chunk=c, similarity_score=1.0) for c, _ in items[:top_k]]

    def get_provider_name(self) -> str:
        return "memory"

    def is_available(self) -> bool:
        return True

    # -- helpers --------------------------------------------------------

    def chunks_for(self, collection_id: str, material_id: str) -> list[DocumentChunk]:
        return sorted(
            (c for c, _ in self.collections.get(collection_id, {}).values() if c.material_id == material_id),
            key=lambda c: c.chunk_index,
        )

    def _delete(self, collection_id: str, predicate) -> int:  # noqa: ANN001
        collection = self.collections.get(collection_id, {})
        doomed = [cid for cid, (c, _) in collection.items() if predicate(c)]
        for cid in doomed:
            del collection[cid]
        return len(doomed)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def make_queue_configs(attempts: int = 3, backoff: float = 0.0, timeout: float = 30.0) -> dict[str, QueueConfig]:
    """Both queues with no backoff and a rate limit tests never hit."""
    return {
        "document-processing": QueueConfig(
            name="document-processing",
            job_type=JobType.EXTRACTION,
            concurrency=2,
            rate_limit=RateLimit(max_jobs=1000, window_seconds=60),
            retry=RetryPolicy(attempts=attempts, backoff_base_seconds=backoff),
            default_priority=1,
            job_timeout_seconds=timeout,
        ),
        "embedding-generation": QueueConfig(
            name="embedding-generation",
            job_type=JobType.EMBEDDING,
            concurrency=3,
            rate_limit=RateLimit(max_jobs=1000, window_seconds=60),
            retry=RetryPolicy(attempts=attempts, backoff_base_seconds=backoff),
            default_priority=3,
            job_timeout_seconds=timeout,
        ),
    }


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "course_ingest.db"


@pytest.fixture
def queue_configs() -> dict[str, QueueConfig]:
    return make_queue_configs()


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def repository(db_path: Path) -> SQLiteCourseRepository:
    repo = SQLiteCourseRepository(db_path=db_path)
    await repo.initialize()
    return repo


@pytest.fixture
async def job_queue(db_path: Path, queue_configs: dict[str, QueueConfig]) -> SQLiteJobQueue:
    queue = SQLiteJobQueue(queue_configs, db_path=db_path)
    await queue.initialize()
    return queue


@pytest.fixture
async def job_tracker(db_path: Path) -> SQLiteJobTracker:
    tracker = SQLiteJobTracker(db_path=db_path)
    await tracker.initialize()
    return tracker


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    """A file that exists on disk; its content is supplied by a mocked fitz."""
    path = tmp_path / "lecture.pdf"
    path.write_bytes(b"%PDF-1.4 placeholder")
    return path


@pytest.fixture
async def seeded(
    repository: SQLiteCourseRepository, sample_pdf: Path
) -> tuple[Course, Chapter, Material]:
    """One course owned by ``user-1`` with one draft chapter and one PDF material."""
    course = await repository.create_course("user-1", title="Biology 101", language="en")
    chapter = await repository.create_chapter(course.id, title="Cells")
    material = await repository.create_material(
        chapter.id,
        FileMetadata(
            original_name="lecture.pdf",
            file_path=str(sample_pdf),
            file_size=sample_pdf.stat().st_size,
            mime_type=PDF_MIME,
        ),
    )
    return course, chapter, material


@pytest.fixture
def queue_config_factory():
    return make_queue_configs
