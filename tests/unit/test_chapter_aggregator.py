"""Unit tests for chapter status derivation and content merging."""

from __future__ import annotations

import pytest

from course_ingest.models.course import ChapterStatus, FileMetadata, MaterialStatus
from course_ingest.services.chapter_aggregator import (
    CONTENT_DELIMITER,
    ChapterAggregator,
    derive_chapter_status,
    merge_material_texts,
)
from course_ingest.utils.errors import EntityNotFoundError

P, R, C, F = (
    MaterialStatus.PENDING,
    MaterialStatus.PROCESSING,
    MaterialStatus.COMPLETED,
    MaterialStatus.FAILED,
)


class TestDeriveChapterStatus:
    def test_no_materials_is_draft(self) -> None:
        assert derive_chapter_status([]) == ChapterStatus.DRAFT

    def test_all_completed_is_ready(self) -> None:
        assert derive_chapter_status([C, C, C]) == ChapterStatus.READY

    @pytest.mark.parametrize(
        "statuses",
        [[P], [R], [C, P], [C, R], [F, P], [C, F], [F]],
    )
    def test_anything_else_is_processing(self, statuses: list[MaterialStatus]) -> None:
        assert derive_chapter_status(statuses) == ChapterStatus.PROCESSING

    def test_completed_chapter_is_never_changed(self) -> None:
        assert derive_chapter_status([], ChapterStatus.COMPLETED) == ChapterStatus.COMPLETED
        assert derive_chapter_status([P, F], ChapterStatus.COMPLETED) == ChapterStatus.COMPLETED


class TestMergeMaterialTexts:
    def test_skips_empty_texts(self) -> None:
        assert merge_material_texts(["one", None, "  ", "two"]) == f"one{CONTENT_DELIMITER}two"

    def test_delimiter_value(self) -> None:
        assert CONTENT_DELIMITER == "\n\n---\n\n"


def _file(name: str) -> FileMetadata:
    return FileMetadata(original_name=name, file_path=f"/tmp/{name}", file_size=1, mime_type="application/pdf")


class TestChapterAggregator:
    @pytest.mark.asyncio
    async def test_draft_to_processing_to_ready_with_merged_content(self, repository) -> None:
        course = await repository.create_course("user-1")
        chapter = await repository.create_chapter(course.id)
        aggregator = ChapterAggregator(repository)

        first = await repository.create_material(chapter.id, _file("a.pdf"))
        second = await repository.create_material(chapter.id, _file("b.pdf"))

        result = await aggregator.recompute(chapter.id)
        assert result.previous == ChapterStatus.DRAFT
        assert result.status == ChapterStatus.PROCESSING

        await repository.complete_material(first.id, "First material text.")
        result = await aggregator.recompute(chapter.id)
        assert result.status == ChapterStatus.PROCESSING
        assert not result.changed

        await repository.complete_material(second.id, "Second material text.")
        result = await aggregator.recompute(chapter.id)
        assert result.became_ready
        assert result.merged

        stored = await repository.get_chapter(chapter.id)
        assert stored.status == ChapterStatus.READY
        assert stored.processed_content == f"First material text.{CONTENT_DELIMITER}Second material text."

    @pytest.mark.asyncio
    async def test_failed_material_keeps_chapter_processing(self, repository) -> None:
        course = await repository.create_course("user-1")
        chapter = await repository.create_chapter(course.id)
        material = await repository.create_material(chapter.id, _file("a.pdf"))
        await repository.fail_material(material.id, "Could not open PDF")

        result = await ChapterAggregator(repository).recompute(chapter.id)

        assert result.status == ChapterStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_completed_chapter_left_untouched(self, repository) -> None:
        course = await repository.create_course("user-1")
        chapter = await repository.create_chapter(course.id)
        await repository.create_material(chapter.id, _file("a.pdf"))
        await repository.mark_chapter_completed(chapter.id)

        result = await ChapterAggregator(repository).recompute(chapter.id)

        assert result.status == ChapterStatus.COMPLETED
        assert (await repository.get_chapter(chapter.id)).status == ChapterStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_chapter_raises(self, repository) -> None:
        with pytest.raises(EntityNotFoundError):
            await ChapterAggregator(repository).recompute("missing")
