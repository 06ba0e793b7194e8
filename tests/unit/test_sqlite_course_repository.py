"""Unit tests for the SQLite course/chapter/material repository."""

from __future__ import annotations

import pytest

from course_ingest.models.course import ChapterStatus, FileMetadata, MaterialStatus
from course_ingest.utils.errors import EntityNotFoundError


def _file() -> FileMetadata:
    return FileMetadata(
        original_name="notes.docx",
        file_path="/uploads/notes.docx",
        file_size=2048,
        mime_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    )


class TestCoursesAndChapters:
    @pytest.mark.asyncio
    async def test_create_and_get(self, repository) -> None:
        course = await repository.create_course("user-9", title="Chemistry", language="de")
        chapter = await repository.create_chapter(course.id, title="Acids")

        stored_course = await repository.get_course(course.id)
        assert stored_course.user_id == "user-9"
        assert stored_course.language == "de"

        stored_chapter = await repository.get_chapter(chapter.id)
        assert stored_chapter.status == ChapterStatus.DRAFT
        assert stored_chapter.processed_content is None
        assert await repository.get_owner_user_id(chapter.id) == "user-9"

    @pytest.mark.asyncio
    async def test_update_chapter_skips_completed(self, repository) -> None:
        course = await repository.create_course("user-1")
        chapter = await repository.create_chapter(course.id)
        await repository.mark_chapter_completed(chapter.id)

        updated = await repository.update_chapter(chapter.id, ChapterStatus.READY, processed_content="x")

        assert updated.status == ChapterStatus.COMPLETED
        assert updated.processed_content is None

    @pytest.mark.asyncio
    async def test_delete_chapter_cascades_to_materials(self, repository) -> None:
        course = await repository.create_course("user-1")
        chapter = await repository.create_chapter(course.id)
        material = await repository.create_material(chapter.id, _file())

        assert await repository.delete_chapter(chapter.id) is True
        assert await repository.get_material(material.id) is None

    @pytest.mark.asyncio
    async def test_unknown_ids_return_none(self, repository) -> None:
        assert await repository.get_course("nope") is None
        assert await repository.get_chapter("nope") is None
        assert await repository.get_owner_user_id("nope") is None


class TestMaterials:
    @pytest.mark.asyncio
    async def test_new_material_is_pending(self, repository, seeded) -> None:
        _, _, material = seeded
        assert material.status == MaterialStatus.PENDING
        assert material.extracted_text is None

    @pytest.mark.asyncio
    async def test_complete_sets_text_and_clears_error(self, repository, seeded) -> None:
        _, _, material = seeded
        await repository.fail_material(material.id, "boom")

        completed = await repository.complete_material(material.id, "Extracted text")

        assert completed.status == MaterialStatus.COMPLETED
        assert completed.extracted_text == "Extracted text"
        assert completed.processing_error is None
        assert completed.processed_at is not None

    @pytest.mark.asyncio
    async def test_complete_requires_text(self, repository, seeded) -> None:
        _, _, material = seeded
        with pytest.raises(ValueError):
            await repository.complete_material(material.id, "")

    @pytest.mark.asyncio
    async def test_fail_keeps_no_text(self, repository, seeded) -> None:
        _, _, material = seeded
        failed = await repository.fail_material(material.id, "Could not open PDF")
        assert failed.status == MaterialStatus.FAILED
        assert failed.processing_error == "Could not open PDF"
        assert failed.extracted_text is None

    @pytest.mark.asyncio
    async def test_reset_clears_previous_outcome(self, repository, seeded) -> None:
        _, _, material = seeded
        await repository.complete_material(material.id, "Old text")

        reset = await repository.reset_material(material.id)

        assert reset.status == MaterialStatus.PENDING
        assert reset.extracted_text is None
        assert reset.processed_at is None

    @pytest.mark.asyncio
    async def test_updates_on_missing_material_raise(self, repository) -> None:
        with pytest.raises(EntityNotFoundError):
            await repository.update_material_status("missing", MaterialStatus.PROCESSING)

    @pytest.mark.asyncio
    async def test_list_materials_in_creation_order(self, repository, seeded) -> None:
        _, chapter, first = seeded
        second = await repository.create_material(chapter.id, _file())
        third = await repository.create_material(chapter.id, _file())

        listed = await repository.list_materials(chapter.id)

        assert [m.id for m in listed] == [first.id, second.id, third.id]

    @pytest.mark.asyncio
    async def test_delete_material(self, repository, seeded) -> None:
        _, _, material = seeded
        assert await repository.delete_material(material.id) is True
        assert await repository.delete_material(material.id) is False
