"""Derived chapter status from the statuses of its materials.

The transition rule is the pure function :func:`derive_chapter_status`:

| materials | all completed | any pending/processing | result                       |
|-----------|---------------|------------------------|------------------------------|
| none      |               |                        | draft                        |
| >= 1      | yes           |                        | ready                        |
| >= 1      | no            | yes                    | processing                   |
| >= 1      | no            | no (some failed)       | processing                   |

``completed`` is terminal: a chapter the user completed is never moved
back.  :class:`ChapterAggregator` applies the rule to stored records and,
when a chapter enters ``ready``, merges the extracted text of its materials
(in creation order) into ``processed_content``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from course_ingest.interfaces.course_repository import ICourseRepository
from course_ingest.models.course import ChapterStatus, MaterialStatus
from course_ingest.utils.concurrency import KeyedLock
from course_ingest.utils.errors import EntityNotFoundError

logger = structlog.get_logger(logger_name=__name__)

CONTENT_DELIMITER = "\n\n---\n\n"


def derive_chapter_status(
    material_statuses: Iterable[MaterialStatus],
    current: ChapterStatus | None = None,
) -> ChapterStatus:
    """Compute a chapter's status from its materials' statuses.

    Parameters
    ----------
    material_statuses:
        Status of every material in the chapter (any order).
    current:
        The chapter's stored status; ``completed`` is returned unchanged.
    """
    if current == ChapterStatus.COMPLETED:
        return ChapterStatus.COMPLETED
    statuses = list(material_statuses)
    if not statuses:
        return ChapterStatus.DRAFT
    if all(s == MaterialStatus.COMPLETED for s in statuses):
        return ChapterStatus.READY
    # Pending/processing materials, or failed ones awaiting reprocess or removal.
    return ChapterStatus.PROCESSING


def merge_material_texts(texts: Iterable[str | None]) -> str:
    """Join non-empty texts with :data:`CONTENT_DELIMITER`."""
    return CONTENT_DELIMITER.join(t for t in texts if t and t.strip())


@dataclass(frozen=True)
class AggregationResult:
    chapter_id: str
    previous: ChapterStatus
    status: ChapterStatus
    merged: bool = False

    @property
    def changed(self) -> bool:
        return self.previous != self.status

    @property
    def became_ready(self) -> bool:
        return self.changed and self.status == ChapterStatus.READY


class ChapterAggregator:
    """Recompute and persist a chapter's derived status.

    Recomputations for the same chapter are serialized in-process so two
    workers finishing sibling materials cannot interleave read and write.
    """

    def __init__(self, repository: ICourseRepository, locks: KeyedLock | None = None) -> None:
        self._repository = repository
        self._locks = locks or KeyedLock()

    async def recompute(self, chapter_id: str) -> AggregationResult:
        async with self._locks.hold(f"chapter:{chapter_id}"):
            chapter = await self._repository.get_chapter(chapter_id)
            if chapter is None:
                raise EntityNotFoundError(message=f"Chapter {chapter_id} not found")

            materials = await self._repository.list_materials(chapter_id)
            status = derive_chapter_status((m.status for m in materials), chapter.status)

            if status == ChapterStatus.COMPLETED:
                return AggregationResult(chapter_id, chapter.status, status)

            # Content is merged only on the transition into ready.
            merged = False
            if status == ChapterStatus.READY and chapter.status != ChapterStatus.READY:
                content = merge_material_texts(m.extracted_text for m in materials)
                await self._repository.update_chapter(chapter_id, status, processed_content=content)
                merged = True
            elif status != chapter.status:
                await self._repository.update_chapter(chapter_id, status)

        result = AggregationResult(chapter_id, chapter.status, status, merged=merged)
        if result.changed:
            logger.info(
                "chapter_status_changed",
                chapter_id=chapter_id,
                previous=chapter.status.value,
                status=status.value,
                materials=len(materials),
                merged=merged,
            )
        return result
