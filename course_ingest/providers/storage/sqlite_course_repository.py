"""SQLite-backed course/chapter/material repository.

Persists the records the ingestion pipeline reads and mutates to a local
SQLite database using ``aiosqlite``.  Every mutation is a single UPDATE
statement, which makes the ``{status, extracted_text, processing_error}``
and ``{status, processed_content}`` updates atomic.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite
import structlog

from course_ingest.interfaces.course_repository import ICourseRepository
from course_ingest.models.course import (
    Chapter,
    ChapterStatus,
    Course,
    FileMetadata,
    Material,
    MaterialStatus,
)
from course_ingest.utils.errors import EntityNotFoundError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/course_ingest.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS courses (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    title       TEXT NOT NULL DEFAULT '',
    language    TEXT NOT NULL DEFAULT 'en',
    created_at  TEXT NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS chapters (
    id                 TEXT PRIMARY KEY,
    course_id          TEXT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
    title              TEXT NOT NULL DEFAULT '',
    status             TEXT NOT NULL DEFAULT 'draft',
    processed_content  TEXT,
    created_at         TEXT NOT NULL,
    completed_at       TEXT
);
""",
    """\
CREATE TABLE IF NOT EXISTS materials (
    id                TEXT PRIMARY KEY,
    chapter_id        TEXT NOT NULL REFERENCES chapters(id) ON DELETE CASCADE,
    original_name     TEXT NOT NULL,
    file_path         TEXT NOT NULL,
    file_size         INTEGER NOT NULL DEFAULT 0,
    mime_type         TEXT NOT NULL,
    status            TEXT NOT NULL DEFAULT 'pending',
    extracted_text    TEXT,
    processing_error  TEXT,
    created_at        TEXT NOT NULL,
    processed_at      TEXT
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_chapters_course ON chapters(course_id);",
    "CREATE INDEX IF NOT EXISTS idx_materials_chapter ON materials(chapter_id);",
]

_MATERIAL_COLUMNS = (
    "id, chapter_id, original_name, file_path, file_size, mime_type, status, "
    "extracted_text, processing_error, created_at, processed_at"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_material(row: Any) -> Material:
    return Material(
        id=row["id"],
        chapter_id=row["chapter_id"],
        file=FileMetadata(
            original_name=row["original_name"],
            file_path=row["file_path"],
            file_size=row["file_size"],
            mime_type=row["mime_type"],
        ),
        status=MaterialStatus(row["status"]),
        extracted_text=row["extracted_text"],
        processing_error=row["processing_error"],
        created_at=row["created_at"],
        processed_at=row["processed_at"],
    )


class SQLiteCourseRepository(ICourseRepository):
    """SQLite-backed persistence for courses, chapters and materials."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON;")
            yield db

    async def initialize(self) -> None:
        """Create the tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            await db.execute("PRAGMA journal_mode = WAL;")
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("course_db_initialized", path=str(self._db_path))

    # -- courses / chapters -------------------------------------------------

    async def create_course(self, user_id: str, title: str = "", language: str = "en") -> Course:
        course = Course(
            id=str(uuid.uuid4()), user_id=user_id, title=title, language=language, created_at=_now()
        )
        async with self._connect() as db:
            await db.execute(
                "INSERT INTO courses (id, user_id, title, language, created_at) VALUES (?, ?, ?, ?, ?)",
                (course.id, user_id, title, language, course.created_at.isoformat()),
            )
            await db.commit()
        return course

    async def get_course(self, course_id: str) -> Course | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM courses WHERE id = ?", (course_id,))
            row = await cursor.fetchone()
        return Course(**dict(row)) if row else None

    async def create_chapter(self, course_id: str, title: str = "") -> Chapter:
        chapter_id = str(uuid.uuid4())
        async with self._connect() as db:
            await db.execute(
                "INSERT INTO chapters (id, course_id, title, status, created_at) VALUES (?, ?, ?, ?, ?)",
                (chapter_id, course_id, title, ChapterStatus.DRAFT.value, _now()),
            )
            await db.commit()
        return await self._require_chapter(chapter_id)

    async def get_chapter(self, chapter_id: str) -> Chapter | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM chapters WHERE id = ?", (chapter_id,))
            row = await cursor.fetchone()
        return Chapter(**dict(row)) if row else None

    async def update_chapter(
        self,
        chapter_id: str,
        status: ChapterStatus,
        processed_content: str | None = None,
    ) -> Chapter | None:
        # The status guard keeps a user-completed chapter out of reach even
        # if it was completed between the caller's read and this write.
        async with self._connect() as db:
            if processed_content is None:
                await db.execute(
                    "UPDATE chapters SET status = ? WHERE id = ? AND status != ?",
                    (status.value, chapter_id, ChapterStatus.COMPLETED.value),
                )
            else:
                await db.execute(
                    "UPDATE chapters SET status = ?, processed_content = ? "
                    "WHERE id = ? AND status != ?",
                    (status.value, processed_content, chapter_id, ChapterStatus.COMPLETED.value),
                )
            await db.commit()
        return await self.get_chapter(chapter_id)

    async def mark_chapter_completed(self, chapter_id: str) -> Chapter:
        async with self._connect() as db:
            await db.execute(
                "UPDATE chapters SET status = ?, completed_at = ? WHERE id = ?",
                (ChapterStatus.COMPLETED.value, _now(), chapter_id),
            )
            await db.commit()
        return await self._require_chapter(chapter_id)

    async def delete_chapter(self, chapter_id: str) -> bool:
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM chapters WHERE id = ?", (chapter_id,))
            await db.commit()
            deleted = cursor.rowcount > 0
        logger.info("chapter_deleted", chapter_id=chapter_id, deleted=deleted)
        return deleted

    async def get_owner_user_id(self, chapter_id: str) -> str | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT c.user_id FROM chapters ch JOIN courses c ON c.id = ch.course_id "
                "WHERE ch.id = ?",
                (chapter_id,),
            )
            row = await cursor.fetchone()
        return row["user_id"] if row else None

    # -- materials ----------------------------------------------------------

    async def create_material(self, chapter_id: str, file: FileMetadata) -> Material:
        material_id = str(uuid.uuid4())
        async with self._connect() as db:
            await db.execute(
                "INSERT INTO materials (id, chapter_id, original_name, file_path, file_size, "
                "mime_type, status, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    material_id,
                    chapter_id,
                    file.original_name,
                    file.file_path,
                    file.file_size,
                    file.mime_type,
                    MaterialStatus.PENDING.value,
                    _now(),
                ),
            )
            await db.commit()
        return await self._require_material(material_id)

    async def get_material(self, material_id: str) -> Material | None:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_MATERIAL_COLUMNS} FROM materials WHERE id = ?", (material_id,)
            )
            row = await cursor.fetchone()
        return _row_to_material(row) if row else None

    async def list_materials(self, chapter_id: str) -> list[Material]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_MATERIAL_COLUMNS} FROM materials WHERE chapter_id = ? "
                "ORDER BY created_at, rowid",
                (chapter_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_material(r) for r in rows]

    async def update_material_status(self, material_id: str, status: MaterialStatus) -> Material:
        return await self._update_material(
            material_id, "UPDATE materials SET status = ? WHERE id = ?", (status.value, material_id)
        )

    async def complete_material(self, material_id: str, extracted_text: str) -> Material:
        if not extracted_text:
            raise ValueError("A completed material requires non-empty extracted text")
        return await self._update_material(
            material_id,
            "UPDATE materials SET status = ?, extracted_text = ?, processing_error = NULL, "
            "processed_at = ? WHERE id = ?",
            (MaterialStatus.COMPLETED.value, extracted_text, _now(), material_id),
        )

    async def fail_material(self, material_id: str, error_message: str) -> Material:
        return await self._update_material(
            material_id,
            "UPDATE materials SET status = ?, processing_error = ? WHERE id = ?",
            (MaterialStatus.FAILED.value, error_message, material_id),
        )

    async def reset_material(self, material_id: str) -> Material:
        return await self._update_material(
            material_id,
            "UPDATE materials SET status = ?, extracted_text = NULL, processing_error = NULL, "
            "processed_at = NULL WHERE id = ?",
            (MaterialStatus.PENDING.value, material_id),
        )

    async def delete_material(self, material_id: str) -> bool:
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM materials WHERE id = ?", (material_id,))
            await db.commit()
            return cursor.rowcount > 0

    # -- helpers ------------------------------------------------------------

    async def _update_material(self, material_id: str, sql: str, params: tuple) -> Material:
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            await db.commit()
            if cursor.rowcount == 0:
                raise EntityNotFoundError(message=f"Material {material_id} not found")
        return await self._require_material(material_id)

    async def _require_material(self, material_id: str) -> Material:
        material = await self.get_material(material_id)
        if material is None:
            raise EntityNotFoundError(message=f"Material {material_id} not found")
        return material

    async def _require_chapter(self, chapter_id: str) -> Chapter:
        chapter = await self.get_chapter(chapter_id)
        if chapter is None:
            raise EntityNotFoundError(message=f"Chapter {chapter_id} not found")
        return chapter
