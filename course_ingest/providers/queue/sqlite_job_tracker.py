"""SQLite-backed job tracker.

Keeps an audit row per job in ``job_metadata``, independent of the queue's
own bookkeeping.  The row is created when a job is enqueued and then
updated by the worker running that job, or marked failed by the producer
when the enqueue is aborted.  Rows are never deleted by this package;
they back the job-status API and post-mortem recovery.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from course_ingest.models.jobs import JobRecord, JobStatus, JobType
from course_ingest.utils.errors import EntityNotFoundError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/course_ingest.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS job_metadata (
    id             TEXT    PRIMARY KEY,
    job_id         TEXT    NOT NULL UNIQUE,
    job_type       TEXT    NOT NULL,
    entity_type    TEXT    NOT NULL,
    entity_id      TEXT    NOT NULL,
    status         TEXT    NOT NULL DEFAULT 'pending',
    progress       REAL    NOT NULL DEFAULT 0,
    attempts       INTEGER NOT NULL DEFAULT 0,
    error_message  TEXT,
    created_at     TEXT    NOT NULL,
    started_at     TEXT,
    completed_at   TEXT
);
"""

# entity: the per-material jobs listing.  status: recovery scans for pending rows.
_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_job_metadata_entity ON job_metadata(entity_type, entity_id);",
    "CREATE INDEX IF NOT EXISTS idx_job_metadata_status ON job_metadata(job_type, status);",
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_record(row: Any) -> JobRecord:
    return JobRecord(**dict(row))


class SQLiteJobTracker:
    """Persisted job lifecycle records."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the job_metadata table and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            await db.execute(_CREATE_TABLE_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("job_tracker_initialized", path=str(self._db_path))

    async def create(
        self,
        job_id: str,
        job_type: JobType,
        entity_type: str,
        entity_id: str,
    ) -> JobRecord:
        record_id = str(uuid.uuid4())
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            await db.execute(
                "INSERT INTO job_metadata (id, job_id, job_type, entity_type, entity_id, status, "
                "created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (record_id, job_id, job_type.value, entity_type, entity_id, JobStatus.PENDING.value, _now()),
            )
            await db.commit()
        logger.debug("job_record_created", job_id=job_id, job_type=job_type.value, entity_id=entity_id)
        record = await self.find_by_job_id(job_id)
        if record is None:
            raise EntityNotFoundError(message=f"Job record {job_id} not found")
        return record

    async def find_by_job_id(self, job_id: str) -> JobRecord | None:
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM job_metadata WHERE job_id = ?", (job_id,))
            row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    async def find_by_entity(self, entity_type: str, entity_id: str) -> list[JobRecord]:
        """All jobs that targeted an entity, newest first."""
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM job_metadata WHERE entity_type = ? AND entity_id = ? "
                "ORDER BY created_at DESC, rowid DESC",
                (entity_type, entity_id),
            )
            rows = await cursor.fetchall()
        return [_row_to_record(r) for r in rows]

    async def find_pending_by_type(self, job_type: JobType) -> list[JobRecord]:
        """Jobs of *job_type* not yet started, oldest first."""
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM job_metadata WHERE job_type = ? AND status = ? "
                "ORDER BY created_at, rowid",
                (job_type.value, JobStatus.PENDING.value),
            )
            rows = await cursor.fetchall()
        return [_row_to_record(r) for r in rows]

    async def mark_started(self, job_id: str) -> None:
        """Record the start of an attempt; ``started_at`` keeps the first one."""
        await self._execute(
            "UPDATE job_metadata SET status = ?, attempts = attempts + 1, error_message = NULL, "
            "started_at = COALESCE(started_at, ?) WHERE job_id = ?",
            (JobStatus.PROCESSING.value, _now(), job_id),
        )

    async def update_progress(self, job_id: str, progress: float) -> None:
        # Handlers may report slightly out of range values; clamp rather than reject.
        value = max(0.0, min(100.0, float(progress)))
        await self._execute("UPDATE job_metadata SET progress = ? WHERE job_id = ?", (value, job_id))

    async def mark_completed(self, job_id: str) -> None:
        await self._execute(
            "UPDATE job_metadata SET status = ?, progress = 100, error_message = NULL, "
            "completed_at = ? WHERE job_id = ?",
            (JobStatus.COMPLETED.value, _now(), job_id),
        )

    async def mark_retrying(self, job_id: str, error_message: str) -> None:
        """An attempt failed but the queue will retry: back to ``pending``."""
        await self._execute(
            "UPDATE job_metadata SET status = ?, error_message = ? WHERE job_id = ?",
            (JobStatus.PENDING.value, error_message, job_id),
        )

    async def mark_requeued(self, job_id: str) -> None:
        """The queue put a finished attempt back to waiting for a rerun."""
        await self._execute(
            "UPDATE job_metadata SET status = ?, progress = 0, error_message = NULL WHERE job_id = ?",
            (JobStatus.PENDING.value, job_id),
        )

    async def mark_failed(self, job_id: str, error_message: str) -> None:
        await self._execute(
            "UPDATE job_metadata SET status = ?, error_message = ?, completed_at = ? WHERE job_id = ?",
            (JobStatus.FAILED.value, error_message, _now(), job_id),
        )

    async def _execute(self, sql: str, params: tuple) -> None:
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            await db.execute(sql, params)
            await db.commit()
