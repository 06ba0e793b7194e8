"""Durable, priority-ordered, retryable job queue on SQLite.

All queues share one ``queue_jobs`` table, partitioned by ``queue_name``.
Jobs move through ``waiting -> active -> completed`` or, on error,
``active -> delayed -> active ...`` until the retry policy is exhausted and
the job lands in the terminal ``failed`` state.  Terminal jobs are never
picked up again; a fresh job must be enqueued to reprocess.

Concurrency guarantees:

* **Dedupe** -- a partial unique index over ``dedupe_key`` restricted to
  open states (held/waiting/delayed/active) means a second enqueue with the
  same key fails with :class:`DuplicateJobError` while the first is
  unfinished, even across processes sharing the database file.
* **Claiming** -- a single ``UPDATE ... RETURNING`` moves the best candidate
  to ``active``, so two workers can never claim the same job.
* **Held enqueue** -- ``enqueue(..., hold=True)`` reserves the dedupe key
  without making the job claimable.  The producer finishes its own
  bookkeeping, then calls :meth:`SQLiteJobQueue.release` (or
  :meth:`SQLiteJobQueue.discard` if the bookkeeping failed).
* **Rerun** -- :meth:`SQLiteJobQueue.request_rerun` flags an active job so
  that completing it puts it back to ``waiting`` instead of ``completed``.
  The flag and the completion are single statements, so a request either
  lands before the completion (the job runs again) or finds the job no
  longer open (the caller enqueues a new one).
"""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from course_ingest.models.jobs import (
    JobType,
    QueueConfig,
    QueuedJob,
    QueueState,
    QueueStats,
    RetryPolicy,
)
from course_ingest.utils.errors import ConfigurationError, DuplicateJobError, EntityNotFoundError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/course_ingest.db")

_OPEN_STATES = (
    QueueState.HELD.value,
    QueueState.WAITING.value,
    QueueState.DELAYED.value,
    QueueState.ACTIVE.value,
)
_OPEN_PLACEHOLDERS = ", ".join("?" for _ in _OPEN_STATES)

# A held job whose producer died mid-bookkeeping is released after this long.
_HELD_GRACE_SECONDS = 60.0

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS queue_jobs (
    seq            INTEGER PRIMARY KEY AUTOINCREMENT,
    id             TEXT    NOT NULL UNIQUE,
    queue_name     TEXT    NOT NULL,
    job_type       TEXT    NOT NULL,
    payload        TEXT    NOT NULL,
    dedupe_key     TEXT,
    priority       INTEGER NOT NULL,
    state          TEXT    NOT NULL,
    attempts_made  INTEGER NOT NULL DEFAULT 0,
    max_attempts   INTEGER NOT NULL,
    progress       REAL    NOT NULL DEFAULT 0,
    failed_reason  TEXT,
    result         TEXT,
    rerun_requested INTEGER NOT NULL DEFAULT 0,
    available_at   REAL    NOT NULL,
    created_at     TEXT    NOT NULL,
    started_at     TEXT,
    finished_at    TEXT
);
"""

_CREATE_INDICES_SQL = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_queue_jobs_dedupe_unfinished ON queue_jobs(dedupe_key) "
    "WHERE state IN ('held', 'waiting', 'delayed', 'active');",
    "CREATE INDEX IF NOT EXISTS idx_queue_jobs_claim ON queue_jobs(queue_name, state, priority, seq);",
]

_CLAIM_SQL = """\
UPDATE queue_jobs
SET state = 'active',
    attempts_made = attempts_made + 1,
    started_at = ?
WHERE id = (
    SELECT id FROM queue_jobs
    WHERE queue_name = ?
      AND state IN ('waiting', 'delayed')
      AND available_at <= ?
    ORDER BY priority ASC, seq ASC
    LIMIT 1
)
RETURNING *;
"""

# Completion and rerun share one statement so a concurrent request_rerun
# is either seen here or rejected because the job is no longer active.
_COMPLETE_SQL = """\
UPDATE queue_jobs
SET state = CASE WHEN rerun_requested = 1 THEN 'waiting' ELSE 'completed' END,
    progress = CASE WHEN rerun_requested = 1 THEN 0 ELSE 100 END,
    attempts_made = CASE WHEN rerun_requested = 1 THEN 0 ELSE attempts_made END,
    finished_at = CASE WHEN rerun_requested = 1 THEN NULL ELSE ? END,
    available_at = CASE WHEN rerun_requested = 1 THEN ? ELSE available_at END,
    result = ?,
    failed_reason = NULL,
    rerun_requested = 0
WHERE id = ?;
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_job(row: Any) -> QueuedJob:
    data = dict(row)
    data.pop("seq", None)
    data["payload"] = json.loads(data["payload"]) if data["payload"] else {}
    data["result"] = json.loads(data["result"]) if data["result"] else None
    return QueuedJob(**data)


class SQLiteJobQueue:
    """Job queue backed by a shared SQLite database file.

    Parameters
    ----------
    configs:
        Queue configurations keyed by queue name; each job type must be
        served by exactly one queue.
    db_path:
        SQLite database file (shared with the job tracker by default).
    clock:
        Wall-clock source in epoch seconds, used for backoff scheduling.
    """

    def __init__(
        self,
        configs: dict[str, QueueConfig],
        db_path: str | Path = _DEFAULT_DB_PATH,
        clock: Any = time.time,
    ) -> None:
        self._configs = configs
        self._db_path = Path(db_path)
        self._clock = clock

    @property
    def configs(self) -> dict[str, QueueConfig]:
        return self._configs

    def config_for(self, job_type: JobType) -> QueueConfig:
        for config in self._configs.values():
            if config.job_type == job_type:
                return config
        raise ConfigurationError(message=f"No queue configured for job type '{job_type.value}'")

    async def initialize(self) -> None:
        """Create the queue table and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            await db.execute("PRAGMA journal_mode = WAL;")
            await db.execute(_CREATE_TABLE_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("job_queue_initialized", path=str(self._db_path), queues=list(self._configs))

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        dedupe_key: str | None = None,
        priority: int | None = None,
        hold: bool = False,
    ) -> QueuedJob:
        """Add a job to the queue serving *job_type*.

        Parameters
        ----------
        job_type:
            Selects the target queue.
        payload:
            JSON-serializable job arguments.
        dedupe_key:
            Deterministic key; must be unique among unfinished jobs.
        priority:
            Lower runs first.  Defaults to the queue's ``default_priority``.
        hold:
            Store the job as ``held``; it becomes claimable only after
            :meth:`release`.

        Returns
        -------
        QueuedJob
            The stored job in ``waiting`` (or ``held``) state.

        Raises
        ------
        DuplicateJobError
            If an unfinished job already holds *dedupe_key*.
        """
        config = self.config_for(job_type)
        job_id = str(uuid.uuid4())
        job_priority = config.default_priority if priority is None else priority
        state = QueueState.HELD if hold else QueueState.WAITING

        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            db.row_factory = aiosqlite.Row
            try:
                await db.execute(
                    "INSERT INTO queue_jobs (id, queue_name, job_type, payload, dedupe_key, priority, "
                    "state, max_attempts, available_at, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        job_id,
                        config.name,
                        job_type.value,
                        json.dumps(payload),
                        dedupe_key,
                        job_priority,
                        state.value,
                        config.retry.attempts,
                        self._clock(),
                        _now_iso(),
                    ),
                )
                await db.commit()
            except sqlite3.IntegrityError as exc:
                await db.rollback()
                existing = await self._find_open_by_key(db, dedupe_key)
                logger.warning(
                    "job_duplicate_rejected",
                    queue=config.name,
                    dedupe_key=dedupe_key,
                    existing_job_id=existing,
                )
                raise DuplicateJobError(dedupe_key=dedupe_key or "", existing_job_id=existing) from exc

        logger.info(
            "job_enqueued",
            job_id=job_id,
            queue=config.name,
            dedupe_key=dedupe_key,
            priority=job_priority,
            held=hold,
        )
        return await self._require_job(job_id)

    async def release(self, job_id: str) -> QueuedJob:
        """Make a ``held`` job claimable."""
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            await db.execute(
                "UPDATE queue_jobs SET state = ?, available_at = ? WHERE id = ? AND state = ?",
                (QueueState.WAITING.value, self._clock(), job_id, QueueState.HELD.value),
            )
            await db.commit()
        return await self._require_job(job_id)

    async def discard(self, job_id: str) -> bool:
        """Delete a ``held`` job, freeing its dedupe key."""
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            cursor = await db.execute(
                "DELETE FROM queue_jobs WHERE id = ? AND state = ?",
                (job_id, QueueState.HELD.value),
            )
            await db.commit()
            removed = cursor.rowcount > 0
        if removed:
            logger.info("held_job_discarded", job_id=job_id)
        return removed

    async def request_rerun(self, job_id: str, payload_patch: dict[str, Any] | None = None) -> bool:
        """Ask an unfinished job to run again once its current attempt completes.

        Jobs that have not started yet are not flagged; they run once
        anyway.  *payload_patch* is merged into the stored payload as a JSON
        merge patch (a ``None`` value removes the key), so the next attempt
        sees it.

        Returns ``False`` when the job is already finished, in which case
        the caller should enqueue a new one.
        """
        patch = json.dumps(payload_patch) if payload_patch else "{}"
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            cursor = await db.execute(
                "UPDATE queue_jobs "
                "SET rerun_requested = CASE WHEN state = ? THEN 1 ELSE rerun_requested END, "
                "    payload = json_patch(payload, ?) "
                f"WHERE id = ? AND state IN ({_OPEN_PLACEHOLDERS})",
                (QueueState.ACTIVE.value, patch, job_id, *_OPEN_STATES),
            )
            await db.commit()
            accepted = cursor.rowcount > 0
        logger.debug("job_rerun_requested", job_id=job_id, accepted=accepted)
        return accepted

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def claim_next(self, queue_name: str) -> QueuedJob | None:
        """Atomically move the best ready job of *queue_name* to ``active``."""
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_CLAIM_SQL, (_now_iso(), queue_name, self._clock()))
            row = await cursor.fetchone()
            await cursor.close()
            await db.commit()
        if row is None:
            return None
        job = _row_to_job(row)
        logger.debug("job_claimed", job_id=job.id, queue=queue_name, attempt=job.attempts_made)
        return job

    async def update_progress(self, job_id: str, progress: float) -> None:
        """Persist the last reported progress, clamped to 0-100."""
        value = max(0.0, min(100.0, float(progress)))
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            await db.execute("UPDATE queue_jobs SET progress = ? WHERE id = ?", (value, job_id))
            await db.commit()

    async def complete(self, job_id: str, result: dict[str, Any] | None = None) -> QueuedJob:
        """Mark the job completed, or put it back to ``waiting`` if a rerun was requested."""
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            await db.execute(_COMPLETE_SQL, (_now_iso(), self._clock(), json.dumps(result or {}), job_id))
            await db.commit()
        updated = await self._require_job(job_id)
        if updated.state == QueueState.WAITING:
            logger.info("job_requeued_for_rerun", job_id=job_id, queue=updated.queue_name)
        return updated

    async def fail(self, job_id: str, error_message: str, retry: RetryPolicy) -> QueuedJob:
        """Record a failed attempt.

        The job is rescheduled as ``delayed`` after an exponential backoff
        while attempts remain, otherwise it becomes terminally ``failed``.
        A pending rerun request turns the terminal failure into a fresh
        ``waiting`` run with a reset attempt count.
        """
        job = await self._require_job(job_id)
        attempts_left = job.attempts_made < min(job.max_attempts, retry.attempts)

        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            if attempts_left:
                delay = retry.delay_for(job.attempts_made)
                await db.execute(
                    "UPDATE queue_jobs SET state = ?, failed_reason = ?, available_at = ?, "
                    "rerun_requested = 0 WHERE id = ?",
                    (QueueState.DELAYED.value, error_message, self._clock() + delay, job_id),
                )
            else:
                await db.execute(
                    "UPDATE queue_jobs "
                    "SET state = CASE WHEN rerun_requested = 1 THEN ? ELSE ? END, "
                    "    attempts_made = CASE WHEN rerun_requested = 1 THEN 0 ELSE attempts_made END, "
                    "    finished_at = CASE WHEN rerun_requested = 1 THEN NULL ELSE ? END, "
                    "    available_at = CASE WHEN rerun_requested = 1 THEN ? ELSE available_at END, "
                    "    failed_reason = ?, rerun_requested = 0 "
                    "WHERE id = ?",
                    (
                        QueueState.WAITING.value,
                        QueueState.FAILED.value,
                        _now_iso(),
                        self._clock(),
                        error_message,
                        job_id,
                    ),
                )
            await db.commit()

        updated = await self._require_job(job_id)
        if attempts_left:
            logger.warning(
                "job_attempt_failed",
                job_id=job_id,
                queue=job.queue_name,
                attempt=job.attempts_made,
                max_attempts=job.max_attempts,
                retry_in_seconds=retry.delay_for(job.attempts_made),
                error=error_message,
            )
        elif updated.state == QueueState.WAITING:
            logger.warning(
                "job_failed_requeued_for_rerun",
                job_id=job_id,
                queue=job.queue_name,
                attempts=job.attempts_made,
                error=error_message,
            )
        else:
            logger.error(
                "job_failed_terminal",
                job_id=job_id,
                queue=job.queue_name,
                attempts=job.attempts_made,
                error=error_message,
            )
        return updated

    async def recover_stalled(self, queue_name: str) -> int:
        """Return jobs left behind by a dead process to ``waiting``.

        Covers ``active`` jobs and ``held`` jobs older than the hold grace
        period.  Only call this while no worker of *queue_name* is running.
        The interrupted attempt still counts toward the retry limit.
        """
        now = self._clock()
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            cursor = await db.execute(
                "UPDATE queue_jobs SET state = ?, available_at = ? "
                "WHERE queue_name = ? AND (state = ? OR (state = ? AND available_at <= ?))",
                (
                    QueueState.WAITING.value,
                    now,
                    queue_name,
                    QueueState.ACTIVE.value,
                    QueueState.HELD.value,
                    now - _HELD_GRACE_SECONDS,
                ),
            )
            await db.commit()
            recovered = cursor.rowcount
        if recovered:
            logger.warning("stalled_jobs_recovered", queue=queue_name, count=recovered)
        return recovered

    async def next_delay(self, queue_name: str) -> float | None:
        """Seconds until the next waiting/delayed job is claimable, or ``None``."""
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            cursor = await db.execute(
                "SELECT MIN(available_at) FROM queue_jobs WHERE queue_name = ? AND state IN (?, ?)",
                (queue_name, QueueState.WAITING.value, QueueState.DELAYED.value),
            )
            row = await cursor.fetchone()
        if row is None or row[0] is None:
            return None
        return max(0.0, row[0] - self._clock())

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> QueuedJob | None:
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM queue_jobs WHERE id = ?", (job_id,))
            row = await cursor.fetchone()
        return _row_to_job(row) if row else None

    async def get_stats(self, queue_name: str) -> QueueStats:
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            cursor = await db.execute(
                "SELECT state, COUNT(*) FROM queue_jobs WHERE queue_name = ? GROUP BY state",
                (queue_name,),
            )
            rows = await cursor.fetchall()
        counts = {state: count for state, count in rows}
        return QueueStats(
            queue_name=queue_name,
            waiting=counts.get(QueueState.WAITING.value, 0),
            active=counts.get(QueueState.ACTIVE.value, 0),
            delayed=counts.get(QueueState.DELAYED.value, 0),
            completed=counts.get(QueueState.COMPLETED.value, 0),
            failed=counts.get(QueueState.FAILED.value, 0),
        )

    async def list_failed(self, queue_name: str, limit: int = 50) -> list[QueuedJob]:
        """Terminally failed jobs, newest first, for manual reprocessing."""
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM queue_jobs WHERE queue_name = ? AND state = ? "
                "ORDER BY seq DESC LIMIT ?",
                (queue_name, QueueState.FAILED.value, limit),
            )
            rows = await cursor.fetchall()
        return [_row_to_job(r) for r in rows]

    async def find_open_job(self, dedupe_key: str) -> QueuedJob | None:
        """Return the unfinished job holding *dedupe_key*, if any."""
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            db.row_factory = aiosqlite.Row
            job_id = await self._find_open_by_key(db, dedupe_key)
        return await self.get_job(job_id) if job_id else None

    # -- helpers ------------------------------------------------------------

    @staticmethod
    async def _find_open_by_key(db: aiosqlite.Connection, dedupe_key: str | None) -> str | None:
        if dedupe_key is None:
            return None
        cursor = await db.execute(
            f"SELECT id FROM queue_jobs WHERE dedupe_key = ? AND state IN ({_OPEN_PLACEHOLDERS})",
            (dedupe_key, *_OPEN_STATES),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def _require_job(self, job_id: str) -> QueuedJob:
        job = await self.get_job(job_id)
        if job is None:
            raise EntityNotFoundError(message=f"Job {job_id} not found")
        return job
