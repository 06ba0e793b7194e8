"""Notification sink that writes every event to the structured log."""

from __future__ import annotations

from typing import Any

import structlog

from course_ingest.interfaces.notification_sink import INotificationSink
from course_ingest.models.pipeline import EventType

logger = structlog.get_logger(logger_name=__name__)


class LogNotificationSink(INotificationSink):
    async def emit_progress(
        self,
        user_id: str,
        job_id: str,
        percentage: float,
        stage: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        logger.info(
            EventType.PROGRESS.value,
            user_id=user_id,
            job_id=job_id,
            progress=percentage,
            stage=stage,
            **(metadata or {}),
        )

    async def emit_complete(self, user_id: str, job_id: str, result: dict[str, Any] | None = None) -> None:
        logger.info(EventType.COMPLETE.value, user_id=user_id, job_id=job_id, result=result or {})

    async def emit_failed(self, user_id: str, job_id: str, error_message: str) -> None:
        logger.warning(EventType.FAILED.value, user_id=user_id, job_id=job_id, error=error_message)

    def get_sink_name(self) -> str:
        return "log"
