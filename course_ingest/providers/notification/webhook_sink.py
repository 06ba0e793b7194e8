"""Notification sink that POSTs each event as JSON to a webhook URL.

The receiving service is responsible for the real-time transport (socket
push, email).  Non-2xx responses raise ``httpx.HTTPStatusError``; the
progress emitter logs and discards sink errors.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from course_ingest.interfaces.notification_sink import INotificationSink
from course_ingest.models.pipeline import EventType, ProgressEvent

logger = structlog.get_logger(logger_name=__name__)


class WebhookNotificationSink(INotificationSink):
    """Deliver :class:`ProgressEvent` payloads over HTTP."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        # A client passed in is shared with the caller, who closes it.
        self._owns_client = client is None

    async def emit_progress(
        self,
        user_id: str,
        job_id: str,
        percentage: float,
        stage: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self._post(
            ProgressEvent(
                event=EventType.PROGRESS,
                user_id=user_id,
                job_id=job_id,
                progress=percentage,
                stage=stage,
                metadata=metadata or {},
            )
        )

    async def emit_complete(self, user_id: str, job_id: str, result: dict[str, Any] | None = None) -> None:
        await self._post(
            ProgressEvent(
                event=EventType.COMPLETE,
                user_id=user_id,
                job_id=job_id,
                progress=100.0,
                stage="completed",
                metadata=result or {},
            )
        )

    async def emit_failed(self, user_id: str, job_id: str, error_message: str) -> None:
        await self._post(
            ProgressEvent(
                event=EventType.FAILED,
                user_id=user_id,
                job_id=job_id,
                stage="failed",
                error=error_message,
            )
        )

    def get_sink_name(self) -> str:
        return "webhook"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, event: ProgressEvent) -> None:
        response = await self._client.post(self._url, json=event.model_dump(mode="json"))
        response.raise_for_status()
        logger.debug("webhook_event_delivered", event=event.event.value, job_id=event.job_id)
