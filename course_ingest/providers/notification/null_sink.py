"""No-op notification sink, injected when no delivery channel is configured."""

from __future__ import annotations

from typing import Any

from course_ingest.interfaces.notification_sink import INotificationSink


class NullNotificationSink(INotificationSink):
    async def emit_progress(
        self,
        user_id: str,
        job_id: str,
        percentage: float,
        stage: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        return None

    async def emit_complete(self, user_id: str, job_id: str, result: dict[str, Any] | None = None) -> None:
        return None

    async def emit_failed(self, user_id: str, job_id: str, error_message: str) -> None:
        return None

    def get_sink_name(self) -> str:
        return "null"
