"""Abstract base class for progress notification delivery.

A sink forwards job events to something outside the pipeline (a push
channel, a webhook, a log).  Sinks are one-way: the pipeline never reads a
reply, and a sink failure must not fail the job that emitted the event.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class INotificationSink(ABC):
    """Contract for delivering ``job:progress`` / ``job:complete`` / ``job:failed`` events."""

    @abstractmethod
    async def emit_progress(
        self,
        user_id: str,
        job_id: str,
        percentage: float,
        stage: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Deliver a stage transition with its completion percentage."""

    @abstractmethod
    async def emit_complete(self, user_id: str, job_id: str, result: dict[str, Any] | None = None) -> None:
        """Deliver the successful terminal state of a job."""

    @abstractmethod
    async def emit_failed(self, user_id: str, job_id: str, error_message: str) -> None:
        """Deliver the terminal failure of a job."""

    @abstractmethod
    def get_sink_name(self) -> str:
        """Return a short identifier used in logs."""
