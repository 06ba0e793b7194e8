"""Job progress broadcasting to notification sinks and local listeners.

Workers call :meth:`ProgressEmitter.emit_progress` after every stage
transition and :meth:`emit_complete` / :meth:`emit_failed` at the end of a
job.  The emitter

1. keeps the latest snapshot per job (served by :meth:`get_status`),
2. forwards the event to every configured :class:`INotificationSink`,
3. invokes in-process listeners registered for the job id (the job
   progress WebSocket registers one per connection).

A terminal event drops the job's listeners after notifying them.  Only
the most recent ``max_finished`` terminal snapshots are kept, so a
long-running worker process does not grow with every job it has run.

Delivery is one-way: sink and listener errors (including sink timeouts)
are logged as warnings and never propagate into the job.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from course_ingest.interfaces.notification_sink import INotificationSink
from course_ingest.models.pipeline import EventType, PipelineStage, ProgressEvent
from course_ingest.utils.logging import get_logger


@dataclass
class _JobSnapshot:
    stage: str = PipelineStage.STARTED.value
    progress: float = 0.0
    event: EventType = EventType.PROGRESS
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


class ProgressEmitter:
    """Fan out job events to sinks and listeners.

    Parameters
    ----------
    sinks:
        Delivery channels; an empty list makes the emitter log-only.
    sink_timeout:
        Seconds allowed per sink call before it is abandoned.
    max_finished:
        Terminal snapshots kept for :meth:`get_status`; older ones are evicted.
    """

    def __init__(
        self,
        sinks: list[INotificationSink] | None = None,
        sink_timeout: float = 5.0,
        max_finished: int = 1000,
    ) -> None:
        self._sinks = list(sinks or [])
        self._sink_timeout = sink_timeout
        self._max_finished = max(0, max_finished)
        self._snapshots: dict[str, _JobSnapshot] = {}
        # Finished job ids, oldest first.
        self._finished: OrderedDict[str, None] = OrderedDict()
        self._listeners: dict[str, list[Callable]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    async def emit_progress(
        self,
        user_id: str | None,
        job_id: str,
        percentage: float,
        stage: PipelineStage | str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        stage_name = stage.value if isinstance(stage, PipelineStage) else stage
        progress = max(0.0, min(100.0, float(percentage)))
        # A requeued job is live again.
        self._finished.pop(job_id, None)
        self._snapshots[job_id] = _JobSnapshot(stage=stage_name, progress=progress, metadata=metadata or {})
        self._logger.debug("job_progress", job_id=job_id, stage=stage_name, progress=round(progress, 1))

        if user_id:
            for sink in self._sinks:
                await self._deliver(sink, job_id, sink.emit_progress(user_id, job_id, progress, stage_name, metadata))
        await self._notify_listeners(
            ProgressEvent(
                event=EventType.PROGRESS,
                user_id=user_id or "",
                job_id=job_id,
                progress=progress,
                stage=stage_name,
                metadata=metadata or {},
            )
        )

    async def emit_complete(self, user_id: str | None, job_id: str, result: dict[str, Any] | None = None) -> None:
        self._snapshots[job_id] = _JobSnapshot(
            stage=PipelineStage.COMPLETED.value,
            progress=100.0,
            event=EventType.COMPLETE,
            metadata=result or {},
        )
        self._logger.info("job_complete_emitted", job_id=job_id)

        if user_id:
            for sink in self._sinks:
                await self._deliver(sink, job_id, sink.emit_complete(user_id, job_id, result))
        await self._notify_listeners(
            ProgressEvent(
                event=EventType.COMPLETE,
                user_id=user_id or "",
                job_id=job_id,
                progress=100.0,
                stage=PipelineStage.COMPLETED.value,
                metadata=result or {},
            )
        )
        self._finish(job_id)

    async def emit_failed(self, user_id: str | None, job_id: str, error_message: str) -> None:
        previous = self._snapshots.get(job_id)
        self._snapshots[job_id] = _JobSnapshot(
            stage=PipelineStage.FAILED.value,
            progress=previous.progress if previous else 0.0,
            event=EventType.FAILED,
            error=error_message,
        )
        self._logger.info("job_failed_emitted", job_id=job_id, error=error_message)

        if user_id:
            for sink in self._sinks:
                await self._deliver(sink, job_id, sink.emit_failed(user_id, job_id, error_message))
        await self._notify_listeners(
            ProgressEvent(
                event=EventType.FAILED,
                user_id=user_id or "",
                job_id=job_id,
                stage=PipelineStage.FAILED.value,
                error=error_message,
            )
        )
        self._finish(job_id)

    # ------------------------------------------------------------------
    # Listeners and snapshots
    # ------------------------------------------------------------------

    def register_listener(self, job_id: str, callback: Callable) -> None:
        """Register a sync or async ``callback(event: ProgressEvent)`` for a job."""
        listeners = self._listeners.setdefault(job_id, [])
        if callback not in listeners:
            listeners.append(callback)

    def unregister_listener(self, job_id: str, callback: Callable) -> None:
        listeners = self._listeners.get(job_id, [])
        if callback in listeners:
            listeners.remove(callback)
        if not listeners:
            self._listeners.pop(job_id, None)

    def get_status(self, job_id: str) -> dict:
        """Return the latest ``stage``/``progress``/``event``/``error`` seen for a job."""
        snapshot = self._snapshots.get(job_id)
        if snapshot is None:
            return {"stage": None, "progress": 0.0, "event": None, "error": None, "metadata": {}}
        return {
            "stage": snapshot.stage,
            "progress": snapshot.progress,
            "event": snapshot.event.value,
            "error": snapshot.error,
            "metadata": dict(snapshot.metadata),
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _finish(self, job_id: str) -> None:
        self._listeners.pop(job_id, None)
        self._finished[job_id] = None
        self._finished.move_to_end(job_id)
        while len(self._finished) > self._max_finished:
            evicted, _ = self._finished.popitem(last=False)
            self._snapshots.pop(evicted, None)

    async def _deliver(self, sink: INotificationSink, job_id: str, call: Any) -> None:
        try:
            await asyncio.wait_for(call, timeout=self._sink_timeout)
        except Exception as exc:  # noqa: BLE001 -- notification must never fail a job
            self._logger.warning(
                "notification_sink_error",
                sink=sink.get_sink_name(),
                job_id=job_id,
                error=str(exc) or type(exc).__name__,
            )

    async def _notify_listeners(self, event: ProgressEvent) -> None:
        for callback in list(self._listeners.get(event.job_id, [])):
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "listener_callback_error",
                    job_id=event.job_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
