"""WebSocket endpoint for live job progress.

Subscribes a client to one job through the :class:`ProgressEmitter`
listener mechanism.  The connection lifecycle:

    client connects             ->  accept, register listener
                                <-  current snapshot
                                <-  one JSON message per progress event
                                <-  terminal event (job:complete / job:failed)
    server closes               ->  listener unregistered

A client that disconnects early simply unregisters its listener.  A job
that already finished gets its terminal snapshot and an immediate close.
"""

from __future__ import annotations

import asyncio
import contextlib

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from course_ingest.models.pipeline import EventType, ProgressEvent
from course_ingest.pipeline.progress_emitter import ProgressEmitter
from course_ingest.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

_TERMINAL_EVENTS = frozenset({EventType.COMPLETE.value, EventType.FAILED.value})


async def stream_job_progress(websocket: WebSocket, job_id: str, emitter: ProgressEmitter) -> None:
    """Push *job_id*'s progress events to *websocket* until the job ends."""
    await websocket.accept()
    _logger.info("websocket_connected", job_id=job_id)
    finished = asyncio.Event()

    async def _on_event(event: ProgressEvent) -> None:
        # The socket may already be gone; cleanup happens in the finally block.
        with contextlib.suppress(Exception):
            await websocket.send_json(event.model_dump(mode="json"))
        if event.event.value in _TERMINAL_EVENTS:
            finished.set()

    emitter.register_listener(job_id, _on_event)
    waiters: list[asyncio.Task] = []
    try:
        status = emitter.get_status(job_id)
        await websocket.send_json({"job_id": job_id, **status})
        if status["event"] in _TERMINAL_EVENTS:
            finished.set()

        # Reading keeps the connection alive and surfaces client disconnects.
        waiters = [
            asyncio.create_task(_read_until_disconnect(websocket)),
            asyncio.create_task(finished.wait()),
        ]
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

        if finished.is_set():
            with contextlib.suppress(Exception):
                await websocket.close()
    except WebSocketDisconnect:
        _logger.debug("websocket_closed_by_client", job_id=job_id)
    finally:
        for task in waiters:
            task.cancel()
        emitter.unregister_listener(job_id, _on_event)
        _logger.info("websocket_disconnected", job_id=job_id, job_finished=finished.is_set())


async def _read_until_disconnect(websocket: WebSocket) -> None:
    with contextlib.suppress(WebSocketDisconnect):
        while True:
            await websocket.receive_text()
