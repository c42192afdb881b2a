"""Server-sent events — live progress stream for a single generation run.

The orchestration run executes as a background task and pushes its events
into a ``QueueProgressChannel``; the HTTP response drains the queue as
``text/event-stream`` frames.  If the client goes away the channel is
detached, the run carries on and its remaining events only reach the log
trail.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Coroutine
from typing import Any

import orjson
import structlog
from fastapi.responses import StreamingResponse

from imagebroker.ports.outbound import ProgressChannelPort

logger = structlog.get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_background_runs: set[asyncio.Task[Any]] = set()


def _reap(task: asyncio.Task[Any]) -> None:
    _background_runs.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("background_run_failed", error=f"{type(exc).__name__}: {exc}")


def run_in_background(coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
    """Start ``coro`` detached from the request and keep a reference to it."""
    task = asyncio.get_running_loop().create_task(coro)
    _background_runs.add(task)
    task.add_done_callback(_reap)
    return task


def active_background_runs() -> int:
    return len(_background_runs)


async def drain_background_runs(timeout: float) -> int:
    """Wait up to ``timeout`` seconds for tracked runs; returns how many are still running."""
    if not active_background_runs():
        return 0
    loop = asyncio.get_running_loop()
    pending = {task for task in _background_runs if task.get_loop() is loop}
    if not pending:
        return 0
    logger.info("background_runs_draining", count=len(pending), timeout=timeout)
    _, still_running = await asyncio.wait(pending, timeout=timeout)
    for task in still_running:
        logger.warning("background_run_abandoned", task=task.get_name())
    return len(still_running)


class QueueProgressChannel(ProgressChannelPort):
    """Single-observer channel backed by an ``asyncio.Queue``."""

    _CLOSED = None

    def __init__(self) -> None:
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._attached = True
        self._closed = False

    @property
    def is_attached(self) -> bool:
        return self._attached and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def send(self, payload: dict[str, Any]) -> None:
        if not self.is_attached:
            return
        self._queue.put_nowait(payload)

    async def close(self) -> None:
        if self._closed:
            logger.warning("progress_channel_already_closed")
            return
        self._closed = True
        self._queue.put_nowait(self._CLOSED)

    def detach(self) -> None:
        if self._attached and not self._closed:
            logger.info("progress_observer_detached")
        self._attached = False

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Yield payloads until the channel is closed."""
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item

    async def stream(self) -> AsyncIterator[bytes]:
        """Encode payloads as SSE ``data:`` frames; detaches on disconnect."""
        try:
            async for payload in self.events():
                yield b"data: " + orjson.dumps(payload) + b"\n\n"
        finally:
            self.detach()


def event_stream_response(channel: QueueProgressChannel) -> StreamingResponse:
    return StreamingResponse(
        channel.stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
