"""Progress reporter — persistent log trail plus live forwarding.

Every emitted event is appended to the progress log of the run's history
record and, when a live observer is attached, forwarded to it straight
away.  Events emitted before the record exists are held back and written,
in order, as soon as the record is bound to the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from imagebroker.domain.entities import ProgressLogEntry
from imagebroker.domain.events import EndEvent, ProgressEvent
from imagebroker.ports.outbound import ProgressChannelPort, ProgressLogRepository

logger = structlog.get_logger(__name__)


@dataclass
class RunContext:
    """Request-scoped state shared between the orchestrator and the reporter."""

    user_id: str
    channel: ProgressChannelPort | None = None
    request_id: str | None = None
    finished: bool = False
    _backlog: list[ProgressEvent] = field(default_factory=list)


class ProgressReporter:
    def __init__(self, log_repo: ProgressLogRepository) -> None:
        self._logs = log_repo

    async def emit(self, ctx: RunContext, event: ProgressEvent) -> None:
        if ctx.finished:
            logger.warning("progress_emit_after_end", step=event.step.value)
            return
        await self._persist(ctx, event)
        await self._forward(ctx, event)

    async def bind_record(self, ctx: RunContext, request_id: str) -> None:
        """Attach the run to its history record and flush held-back events."""
        ctx.request_id = request_id
        backlog, ctx._backlog = ctx._backlog, []
        for event in backlog:
            await self._append(request_id, event)

    async def finish(self, ctx: RunContext, end: EndEvent) -> None:
        """Emit the terminal event and close the live channel (once)."""
        if ctx.finished:
            logger.warning("progress_finish_twice", request_id=ctx.request_id)
            return
        await self.emit(ctx, end)
        ctx.finished = True
        if ctx.channel is not None:
            try:
                await ctx.channel.close()
            except Exception as exc:
                logger.warning("progress_channel_close_failed", error=str(exc))

    # ── Internals ────────────────────────────────────────────
    async def _persist(self, ctx: RunContext, event: ProgressEvent) -> None:
        if ctx.request_id is None:
            ctx._backlog.append(event)
            return
        await self._append(ctx.request_id, event)

    async def _append(self, request_id: str, event: ProgressEvent) -> None:
        entry = ProgressLogEntry(
            request_id=request_id,
            message=_log_message(event),
            step=event.step,
            timestamp=event.timestamp,
        )
        try:
            await self._logs.append(entry)
        except Exception as exc:
            # The trail is best-effort; a lost line must not fail the run.
            logger.error(
                "progress_log_write_failed",
                request_id=request_id,
                step=event.step.value,
                error=str(exc),
            )

    async def _forward(self, ctx: RunContext, event: ProgressEvent) -> None:
        channel = ctx.channel
        if channel is None or not channel.is_attached:
            return
        try:
            await channel.send(event.to_payload())
        except Exception as exc:
            logger.info("progress_forward_skipped", step=event.step.value, error=str(exc))


def _log_message(event: ProgressEvent) -> str:
    if event.message:
        return event.message
    if isinstance(event, EndEvent):
        return "Generation succeeded" if event.success else "Generation failed"
    return event.step.value
