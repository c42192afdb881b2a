"""Generation Orchestration Service.

Drives one generation request through successive providers: select, record,
generate, and either stop on success or fail over to the next eligible
provider until the attempt budget runs out.

Provider choice is delegated to the ``ProviderSelector``; each attempt goes
to the provider's generation adapter.  Adapter failures become the next
retry.  Every other failure ends the run.  Whatever the path, the history
record is left ``completed`` or ``failed``, and the progress channel gets
exactly one ``end`` event before it is closed.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from imagebroker.application.progress import ProgressReporter, RunContext
from imagebroker.domain.entities import GenerationRequest, Provider, UserPreference
from imagebroker.domain.enums import ErrorKind, GenerationStatus
from imagebroker.domain.events import (
    BookkeepingErrorEvent,
    EndEvent,
    FinalFailureEvent,
    GenerationFailedEvent,
    GenerationStartEvent,
    GenerationSuccessEvent,
    HistoryCreatedEvent,
    HistoryUpdatedEvent,
    NoProviderEvent,
    ProviderSelectedEvent,
    ProviderSelectionEvent,
    RegenerationRequestedEvent,
    RetryEvent,
    StartEvent,
    UnexpectedErrorEvent,
    UserFoundEvent,
    snapshot_request,
)
from imagebroker.domain.exceptions import (
    BookkeepingError,
    DomainError,
    GenerationError,
    GenerationNotFoundError,
    InvalidStatusTransitionError,
    UserNotFoundError,
    ValidationError,
)
from imagebroker.domain.value_objects import GeneratedAsset
from imagebroker.ports.outbound import (
    GenerationAdapterPort,
    GenerationRepository,
    ProgressChannelPort,
    UserRepository,
)
from imagebroker.shared.observability.metrics import (
    GENERATION_ATTEMPTS,
    GENERATION_LATENCY,
    GENERATION_RUNS,
    PROVIDER_SELECTIONS,
    SELECTION_EXHAUSTED,
    USAGE_RECORD_FAILURES,
)
from imagebroker.shared.providers import ProviderCatalog, ProviderSelector, QuotaTracker

logger = structlog.get_logger(__name__)

NO_PROVIDER_MESSAGE = "No eligible provider available"
PROMPT_PREVIEW_CHARS = 50


@dataclass
class _Run:
    """Mutable state of one orchestration run."""

    ctx: RunContext
    prompt: str
    parameters: dict[str, Any]
    preferred_provider: str | None = None
    attempted: list[str] = field(default_factory=list)
    record: GenerationRequest | None = None
    last_error: str | None = None

    @property
    def user_id(self) -> str:
        return self.ctx.user_id


class GenerationOrchestrator:
    """Bounded-retry failover over the configured providers."""

    def __init__(
        self,
        *,
        selector: ProviderSelector,
        catalog: ProviderCatalog,
        quota: QuotaTracker,
        reporter: ProgressReporter,
        generations: GenerationRepository,
        users: UserRepository,
        adapters: Mapping[str, GenerationAdapterPort],
        max_attempts: int = 4,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._selector = selector
        self._catalog = catalog
        self._quota = quota
        self._reporter = reporter
        self._generations = generations
        self._users = users
        self._adapters = adapters
        self._max_attempts = max_attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @staticmethod
    def validate_prompt(prompt: str | None) -> str:
        """Reject empty prompts before anything is recorded."""
        cleaned = (prompt or "").strip()
        if not cleaned:
            raise ValidationError("A non-empty prompt is required")
        return cleaned

    # ═══════════════════════════════════════════════════════════
    #  Generate
    # ═══════════════════════════════════════════════════════════
    async def generate(
        self,
        user_id: str,
        prompt: str,
        parameters: Mapping[str, Any] | None = None,
        *,
        channel: ProgressChannelPort | None = None,
    ) -> EndEvent:
        """Run the failover loop and return the terminal ``end`` event.

        Raises:
            ValidationError: If the prompt is empty (nothing is recorded).
        """
        prompt = self.validate_prompt(prompt)
        run = _Run(
            ctx=RunContext(user_id=user_id, channel=channel),
            prompt=prompt,
            parameters=dict(parameters or {}),
        )
        return await self._drive(run, self._failover_loop)

    async def _failover_loop(self, run: _Run) -> EndEvent:
        await self._emit(run, StartEvent(message="Image generation started", prompt=run.prompt))

        user = await self._users.get_by_id(run.user_id)
        if user is None:
            raise UserNotFoundError(run.user_id)
        preferences: UserPreference = user.preferences
        run.preferred_provider = preferences.preferred_provider
        await self._emit(run, UserFoundEvent(message="User loaded", user_id=user.id))

        for attempt in range(1, self._max_attempts + 1):
            await self._emit(
                run,
                ProviderSelectionEvent(
                    message=f"Selecting provider (attempt {attempt}/{self._max_attempts})",
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                ),
            )
            provider = await self._selector.select(preferences, run.attempted)
            if provider is None:
                SELECTION_EXHAUSTED.inc()
                run.last_error = NO_PROVIDER_MESSAGE
                await self._emit(
                    run,
                    NoProviderEvent(
                        message=NO_PROVIDER_MESSAGE,
                        attempt=attempt,
                        attempted_providers=tuple(run.attempted),
                    ),
                )
                break

            run.attempted.append(provider.name)
            PROVIDER_SELECTIONS.labels(provider=provider.name).inc()
            await self._assign(run, provider)
            await self._emit(
                run,
                ProviderSelectedEvent(
                    message=f"Provider {provider.label} selected",
                    provider=provider.name,
                    attempt=attempt,
                ),
            )

            end = await self._attempt(run, provider, attempt)
            if end is not None:
                return end
            if attempt < self._max_attempts:
                await self._emit(
                    run,
                    RetryEvent(message="Retrying with another provider", next_attempt=attempt + 1),
                )

        return await self._final_failure(run)

    async def _assign(self, run: _Run, provider: Provider) -> None:
        if run.record is None:
            run.record = GenerationRequest.start(
                user_id=run.user_id,
                prompt=run.prompt,
                parameters=run.parameters,
                provider=provider.name,
            )
            await self._generations.save(run.record)
            await self._reporter.bind_record(run.ctx, run.record.id)
            await self._emit(
                run,
                HistoryCreatedEvent(
                    message="History record created",
                    history_id=run.record.id,
                    prompt_preview=run.prompt[:PROMPT_PREVIEW_CHARS],
                ),
            )
            return

        run.record.reassign(provider.name)
        await self._generations.save(run.record)
        await self._emit(
            run,
            HistoryUpdatedEvent(
                message=f"History record moved to {provider.name}",
                history_id=run.record.id,
                provider=provider.name,
            ),
        )

    # ═══════════════════════════════════════════════════════════
    #  Regenerate
    # ═══════════════════════════════════════════════════════════
    async def check_regeneration(
        self, request_id: str, *, user_id: str
    ) -> tuple[GenerationRequest, Provider]:
        """Load a record for regeneration and resolve its stored provider.

        Raises:
            GenerationNotFoundError: Unknown record, or owned by someone else.
            InvalidStatusTransitionError: The record is still pending.
            ValidationError: The record was never attributed to a provider.
            ProviderNotFoundError: The stored provider is no longer configured.
        """
        record = await self._generations.get_by_id(request_id)
        if record is None or record.user_id != user_id:
            raise GenerationNotFoundError(request_id)
        if record.status == GenerationStatus.PENDING:
            raise InvalidStatusTransitionError(record.status.value, GenerationStatus.PENDING.value)
        if not record.provider_used:
            raise ValidationError("This record has no provider to regenerate with")
        provider = await self._catalog.get(record.provider_used)
        return record, provider

    async def regenerate(
        self,
        request_id: str,
        *,
        user_id: str,
        channel: ProgressChannelPort | None = None,
        target: tuple[GenerationRequest, Provider] | None = None,
    ) -> EndEvent:
        """Single forced attempt against the record's stored provider.

        ``target`` is the pair returned by an earlier ``check_regeneration``;
        without it the checks run here and raise before any event is emitted.
        The record is claimed atomically, so of two concurrent regenerations
        only one calls the provider; the other ends with a ``conflict`` end
        event.
        """
        if target is None:
            target = await self.check_regeneration(request_id, user_id=user_id)
        record, provider = target

        run = _Run(
            ctx=RunContext(user_id=user_id, channel=channel),
            prompt=record.prompt,
            parameters=dict(record.parameters),
        )

        async def _forced_attempt(run: _Run) -> EndEvent:
            record.restart()
            if not await self._generations.claim_restart(record):
                logger.warning("regeneration_conflict", history_id=record.id, user_id=user_id)
                error = InvalidStatusTransitionError(
                    GenerationStatus.PENDING.value, GenerationStatus.PENDING.value
                )
                return self._failure_end(
                    run, error.message, kind=ErrorKind.CONFLICT, code=error.code
                )
            run.record = record
            await self._reporter.bind_record(run.ctx, record.id)
            run.attempted.append(provider.name)
            await self._emit(
                run,
                RegenerationRequestedEvent(
                    message="Regeneration requested",
                    history_id=record.id,
                    provider=provider.name,
                ),
            )
            end = await self._attempt(run, provider, 1)
            return end if end is not None else await self._final_failure(run)

        return await self._drive(run, _forced_attempt)

    # ═══════════════════════════════════════════════════════════
    #  Shared machinery
    # ═══════════════════════════════════════════════════════════
    async def _drive(self, run: _Run, body: Callable[[_Run], Awaitable[EndEvent]]) -> EndEvent:
        """Execute ``body`` and guarantee the terminal bookkeeping."""
        log = logger.bind(user_id=run.user_id)
        started = time.monotonic()
        try:
            end = await body(run)
        except asyncio.CancelledError:
            await self._force_failed(run, "Generation cancelled")
            await self._reporter.finish(run.ctx, self._failure_end(run, "Generation cancelled"))
            raise
        except Exception as exc:
            end = await self._unexpected(run, exc)

        await self._reporter.finish(run.ctx, end)
        GENERATION_RUNS.labels(status="completed" if end.success else "failed").inc()
        log.info(
            "generation_run_finished",
            success=end.success,
            history_id=run.record.id if run.record else None,
            attempted=run.attempted,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )
        return end

    async def _attempt(self, run: _Run, provider: Provider, attempt: int) -> EndEvent | None:
        """One adapter call.  Returns the success ``end`` event, or ``None`` on failure."""
        assert run.record is not None
        await self._emit(
            run,
            GenerationStartEvent(
                message=f"Generating with {provider.label}",
                provider=provider.name,
                attempt=attempt,
            ),
        )

        started = time.monotonic()
        try:
            asset = await self._call_adapter(provider, run)
        except GenerationError as exc:
            error = exc.message
        except Exception as exc:
            error = f"[{provider.name}] {type(exc).__name__}: {exc}"
        else:
            GENERATION_LATENCY.labels(provider=provider.name).observe(time.monotonic() - started)
            GENERATION_ATTEMPTS.labels(provider=provider.name, outcome="success").inc()
            return await self._succeed(run, provider, asset)

        GENERATION_LATENCY.labels(provider=provider.name).observe(time.monotonic() - started)
        GENERATION_ATTEMPTS.labels(provider=provider.name, outcome="failure").inc()
        logger.warning(
            "generation_attempt_failed",
            provider=provider.name,
            attempt=attempt,
            history_id=run.record.id,
            error=error,
        )
        run.last_error = error
        run.record.fail(error)
        await self._generations.save(run.record)
        await self._emit(
            run,
            GenerationFailedEvent(
                message=f"Generation failed with {provider.label}",
                provider=provider.name,
                error=error,
                attempt=attempt,
            ),
        )
        return None

    async def _call_adapter(self, provider: Provider, run: _Run) -> GeneratedAsset:
        adapter = self._adapters.get(provider.name)
        if adapter is None:
            raise GenerationError(provider.name, "no generation adapter registered")
        return await adapter.generate(run.prompt, dict(run.parameters))

    async def _succeed(self, run: _Run, provider: Provider, asset: GeneratedAsset) -> EndEvent:
        record = run.record
        assert record is not None
        record.complete(asset.asset_url, cost=provider.cost_per_request)

        try:
            await self._generations.save(record)
        except Exception as exc:
            await self._bookkeeping_failed(run, provider, f"History record could not be saved: {exc}")
        try:
            await self._quota.record_usage(provider)
        except BookkeepingError as exc:
            await self._bookkeeping_failed(run, provider, exc.message)

        await self._emit(
            run,
            GenerationSuccessEvent(
                message=f"Image generated with {provider.label}",
                provider=provider.name,
                asset_url=asset.asset_url,
                history_id=record.id,
            ),
        )
        return EndEvent(
            message="Image generated successfully",
            success=True,
            data={
                "message": "Image generated successfully",
                "history": snapshot_request(record),
                "provider_transitions": [
                    f"Attempt {i}: {name}" for i, name in enumerate(run.attempted, start=1)
                ],
                "preferred_provider": run.preferred_provider,
                "provider_used": provider.name,
                "history_id": record.id,
            },
        )

    async def _bookkeeping_failed(self, run: _Run, provider: Provider, error: str) -> None:
        USAGE_RECORD_FAILURES.labels(provider=provider.name).inc()
        logger.error(
            "generation_bookkeeping_failed",
            provider=provider.name,
            history_id=run.record.id if run.record else None,
            error=error,
        )
        await self._emit(
            run,
            BookkeepingErrorEvent(
                message="Bookkeeping failed after a successful generation",
                provider=provider.name,
                error=error,
            ),
        )

    async def _final_failure(self, run: _Run) -> EndEvent:
        error = run.last_error or NO_PROVIDER_MESSAGE
        if run.record is None:
            # Nothing was attempted; keep an owner for the trail and the dashboard.
            run.record = GenerationRequest.unattributed_failure(
                user_id=run.user_id,
                prompt=run.prompt,
                parameters=run.parameters,
                error=error,
            )
            await self._generations.save(run.record)
            await self._reporter.bind_record(run.ctx, run.record.id)

        logger.warning(
            "generation_exhausted",
            history_id=run.record.id,
            attempted=run.attempted,
            error=error,
        )
        await self._emit(
            run,
            FinalFailureEvent(
                message=f"Generation failed after {len(run.attempted)} attempt(s)",
                attempted_providers=tuple(run.attempted),
                error=error,
            ),
        )
        kind = ErrorKind.EXHAUSTION if error == NO_PROVIDER_MESSAGE else ErrorKind.ADAPTER
        return self._failure_end(run, error, kind=kind)

    async def _unexpected(self, run: _Run, exc: Exception) -> EndEvent:
        error = exc.message if isinstance(exc, DomainError) else f"{type(exc).__name__}: {exc}"
        logger.exception(
            "generation_unexpected_error",
            history_id=run.record.id if run.record else None,
            error=error,
        )
        await self._force_failed(run, error)
        await self._emit(run, UnexpectedErrorEvent(message="Unexpected error", error=error))
        code = exc.code if isinstance(exc, DomainError) else "INTERNAL_ERROR"
        return self._failure_end(run, error, kind=ErrorKind.UNEXPECTED, code=code)

    async def _force_failed(self, run: _Run, error: str) -> None:
        record = run.record
        if record is None or record.status == GenerationStatus.COMPLETED:
            return
        if record.status == GenerationStatus.PENDING:
            record.fail(error)
        try:
            await self._generations.save(record)
        except Exception as save_exc:
            logger.error(
                "generation_force_fail_save_failed",
                history_id=record.id,
                error=str(save_exc),
            )

    def _failure_end(
        self,
        run: _Run,
        error: str,
        *,
        kind: ErrorKind = ErrorKind.UNEXPECTED,
        code: str | None = None,
    ) -> EndEvent:
        body: dict[str, Any] = {
            "message": f"Image generation failed after {len(run.attempted)} attempt(s)",
            "error": error,
            "kind": kind.value,
            "attempted_providers": list(run.attempted),
            "history_id": run.record.id if run.record else None,
            "preferred_provider": run.preferred_provider,
        }
        if code is not None:
            body["code"] = code
        return EndEvent(message="Image generation failed", success=False, error=body)

    async def _emit(self, run: _Run, event: Any) -> None:
        await self._reporter.emit(run.ctx, event)


__all__ = ["GenerationOrchestrator", "NO_PROVIDER_MESSAGE"]
