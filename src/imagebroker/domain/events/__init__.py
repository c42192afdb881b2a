"""Progress events — the closed, versioned schema streamed to callers.

Every step of a generation run is described by exactly one event class.
Consumers switch on ``step`` and can rely on the fields of that variant
being present; no free-form fields are attached at runtime.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any

from imagebroker.domain.entities import GenerationRequest
from imagebroker.domain.enums import ProgressStep

SCHEMA_VERSION = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def snapshot_request(record: GenerationRequest) -> dict[str, Any]:
    """Plain-dict view of a history record for event payloads."""
    return {
        "id": record.id,
        "user_id": record.user_id,
        "prompt": record.prompt,
        "parameters": _jsonable(record.parameters),
        "provider_used": record.provider_used,
        "status": record.status.value,
        "asset_url": record.asset_url,
        "error_message": record.error_message,
        "cost": record.cost,
        "created_at": record.created_at.isoformat(),
    }


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Base class for all progress events."""

    step: ProgressStep = field(default=ProgressStep.START, init=False)
    message: str = ""
    timestamp: datetime = field(default_factory=_utcnow)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "version": SCHEMA_VERSION,
            "step": self.step.value,
            "timestamp": self.timestamp.isoformat(),
        }
        for f in fields(self):
            if f.name in ("step", "timestamp"):
                continue
            payload[f.name] = _jsonable(getattr(self, f.name))
        return payload


# ── Run lifecycle ────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class StartEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.START, init=False)
    prompt: str = ""


@dataclass(frozen=True, slots=True)
class UserFoundEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.USER_FOUND, init=False)
    user_id: str = ""


# ── Selection ────────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class ProviderSelectionEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.PROVIDER_SELECTION, init=False)
    attempt: int = 0
    max_attempts: int = 0


@dataclass(frozen=True, slots=True)
class NoProviderEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.NO_PROVIDER, init=False)
    attempt: int = 0
    attempted_providers: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ProviderSelectedEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.PROVIDER_SELECTED, init=False)
    provider: str = ""
    attempt: int = 0


# ── History record ───────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class HistoryCreatedEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.HISTORY_CREATED, init=False)
    history_id: str = ""
    prompt_preview: str = ""


@dataclass(frozen=True, slots=True)
class HistoryUpdatedEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.HISTORY_UPDATED, init=False)
    history_id: str = ""
    provider: str = ""


# ── Generation attempts ──────────────────────────────────────
@dataclass(frozen=True, slots=True)
class GenerationStartEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.GENERATION_START, init=False)
    provider: str = ""
    attempt: int = 0


@dataclass(frozen=True, slots=True)
class GenerationSuccessEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.GENERATION_SUCCESS, init=False)
    provider: str = ""
    asset_url: str = ""
    history_id: str = ""


@dataclass(frozen=True, slots=True)
class GenerationFailedEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.GENERATION_FAILED, init=False)
    provider: str = ""
    error: str = ""
    attempt: int = 0


@dataclass(frozen=True, slots=True)
class RetryEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.RETRY, init=False)
    next_attempt: int = 0


@dataclass(frozen=True, slots=True)
class RegenerationRequestedEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.REGENERATION_REQUESTED, init=False)
    history_id: str = ""
    provider: str = ""


# ── Errors ───────────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class BookkeepingErrorEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.BOOKKEEPING_ERROR, init=False)
    provider: str = ""
    error: str = ""


@dataclass(frozen=True, slots=True)
class FinalFailureEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.FINAL_FAILURE, init=False)
    attempted_providers: tuple[str, ...] = ()
    error: str = ""


@dataclass(frozen=True, slots=True)
class UnexpectedErrorEvent(ProgressEvent):
    step: ProgressStep = field(default=ProgressStep.UNEXPECTED_ERROR, init=False)
    error: str = ""


# ── Terminal ─────────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class EndEvent(ProgressEvent):
    """Exactly one per run; also the body of the non-streaming response."""

    step: ProgressStep = field(default=ProgressStep.END, init=False)
    success: bool = False
    data: dict[str, Any] | None = None
    error: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "version": SCHEMA_VERSION,
            "step": self.step.value,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
        }
        if self.success:
            payload["data"] = _jsonable(self.data or {})
        else:
            payload["error"] = _jsonable(self.error or {})
        return payload
