"""Domain entities — objects with identity and lifecycle.

Entities are *mutable* but expose controlled mutation methods that enforce
business invariants.  They carry a unique ``id`` (or, for providers, a
stable ``name``) field.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from imagebroker.domain.enums import AUTO_PROVIDER, GenerationStatus, ProgressStep
from imagebroker.domain.exceptions import InvalidStatusTransitionError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════
#  Provider
# ═══════════════════════════════════════════════════════════════
@dataclass(slots=True)
class Provider:
    """A configured image-generation backend.

    ``quota_requests`` and ``quota_credits`` mirror the two ways upstream
    vendors express their allotment; the first non-null one is the ceiling.
    ``unconstrained`` providers are billed outside the quota system and stay
    eligible regardless of usage while active.
    """

    name: str
    display_name: str = ""
    api_base_url: str = ""
    is_active: bool = True
    is_free_tier: bool = True
    unconstrained: bool = False
    usage_count: int = 0
    quota_requests: int | None = None
    quota_credits: int | None = None
    cost_per_request: float = 0.0
    cost_unit: str = "credits"
    last_checked: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if self.usage_count < 0:
            raise ValueError("usage_count must never be negative")

    @property
    def quota_limit(self) -> int | None:
        if self.quota_requests is not None:
            return self.quota_requests
        return self.quota_credits

    @property
    def label(self) -> str:
        return self.display_name or self.name


# ═══════════════════════════════════════════════════════════════
#  User & preferences
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class UserPreference:
    preferred_provider: str = AUTO_PROVIDER
    prioritize_free: bool = True

    @property
    def is_auto(self) -> bool:
        return self.preferred_provider == AUTO_PROVIDER


@dataclass(slots=True)
class User:
    id: str = field(default_factory=_new_id)
    email: str = ""
    full_name: str = ""
    preferences: UserPreference = field(default_factory=UserPreference)
    created_at: datetime = field(default_factory=_utcnow)


# ═══════════════════════════════════════════════════════════════
#  Generation request (history record)
# ═══════════════════════════════════════════════════════════════
@dataclass(slots=True)
class GenerationRequest:
    """The single record of an in-flight or finished generation.

    It is created on the first provider attempt and mutated in place on every
    later attempt; it is never re-created per attempt.
    """

    id: str = field(default_factory=_new_id)
    user_id: str = ""
    prompt: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)
    provider_used: str | None = None
    status: GenerationStatus = GenerationStatus.PENDING
    asset_url: str | None = None
    error_message: str | None = None
    cost: float = 0.0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def start(
        cls,
        *,
        user_id: str,
        prompt: str,
        parameters: dict[str, Any] | None,
        provider: str,
    ) -> GenerationRequest:
        return cls(
            user_id=user_id,
            prompt=prompt,
            parameters=dict(parameters or {}),
            provider_used=provider,
        )

    @classmethod
    def unattributed_failure(
        cls,
        *,
        user_id: str,
        prompt: str,
        parameters: dict[str, Any] | None,
        error: str,
    ) -> GenerationRequest:
        """Record for a run that ended before any provider could be attempted."""
        return cls(
            user_id=user_id,
            prompt=prompt,
            parameters=dict(parameters or {}),
            provider_used=None,
            status=GenerationStatus.FAILED,
            error_message=error,
        )

    # ── State transitions ────────────────────────────────────
    def _transition_to(self, new_status: GenerationStatus) -> None:
        if not self.status.can_transition_to(new_status):
            raise InvalidStatusTransitionError(self.status.value, new_status.value)
        self.status = new_status
        self.updated_at = _utcnow()

    def reassign(self, provider: str) -> None:
        """Point the record at the next provider and reset it to pending."""
        if self.status != GenerationStatus.PENDING:
            self._transition_to(GenerationStatus.PENDING)
        self.provider_used = provider
        self.asset_url = None
        self.error_message = None

    def complete(self, asset_url: str, *, cost: float = 0.0) -> None:
        if not asset_url:
            raise ValueError("a completed generation needs an asset reference")
        self._transition_to(GenerationStatus.COMPLETED)
        self.asset_url = asset_url
        self.error_message = None
        self.cost = cost

    def fail(self, error: str) -> None:
        self._transition_to(GenerationStatus.FAILED)
        self.asset_url = None
        self.error_message = error or "Unknown generation error"

    def restart(self) -> None:
        """Re-enter pending for a regeneration; the creation time is reset."""
        self._transition_to(GenerationStatus.PENDING)
        self.asset_url = None
        self.error_message = None
        self.created_at = _utcnow()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


# ═══════════════════════════════════════════════════════════════
#  Progress log entry
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class ProgressLogEntry:
    """Append-only audit line attached to a generation record."""

    request_id: str
    message: str
    step: ProgressStep | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=_new_id)
