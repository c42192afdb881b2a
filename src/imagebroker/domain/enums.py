"""Domain enumerations for the image provider broker."""

from __future__ import annotations

import enum

AUTO_PROVIDER = "auto"


class GenerationStatus(str, enum.Enum):
    """Lifecycle state machine for a generation request record."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    # ── Allowed transitions ──
    def can_transition_to(self, target: GenerationStatus) -> bool:
        return target in _GENERATION_TRANSITIONS.get(self, set())

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStatus.COMPLETED, GenerationStatus.FAILED)


# Terminal states only leave through a retry or a regeneration (back to pending).
_GENERATION_TRANSITIONS: dict[GenerationStatus, set[GenerationStatus]] = {
    GenerationStatus.PENDING: {GenerationStatus.COMPLETED, GenerationStatus.FAILED},
    GenerationStatus.COMPLETED: {GenerationStatus.PENDING},
    GenerationStatus.FAILED: {GenerationStatus.PENDING},
}


class ProgressStep(str, enum.Enum):
    """Every step kind a progress event can carry."""

    START = "start"
    USER_FOUND = "user_found"
    PROVIDER_SELECTION = "provider_selection"
    NO_PROVIDER = "no_provider"
    PROVIDER_SELECTED = "provider_selected"
    HISTORY_CREATED = "history_created"
    HISTORY_UPDATED = "history_updated"
    GENERATION_START = "generation_start"
    GENERATION_SUCCESS = "generation_success"
    GENERATION_FAILED = "generation_failed"
    RETRY = "retry"
    BOOKKEEPING_ERROR = "bookkeeping_error"
    FINAL_FAILURE = "final_failure"
    UNEXPECTED_ERROR = "unexpected_error"
    REGENERATION_REQUESTED = "regeneration_requested"
    END = "end"


class ErrorKind(str, enum.Enum):
    """Classification of the error that ended (or disturbed) a run."""

    EXHAUSTION = "exhaustion"
    ADAPTER = "adapter"
    CONFLICT = "conflict"
    UNEXPECTED = "unexpected"
