"""Domain-specific exception hierarchy.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for all domain-layer errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Validation ───────────────────────────────────────────────
class ValidationError(DomainError):
    """Input failed domain validation rules."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="VALIDATION_ERROR")


# ── Generation records ───────────────────────────────────────
class GenerationNotFoundError(DomainError):
    def __init__(self, request_id: str) -> None:
        super().__init__(
            f"Generation record {request_id!r} not found", code="GENERATION_NOT_FOUND"
        )


class InvalidStatusTransitionError(DomainError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot transition generation from {current!r} to {target!r}",
            code="INVALID_STATUS_TRANSITION",
        )


# ── Providers ────────────────────────────────────────────────
class ProviderNotFoundError(DomainError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Provider {name!r} not found", code="PROVIDER_NOT_FOUND")


class GenerationError(DomainError):
    """A single provider's generation attempt failed."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}", code="GENERATION_ERROR")


class BookkeepingError(DomainError):
    """Record save or usage increment failed after a successful generation."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="BOOKKEEPING_ERROR")


# ── Users ────────────────────────────────────────────────────
class UserNotFoundError(DomainError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id!r} not found", code="USER_NOT_FOUND")


# ── Auth ─────────────────────────────────────────────────────
class AuthenticationError(DomainError):
    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message, code="AUTHENTICATION_ERROR")


class AuthorisationError(DomainError):
    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message, code="AUTHORISATION_ERROR")
