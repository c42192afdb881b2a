"""Command handlers — write-side use cases.

Each handler encapsulates a single business operation that mutates state.
Handlers depend only on port interfaces and the provider framework, never on
concrete adapters.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from imagebroker.domain.entities import User, UserPreference
from imagebroker.domain.enums import AUTO_PROVIDER, GenerationStatus
from imagebroker.domain.exceptions import (
    AuthorisationError,
    GenerationNotFoundError,
    InvalidStatusTransitionError,
    UserNotFoundError,
    ValidationError,
)
from imagebroker.domain.value_objects import RemoteStatus
from imagebroker.ports.outbound import (
    GenerationRepository,
    ProviderRepository,
    StatusAdapterPort,
    UserRepository,
)
from imagebroker.application.queries import ProviderOverview
from imagebroker.shared.providers import ProviderCatalog, StatusEvaluator

logger = structlog.get_logger(__name__)


# ═══════════════════════════════════════════════════════════════
#  Ensure User
# ═══════════════════════════════════════════════════════════════
@dataclass
class EnsureUserCommand:
    """Identity claims taken from a verified access token."""

    user_id: str
    email: str = ""
    full_name: str = ""


class EnsureUserHandler:
    """Returns the stored user, creating it with default preferences on first sight."""

    def __init__(self, user_repo: UserRepository) -> None:
        self._repo = user_repo

    async def handle(self, cmd: EnsureUserCommand) -> User:
        user = await self._repo.get_by_id(cmd.user_id)
        if user is not None:
            return user
        user = User(id=cmd.user_id, email=cmd.email, full_name=cmd.full_name)
        await self._repo.save(user)
        logger.info("user_provisioned", user_id=user.id)
        return user


# ═══════════════════════════════════════════════════════════════
#  Update Preferences
# ═══════════════════════════════════════════════════════════════
@dataclass
class UpdatePreferencesCommand:
    user_id: str
    preferred_provider: str | None = None
    prioritize_free: bool | None = None


class UpdatePreferencesHandler:
    def __init__(self, user_repo: UserRepository, catalog: ProviderCatalog) -> None:
        self._users = user_repo
        self._catalog = catalog

    async def handle(self, cmd: UpdatePreferencesCommand) -> UserPreference:
        user = await self._users.get_by_id(cmd.user_id)
        if user is None:
            raise UserNotFoundError(cmd.user_id)

        current = user.preferences
        preferred = current.preferred_provider
        if cmd.preferred_provider is not None:
            preferred = cmd.preferred_provider.strip().lower()
            if preferred != AUTO_PROVIDER and not await self._catalog.exists(preferred):
                raise ValidationError(
                    f"Unknown provider {cmd.preferred_provider!r}; use 'auto' or a configured provider"
                )

        user.preferences = UserPreference(
            preferred_provider=preferred,
            prioritize_free=(
                current.prioritize_free if cmd.prioritize_free is None else cmd.prioritize_free
            ),
        )
        await self._users.save(user)
        logger.info(
            "preferences_updated",
            user_id=user.id,
            preferred_provider=user.preferences.preferred_provider,
            prioritize_free=user.preferences.prioritize_free,
        )
        return user.preferences


# ═══════════════════════════════════════════════════════════════
#  Delete History
# ═══════════════════════════════════════════════════════════════
@dataclass
class DeleteHistoryCommand:
    user_id: str
    request_id: str


class DeleteHistoryHandler:
    def __init__(self, generation_repo: GenerationRepository) -> None:
        self._repo = generation_repo

    async def handle(self, cmd: DeleteHistoryCommand) -> None:
        record = await self._repo.get_by_id(cmd.request_id)
        if record is None:
            raise GenerationNotFoundError(cmd.request_id)
        if record.user_id != cmd.user_id:
            raise AuthorisationError("Only the owner can delete a history record")
        if record.status == GenerationStatus.PENDING:
            raise InvalidStatusTransitionError(record.status.value, "deleted")
        await self._repo.delete(cmd.request_id)
        logger.info("history_deleted", history_id=cmd.request_id, user_id=cmd.user_id)


# ═══════════════════════════════════════════════════════════════
#  Check Provider Status
# ═══════════════════════════════════════════════════════════════
@dataclass
class ProviderStatusReport:
    overview: ProviderOverview
    remote: RemoteStatus
    checked_at: datetime


class CheckProviderStatusHandler:
    """Local eligibility plus a remote reachability probe; stamps ``last_checked``."""

    def __init__(
        self,
        catalog: ProviderCatalog,
        evaluator: StatusEvaluator,
        status_adapter: StatusAdapterPort,
        provider_repo: ProviderRepository,
    ) -> None:
        self._catalog = catalog
        self._evaluator = evaluator
        self._status = status_adapter
        self._providers = provider_repo

    async def handle(self, name: str) -> ProviderStatusReport:
        provider = await self._catalog.get(name)
        remote = await self._status.check_remote_status(provider)
        checked_at = datetime.now(timezone.utc)
        await self._providers.touch_last_checked(provider.name, checked_at)
        provider.last_checked = checked_at
        logger.info(
            "provider_status_checked",
            provider=provider.name,
            reachable=remote.reachable,
            remote_quota_hint=remote.remote_quota_hint,
        )
        return ProviderStatusReport(
            overview=ProviderOverview(provider, self._evaluator.evaluate(provider)),
            remote=remote,
            checked_at=checked_at,
        )
