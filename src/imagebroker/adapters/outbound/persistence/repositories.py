"""Concrete repository implementations using SQLAlchemy.

These adapters implement the outbound port interfaces, translating between
domain entities and ORM models.  Each operation opens its own short
transaction from the session factory, so a history save and a usage
increment never share a commit.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imagebroker.domain.entities import (
    GenerationRequest,
    ProgressLogEntry,
    Provider,
    User,
    UserPreference,
)
from imagebroker.domain.enums import GenerationStatus, ProgressStep
from imagebroker.domain.exceptions import ProviderNotFoundError
from imagebroker.ports.outbound import (
    GenerationRepository,
    ProgressLogRepository,
    ProviderRepository,
    UserRepository,
)

from .models import GenerationLogModel, GenerationRequestModel, ProviderModel, UserModel

UNKNOWN_PROVIDER = "unknown"


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Converters ───────────────────────────────────────────────
def _provider_to_model(p: Provider) -> ProviderModel:
    return ProviderModel(
        name=p.name,
        display_name=p.display_name,
        api_base_url=p.api_base_url,
        is_active=p.is_active,
        is_free_tier=p.is_free_tier,
        unconstrained=p.unconstrained,
        usage_count=p.usage_count,
        quota_requests=p.quota_requests,
        quota_credits=p.quota_credits,
        cost_per_request=p.cost_per_request,
        cost_unit=p.cost_unit,
        last_checked=p.last_checked,
        created_at=p.created_at,
        updated_at=p.updated_at,
    )


def _model_to_provider(m: ProviderModel) -> Provider:
    return Provider(
        name=m.name,
        display_name=m.display_name,
        api_base_url=m.api_base_url,
        is_active=m.is_active,
        is_free_tier=m.is_free_tier,
        unconstrained=m.unconstrained,
        usage_count=m.usage_count,
        quota_requests=m.quota_requests,
        quota_credits=m.quota_credits,
        cost_per_request=float(m.cost_per_request),
        cost_unit=m.cost_unit,
        last_checked=_aware(m.last_checked),
        created_at=_aware(m.created_at),
        updated_at=_aware(m.updated_at),
    )


def _record_to_model(r: GenerationRequest) -> GenerationRequestModel:
    return GenerationRequestModel(
        id=r.id,
        user_id=r.user_id,
        prompt=r.prompt,
        parameters=dict(r.parameters),
        provider_used=r.provider_used,
        status=r.status.value,
        asset_url=r.asset_url,
        error_message=r.error_message,
        cost=r.cost,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def _model_to_record(m: GenerationRequestModel) -> GenerationRequest:
    return GenerationRequest(
        id=m.id,
        user_id=m.user_id,
        prompt=m.prompt,
        parameters=dict(m.parameters or {}),
        provider_used=m.provider_used,
        status=GenerationStatus(m.status),
        asset_url=m.asset_url,
        error_message=m.error_message,
        cost=float(m.cost),
        created_at=_aware(m.created_at),
        updated_at=_aware(m.updated_at),
    )


def _model_to_user(m: UserModel) -> User:
    return User(
        id=m.id,
        email=m.email,
        full_name=m.full_name,
        preferences=UserPreference(
            preferred_provider=m.preferred_provider,
            prioritize_free=m.prioritize_free,
        ),
        created_at=_aware(m.created_at),
    )


# ═══════════════════════════════════════════════════════════════
#  SQLAlchemy Provider Repository
# ═══════════════════════════════════════════════════════════════
class SQLAlchemyProviderRepository(ProviderRepository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def list_all(self) -> list[Provider]:
        async with self._sessions() as session:
            result = await session.execute(select(ProviderModel).order_by(ProviderModel.name))
            return [_model_to_provider(m) for m in result.scalars()]

    async def list_active(self) -> list[Provider]:
        async with self._sessions() as session:
            stmt = (
                select(ProviderModel)
                .where(ProviderModel.is_active.is_(True))
                .order_by(ProviderModel.name)
            )
            result = await session.execute(stmt)
            return [_model_to_provider(m) for m in result.scalars()]

    async def get_by_name(self, name: str) -> Provider | None:
        async with self._sessions() as session:
            model = await session.get(ProviderModel, name)
            return _model_to_provider(model) if model else None

    async def upsert(self, provider: Provider) -> None:
        async with self._sessions.begin() as session:
            await session.merge(_provider_to_model(provider))

    async def increment_usage(self, name: str) -> int:
        async with self._sessions.begin() as session:
            stmt = (
                update(ProviderModel)
                .where(ProviderModel.name == name)
                .values(
                    usage_count=ProviderModel.usage_count + 1,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise ProviderNotFoundError(name)
            new_count = await session.scalar(
                select(ProviderModel.usage_count).where(ProviderModel.name == name)
            )
            return int(new_count)

    async def touch_last_checked(self, name: str, at: datetime) -> None:
        async with self._sessions.begin() as session:
            await session.execute(
                update(ProviderModel).where(ProviderModel.name == name).values(last_checked=at)
            )


# ═══════════════════════════════════════════════════════════════
#  SQLAlchemy Generation Repository
# ═══════════════════════════════════════════════════════════════
class SQLAlchemyGenerationRepository(GenerationRepository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def save(self, record: GenerationRequest) -> None:
        async with self._sessions.begin() as session:
            await session.merge(_record_to_model(record))

    async def get_by_id(self, request_id: str) -> GenerationRequest | None:
        async with self._sessions() as session:
            model = await session.get(GenerationRequestModel, request_id)
            return _model_to_record(model) if model else None

    async def claim_restart(self, record: GenerationRequest) -> bool:
        stmt = (
            update(GenerationRequestModel)
            .where(
                GenerationRequestModel.id == record.id,
                GenerationRequestModel.status != GenerationStatus.PENDING.value,
            )
            .values(
                status=record.status.value,
                asset_url=record.asset_url,
                error_message=record.error_message,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
        )
        async with self._sessions.begin() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def list_by_user(
        self, user_id: str, *, offset: int = 0, limit: int = 10
    ) -> list[GenerationRequest]:
        stmt = (
            select(GenerationRequestModel)
            .where(GenerationRequestModel.user_id == user_id)
            .order_by(GenerationRequestModel.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return [_model_to_record(m) for m in result.scalars()]

    async def count_by_user(self, user_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(GenerationRequestModel)
            .where(GenerationRequestModel.user_id == user_id)
        )
        async with self._sessions() as session:
            return (await session.execute(stmt)).scalar_one()

    async def usage_by_provider(self, user_id: str) -> dict[str, int]:
        stmt = (
            select(GenerationRequestModel.provider_used, func.count())
            .where(GenerationRequestModel.user_id == user_id)
            .group_by(GenerationRequestModel.provider_used)
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            usage: dict[str, int] = {}
            for provider, count in result.all():
                key = provider or UNKNOWN_PROVIDER
                usage[key] = usage.get(key, 0) + count
            return usage

    async def delete(self, request_id: str) -> bool:
        async with self._sessions.begin() as session:
            await session.execute(
                delete(GenerationLogModel).where(GenerationLogModel.request_id == request_id)
            )
            result = await session.execute(
                delete(GenerationRequestModel).where(GenerationRequestModel.id == request_id)
            )
            return result.rowcount > 0


# ═══════════════════════════════════════════════════════════════
#  SQLAlchemy Progress Log Repository
# ═══════════════════════════════════════════════════════════════
class SQLAlchemyProgressLogRepository(ProgressLogRepository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def append(self, entry: ProgressLogEntry) -> None:
        async with self._sessions.begin() as session:
            session.add(
                GenerationLogModel(
                    id=entry.id,
                    request_id=entry.request_id,
                    step=entry.step.value if entry.step else None,
                    message=entry.message,
                    timestamp=entry.timestamp,
                )
            )

    async def list_for_request(self, request_id: str) -> list[ProgressLogEntry]:
        stmt = (
            select(GenerationLogModel)
            .where(GenerationLogModel.request_id == request_id)
            .order_by(GenerationLogModel.timestamp.asc())
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return [
                ProgressLogEntry(
                    id=m.id,
                    request_id=m.request_id,
                    message=m.message,
                    step=ProgressStep(m.step) if m.step else None,
                    timestamp=_aware(m.timestamp),
                )
                for m in result.scalars()
            ]


# ═══════════════════════════════════════════════════════════════
#  SQLAlchemy User Repository
# ═══════════════════════════════════════════════════════════════
class SQLAlchemyUserRepository(UserRepository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def get_by_id(self, user_id: str) -> User | None:
        async with self._sessions() as session:
            model = await session.get(UserModel, user_id)
            return _model_to_user(model) if model else None

    async def save(self, user: User) -> None:
        async with self._sessions.begin() as session:
            await session.merge(
                UserModel(
                    id=user.id,
                    email=user.email,
                    full_name=user.full_name,
                    preferred_provider=user.preferences.preferred_provider,
                    prioritize_free=user.preferences.prioritize_free,
                    created_at=user.created_at,
                )
            )
