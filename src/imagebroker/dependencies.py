"""Dependency injection container — wires adapters to ports.

FastAPI's ``Depends()`` system uses these factories to inject the
correct adapter implementations into route handlers.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from fastapi import Depends, Header
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from imagebroker.adapters.outbound.generation import build_paper_adapters
from imagebroker.adapters.outbound.persistence.database import (
    create_engine,
    create_schema,
    create_session_factory,
)
from imagebroker.adapters.outbound.persistence.memory import (
    InMemoryGenerationRepository,
    InMemoryProgressLogRepository,
    InMemoryProviderRepository,
    InMemoryStore,
    InMemoryUserRepository,
)
from imagebroker.adapters.outbound.persistence.repositories import (
    SQLAlchemyGenerationRepository,
    SQLAlchemyProgressLogRepository,
    SQLAlchemyProviderRepository,
    SQLAlchemyUserRepository,
)
from imagebroker.adapters.outbound.status import HttpStatusAdapter
from imagebroker.application.commands import (
    CheckProviderStatusHandler,
    DeleteHistoryHandler,
    EnsureUserCommand,
    EnsureUserHandler,
    UpdatePreferencesHandler,
)
from imagebroker.application.progress import ProgressReporter
from imagebroker.application.queries import (
    GetDashboardHandler,
    GetHistoryDetailHandler,
    GetHistoryHandler,
    GetHistoryLogsHandler,
    GetProviderHandler,
    ListProvidersHandler,
)
from imagebroker.application.services import GenerationOrchestrator
from imagebroker.config import Settings, get_settings
from imagebroker.domain.entities import User
from imagebroker.domain.exceptions import AuthenticationError
from imagebroker.ports.outbound import (
    GenerationAdapterPort,
    GenerationRepository,
    ProgressLogRepository,
    ProviderRepository,
    StatusAdapterPort,
    UserRepository,
)
from imagebroker.shared.providers import (
    ProviderCatalog,
    ProviderSelector,
    QuotaTracker,
    SelectionPolicy,
    StatusEvaluator,
)
from imagebroker.shared.security import decode_token


# ── Settings ─────────────────────────────────────────────────
@lru_cache(maxsize=1)
def get_cached_settings() -> Settings:
    return get_settings()


# ═══════════════════════════════════════════════════════════════
#  Container
# ═══════════════════════════════════════════════════════════════
@dataclass
class Container:
    """Every long-lived collaborator of the service, built once per process."""

    settings: Settings
    provider_repo: ProviderRepository
    generation_repo: GenerationRepository
    log_repo: ProgressLogRepository
    user_repo: UserRepository
    catalog: ProviderCatalog
    quota: QuotaTracker
    evaluator: StatusEvaluator
    selector: ProviderSelector
    reporter: ProgressReporter
    adapters: dict[str, GenerationAdapterPort]
    status_adapter: StatusAdapterPort
    orchestrator: GenerationOrchestrator
    engine: AsyncEngine | None = None

    async def prepare_storage(self) -> None:
        """Create tables for SQLite; PostgreSQL schemas are managed by alembic."""
        if self.engine is not None and self.settings.database_url.startswith("sqlite"):
            await create_schema(self.engine)

    async def ping(self) -> bool:
        if self.engine is None:
            return True
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def aclose(self) -> None:
        if isinstance(self.status_adapter, HttpStatusAdapter):
            await self.status_adapter.close()
        if self.engine is not None:
            await self.engine.dispose()


def build_container(
    settings: Settings,
    *,
    store: InMemoryStore | None = None,
    adapters: dict[str, GenerationAdapterPort] | None = None,
    status_adapter: StatusAdapterPort | None = None,
) -> Container:
    engine: AsyncEngine | None = None
    if settings.storage_backend == "memory" or store is not None:
        store = store or InMemoryStore()
        provider_repo: ProviderRepository = InMemoryProviderRepository(store)
        generation_repo: GenerationRepository = InMemoryGenerationRepository(store)
        log_repo: ProgressLogRepository = InMemoryProgressLogRepository(store)
        user_repo: UserRepository = InMemoryUserRepository(store)
    else:
        engine = create_engine(settings)
        factory = create_session_factory(engine=engine)
        provider_repo = SQLAlchemyProviderRepository(factory)
        generation_repo = SQLAlchemyGenerationRepository(factory)
        log_repo = SQLAlchemyProgressLogRepository(factory)
        user_repo = SQLAlchemyUserRepository(factory)

    policy = SelectionPolicy.from_csv(settings.provider_priority)
    catalog = ProviderCatalog(provider_repo)
    quota = QuotaTracker(provider_repo, warning_threshold=settings.quota_warning_threshold)
    evaluator = StatusEvaluator(quota, unconstrained=settings.unconstrained_provider_names)
    selector = ProviderSelector(catalog, evaluator, policy=policy)
    reporter = ProgressReporter(log_repo)

    if adapters is None:
        adapters = build_paper_adapters(
            policy.priority_order,
            failing=settings.paper_failure_provider_names,
            latency=settings.paper_latency_seconds,
        )

    orchestrator = GenerationOrchestrator(
        selector=selector,
        catalog=catalog,
        quota=quota,
        reporter=reporter,
        generations=generation_repo,
        users=user_repo,
        adapters=adapters,
        max_attempts=settings.max_generation_attempts,
    )

    return Container(
        settings=settings,
        provider_repo=provider_repo,
        generation_repo=generation_repo,
        log_repo=log_repo,
        user_repo=user_repo,
        catalog=catalog,
        quota=quota,
        evaluator=evaluator,
        selector=selector,
        reporter=reporter,
        adapters=adapters,
        status_adapter=status_adapter
        or HttpStatusAdapter(
            timeout=settings.status_check_timeout_seconds,
            attempts=settings.status_check_retries,
        ),
        orchestrator=orchestrator,
        engine=engine,
    )


# ── Singleton ────────────────────────────────────────────────
_container: Container | None = None


def get_container() -> Container:
    global _container
    if _container is None:
        _container = build_container(get_cached_settings())
    return _container


def set_container(container: Container | None) -> None:
    """Install (or clear) the process-wide container; used by the app factory and tests."""
    global _container
    _container = container


# ── Auth dependency ──────────────────────────────────────────
async def get_current_user(
    authorization: str = Header(None, alias="Authorization"),
    container: Container = Depends(get_container),
) -> User:
    """Verify the bearer token and return the (lazily provisioned) user."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Missing or invalid Authorization header")
    token = authorization.split(" ", 1)[1]
    settings = container.settings
    payload: dict[str, Any] = decode_token(token, settings.jwt_secret_key, settings.jwt_algorithm)
    return await EnsureUserHandler(container.user_repo).handle(
        EnsureUserCommand(
            user_id=str(payload["sub"]),
            email=str(payload.get("email", "")),
            full_name=str(payload.get("name", "")),
        )
    )


# ── Use-case handler factories ───────────────────────────────
def get_orchestrator(container: Container = Depends(get_container)) -> GenerationOrchestrator:
    return container.orchestrator


def get_history_handler(container: Container = Depends(get_container)) -> GetHistoryHandler:
    return GetHistoryHandler(container.generation_repo)


def get_history_detail_handler(
    container: Container = Depends(get_container),
) -> GetHistoryDetailHandler:
    return GetHistoryDetailHandler(container.generation_repo)


def get_history_logs_handler(
    container: Container = Depends(get_container),
) -> GetHistoryLogsHandler:
    return GetHistoryLogsHandler(container.generation_repo, container.log_repo)


def get_delete_history_handler(
    container: Container = Depends(get_container),
) -> DeleteHistoryHandler:
    return DeleteHistoryHandler(container.generation_repo)


def get_dashboard_handler(container: Container = Depends(get_container)) -> GetDashboardHandler:
    return GetDashboardHandler(container.generation_repo, container.catalog, container.evaluator)


def get_list_providers_handler(
    container: Container = Depends(get_container),
) -> ListProvidersHandler:
    return ListProvidersHandler(container.catalog, container.evaluator)


def get_provider_handler(container: Container = Depends(get_container)) -> GetProviderHandler:
    return GetProviderHandler(container.catalog, container.evaluator)


def get_provider_status_handler(
    container: Container = Depends(get_container),
) -> CheckProviderStatusHandler:
    return CheckProviderStatusHandler(
        container.catalog,
        container.evaluator,
        container.status_adapter,
        container.provider_repo,
    )


def get_update_preferences_handler(
    container: Container = Depends(get_container),
) -> UpdatePreferencesHandler:
    return UpdatePreferencesHandler(container.user_repo, container.catalog)
