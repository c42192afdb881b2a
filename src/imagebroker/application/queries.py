"""Query handlers — read-side use cases.

Query handlers are intentionally simple: they fetch data from repositories
and the provider framework and return plain result objects.  No mutation of
domain state happens here.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import structlog

from imagebroker.domain.entities import GenerationRequest, ProgressLogEntry, Provider
from imagebroker.domain.exceptions import GenerationNotFoundError
from imagebroker.domain.value_objects import Page
from imagebroker.ports.outbound import GenerationRepository, ProgressLogRepository
from imagebroker.shared.providers import ProviderCatalog, ProviderStatusView, StatusEvaluator

logger = structlog.get_logger(__name__)


async def _owned_record(
    repo: GenerationRepository, user_id: str, request_id: str
) -> GenerationRequest:
    record = await repo.get_by_id(request_id)
    if record is None or record.user_id != user_id:
        raise GenerationNotFoundError(request_id)
    return record


# ═══════════════════════════════════════════════════════════════
#  Generation history
# ═══════════════════════════════════════════════════════════════
@dataclass
class GetHistoryQuery:
    user_id: str
    page: int = 1
    limit: int = 10


@dataclass
class HistoryPage:
    items: list[GenerationRequest]
    total: int
    page: int
    limit: int
    total_pages: int


class GetHistoryHandler:
    def __init__(self, generation_repo: GenerationRepository) -> None:
        self._repo = generation_repo

    async def handle(self, query: GetHistoryQuery) -> HistoryPage:
        window = Page(page=query.page, limit=query.limit)
        logger.debug("get_history", user_id=query.user_id, page=window.page, limit=window.limit)
        total = await self._repo.count_by_user(query.user_id)
        items = await self._repo.list_by_user(
            query.user_id, offset=window.offset, limit=window.limit
        )
        return HistoryPage(
            items=items,
            total=total,
            page=window.page,
            limit=window.limit,
            total_pages=window.total_pages(total),
        )


@dataclass
class GetHistoryDetailQuery:
    user_id: str
    request_id: str


class GetHistoryDetailHandler:
    def __init__(self, generation_repo: GenerationRepository) -> None:
        self._repo = generation_repo

    async def handle(self, query: GetHistoryDetailQuery) -> GenerationRequest:
        return await _owned_record(self._repo, query.user_id, query.request_id)


@dataclass
class GetHistoryLogsQuery:
    user_id: str
    request_id: str


class GetHistoryLogsHandler:
    """Progress trail of one record, oldest entry first."""

    def __init__(
        self,
        generation_repo: GenerationRepository,
        log_repo: ProgressLogRepository,
    ) -> None:
        self._generations = generation_repo
        self._logs = log_repo

    async def handle(self, query: GetHistoryLogsQuery) -> list[ProgressLogEntry]:
        await _owned_record(self._generations, query.user_id, query.request_id)
        return await self._logs.list_for_request(query.request_id)


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
@dataclass
class ProviderOverview:
    provider: Provider
    status: ProviderStatusView

    @property
    def remaining(self) -> int | None:
        return None if math.isinf(self.status.remaining) else int(self.status.remaining)


class ListProvidersHandler:
    def __init__(self, catalog: ProviderCatalog, evaluator: StatusEvaluator) -> None:
        self._catalog = catalog
        self._evaluator = evaluator

    async def handle(self, *, active_only: bool = False) -> list[ProviderOverview]:
        providers = (
            await self._catalog.list_active() if active_only else await self._catalog.list_all()
        )
        return [ProviderOverview(p, self._evaluator.evaluate(p)) for p in providers]


class GetProviderHandler:
    def __init__(self, catalog: ProviderCatalog, evaluator: StatusEvaluator) -> None:
        self._catalog = catalog
        self._evaluator = evaluator

    async def handle(self, name: str) -> ProviderOverview:
        provider = await self._catalog.get(name)
        return ProviderOverview(provider, self._evaluator.evaluate(provider))


# ═══════════════════════════════════════════════════════════════
#  Dashboard
# ═══════════════════════════════════════════════════════════════
@dataclass
class Dashboard:
    total_images: int
    provider_usage: dict[str, int] = field(default_factory=dict)
    providers: list[ProviderOverview] = field(default_factory=list)


class GetDashboardHandler:
    def __init__(
        self,
        generation_repo: GenerationRepository,
        catalog: ProviderCatalog,
        evaluator: StatusEvaluator,
    ) -> None:
        self._generations = generation_repo
        self._providers = ListProvidersHandler(catalog, evaluator)

    async def handle(self, user_id: str) -> Dashboard:
        usage = await self._generations.usage_by_provider(user_id)
        return Dashboard(
            total_images=sum(usage.values()),
            provider_usage=usage,
            providers=await self._providers.handle(),
        )
