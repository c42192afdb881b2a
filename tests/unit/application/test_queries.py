"""Unit tests for application query handlers."""

import pytest
from unittest.mock import AsyncMock, Mock

from imagebroker.application.queries import (
    GetDashboardHandler,
    GetHistoryDetailHandler,
    GetHistoryDetailQuery,
    GetHistoryHandler,
    GetHistoryLogsHandler,
    GetHistoryLogsQuery,
    GetHistoryQuery,
    GetProviderHandler,
    ListProvidersHandler,
)
from imagebroker.domain.entities import GenerationRequest, Provider
from imagebroker.domain.exceptions import GenerationNotFoundError
from imagebroker.shared.providers import ProviderCatalog, QuotaTracker, StatusEvaluator


@pytest.fixture
def mock_generation_repo():
    repo = Mock()
    repo.count_by_user = AsyncMock(return_value=0)
    repo.list_by_user = AsyncMock(return_value=[])
    repo.get_by_id = AsyncMock(return_value=None)
    repo.usage_by_provider = AsyncMock(return_value={})
    return repo


@pytest.fixture
def mock_log_repo():
    repo = Mock()
    repo.list_for_request = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def mock_provider_repo():
    providers = [
        Provider(name="kieai", quota_credits=8, usage_count=8),
        Provider(name="gemini", unconstrained=True),
        Provider(name="photai", quota_requests=25, is_active=False),
    ]
    repo = Mock()
    repo.list_all = AsyncMock(return_value=providers)
    repo.list_active = AsyncMock(return_value=[p for p in providers if p.is_active])
    repo.get_by_name = AsyncMock(
        side_effect=lambda name: next((p for p in providers if p.name == name), None)
    )
    return repo


@pytest.fixture
def catalog(mock_provider_repo):
    return ProviderCatalog(mock_provider_repo)


@pytest.fixture
def evaluator(mock_provider_repo):
    return StatusEvaluator(QuotaTracker(mock_provider_repo))


def _record(user_id: str = "user-1") -> GenerationRequest:
    return GenerationRequest.start(user_id=user_id, prompt="p", parameters=None, provider="gemini")


# ── History ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_history_pagination(mock_generation_repo):
    mock_generation_repo.count_by_user.return_value = 23
    mock_generation_repo.list_by_user.return_value = [_record(), _record()]
    handler = GetHistoryHandler(mock_generation_repo)

    page = await handler.handle(GetHistoryQuery(user_id="user-1", page=3, limit=10))

    assert page.total == 23
    assert page.total_pages == 3
    assert page.page == 3
    assert len(page.items) == 2
    mock_generation_repo.list_by_user.assert_awaited_once_with("user-1", offset=20, limit=10)


@pytest.mark.asyncio
async def test_history_empty(mock_generation_repo):
    handler = GetHistoryHandler(mock_generation_repo)
    page = await handler.handle(GetHistoryQuery(user_id="user-1"))
    assert page.items == []
    assert page.total_pages == 0


@pytest.mark.asyncio
async def test_history_detail_owner_only(mock_generation_repo):
    record = _record()
    mock_generation_repo.get_by_id.return_value = record
    handler = GetHistoryDetailHandler(mock_generation_repo)

    assert await handler.handle(GetHistoryDetailQuery("user-1", record.id)) is record
    with pytest.raises(GenerationNotFoundError):
        await handler.handle(GetHistoryDetailQuery("someone-else", record.id))


@pytest.mark.asyncio
async def test_history_logs_check_ownership_first(mock_generation_repo, mock_log_repo):
    handler = GetHistoryLogsHandler(mock_generation_repo, mock_log_repo)

    with pytest.raises(GenerationNotFoundError):
        await handler.handle(GetHistoryLogsQuery("user-1", "missing"))
    mock_log_repo.list_for_request.assert_not_called()


@pytest.mark.asyncio
async def test_history_logs(mock_generation_repo, mock_log_repo):
    record = _record()
    mock_generation_repo.get_by_id.return_value = record
    handler = GetHistoryLogsHandler(mock_generation_repo, mock_log_repo)

    await handler.handle(GetHistoryLogsQuery("user-1", record.id))

    mock_log_repo.list_for_request.assert_awaited_once_with(record.id)


# ── Providers ────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_list_providers_with_live_status(catalog, evaluator):
    overviews = await ListProvidersHandler(catalog, evaluator).handle()

    by_name = {o.provider.name: o for o in overviews}
    assert set(by_name) == {"kieai", "gemini", "photai"}
    assert by_name["kieai"].remaining == 0
    assert not by_name["kieai"].status.eligible
    assert by_name["gemini"].remaining is None
    assert by_name["gemini"].status.eligible
    assert not by_name["photai"].status.eligible


@pytest.mark.asyncio
async def test_list_active_providers_only(catalog, evaluator, mock_provider_repo):
    overviews = await ListProvidersHandler(catalog, evaluator).handle(active_only=True)
    assert [o.provider.name for o in overviews] == ["kieai", "gemini"]
    mock_provider_repo.list_all.assert_not_called()


@pytest.mark.asyncio
async def test_get_provider(catalog, evaluator):
    overview = await GetProviderHandler(catalog, evaluator).handle("photai")
    assert overview.remaining == 25
    assert not overview.status.is_active


# ── Dashboard ────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_dashboard_totals(mock_generation_repo, catalog, evaluator):
    mock_generation_repo.usage_by_provider.return_value = {"gemini": 4, "kieai": 2, "unknown": 1}
    handler = GetDashboardHandler(mock_generation_repo, catalog, evaluator)

    dashboard = await handler.handle("user-1")

    assert dashboard.total_images == 7
    assert dashboard.provider_usage["unknown"] == 1
    assert len(dashboard.providers) == 3
