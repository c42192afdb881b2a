"""Unit tests for application command handlers."""

import pytest
from unittest.mock import AsyncMock, Mock, ANY
from datetime import datetime

from imagebroker.application.commands import (
    CheckProviderStatusHandler,
    DeleteHistoryCommand,
    DeleteHistoryHandler,
    EnsureUserCommand,
    EnsureUserHandler,
    UpdatePreferencesCommand,
    UpdatePreferencesHandler,
)
from imagebroker.domain.entities import GenerationRequest, Provider, User, UserPreference
from imagebroker.domain.exceptions import (
    AuthorisationError,
    GenerationNotFoundError,
    InvalidStatusTransitionError,
    ProviderNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from imagebroker.domain.value_objects import RemoteStatus
from imagebroker.shared.providers import ProviderCatalog, QuotaTracker, StatusEvaluator


@pytest.fixture
def mock_user_repo():
    repo = Mock()
    repo.get_by_id = AsyncMock(return_value=None)
    repo.save = AsyncMock()
    return repo


@pytest.fixture
def mock_generation_repo():
    repo = Mock()
    repo.get_by_id = AsyncMock(return_value=None)
    repo.delete = AsyncMock(return_value=True)
    return repo


@pytest.fixture
def mock_provider_repo():
    repo = Mock()
    repo.get_by_name = AsyncMock(
        side_effect=lambda name: Provider(name=name, quota_credits=8, usage_count=2)
        if name in ("kieai", "gemini")
        else None
    )
    repo.touch_last_checked = AsyncMock()
    return repo


@pytest.fixture
def catalog(mock_provider_repo):
    return ProviderCatalog(mock_provider_repo)


def _record(**overrides) -> GenerationRequest:
    record = GenerationRequest.start(
        user_id="user-1", prompt="a fox", parameters=None, provider="kieai"
    )
    for key, value in overrides.items():
        setattr(record, key, value)
    return record


# ── Ensure user ──────────────────────────────────────────────
@pytest.mark.asyncio
async def test_ensure_user_provisions_on_first_sight(mock_user_repo):
    handler = EnsureUserHandler(mock_user_repo)

    user = await handler.handle(EnsureUserCommand(user_id="user-9", email="a@b.test"))

    assert user.id == "user-9"
    assert user.preferences == UserPreference()
    mock_user_repo.save.assert_awaited_once_with(ANY)


@pytest.mark.asyncio
async def test_ensure_user_returns_existing(mock_user_repo):
    existing = User(id="user-9", preferences=UserPreference(preferred_provider="gemini"))
    mock_user_repo.get_by_id.return_value = existing
    handler = EnsureUserHandler(mock_user_repo)

    user = await handler.handle(EnsureUserCommand(user_id="user-9"))

    assert user is existing
    mock_user_repo.save.assert_not_called()


# ── Preferences ──────────────────────────────────────────────
@pytest.mark.asyncio
async def test_update_preferences_to_known_provider(mock_user_repo, catalog):
    mock_user_repo.get_by_id.return_value = User(id="user-1")
    handler = UpdatePreferencesHandler(mock_user_repo, catalog)

    prefs = await handler.handle(
        UpdatePreferencesCommand(user_id="user-1", preferred_provider=" Gemini ")
    )

    assert prefs.preferred_provider == "gemini"
    assert prefs.prioritize_free is True
    saved: User = mock_user_repo.save.await_args.args[0]
    assert saved.preferences.preferred_provider == "gemini"


@pytest.mark.asyncio
async def test_update_preferences_auto_skips_catalogue(mock_user_repo, mock_provider_repo, catalog):
    mock_user_repo.get_by_id.return_value = User(
        id="user-1", preferences=UserPreference(preferred_provider="kieai")
    )
    handler = UpdatePreferencesHandler(mock_user_repo, catalog)

    prefs = await handler.handle(
        UpdatePreferencesCommand(user_id="user-1", preferred_provider="auto", prioritize_free=False)
    )

    assert prefs == UserPreference(preferred_provider="auto", prioritize_free=False)
    mock_provider_repo.get_by_name.assert_not_called()


@pytest.mark.asyncio
async def test_update_preferences_partial_keeps_provider(mock_user_repo, catalog):
    mock_user_repo.get_by_id.return_value = User(
        id="user-1", preferences=UserPreference(preferred_provider="kieai")
    )
    handler = UpdatePreferencesHandler(mock_user_repo, catalog)

    prefs = await handler.handle(UpdatePreferencesCommand(user_id="user-1", prioritize_free=False))

    assert prefs.preferred_provider == "kieai"
    assert prefs.prioritize_free is False


@pytest.mark.asyncio
async def test_update_preferences_rejects_unknown_provider(mock_user_repo, catalog):
    mock_user_repo.get_by_id.return_value = User(id="user-1")
    handler = UpdatePreferencesHandler(mock_user_repo, catalog)

    with pytest.raises(ValidationError):
        await handler.handle(UpdatePreferencesCommand(user_id="user-1", preferred_provider="dalle"))
    mock_user_repo.save.assert_not_called()


@pytest.mark.asyncio
async def test_update_preferences_unknown_user(mock_user_repo, catalog):
    handler = UpdatePreferencesHandler(mock_user_repo, catalog)
    with pytest.raises(UserNotFoundError):
        await handler.handle(UpdatePreferencesCommand(user_id="ghost", prioritize_free=True))


# ── Delete history ───────────────────────────────────────────
@pytest.mark.asyncio
async def test_delete_finished_record(mock_generation_repo):
    record = _record()
    record.fail("[kieai] boom")
    mock_generation_repo.get_by_id.return_value = record
    handler = DeleteHistoryHandler(mock_generation_repo)

    await handler.handle(DeleteHistoryCommand(user_id="user-1", request_id=record.id))

    mock_generation_repo.delete.assert_awaited_once_with(record.id)


@pytest.mark.asyncio
async def test_delete_missing_record(mock_generation_repo):
    handler = DeleteHistoryHandler(mock_generation_repo)
    with pytest.raises(GenerationNotFoundError):
        await handler.handle(DeleteHistoryCommand(user_id="user-1", request_id="nope"))


@pytest.mark.asyncio
async def test_delete_other_users_record(mock_generation_repo):
    record = _record()
    record.complete("paper://kieai/1")
    mock_generation_repo.get_by_id.return_value = record
    handler = DeleteHistoryHandler(mock_generation_repo)

    with pytest.raises(AuthorisationError):
        await handler.handle(DeleteHistoryCommand(user_id="intruder", request_id=record.id))
    mock_generation_repo.delete.assert_not_called()


@pytest.mark.asyncio
async def test_delete_pending_record_is_refused(mock_generation_repo):
    record = _record()
    mock_generation_repo.get_by_id.return_value = record
    handler = DeleteHistoryHandler(mock_generation_repo)

    with pytest.raises(InvalidStatusTransitionError):
        await handler.handle(DeleteHistoryCommand(user_id="user-1", request_id=record.id))
    mock_generation_repo.delete.assert_not_called()


# ── Provider status ──────────────────────────────────────────
@pytest.mark.asyncio
async def test_check_provider_status_stamps_last_checked(mock_provider_repo, catalog):
    status_adapter = Mock()
    status_adapter.check_remote_status = AsyncMock(
        return_value=RemoteStatus(reachable=True, remote_quota_hint=12, detail="HTTP 200")
    )
    evaluator = StatusEvaluator(QuotaTracker(mock_provider_repo))
    handler = CheckProviderStatusHandler(catalog, evaluator, status_adapter, mock_provider_repo)

    report = await handler.handle("kieai")

    assert report.remote.reachable is True
    assert report.remote.remote_quota_hint == 12
    assert report.overview.provider.last_checked == report.checked_at
    assert report.overview.remaining == 6
    mock_provider_repo.touch_last_checked.assert_awaited_once_with("kieai", ANY)
    assert isinstance(mock_provider_repo.touch_last_checked.await_args.args[1], datetime)


@pytest.mark.asyncio
async def test_check_unknown_provider_status(mock_provider_repo, catalog):
    status_adapter = Mock()
    status_adapter.check_remote_status = AsyncMock()
    evaluator = StatusEvaluator(QuotaTracker(mock_provider_repo))
    handler = CheckProviderStatusHandler(catalog, evaluator, status_adapter, mock_provider_repo)

    with pytest.raises(ProviderNotFoundError):
        await handler.handle("dalle")
    status_adapter.check_remote_status.assert_not_called()
