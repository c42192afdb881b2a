"""Health, Images, Providers, Users — REST routers."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import ORJSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from imagebroker.adapters.inbound.sse import (
    QueueProgressChannel,
    event_stream_response,
    run_in_background,
)
from imagebroker.application.commands import (
    CheckProviderStatusHandler,
    DeleteHistoryCommand,
    DeleteHistoryHandler,
    UpdatePreferencesCommand,
    UpdatePreferencesHandler,
)
from imagebroker.application.dtos import (
    DashboardResponse,
    ErrorResponse,
    GenerateImageRequest,
    HealthResponse,
    HistoryItemResponse,
    HistoryPageResponse,
    PreferencesResponse,
    ProgressLogResponse,
    ProviderResponse,
    ProviderStatusResponse,
    UpdatePreferencesRequest,
)
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
from imagebroker.application.services import GenerationOrchestrator
from imagebroker.dependencies import (
    Container,
    get_container,
    get_current_user,
    get_dashboard_handler,
    get_delete_history_handler,
    get_history_detail_handler,
    get_history_handler,
    get_history_logs_handler,
    get_list_providers_handler,
    get_orchestrator,
    get_provider_handler,
    get_provider_status_handler,
    get_update_preferences_handler,
)
from imagebroker.domain.entities import User
from imagebroker.domain.enums import ErrorKind
from imagebroker.domain.events import EndEvent

_FAILURE_STATUS = {
    ErrorKind.EXHAUSTION.value: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.ADAPTER.value: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.CONFLICT.value: status.HTTP_409_CONFLICT,
}


def _end_response(end: EndEvent) -> ORJSONResponse:
    """Non-streaming variant: the ``end`` payload as the whole response body."""
    if end.success:
        code = status.HTTP_200_OK
    else:
        kind = (end.error or {}).get("kind")
        code = _FAILURE_STATUS.get(kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return ORJSONResponse(status_code=code, content=end.to_payload())


# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(container: Container = Depends(get_container)) -> ORJSONResponse:
    settings = container.settings
    services: dict[str, str] = {
        "storage": settings.storage_backend,
        "generation": f"{settings.generation_adapter_mode} ({len(container.adapters)} adapters)",
    }
    try:
        await container.ping()
        services["database"] = "connected"
    except Exception as exc:
        services["database"] = "disconnected"
        services["database_error"] = str(exc)

    overall = "ok" if services["database"] == "connected" else "degraded"
    body = HealthResponse(status=overall, environment=settings.app_env.value, services=services)
    return ORJSONResponse(
        status_code=status.HTTP_200_OK if overall == "ok" else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(),
    )


@health_router.get("/metrics")
async def prometheus_metrics(container: Container = Depends(get_container)) -> Response:
    if not container.settings.prometheus_enabled:
        return Response(status_code=status.HTTP_404_NOT_FOUND)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ═══════════════════════════════════════════════════════════════
#  Images
# ═══════════════════════════════════════════════════════════════
images_router = APIRouter(prefix="/images", tags=["Images"])


@images_router.post(
    "/generate",
    responses={422: {"model": ErrorResponse}},
)
async def generate_image(
    body: GenerateImageRequest,
    stream: bool = Query(True, description="stream progress as server-sent events"),
    user: User = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Generate an image, failing over across providers.

    With ``stream=true`` the response is a ``text/event-stream`` of progress
    events ending with ``step=end``; otherwise the ``end`` payload is returned
    once the run has finished.
    """
    prompt = orchestrator.validate_prompt(body.prompt)
    if stream:
        channel = QueueProgressChannel()
        run_in_background(
            orchestrator.generate(user.id, prompt, body.parameters, channel=channel)
        )
        return event_stream_response(channel)

    # Shielded so a dropped connection does not abort the run.
    task = run_in_background(orchestrator.generate(user.id, prompt, body.parameters))
    return _end_response(await asyncio.shield(task))


@images_router.get("/history", response_model=HistoryPageResponse)
async def list_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    handler: GetHistoryHandler = Depends(get_history_handler),
) -> HistoryPageResponse:
    result = await handler.handle(GetHistoryQuery(user_id=user.id, page=page, limit=limit))
    return HistoryPageResponse.from_page(result)


@images_router.get("/history/{history_id}", response_model=HistoryItemResponse)
async def get_history_detail(
    history_id: str,
    user: User = Depends(get_current_user),
    handler: GetHistoryDetailHandler = Depends(get_history_detail_handler),
) -> HistoryItemResponse:
    record = await handler.handle(GetHistoryDetailQuery(user_id=user.id, request_id=history_id))
    return HistoryItemResponse.model_validate(record)


@images_router.get("/history/{history_id}/logs", response_model=list[ProgressLogResponse])
async def get_history_logs(
    history_id: str,
    user: User = Depends(get_current_user),
    handler: GetHistoryLogsHandler = Depends(get_history_logs_handler),
) -> list[ProgressLogResponse]:
    entries = await handler.handle(GetHistoryLogsQuery(user_id=user.id, request_id=history_id))
    return [ProgressLogResponse.model_validate(e) for e in entries]


@images_router.delete(
    "/history/{history_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def delete_history(
    history_id: str,
    user: User = Depends(get_current_user),
    handler: DeleteHistoryHandler = Depends(get_delete_history_handler),
) -> Response:
    await handler.handle(DeleteHistoryCommand(user_id=user.id, request_id=history_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@images_router.post("/history/{history_id}/regenerate")
async def regenerate_image(
    history_id: str,
    stream: bool = Query(False, description="stream progress as server-sent events"),
    user: User = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Retry a finished record once against its stored provider."""
    target = await orchestrator.check_regeneration(history_id, user_id=user.id)
    if stream:
        channel = QueueProgressChannel()
        run_in_background(
            orchestrator.regenerate(history_id, user_id=user.id, channel=channel, target=target)
        )
        return event_stream_response(channel)

    task = run_in_background(orchestrator.regenerate(history_id, user_id=user.id, target=target))
    return _end_response(await asyncio.shield(task))


@images_router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    user: User = Depends(get_current_user),
    handler: GetDashboardHandler = Depends(get_dashboard_handler),
) -> DashboardResponse:
    return DashboardResponse.from_dashboard(await handler.handle(user.id))


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Providers"])


@providers_router.get("", response_model=list[ProviderResponse])
async def list_providers(
    active_only: bool = Query(False),
    _user: User = Depends(get_current_user),
    handler: ListProvidersHandler = Depends(get_list_providers_handler),
) -> list[ProviderResponse]:
    overviews = await handler.handle(active_only=active_only)
    return [ProviderResponse.from_overview(o) for o in overviews]


@providers_router.get("/{name}", response_model=ProviderResponse)
async def get_provider(
    name: str,
    _user: User = Depends(get_current_user),
    handler: GetProviderHandler = Depends(get_provider_handler),
) -> ProviderResponse:
    return ProviderResponse.from_overview(await handler.handle(name))


@providers_router.get("/{name}/status", response_model=ProviderStatusResponse)
async def check_provider_status(
    name: str,
    _user: User = Depends(get_current_user),
    handler: CheckProviderStatusHandler = Depends(get_provider_status_handler),
) -> ProviderStatusResponse:
    return ProviderStatusResponse.from_report(await handler.handle(name))


# ═══════════════════════════════════════════════════════════════
#  Users
# ═══════════════════════════════════════════════════════════════
users_router = APIRouter(prefix="/users", tags=["Users"])


@users_router.get("/me/preferences", response_model=PreferencesResponse)
async def get_preferences(user: User = Depends(get_current_user)) -> PreferencesResponse:
    return PreferencesResponse.model_validate(user.preferences)


@users_router.put("/me/preferences", response_model=PreferencesResponse)
async def update_preferences(
    body: UpdatePreferencesRequest,
    user: User = Depends(get_current_user),
    handler: UpdatePreferencesHandler = Depends(get_update_preferences_handler),
) -> PreferencesResponse:
    prefs = await handler.handle(
        UpdatePreferencesCommand(
            user_id=user.id,
            preferred_provider=body.preferred_provider,
            prioritize_free=body.prioritize_free,
        )
    )
    return PreferencesResponse.model_validate(prefs)
