"""Data Transfer Objects — Pydantic models for API boundaries.

DTOs handle serialisation, validation, and documentation.  They live in the
application layer because they are *not* domain objects — they adapt between
the external world and the domain.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from imagebroker.application.commands import ProviderStatusReport
from imagebroker.application.queries import Dashboard, HistoryPage, ProviderOverview
from imagebroker.domain.enums import GenerationStatus, ProgressStep


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict | None = None  # type: ignore[type-arg]


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    services: dict[str, str] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════
#  Generation
# ═══════════════════════════════════════════════════════════════
class GenerateImageRequest(BaseModel):
    # Blank prompts are rejected by the orchestrator, not here.
    prompt: str = Field(..., max_length=4000, examples=["a lighthouse at dusk, oil painting"])
    parameters: dict[str, Any] = Field(default_factory=dict)


class HistoryItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    prompt: str
    parameters: dict[str, Any]
    provider_used: str | None
    status: GenerationStatus
    asset_url: str | None
    error_message: str | None
    cost: float
    created_at: datetime
    updated_at: datetime


class HistoryPageResponse(BaseModel):
    items: list[HistoryItemResponse]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def from_page(cls, page: HistoryPage) -> HistoryPageResponse:
        return cls(
            items=[HistoryItemResponse.model_validate(r) for r in page.items],
            total=page.total,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
        )


class ProgressLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    step: ProgressStep | None
    message: str
    timestamp: datetime


# ═══════════════════════════════════════════════════════════════
#  Providers
# ═══════════════════════════════════════════════════════════════
class ProviderResponse(BaseModel):
    name: str
    display_name: str
    is_active: bool
    is_free_tier: bool
    unconstrained: bool
    eligible: bool
    usage_count: int
    quota_limit: int | None
    remaining: int | None = Field(None, description="null when the provider has no quota ceiling")
    cost_per_request: float
    cost_unit: str
    last_checked: datetime | None

    @classmethod
    def from_overview(cls, overview: ProviderOverview) -> ProviderResponse:
        p, view = overview.provider, overview.status
        return cls(
            name=p.name,
            display_name=p.label,
            is_active=p.is_active,
            is_free_tier=view.is_free_tier,
            unconstrained=view.unconstrained,
            eligible=view.eligible,
            usage_count=p.usage_count,
            quota_limit=p.quota_limit,
            remaining=overview.remaining,
            cost_per_request=p.cost_per_request,
            cost_unit=p.cost_unit,
            last_checked=p.last_checked,
        )


class ProviderStatusResponse(BaseModel):
    provider: ProviderResponse
    reachable: bool
    remote_quota_hint: int | None
    detail: str
    checked_at: datetime

    @classmethod
    def from_report(cls, report: ProviderStatusReport) -> ProviderStatusResponse:
        return cls(
            provider=ProviderResponse.from_overview(report.overview),
            reachable=report.remote.reachable,
            remote_quota_hint=report.remote.remote_quota_hint,
            detail=report.remote.detail,
            checked_at=report.checked_at,
        )


class DashboardResponse(BaseModel):
    total_images: int
    provider_usage: dict[str, int]
    providers: list[ProviderResponse]

    @classmethod
    def from_dashboard(cls, dashboard: Dashboard) -> DashboardResponse:
        return cls(
            total_images=dashboard.total_images,
            provider_usage=dashboard.provider_usage,
            providers=[ProviderResponse.from_overview(o) for o in dashboard.providers],
        )


# ═══════════════════════════════════════════════════════════════
#  Users
# ═══════════════════════════════════════════════════════════════
class PreferencesResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    preferred_provider: str
    prioritize_free: bool


class UpdatePreferencesRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    preferred_provider: str | None = Field(None, min_length=1, max_length=50, examples=["auto", "gemini"])
    prioritize_free: bool | None = None
