"""Domain value objects — immutable, self-validating types.

Value objects have *no identity*; two instances with equal fields are equal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class GeneratedAsset:
    """What a generation adapter hands back on success."""

    asset_url: str
    provider: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.asset_url or not self.asset_url.strip():
            raise ValueError("asset_url must be a non-empty reference")


@dataclass(frozen=True, slots=True)
class RemoteStatus:
    """Optional enrichment from a provider's own API; never drives eligibility."""

    reachable: bool
    remote_quota_hint: int | None = None
    detail: str = ""


@dataclass(frozen=True, slots=True)
class Page:
    """Offset pagination window (1-based page numbers)."""

    page: int = 1
    limit: int = 10

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if self.limit < 1:
            raise ValueError("limit must be >= 1")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def total_pages(self, total: int) -> int:
        return -(-total // self.limit) if total else 0
