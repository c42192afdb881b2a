"""Quota tracker — remaining allotment and usage bookkeeping per provider.

Usage counters live in storage and are only ever moved by the storage
layer's atomic increment, so concurrent successful generations against the
same provider can never lose an update.
"""

from __future__ import annotations

import math

import structlog

from imagebroker.domain.entities import Provider
from imagebroker.domain.exceptions import BookkeepingError
from imagebroker.ports.outbound import ProviderRepository

logger = structlog.get_logger(__name__)


class QuotaTracker:
    """Answers "how much is left?" and records consumption."""

    def __init__(
        self,
        repository: ProviderRepository,
        *,
        warning_threshold: float = 0.90,
    ) -> None:
        self._repo = repository
        self._warning_thr = warning_threshold

    @staticmethod
    def remaining(provider: Provider) -> float:
        """``max(quota - usage, 0)``; unbounded (``math.inf``) without a quota."""
        limit = provider.quota_limit
        if limit is None:
            return math.inf
        return max(limit - provider.usage_count, 0)

    async def record_usage(self, provider: Provider) -> int:
        """Add exactly one unit of usage; returns the new counter value.

        Raises:
            BookkeepingError: If the increment could not be applied.
        """
        try:
            new_count = await self._repo.increment_usage(provider.name)
        except Exception as exc:
            logger.error(
                "quota_usage_record_failed",
                provider=provider.name,
                error=str(exc),
            )
            raise BookkeepingError(
                f"Usage for {provider.name!r} could not be recorded: {exc}"
            ) from exc

        logger.debug("quota_usage_recorded", provider=provider.name, usage=new_count)
        self._check_warning(provider, new_count)
        return new_count

    # ── Internals ────────────────────────────────────────────
    def _check_warning(self, provider: Provider, usage: int) -> None:
        limit = provider.quota_limit
        if limit is None or limit <= 0:
            return
        usage_pct = usage / limit
        if usage_pct >= self._warning_thr:
            logger.warning(
                "quota_warning",
                provider=provider.name,
                usage_pct=float(f"{(usage_pct * 100):.1f}"),
                usage=usage,
                quota_limit=limit,
            )
