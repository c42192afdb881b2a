"""Status evaluator — live eligibility of a single provider."""

from __future__ import annotations

from collections.abc import Iterable

from imagebroker.domain.entities import Provider
from imagebroker.shared.providers.quota import QuotaTracker
from imagebroker.shared.providers.types import ProviderStatusView


class StatusEvaluator:
    """Derives eligibility and effective free-tier state from catalog + quota.

    A provider is unconstrained when its own flag says so or when its name is
    listed in ``unconstrained`` (the configured override).
    """

    def __init__(
        self,
        quota: QuotaTracker,
        *,
        unconstrained: Iterable[str] = (),
    ) -> None:
        self._quota = quota
        self._unconstrained = frozenset(n.lower() for n in unconstrained)

    def is_unconstrained(self, provider: Provider) -> bool:
        return provider.unconstrained or provider.name in self._unconstrained

    def evaluate(self, provider: Provider) -> ProviderStatusView:
        remaining = self._quota.remaining(provider)
        unconstrained = self.is_unconstrained(provider)

        if unconstrained:
            eligible = provider.is_active
            is_free_tier = provider.is_free_tier
        else:
            eligible = provider.is_active and remaining > 0
            is_free_tier = provider.is_free_tier and remaining > 0

        return ProviderStatusView(
            name=provider.name,
            eligible=eligible,
            is_free_tier=is_free_tier,
            remaining=remaining,
            is_active=provider.is_active,
            unconstrained=unconstrained,
        )
