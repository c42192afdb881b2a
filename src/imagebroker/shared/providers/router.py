"""Provider selector — picks the next provider to try for a request.

Filters out inactive, already-attempted and quota-exhausted providers, sorts
the rest by the configured priority order, then applies the user's
preference and the free-tier preference.  Identical inputs always produce
the identical choice.
"""

from __future__ import annotations

from collections.abc import Collection

import structlog

from imagebroker.domain.entities import Provider, UserPreference
from imagebroker.shared.providers.catalog import ProviderCatalog
from imagebroker.shared.providers.status import StatusEvaluator
from imagebroker.shared.providers.types import ProviderStatusView, SelectionPolicy

logger = structlog.get_logger(__name__)

_Candidate = tuple[Provider, ProviderStatusView]


class ProviderSelector:
    """Deterministic provider selection from the catalogue."""

    def __init__(
        self,
        catalog: ProviderCatalog,
        evaluator: StatusEvaluator,
        *,
        policy: SelectionPolicy | None = None,
    ) -> None:
        self._catalog = catalog
        self._evaluator = evaluator
        self._policy = policy or SelectionPolicy()

    @property
    def policy(self) -> SelectionPolicy:
        return self._policy

    async def select(
        self,
        preferences: UserPreference,
        attempted: Collection[str] = (),
    ) -> Provider | None:
        """Return the provider to try next, or ``None`` once nothing is left."""
        candidates = await self.candidates(attempted)

        if not candidates:
            logger.warning(
                "no_eligible_providers",
                attempted=list(attempted),
                preferred=preferences.preferred_provider,
            )
            return None

        # Preferred provider wins unless free tier is prioritised and it is paid.
        if not preferences.is_auto:
            preferred = next(
                (c for c in candidates if c[0].name == preferences.preferred_provider),
                None,
            )
            if preferred is not None:
                provider, view = preferred
                if preferences.prioritize_free and not view.is_free_tier:
                    logger.info(
                        "preferred_provider_not_free",
                        provider=provider.name,
                    )
                else:
                    logger.info("provider_selected", provider=provider.name, reason="preferred")
                    return provider

        pool = candidates
        if preferences.prioritize_free:
            free = [c for c in candidates if c[1].is_free_tier]
            if free:
                pool = free
            else:
                logger.info("no_free_tier_candidates", fallback=[c[0].name for c in candidates])

        selected = pool[0][0]
        logger.info("provider_selected", provider=selected.name, reason="priority")
        return selected

    async def candidates(self, attempted: Collection[str] = ()) -> list[_Candidate]:
        """Eligible, not-yet-attempted providers in priority order."""
        excluded = set(attempted)
        candidates: list[_Candidate] = []

        for provider in await self._catalog.list_active():
            if provider.name in excluded:
                continue

            view = self._evaluator.evaluate(provider)
            if not view.eligible:
                logger.debug(
                    "provider_ineligible",
                    provider=provider.name,
                    remaining=view.remaining,
                    active=view.is_active,
                )
                continue

            candidates.append((provider, view))

        # sorted() is stable: unranked providers keep their catalogue order.
        return sorted(candidates, key=lambda c: self._policy.rank(c[0].name))
