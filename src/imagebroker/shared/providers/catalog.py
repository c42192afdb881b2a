"""Provider catalogue — read-mostly view over configured providers."""

from __future__ import annotations

import structlog

from imagebroker.domain.entities import Provider
from imagebroker.domain.exceptions import ProviderNotFoundError
from imagebroker.ports.outbound import ProviderRepository

logger = structlog.get_logger(__name__)


class ProviderCatalog:
    def __init__(self, repository: ProviderRepository) -> None:
        self._repo = repository

    async def list_active(self) -> list[Provider]:
        """Active providers, in storage iteration order."""
        providers = await self._repo.list_active()
        return [p for p in providers if p.is_active]

    async def list_all(self) -> list[Provider]:
        return await self._repo.list_all()

    async def get(self, name: str) -> Provider:
        provider = await self._repo.get_by_name(name.lower())
        if provider is None:
            logger.debug("provider_lookup_miss", provider=name)
            raise ProviderNotFoundError(name)
        return provider

    async def exists(self, name: str) -> bool:
        return await self._repo.get_by_name(name.lower()) is not None
