"""In-memory implementations of the repository ports.

Used for paper mode and tests.  Entities are copied on the way in and out
so callers cannot mutate stored state without going through the port, the
same isolation a database gives.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import replace
from datetime import datetime

from imagebroker.domain.entities import GenerationRequest, ProgressLogEntry, Provider, User
from imagebroker.domain.enums import GenerationStatus
from imagebroker.domain.exceptions import ProviderNotFoundError
from imagebroker.ports.outbound import (
    GenerationRepository,
    ProgressLogRepository,
    ProviderRepository,
    UserRepository,
)

from .repositories import UNKNOWN_PROVIDER


class InMemoryStore:
    """Shared backing state for the in-memory repositories."""

    def __init__(self) -> None:
        self.providers: dict[str, Provider] = {}
        self.records: dict[str, GenerationRequest] = {}
        self.logs: list[ProgressLogEntry] = []
        self.users: dict[str, User] = {}
        self.lock = asyncio.Lock()


class InMemoryProviderRepository(ProviderRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def list_all(self) -> list[Provider]:
        return [copy.deepcopy(p) for _, p in sorted(self._store.providers.items())]

    async def list_active(self) -> list[Provider]:
        return [p for p in await self.list_all() if p.is_active]

    async def get_by_name(self, name: str) -> Provider | None:
        provider = self._store.providers.get(name)
        return copy.deepcopy(provider) if provider else None

    async def upsert(self, provider: Provider) -> None:
        self._store.providers[provider.name] = copy.deepcopy(provider)

    async def increment_usage(self, name: str) -> int:
        async with self._store.lock:
            current = self._store.providers.get(name)
            if current is None:
                raise ProviderNotFoundError(name)
            # Yield while holding the lock so concurrent callers genuinely queue.
            await asyncio.sleep(0)
            updated = replace(current, usage_count=current.usage_count + 1)
            self._store.providers[name] = updated
            return updated.usage_count

    async def touch_last_checked(self, name: str, at: datetime) -> None:
        current = self._store.providers.get(name)
        if current is not None:
            self._store.providers[name] = replace(current, last_checked=at)


class InMemoryGenerationRepository(GenerationRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def save(self, record: GenerationRequest) -> None:
        self._store.records[record.id] = copy.deepcopy(record)

    async def get_by_id(self, request_id: str) -> GenerationRequest | None:
        record = self._store.records.get(request_id)
        return copy.deepcopy(record) if record else None

    async def claim_restart(self, record: GenerationRequest) -> bool:
        async with self._store.lock:
            current = self._store.records.get(record.id)
            if current is None or current.status == GenerationStatus.PENDING:
                return False
            self._store.records[record.id] = copy.deepcopy(record)
            return True

    async def list_by_user(
        self, user_id: str, *, offset: int = 0, limit: int = 10
    ) -> list[GenerationRequest]:
        owned = [r for r in self._store.records.values() if r.user_id == user_id]
        owned.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in owned[offset : offset + limit]]

    async def count_by_user(self, user_id: str) -> int:
        return sum(1 for r in self._store.records.values() if r.user_id == user_id)

    async def usage_by_provider(self, user_id: str) -> dict[str, int]:
        usage: dict[str, int] = {}
        for record in self._store.records.values():
            if record.user_id != user_id:
                continue
            key = record.provider_used or UNKNOWN_PROVIDER
            usage[key] = usage.get(key, 0) + 1
        return usage

    async def delete(self, request_id: str) -> bool:
        if self._store.records.pop(request_id, None) is None:
            return False
        self._store.logs = [e for e in self._store.logs if e.request_id != request_id]
        return True


class InMemoryProgressLogRepository(ProgressLogRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def append(self, entry: ProgressLogEntry) -> None:
        self._store.logs.append(entry)

    async def list_for_request(self, request_id: str) -> list[ProgressLogEntry]:
        # Stable sort keeps insertion order for equal timestamps.
        return sorted(
            (e for e in self._store.logs if e.request_id == request_id),
            key=lambda e: e.timestamp,
        )


class InMemoryUserRepository(UserRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def get_by_id(self, user_id: str) -> User | None:
        user = self._store.users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def save(self, user: User) -> None:
        self._store.users[user.id] = copy.deepcopy(user)
