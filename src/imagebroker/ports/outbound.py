"""Outbound ports — interfaces that infrastructure adapters must implement.

These are the *driven* ports in hexagonal architecture.  The domain and
application layers depend only on these abstractions, never on concrete
implementations (database drivers, HTTP clients, etc.).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from imagebroker.domain.entities import (
    GenerationRequest,
    ProgressLogEntry,
    Provider,
    User,
)
from imagebroker.domain.value_objects import GeneratedAsset, RemoteStatus


# ═══════════════════════════════════════════════════════════════
#  Repository ports
# ═══════════════════════════════════════════════════════════════
class ProviderRepository(ABC):
    """Provider catalogue plus the usage counters."""

    @abstractmethod
    async def list_all(self) -> list[Provider]: ...

    @abstractmethod
    async def list_active(self) -> list[Provider]: ...

    @abstractmethod
    async def get_by_name(self, name: str) -> Provider | None: ...

    @abstractmethod
    async def upsert(self, provider: Provider) -> None: ...

    @abstractmethod
    async def increment_usage(self, name: str) -> int:
        """Atomically add one to ``usage_count`` and return the new value."""
        ...

    @abstractmethod
    async def touch_last_checked(self, name: str, at: datetime) -> None: ...


class GenerationRepository(ABC):
    """History records, one per generation request."""

    @abstractmethod
    async def save(self, record: GenerationRequest) -> None:
        """Insert or update the record in place."""
        ...

    @abstractmethod
    async def get_by_id(self, request_id: str) -> GenerationRequest | None: ...

    @abstractmethod
    async def claim_restart(self, record: GenerationRequest) -> bool:
        """Store a restarted (pending) record unless the stored one is already pending.

        Check and write are one atomic step; ``False`` means another run
        holds the record.
        """
        ...

    @abstractmethod
    async def list_by_user(
        self, user_id: str, *, offset: int = 0, limit: int = 10
    ) -> list[GenerationRequest]: ...

    @abstractmethod
    async def count_by_user(self, user_id: str) -> int: ...

    @abstractmethod
    async def usage_by_provider(self, user_id: str) -> dict[str, int]: ...

    @abstractmethod
    async def delete(self, request_id: str) -> bool: ...


class ProgressLogRepository(ABC):
    """Append-only progress trail."""

    @abstractmethod
    async def append(self, entry: ProgressLogEntry) -> None: ...

    @abstractmethod
    async def list_for_request(self, request_id: str) -> list[ProgressLogEntry]: ...


class UserRepository(ABC):
    @abstractmethod
    async def get_by_id(self, user_id: str) -> User | None: ...

    @abstractmethod
    async def save(self, user: User) -> None: ...


# ═══════════════════════════════════════════════════════════════
#  Generation adapter port
# ═══════════════════════════════════════════════════════════════
class GenerationAdapterPort(ABC):
    """One provider's image generation backend.

    ``generate`` blocks (awaits) until a terminal outcome, polling the
    remote job internally if needed.  It returns the asset or raises
    ``GenerationError``.
    """

    provider_name: str = ""

    @abstractmethod
    async def generate(
        self, prompt: str, parameters: dict[str, Any]
    ) -> GeneratedAsset: ...


# ═══════════════════════════════════════════════════════════════
#  Status adapter port
# ═══════════════════════════════════════════════════════════════
class StatusAdapterPort(ABC):
    @abstractmethod
    async def check_remote_status(self, provider: Provider) -> RemoteStatus: ...


# ═══════════════════════════════════════════════════════════════
#  Progress channel port
# ═══════════════════════════════════════════════════════════════
class ProgressChannelPort(ABC):
    """Unidirectional live stream towards a single observer."""

    @property
    @abstractmethod
    def is_attached(self) -> bool: ...

    @abstractmethod
    async def send(self, payload: dict[str, Any]) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...
