"""Shared test fixtures."""

from __future__ import annotations

import pytest

from imagebroker.adapters.outbound.generation import PaperGenerationAdapter, build_paper_adapters
from imagebroker.adapters.outbound.persistence.memory import (
    InMemoryGenerationRepository,
    InMemoryProgressLogRepository,
    InMemoryProviderRepository,
    InMemoryStore,
    InMemoryUserRepository,
)
from imagebroker.application.progress import ProgressReporter
from imagebroker.application.services import GenerationOrchestrator
from imagebroker.domain.entities import Provider, User, UserPreference
from imagebroker.shared.providers import (
    ProviderCatalog,
    ProviderSelector,
    QuotaTracker,
    SelectionPolicy,
    StatusEvaluator,
)

PRIORITY = ("stablediffusion", "kieai", "photai", "gemini")


def make_provider(name: str, **overrides) -> Provider:
    defaults = dict(
        name=name,
        display_name=name.title(),
        api_base_url=f"https://{name}.example.test",
        quota_credits=10,
        cost_per_request=1.0,
    )
    defaults.update(overrides)
    return Provider(**defaults)


def default_providers() -> list[Provider]:
    return [
        make_provider("stablediffusion", quota_credits=27, cost_per_request=0.9),
        make_provider("kieai", display_name="GPT4o", quota_credits=8, cost_per_request=6.0),
        make_provider("photai", quota_credits=None, quota_requests=25),
        make_provider("gemini", quota_credits=None, unconstrained=True, cost_per_request=0.0),
    ]


@pytest.fixture
def providers() -> list[Provider]:
    return default_providers()


@pytest.fixture
def user() -> User:
    return User(id="user-1", email="artist@example.test", full_name="Test Artist")


@pytest.fixture
def store(providers, user) -> InMemoryStore:
    store = InMemoryStore()
    for p in providers:
        store.providers[p.name] = p
    store.users[user.id] = user
    return store


class Harness:
    """Orchestrator wired to in-memory storage and paper adapters."""

    def __init__(
        self,
        store: InMemoryStore,
        *,
        failing: tuple[str, ...] = (),
        max_attempts: int = 4,
    ) -> None:
        self.store = store
        self.provider_repo = InMemoryProviderRepository(store)
        self.generation_repo = InMemoryGenerationRepository(store)
        self.log_repo = InMemoryProgressLogRepository(store)
        self.user_repo = InMemoryUserRepository(store)
        self.catalog = ProviderCatalog(self.provider_repo)
        self.quota = QuotaTracker(self.provider_repo)
        self.evaluator = StatusEvaluator(self.quota)
        self.selector = ProviderSelector(
            self.catalog, self.evaluator, policy=SelectionPolicy(priority_order=PRIORITY)
        )
        self.reporter = ProgressReporter(self.log_repo)
        self.adapters: dict[str, PaperGenerationAdapter] = build_paper_adapters(  # type: ignore[assignment]
            PRIORITY, failing=failing
        )
        self.orchestrator = GenerationOrchestrator(
            selector=self.selector,
            catalog=self.catalog,
            quota=self.quota,
            reporter=self.reporter,
            generations=self.generation_repo,
            users=self.user_repo,
            adapters=self.adapters,
            max_attempts=max_attempts,
        )

    def set_preferences(self, user_id: str, **prefs) -> None:
        self.store.users[user_id].preferences = UserPreference(**prefs)

    def calls(self) -> dict[str, int]:
        return {name: adapter.calls for name, adapter in self.adapters.items()}

    def usage(self) -> dict[str, int]:
        return {name: p.usage_count for name, p in self.store.providers.items()}


@pytest.fixture
def harness(store) -> Harness:
    return Harness(store)


class RecordingChannel:
    """Progress channel that keeps every payload it receives."""

    def __init__(self) -> None:
        self.payloads: list[dict] = []
        self.close_calls = 0
        self.attached = True

    @property
    def is_attached(self) -> bool:
        return self.attached

    async def send(self, payload: dict) -> None:
        self.payloads.append(payload)

    async def close(self) -> None:
        self.close_calls += 1

    @property
    def steps(self) -> list[str]:
        return [p["step"] for p in self.payloads]


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def provider_factory():
    return make_provider


@pytest.fixture
def harness_factory():
    return Harness
