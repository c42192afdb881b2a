"""Provider selection framework.

Provides the catalogue view, quota bookkeeping, live status evaluation and
deterministic selection used by the failover orchestrator.
"""

from imagebroker.shared.providers.types import ProviderStatusView, SelectionPolicy
from imagebroker.shared.providers.catalog import ProviderCatalog
from imagebroker.shared.providers.quota import QuotaTracker
from imagebroker.shared.providers.status import StatusEvaluator
from imagebroker.shared.providers.router import ProviderSelector

__all__ = [
    "ProviderCatalog",
    "ProviderSelector",
    "ProviderStatusView",
    "QuotaTracker",
    "SelectionPolicy",
    "StatusEvaluator",
]
