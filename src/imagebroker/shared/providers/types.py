"""Core types for provider selection."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderStatusView:
    """Live eligibility snapshot of one provider.

    Attributes:
        name:          Provider key.
        eligible:      Active and has remaining quota (or is unconstrained).
        is_free_tier:  Configured free-tier flag, turned off once the quota
                       is used up (unless the provider is unconstrained).
        remaining:     Remaining quota; ``math.inf`` when no ceiling is set.
        is_active:     Administrative switch.
        unconstrained: Billed outside the quota system.
    """

    name: str
    eligible: bool
    is_free_tier: bool
    remaining: float
    is_active: bool = True
    unconstrained: bool = False


@dataclass(frozen=True)
class SelectionPolicy:
    """Injected configuration for the selector.

    ``priority_order`` is a total order over provider names; names missing
    from it rank after every listed provider.
    """

    priority_order: tuple[str, ...] = ()

    @classmethod
    def from_csv(cls, value: str) -> SelectionPolicy:
        names = tuple(n.strip().lower() for n in value.split(",") if n.strip())
        return cls(priority_order=names)

    def rank(self, name: str) -> int:
        try:
            return self.priority_order.index(name)
        except ValueError:
            return len(self.priority_order)
