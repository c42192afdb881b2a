"""Seed the provider catalogue with the default image providers.

Usage::

    python -m imagebroker.seed [--reset-usage]

Existing rows keep their usage counters unless ``--reset-usage`` is given.
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace

import structlog

from imagebroker.config import get_settings
from imagebroker.domain.entities import Provider
from imagebroker.ports.outbound import ProviderRepository
from imagebroker.shared.observability import configure_logging

logger = structlog.get_logger(__name__)

DEFAULT_PROVIDERS: tuple[Provider, ...] = (
    Provider(
        name="stablediffusion",
        display_name="Stable Diffusion",
        api_base_url="https://api.stability.ai/v1/generation/stable-diffusion-xl-1024-v1-0/text-to-image",
        quota_credits=27,
        cost_per_request=0.9,
        cost_unit="credits",
    ),
    Provider(
        name="kieai",
        display_name="GPT4o",
        api_base_url="https://kieai.erweima.ai/api/v1/gpt4o-image",
        quota_credits=8,
        cost_per_request=6.0,
        cost_unit="credits",
    ),
    Provider(
        name="gemini",
        display_name="Gemini",
        api_base_url="https://generativelanguage.googleapis.com/v1beta",
        unconstrained=True,
        cost_per_request=0.0,
        cost_unit="USD",
    ),
    Provider(
        name="photai",
        display_name="Phot.AI",
        api_base_url="https://prodapi.phot.ai",
        quota_requests=25,
        cost_per_request=1.0,
        cost_unit="credits",
    ),
)


async def seed_providers(repo: ProviderRepository, *, reset_usage: bool = False) -> list[str]:
    """Upsert every default provider; returns the seeded names."""
    seeded: list[str] = []
    for default in DEFAULT_PROVIDERS:
        existing = await repo.get_by_name(default.name)
        provider = replace(default)
        if existing is not None and not reset_usage:
            provider = replace(
                default,
                usage_count=existing.usage_count,
                last_checked=existing.last_checked,
                created_at=existing.created_at,
            )
        await repo.upsert(provider)
        seeded.append(provider.name)
        logger.info(
            "provider_seeded",
            provider=provider.name,
            quota_limit=provider.quota_limit,
            usage=provider.usage_count,
            created=existing is None,
        )
    return seeded


async def _main(reset_usage: bool) -> None:
    from imagebroker.dependencies import build_container

    settings = get_settings()
    configure_logging(log_level=settings.log_level, json_logs=settings.is_production)
    container = build_container(settings)
    try:
        await container.prepare_storage()
        await seed_providers(container.provider_repo, reset_usage=reset_usage)
    finally:
        await container.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the default image providers.")
    parser.add_argument(
        "--reset-usage",
        action="store_true",
        help="reset usage counters of providers that already exist",
    )
    args = parser.parse_args()
    asyncio.run(_main(args.reset_usage))


if __name__ == "__main__":
    main()
