"""Generation adapters package.

Provides the paper (simulation) generation adapter.  Vendor adapters live
outside this service and are registered into the same name-keyed mapping.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from typing import Any

import structlog

from imagebroker.domain.exceptions import GenerationError
from imagebroker.domain.value_objects import GeneratedAsset
from imagebroker.ports.outbound import GenerationAdapterPort

logger = structlog.get_logger(__name__)


# ═══════════════════════════════════════════════════════════════
#  Paper (simulation) generator
# ═══════════════════════════════════════════════════════════════
class PaperGenerationAdapter(GenerationAdapterPort):
    """Simulated generator for local runs.

    Every call "succeeds" with a fake ``paper://`` asset reference unless the
    adapter is flagged as failing.  No vendor is contacted.
    """

    def __init__(self, provider_name: str, *, fail: bool = False, latency: float = 0.0) -> None:
        self.provider_name = provider_name
        self.fail = fail
        self.latency = latency
        self.calls = 0

    async def generate(self, prompt: str, parameters: dict[str, Any]) -> GeneratedAsset:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.fail:
            logger.info("paper_generation_failed", provider=self.provider_name)
            raise GenerationError(self.provider_name, "simulated provider failure")

        asset_url = f"paper://{self.provider_name}/{uuid.uuid4().hex[:12]}"
        logger.info(
            "paper_generation_completed",
            provider=self.provider_name,
            asset_url=asset_url,
            prompt_length=len(prompt),
        )
        return GeneratedAsset(
            asset_url=asset_url,
            provider=self.provider_name,
            metadata={"parameters": dict(parameters)},
        )


def build_paper_adapters(
    names: Iterable[str],
    *,
    failing: Iterable[str] = (),
    latency: float = 0.0,
) -> dict[str, GenerationAdapterPort]:
    failing_set = {n.lower() for n in failing}
    return {
        name: PaperGenerationAdapter(name, fail=name in failing_set, latency=latency)
        for name in names
    }


__all__ = [
    "GenerationAdapterPort",
    "PaperGenerationAdapter",
    "build_paper_adapters",
]
