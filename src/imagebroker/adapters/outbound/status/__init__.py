"""Remote status adapter — probes a provider's API base URL over HTTP."""

from __future__ import annotations

import logging

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from imagebroker.domain.entities import Provider
from imagebroker.domain.value_objects import RemoteStatus
from imagebroker.ports.outbound import StatusAdapterPort

logger = structlog.get_logger(__name__)

_QUOTA_HEADERS = ("x-ratelimit-remaining", "x-quota-remaining")


class _ServerError(Exception):
    """5xx from the probe target; retried."""


class HttpStatusAdapter(StatusAdapterPort):
    """Reachability probe for provider APIs.

    Any answer below 500 (including 401/403 from an unauthenticated probe)
    counts as reachable.  Network errors, timeouts and 5xx are retried with
    exponential backoff before the provider is reported unreachable.
    """

    def __init__(
        self,
        *,
        timeout: float = 5.0,
        attempts: int = 2,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._attempts = attempts
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def check_remote_status(self, provider: Provider) -> RemoteStatus:
        if not provider.api_base_url:
            return RemoteStatus(reachable=False, detail="no api base url configured")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(
                (httpx.NetworkError, httpx.TimeoutException, _ServerError)
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            resp = await retrying(self._probe, provider.api_base_url)
        except (httpx.HTTPError, _ServerError) as exc:
            logger.warning(
                "provider_status_unreachable",
                provider=provider.name,
                error=f"{type(exc).__name__}: {exc}",
            )
            return RemoteStatus(reachable=False, detail=str(exc) or type(exc).__name__)

        return RemoteStatus(
            reachable=True,
            remote_quota_hint=_quota_hint(resp),
            detail=f"HTTP {resp.status_code}",
        )

    async def _probe(self, url: str) -> httpx.Response:
        resp = await self._client.get(url)
        if resp.status_code >= 500:
            raise _ServerError(f"HTTP {resp.status_code}")
        return resp

    async def close(self) -> None:
        await self._client.aclose()


def _quota_hint(resp: httpx.Response) -> int | None:
    for header in _QUOTA_HEADERS:
        value = resp.headers.get(header)
        if value is not None and value.strip().isdigit():
            return int(value)
    return None
