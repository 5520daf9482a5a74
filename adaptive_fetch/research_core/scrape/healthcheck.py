"""Credential probes for the paid scraping backends.

Each probe posts an empty body: the API answers 400 when the key is accepted
(the request itself is invalid, so no credits are spent) and 401 when it is not.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx

from adaptive_fetch.config import Settings

HEALTHCHECK_TIMEOUT_SECONDS = 5.0


@dataclass(slots=True)
class HealthCheckResult:
    service: str
    success: bool
    error: str | None = None


async def _probe(
    service: str,
    endpoint: str,
    api_key: str,
    http_client: httpx.AsyncClient | None = None,
) -> HealthCheckResult:
    async def _do_request(client: httpx.AsyncClient) -> httpx.Response:
        return await client.post(
            endpoint,
            json={},
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=HEALTHCHECK_TIMEOUT_SECONDS,
        )

    try:
        if http_client is None:
            async with httpx.AsyncClient() as client:
                response = await _do_request(client)
        else:
            response = await _do_request(http_client)
    except httpx.TimeoutException:
        return HealthCheckResult(service=service, success=False, error="Request timeout")
    except httpx.HTTPError as exc:
        return HealthCheckResult(service=service, success=False, error=f"Connection error: {exc}")

    if response.status_code == 401:
        return HealthCheckResult(
            service=service,
            success=False,
            error="Invalid API key - authentication failed",
        )
    if response.status_code == 400:
        return HealthCheckResult(service=service, success=True)
    return HealthCheckResult(
        service=service,
        success=False,
        error=f"Unexpected response: {response.status_code}",
    )


async def check_firecrawl_auth(
    api_key: str,
    *,
    base_url: str = "https://api.firecrawl.dev",
    http_client: httpx.AsyncClient | None = None,
) -> HealthCheckResult:
    return await _probe("Firecrawl", base_url.rstrip("/") + "/v1/scrape", api_key, http_client)


async def check_brightdata_auth(
    api_key: str,
    *,
    base_url: str = "https://api.brightdata.com",
    http_client: httpx.AsyncClient | None = None,
) -> HealthCheckResult:
    return await _probe("BrightData", base_url.rstrip("/") + "/request", api_key, http_client)


async def run_health_checks(settings: Settings) -> list[HealthCheckResult]:
    """Probe every backend that has credentials configured."""
    checks = []
    if settings.firecrawl_api_key.strip():
        checks.append(
            check_firecrawl_auth(settings.firecrawl_api_key, base_url=settings.firecrawl_base_url)
        )
    if settings.brightdata_api_key.strip():
        checks.append(
            check_brightdata_auth(settings.brightdata_api_key, base_url=settings.brightdata_base_url)
        )
    if not checks:
        return []
    return list(await asyncio.gather(*checks))
