from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from adaptive_fetch.config import Settings
from adaptive_fetch.research_core.models.interfaces import BackendResponse, ScrapeRequest

NATIVE_TIMEOUT_MESSAGE = (
    "Request timed out. The server did not respond within the timeout period. "
    "Consider increasing the timeout if this URL typically takes longer to load."
)


class ScrapingClient(Protocol):
    async def scrape(self, request: ScrapeRequest) -> BackendResponse: ...


def _timeout_seconds(request: ScrapeRequest, default_ms: int) -> float:
    timeout_ms = request.timeout_ms if request.timeout_ms else default_ms
    return max(timeout_ms / 1000.0, 1.0)


def _describe_http_error(response: httpx.Response) -> str:
    detail = ""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        detail = str(payload.get("error") or payload.get("message") or "")
    if not detail:
        detail = response.reason_phrase or response.text[:200]
    return f"HTTP {response.status_code}: {detail}".rstrip(": ")


class NativeFetcher:
    """Plain HTTP GET; the cheapest strategy and the first one tried in cost mode."""

    def __init__(
        self,
        *,
        timeout_ms: int = 30000,
        user_agent: str = "AdaptiveFetch/1.0",
        http_client: httpx.AsyncClient | None = None,
    ):
        self.timeout_ms = max(int(timeout_ms), 1000)
        self.user_agent = user_agent
        self._http_client = http_client

    async def scrape(self, request: ScrapeRequest) -> BackendResponse:
        async def _do_request(client: httpx.AsyncClient) -> BackendResponse:
            response = await client.get(
                request.url,
                headers={"User-Agent": self.user_agent},
                timeout=_timeout_seconds(request, self.timeout_ms),
            )
            return BackendResponse(
                success=response.is_success,
                status=int(response.status_code),
                data=response.text,
            )

        try:
            if self._http_client is None:
                async with httpx.AsyncClient(follow_redirects=True) as client:
                    return await _do_request(client)
            return await _do_request(self._http_client)
        except httpx.TimeoutException:
            return BackendResponse(success=False, error=NATIVE_TIMEOUT_MESSAGE)
        except httpx.HTTPError as exc:
            return BackendResponse(success=False, error=str(exc) or type(exc).__name__)


class FirecrawlClient:
    """Adapter from the Firecrawl /v1/scrape endpoint to the scrape capability."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.firecrawl.dev",
        timeout_ms: int = 60000,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key.strip()
        self.base_url = base_url.strip().rstrip("/")
        self.timeout_ms = timeout_ms
        self._http_client = http_client

    async def scrape(self, request: ScrapeRequest) -> BackendResponse:
        endpoint = self.base_url + "/v1/scrape"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        payload = {"url": request.url, "formats": ["html"]}

        async def _do_request(client: httpx.AsyncClient) -> httpx.Response:
            return await client.post(
                endpoint,
                json=payload,
                headers=headers,
                timeout=_timeout_seconds(request, self.timeout_ms),
            )

        if self._http_client is None:
            async with httpx.AsyncClient(follow_redirects=True) as client:
                response = await _do_request(client)
        else:
            response = await _do_request(self._http_client)

        if response.status_code >= 400:
            return BackendResponse(
                success=False,
                status=int(response.status_code),
                error=_describe_http_error(response),
            )

        data: Any = response.json()
        html = ""
        if isinstance(data, dict):
            if data.get("success") is False:
                return BackendResponse(
                    success=False,
                    status=int(response.status_code),
                    error=str(data.get("error") or "Firecrawl reported failure"),
                )
            body = data.get("data", data)
            if isinstance(body, dict):
                html = str(body.get("html") or body.get("content") or "")
        if not html:
            return BackendResponse(
                success=False,
                status=int(response.status_code),
                error="Firecrawl response missing html content",
            )
        return BackendResponse(success=True, status=int(response.status_code), data=html)


class BrightDataClient:
    """Adapter from the BrightData Web Unlocker /request endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        zone: str = "web_unlocker1",
        base_url: str = "https://api.brightdata.com",
        timeout_ms: int = 90000,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key.strip()
        self.zone = zone
        self.base_url = base_url.strip().rstrip("/")
        self.timeout_ms = timeout_ms
        self._http_client = http_client

    async def scrape(self, request: ScrapeRequest) -> BackendResponse:
        async def _do_request(client: httpx.AsyncClient) -> httpx.Response:
            return await client.post(
                self.base_url + "/request",
                json={"zone": self.zone, "url": request.url, "format": "raw"},
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                timeout=_timeout_seconds(request, self.timeout_ms),
            )

        if self._http_client is None:
            async with httpx.AsyncClient() as client:
                response = await _do_request(client)
        else:
            response = await _do_request(self._http_client)

        if response.status_code >= 400:
            return BackendResponse(
                success=False,
                status=int(response.status_code),
                error=_describe_http_error(response),
            )
        return BackendResponse(success=True, status=int(response.status_code), data=response.text)


@dataclass(slots=True)
class ScrapingClients:
    """Capability set handed to the orchestrator; any member may be missing."""

    native: ScrapingClient | None = None
    firecrawl: ScrapingClient | None = None
    brightdata: ScrapingClient | None = None

    def get(self, name: str) -> ScrapingClient | None:
        if name == "native":
            return self.native
        if name == "firecrawl":
            return self.firecrawl
        if name == "brightdata":
            return self.brightdata
        return None

    def available(self) -> list[str]:
        return [name for name in ("native", "firecrawl", "brightdata") if self.get(name) is not None]


def build_scraping_clients(settings: Settings) -> ScrapingClients:
    """Native is always available; paid backends only when their key is set."""
    clients = ScrapingClients(
        native=NativeFetcher(
            timeout_ms=settings.native_timeout_ms,
            user_agent=settings.native_user_agent,
        )
    )
    if settings.firecrawl_api_key.strip():
        clients.firecrawl = FirecrawlClient(
            settings.firecrawl_api_key,
            base_url=settings.firecrawl_base_url,
        )
    if settings.brightdata_api_key.strip():
        clients.brightdata = BrightDataClient(
            settings.brightdata_api_key,
            zone=settings.brightdata_zone,
            base_url=settings.brightdata_base_url,
        )
    return clients
