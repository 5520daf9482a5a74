from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from adaptive_fetch.config import Settings
from adaptive_fetch.research_core.cache.base import (
    MultiResourceUris,
    MultiResourceWrite,
    ResourceStorage,
)
from adaptive_fetch.research_core.cache.factory import resource_storage_from_settings
from adaptive_fetch.research_core.extract.cleaning import clean_content
from adaptive_fetch.research_core.extract.service import (
    ExtractClient,
    extract_client_from_settings,
)
from adaptive_fetch.research_core.models.interfaces import Diagnostics, ScrapeRequest
from adaptive_fetch.research_core.scrape.clients import ScrapingClients, build_scraping_clients
from adaptive_fetch.research_core.scrape.strategies import candidate_order, scrape_with_strategy
from adaptive_fetch.research_core.strategy_config.store import (
    FilesystemStrategyConfigStore,
    StrategyConfigStore,
)
from adaptive_fetch.services.logger import log_event

NO_EXTRACTOR_MESSAGE = "No extraction capability available; returning fetched content"


@dataclass(slots=True)
class FetchOutcome:
    success: bool
    url: str
    source: str
    content: str | None = None
    from_cache: bool = False
    extracted: bool = False
    error: str | None = None
    is_auth_error: bool = False
    extraction_error: str | None = None
    resource_uris: MultiResourceUris | None = None
    diagnostics: Diagnostics | None = None


class FetchPipeline:
    """Cache lookup -> config-guided scrape -> clean -> optional extraction -> cache write."""

    def __init__(
        self,
        clients: ScrapingClients,
        storage: ResourceStorage,
        *,
        config_store: StrategyConfigStore | None = None,
        extractor: ExtractClient | None = None,
        optimize_for: str = "cost",
    ):
        candidate_order(optimize_for)
        self.clients = clients
        self.storage = storage
        self.config_store = config_store
        self.extractor = extractor
        self.optimize_for = optimize_for

    @classmethod
    def from_settings(cls, settings: Settings) -> "FetchPipeline":
        return cls(
            build_scraping_clients(settings),
            resource_storage_from_settings(settings),
            config_store=FilesystemStrategyConfigStore.from_settings(settings),
            extractor=extract_client_from_settings(settings),
            optimize_for=settings.optimize_for,
        )

    async def _from_cache(self, request: ScrapeRequest) -> FetchOutcome | None:
        matches = await self.storage.find_by_url_and_extract(request.url, request.extract)
        wanted = ("extracted",) if request.extract else ("cleaned", "raw")
        for resource_type in wanted:
            for resource in matches:
                if resource.metadata.resource_type != resource_type:
                    continue
                cached = await self.storage.read(resource.uri)
                logger.debug(f"Cache hit for {request.url}: {resource.uri}")
                return FetchOutcome(
                    success=True,
                    url=request.url,
                    source="cache",
                    content=cached.text,
                    from_cache=True,
                    extracted=resource_type == "extracted",
                )
        return None

    async def fetch(
        self,
        request: ScrapeRequest,
        *,
        use_cache: bool = True,
        save_resource: bool = True,
    ) -> FetchOutcome:
        if use_cache:
            cached = await self._from_cache(request)
            if cached is not None:
                return cached

        result = await scrape_with_strategy(
            self.clients,
            self.config_store,
            request,
            optimize_for=self.optimize_for,
        )
        if not result.success or result.content is None:
            return FetchOutcome(
                success=False,
                url=request.url,
                source=result.source,
                error=result.error,
                is_auth_error=result.is_auth_error,
                diagnostics=result.diagnostics,
            )

        raw = result.content
        cleaned = clean_content(raw)
        if cleaned == raw:
            cleaned = None

        extracted: str | None = None
        extraction_error: str | None = None
        if request.extract:
            if self.extractor is None:
                extraction_error = NO_EXTRACTOR_MESSAGE
            else:
                outcome = await self.extractor.extract(cleaned or raw, request.extract)
                if outcome.success:
                    extracted = outcome.content
                else:
                    extraction_error = outcome.error

        uris: MultiResourceUris | None = None
        if save_resource:
            metadata: dict[str, str] = {"source": result.source}
            if extracted is not None:
                metadata["extractionPrompt"] = request.extract or ""
            try:
                uris = await self.storage.write_multi(
                    MultiResourceWrite(
                        url=request.url,
                        raw=raw,
                        cleaned=cleaned,
                        extracted=extracted,
                        metadata=metadata,
                    )
                )
            except (OSError, ValueError) as exc:
                logger.warning(f"Failed to cache resources for {request.url}: {exc}")

        log_event(
            "fetch_completed",
            f"Fetched {request.url} via {result.source}",
            extracted=extracted is not None,
            cached=uris is not None,
        )
        return FetchOutcome(
            success=True,
            url=request.url,
            source=result.source,
            content=extracted if extracted is not None else (cleaned or raw),
            extracted=extracted is not None,
            extraction_error=extraction_error,
            resource_uris=uris,
            diagnostics=result.diagnostics,
        )
