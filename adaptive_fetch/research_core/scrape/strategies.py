"""Sequential scraping fallback chain with per-strategy diagnostics.

Strategies are always tried one after another, never raced: paid backends must
not be billed speculatively, and an authentication failure has to stop the
chain before the next backend is called.
"""
from __future__ import annotations

import asyncio
import time
from typing import Mapping, Sequence

from loguru import logger

from adaptive_fetch.research_core.models.interfaces import (
    STRATEGY_LABELS,
    STRATEGY_NAMES,
    BackendResponse,
    Diagnostics,
    ScrapeRequest,
    ScrapeResult,
    StrategyConfigEntry,
)
from adaptive_fetch.research_core.scrape.clients import ScrapingClient, ScrapingClients
from adaptive_fetch.research_core.strategy_config.store import (
    StrategyConfigStore,
    extract_url_pattern,
)
from adaptive_fetch.services.logger import log_strategy_attempt

STRATEGY_ORDER: dict[str, tuple[str, ...]] = {
    "cost": ("native", "firecrawl", "brightdata"),
    "speed": ("firecrawl", "brightdata"),
}

# Lower-cased substrings that mark a credential rejection, per backend.
DEFAULT_AUTH_ERROR_PHRASES: dict[str, tuple[str, ...]] = {
    "native": (),
    "firecrawl": ("unauthorized", "invalid token", "authentication"),
    "brightdata": ("unauthorized", "invalid token", "authentication", "token expired"),
}


def candidate_order(optimize_for: str = "cost") -> tuple[str, ...]:
    mode = (optimize_for or "cost").lower().strip()
    if mode not in STRATEGY_ORDER:
        raise ValueError(f"Unsupported OPTIMIZE_FOR: {optimize_for}")
    return STRATEGY_ORDER[mode]


def _merge_auth_phrases(
    overrides: Mapping[str, Sequence[str]] | None,
) -> dict[str, tuple[str, ...]]:
    merged = dict(DEFAULT_AUTH_ERROR_PHRASES)
    for name, phrases in (overrides or {}).items():
        merged[name] = tuple(p.lower() for p in phrases)
    return merged


def _matches_auth_error(error: str, phrases: Sequence[str]) -> bool:
    lowered = error.lower()
    return any(phrase in lowered for phrase in phrases)


def _exception_text(exc: BaseException) -> str:
    message = str(exc)
    return message if message else "Unknown error"


def _is_success(response: BackendResponse) -> bool:
    if not response.success or not response.data:
        return False
    return response.status is None or 200 <= response.status < 300


def _failure_text(response: BackendResponse) -> str:
    if response.error:
        return response.error
    if response.success and not response.data:
        return "Empty response"
    if response.status is not None:
        return f"HTTP {response.status}"
    return "HTTP unknown"


async def _invoke(client: ScrapingClient, request: ScrapeRequest) -> BackendResponse:
    if request.timeout_ms:
        return await asyncio.wait_for(client.scrape(request), timeout=request.timeout_ms / 1000.0)
    return await client.scrape(request)


async def _run_strategy(
    name: str,
    client: ScrapingClient,
    request: ScrapeRequest,
    diagnostics: Diagnostics,
    auth_phrases: Mapping[str, Sequence[str]],
) -> ScrapeResult | None:
    """Run one strategy. Returns a terminal result (success or auth failure) or None to continue."""
    started = time.monotonic()
    diagnostics.strategies_attempted.append(name)
    response: BackendResponse | None = None
    error: str | None = None
    try:
        response = await _invoke(client, request)
    except asyncio.TimeoutError:
        error = f"Request timed out after {request.timeout_ms}ms"
    except Exception as exc:
        error = _exception_text(exc)
    finally:
        diagnostics.timing[name] = int((time.monotonic() - started) * 1000)

    elapsed = diagnostics.timing[name]
    if response is not None and _is_success(response):
        log_strategy_attempt(request.url, name, "success", duration_ms=elapsed)
        return ScrapeResult(
            success=True,
            source=name,
            content=response.data,
            diagnostics=diagnostics,
        )

    if error is None and response is not None:
        error = _failure_text(response)

    if _matches_auth_error(error, auth_phrases.get(name, ())):
        diagnostics.strategy_errors[name] = f"Authentication failed: {error}"
        log_strategy_attempt(request.url, name, "auth_error", duration_ms=elapsed, error=error)
        return ScrapeResult(
            success=False,
            source=name,
            error=f"{STRATEGY_LABELS.get(name, name)} authentication error: {error}",
            is_auth_error=True,
            diagnostics=diagnostics,
        )

    diagnostics.strategy_errors[name] = error
    log_strategy_attempt(request.url, name, "failed", duration_ms=elapsed, error=error)
    return None


def _not_configured(name: str) -> str:
    return f"{STRATEGY_LABELS.get(name, name)} client not configured"


def _exhausted(diagnostics: Diagnostics) -> ScrapeResult:
    details = "; ".join(
        f"{strategy}: {error}" for strategy, error in diagnostics.strategy_errors.items()
    )
    attempted = ", ".join(diagnostics.strategies_attempted)
    return ScrapeResult(
        success=False,
        source="none",
        error=f"All strategies failed. Attempted: {attempted}. {details}".rstrip(),
        diagnostics=diagnostics,
    )


async def scrape_universal(
    clients: ScrapingClients,
    request: ScrapeRequest,
    *,
    optimize_for: str = "cost",
    auth_phrases: Mapping[str, Sequence[str]] | None = None,
) -> ScrapeResult:
    """Try every configured strategy in priority order until one succeeds.

    cost (default): native -> firecrawl -> brightdata
    speed: firecrawl -> brightdata (native skipped)
    """
    order = candidate_order(optimize_for)
    phrases = _merge_auth_phrases(auth_phrases)
    diagnostics = Diagnostics()

    for name in order:
        client = clients.get(name)
        if client is None:
            diagnostics.strategy_errors[name] = _not_configured(name)
            continue
        result = await _run_strategy(name, client, request, diagnostics, phrases)
        if result is not None:
            return result

    result = _exhausted(diagnostics)
    logger.info(f"All strategies failed for {request.url}: {diagnostics.strategy_errors}")
    return result


async def scrape_with_single_strategy(
    clients: ScrapingClients,
    strategy: str,
    request: ScrapeRequest,
    *,
    auth_phrases: Mapping[str, Sequence[str]] | None = None,
) -> ScrapeResult:
    """Run exactly one named strategy; no fallback."""
    diagnostics = Diagnostics()
    if strategy not in STRATEGY_NAMES:
        return ScrapeResult(
            success=False,
            source=strategy,
            error=f"Unknown strategy: {strategy}",
            diagnostics=diagnostics,
        )

    client = clients.get(strategy)
    if client is None:
        diagnostics.strategy_errors[strategy] = _not_configured(strategy)
        return ScrapeResult(
            success=False,
            source=strategy,
            error=diagnostics.strategy_errors[strategy],
            diagnostics=diagnostics,
        )

    result = await _run_strategy(
        strategy, client, request, diagnostics, _merge_auth_phrases(auth_phrases)
    )
    if result is not None:
        return result
    return ScrapeResult(
        success=False,
        source=strategy,
        error=diagnostics.strategy_errors.get(strategy, f"Strategy {strategy} failed"),
        diagnostics=diagnostics,
    )


async def _learn_strategy(
    config_store: StrategyConfigStore,
    url: str,
    strategy: str,
    notes: str,
) -> None:
    try:
        await config_store.upsert_entry(
            StrategyConfigEntry(
                prefix=extract_url_pattern(url),
                default_strategy=strategy,
                notes=notes,
            )
        )
    except Exception as exc:
        logger.warning(f"Failed to update strategy config: {exc}")


async def scrape_with_strategy(
    clients: ScrapingClients,
    config_store: StrategyConfigStore | None,
    request: ScrapeRequest,
    *,
    optimize_for: str = "cost",
    auth_phrases: Mapping[str, Sequence[str]] | None = None,
) -> ScrapeResult:
    """Try the explicit or learned strategy first, then the universal chain.

    A universal success is written back to the config store so the next request
    for the same URL pattern starts with the strategy that worked.
    """
    explicit = (request.strategy or "").strip() or None

    if explicit:
        result = await scrape_with_single_strategy(
            clients, explicit, request, auth_phrases=auth_phrases
        )
        if result.success or result.is_auth_error:
            return result
        logger.debug(f"Explicit strategy '{explicit}' failed, falling back to universal approach")
        universal = await scrape_universal(
            clients, request, optimize_for=optimize_for, auth_phrases=auth_phrases
        )
        if universal.success and config_store is not None:
            await _learn_strategy(
                config_store,
                request.url,
                universal.source,
                f"Auto-discovered after {explicit} failed",
            )
        return universal

    configured: str | None = None
    if config_store is not None:
        try:
            configured = await config_store.get_strategy_for_url(request.url)
        except Exception as exc:
            logger.warning(f"Failed to load strategy config: {exc}")

    if configured:
        result = await scrape_with_single_strategy(
            clients, configured, request, auth_phrases=auth_phrases
        )
        if result.success or result.is_auth_error:
            return result
        logger.debug(f"Configured strategy '{configured}' failed, falling back to universal approach")

    universal = await scrape_universal(
        clients, request, optimize_for=optimize_for, auth_phrases=auth_phrases
    )
    if universal.success and not configured and config_store is not None:
        await _learn_strategy(
            config_store,
            request.url,
            universal.source,
            "Auto-discovered via universal fallback",
        )
    return universal
