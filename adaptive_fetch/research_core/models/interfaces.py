from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


ScrapingStrategy = Literal["native", "firecrawl", "brightdata"]
OptimizeFor = Literal["cost", "speed"]
ResourceType = Literal["raw", "cleaned", "extracted"]

STRATEGY_NAMES: tuple[str, ...] = ("native", "firecrawl", "brightdata")
STRATEGY_LABELS = {
    "native": "Native",
    "firecrawl": "Firecrawl",
    "brightdata": "BrightData",
}


@dataclass(slots=True)
class ScrapeRequest:
    url: str
    extract: str | None = None
    timeout_ms: int | None = None
    strategy: str | None = None

    def __post_init__(self) -> None:
        if not self.url or not self.url.strip():
            raise ValueError("ScrapeRequest.url must be a non-empty string")


@dataclass(slots=True)
class BackendResponse:
    """What a scraping client hands back for a single request."""

    success: bool
    status: int | None = None
    data: str | None = None
    error: str | None = None


@dataclass(slots=True)
class Diagnostics:
    strategies_attempted: list[str] = field(default_factory=list)
    strategy_errors: dict[str, str] = field(default_factory=dict)
    timing: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class ScrapeResult:
    success: bool
    source: str
    content: str | None = None
    error: str | None = None
    is_auth_error: bool = False
    diagnostics: Diagnostics = field(default_factory=Diagnostics)


@dataclass(frozen=True, slots=True)
class StrategyConfigEntry:
    prefix: str
    default_strategy: str
    notes: str = ""


class LLMProvider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OPENAI_COMPATIBLE = "openai-compatible"


@dataclass(frozen=True, slots=True)
class LLMConfig:
    provider: LLMProvider
    api_key: str
    model: str | None = None
    api_base_url: str | None = None


@dataclass(slots=True)
class ExtractionOutcome:
    success: bool
    content: str | None = None
    error: str | None = None
