"""LLM extraction clients: one implementation per provider behind a factory."""
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from adaptive_fetch.config import Settings
from adaptive_fetch.research_core.models.interfaces import (
    ExtractionOutcome,
    LLMConfig,
    LLMProvider,
)
from adaptive_fetch.services.logger import log_llm_call

EXTRACTION_SYSTEM_PROMPT = (
    "You extract information from web page content. Answer the user's query using only "
    "the provided content. Be accurate and concise, keep the original wording for quoted "
    "facts, and say plainly when the content does not contain the requested information."
)

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
ANTHROPIC_MAX_TOKENS = 4096

DEFAULT_OPENAI_MODEL = "gpt-4.1-mini"
OPENAI_MAX_TOKENS = 4000

NO_CONTENT_ERROR = "No content extracted from response"


def build_extraction_prompt(content: str, query: str) -> str:
    return f"Content:\n{content}\n\nQuery: {query}"


class ExtractClient(ABC):
    """extract() never raises; every backend error comes back as a failed outcome."""

    provider: LLMProvider
    model: str

    @abstractmethod
    async def extract(self, content: str, query: str) -> ExtractionOutcome: ...

    def _failure(self, started: float, error: str) -> ExtractionOutcome:
        log_llm_call(
            model=self.model,
            caller=f"extract:{self.provider.value}",
            duration_ms=int((time.monotonic() - started) * 1000),
            status="error",
            error=error,
        )
        return ExtractionOutcome(success=False, error=error)


class AnthropicExtractClient(ExtractClient):
    provider = LLMProvider.ANTHROPIC

    def __init__(self, api_key: str, *, model: str | None = None, client: Any | None = None):
        self.api_key = api_key
        self.model = model or DEFAULT_ANTHROPIC_MODEL
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            import anthropic

            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def extract(self, content: str, query: str) -> ExtractionOutcome:
        started = time.monotonic()
        try:
            response = await self._get_client().messages.create(
                model=self.model,
                max_tokens=ANTHROPIC_MAX_TOKENS,
                temperature=0,
                system=EXTRACTION_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_extraction_prompt(content, query)}],
            )
        except Exception as exc:
            return self._failure(started, f"Anthropic extraction failed: {exc}")

        text_parts = [
            getattr(block, "text", "")
            for block in getattr(response, "content", None) or []
            if getattr(block, "type", None) == "text"
        ]
        text = "".join(text_parts)
        if not text:
            return self._failure(started, "Unexpected response format from Anthropic")

        usage = getattr(response, "usage", None)
        log_llm_call(
            model=self.model,
            caller="extract:anthropic",
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return ExtractionOutcome(success=True, content=text)


class OpenAIExtractClient(ExtractClient):
    provider = LLMProvider.OPENAI

    def __init__(
        self,
        api_key: str,
        *,
        model: str | None = None,
        base_url: str | None = None,
        client: Any | None = None,
    ):
        self.api_key = api_key
        self.model = model or DEFAULT_OPENAI_MODEL
        self.base_url = base_url
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI

            kwargs: dict[str, Any] = {"api_key": self.api_key}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    @staticmethod
    def _temperature_for_model(model: str) -> int:
        # GPT-5 family endpoints reject temperature=0.
        if "gpt-5" in (model or "").lower():
            return 1
        return 0

    async def extract(self, content: str, query: str) -> ExtractionOutcome:
        started = time.monotonic()
        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                max_tokens=OPENAI_MAX_TOKENS,
                temperature=self._temperature_for_model(self.model),
                messages=[
                    {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                    {"role": "user", "content": build_extraction_prompt(content, query)},
                ],
            )
        except Exception as exc:
            return self._failure(started, f"{self._label()} extraction failed: {exc}")

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        text = getattr(message, "content", None) if message is not None else None
        if not text:
            return self._failure(started, NO_CONTENT_ERROR)

        usage = getattr(response, "usage", None)
        log_llm_call(
            model=self.model,
            caller=f"extract:{self.provider.value}",
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return ExtractionOutcome(success=True, content=text)

    def _label(self) -> str:
        return "OpenAI"


class OpenAICompatibleExtractClient(OpenAIExtractClient):
    """Self-hosted or third-party endpoint speaking the OpenAI chat API.

    There is no sensible default for an arbitrary endpoint, so both the base URL
    and the model name are required up front.
    """

    provider = LLMProvider.OPENAI_COMPATIBLE

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None,
        model: str | None,
        client: Any | None = None,
    ):
        if not base_url or not base_url.strip():
            raise ValueError("openai-compatible provider requires api_base_url")
        if not model or not model.strip():
            raise ValueError("openai-compatible provider requires a model name")
        super().__init__(api_key, model=model.strip(), base_url=base_url.strip(), client=client)

    def _label(self) -> str:
        return "OpenAI-compatible"


def create_extract_client(config: LLMConfig) -> ExtractClient:
    try:
        provider = LLMProvider(config.provider)
    except ValueError as exc:
        raise ValueError(
            f"Unsupported LLM_PROVIDER: {config.provider}. "
            f"Use one of: {', '.join(p.value for p in LLMProvider)}"
        ) from exc

    if provider is LLMProvider.ANTHROPIC:
        return AnthropicExtractClient(config.api_key, model=config.model)
    if provider is LLMProvider.OPENAI:
        return OpenAIExtractClient(config.api_key, model=config.model)
    return OpenAICompatibleExtractClient(
        config.api_key,
        base_url=config.api_base_url,
        model=config.model,
    )


def llm_config_from_settings(settings: Settings) -> LLMConfig | None:
    if not settings.extraction_configured:
        return None
    return LLMConfig(
        provider=settings.llm_provider.strip().lower(),  # type: ignore[arg-type]
        api_key=settings.llm_api_key.strip(),
        model=settings.llm_model.strip() or None,
        api_base_url=settings.llm_api_base_url.strip() or None,
    )


def extract_client_from_settings(settings: Settings) -> ExtractClient | None:
    """Extraction is optional: no provider or no key means None, not an error."""
    config = llm_config_from_settings(settings)
    if config is None:
        logger.debug("No extraction capability available (LLM_PROVIDER / LLM_API_KEY not set)")
        return None
    return create_extract_client(config)
