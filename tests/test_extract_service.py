from __future__ import annotations

import types
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from adaptive_fetch.config import Settings
from adaptive_fetch.research_core.extract.service import (
    ANTHROPIC_MAX_TOKENS,
    DEFAULT_ANTHROPIC_MODEL,
    DEFAULT_OPENAI_MODEL,
    EXTRACTION_SYSTEM_PROMPT,
    NO_CONTENT_ERROR,
    AnthropicExtractClient,
    OpenAICompatibleExtractClient,
    OpenAIExtractClient,
    build_extraction_prompt,
    create_extract_client,
    extract_client_from_settings,
)
from adaptive_fetch.research_core.models.interfaces import LLMConfig, LLMProvider


def _anthropic_client(*, text: str | None = "Title: Example", side_effect=None):
    content = [SimpleNamespace(type="text", text=text)] if text is not None else []
    response = SimpleNamespace(
        content=content,
        usage=SimpleNamespace(input_tokens=12, output_tokens=3),
    )
    create = AsyncMock(return_value=response, side_effect=side_effect)
    return SimpleNamespace(messages=SimpleNamespace(create=create))


def _openai_client(*, text: str | None = "Title: Example", side_effect=None):
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=4),
    )
    create = AsyncMock(return_value=response, side_effect=side_effect)
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def test_build_extraction_prompt():
    assert build_extraction_prompt("page", "the title?") == "Content:\npage\n\nQuery: the title?"


@pytest.mark.asyncio
async def test_anthropic_extract_success():
    fake = _anthropic_client()
    client = AnthropicExtractClient("sk-ant", client=fake)

    outcome = await client.extract("<p>Example</p>", "What is the title?")

    assert outcome.success is True
    assert outcome.content == "Title: Example"
    kwargs = fake.messages.create.await_args.kwargs
    assert kwargs["model"] == DEFAULT_ANTHROPIC_MODEL
    assert kwargs["max_tokens"] == ANTHROPIC_MAX_TOKENS
    assert kwargs["temperature"] == 0
    assert kwargs["system"] == EXTRACTION_SYSTEM_PROMPT
    assert kwargs["messages"][0]["content"].endswith("Query: What is the title?")


@pytest.mark.asyncio
async def test_anthropic_errors_become_failed_outcomes():
    failing = AnthropicExtractClient("sk-ant", client=_anthropic_client(side_effect=RuntimeError("overloaded")))
    empty = AnthropicExtractClient("sk-ant", client=_anthropic_client(text=None))

    failed = await failing.extract("content", "query")
    no_text = await empty.extract("content", "query")

    assert failed.success is False
    assert failed.error == "Anthropic extraction failed: overloaded"
    assert no_text.success is False
    assert no_text.error == "Unexpected response format from Anthropic"


@pytest.mark.asyncio
async def test_openai_extract_success():
    fake = _openai_client()
    client = OpenAIExtractClient("sk-openai", client=fake)

    outcome = await client.extract("content", "query")

    assert outcome.success is True
    assert outcome.content == "Title: Example"
    kwargs = fake.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == DEFAULT_OPENAI_MODEL
    assert kwargs["temperature"] == 0
    assert kwargs["messages"][0] == {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT}


@pytest.mark.asyncio
async def test_openai_gpt5_uses_default_temperature():
    fake = _openai_client()
    client = OpenAIExtractClient("sk-openai", model="gpt-5-mini", client=fake)

    await client.extract("content", "query")

    assert fake.chat.completions.create.await_args.kwargs["temperature"] == 1


@pytest.mark.asyncio
async def test_openai_empty_content_is_a_failure():
    client = OpenAIExtractClient("sk-openai", client=_openai_client(text=None))

    outcome = await client.extract("content", "query")

    assert outcome.success is False
    assert outcome.error == NO_CONTENT_ERROR


@pytest.mark.asyncio
async def test_openai_compatible_labels_its_errors():
    client = OpenAICompatibleExtractClient(
        "key",
        base_url="http://localhost:11434/v1",
        model="llama3",
        client=_openai_client(side_effect=ConnectionError("refused")),
    )

    outcome = await client.extract("content", "query")

    assert outcome.error == "OpenAI-compatible extraction failed: refused"


def test_openai_compatible_requires_base_url_and_model():
    with pytest.raises(ValueError, match="api_base_url"):
        OpenAICompatibleExtractClient("key", base_url=None, model="llama3")
    with pytest.raises(ValueError, match="model"):
        OpenAICompatibleExtractClient("key", base_url="http://localhost:8000/v1", model="  ")


def test_openai_compatible_builds_sdk_client_with_base_url():
    captured = {}

    class FakeAsyncOpenAI:
        def __init__(self, **kwargs):
            captured.update(kwargs)

    fake_openai = types.ModuleType("openai")
    fake_openai.AsyncOpenAI = FakeAsyncOpenAI

    with patch.dict("sys.modules", {"openai": fake_openai}):
        client = OpenAICompatibleExtractClient(
            "key", base_url="http://localhost:8000/v1", model="qwen"
        )
        sdk = client._get_client()

    assert isinstance(sdk, FakeAsyncOpenAI)
    assert captured == {"api_key": "key", "base_url": "http://localhost:8000/v1"}


def test_create_extract_client_by_provider():
    anthropic = create_extract_client(LLMConfig(provider=LLMProvider.ANTHROPIC, api_key="k"))
    openai = create_extract_client(LLMConfig(provider="openai", api_key="k", model="gpt-4o"))
    compatible = create_extract_client(
        LLMConfig(
            provider=LLMProvider.OPENAI_COMPATIBLE,
            api_key="k",
            model="mistral",
            api_base_url="http://localhost:8000/v1",
        )
    )

    assert isinstance(anthropic, AnthropicExtractClient)
    assert isinstance(openai, OpenAIExtractClient)
    assert openai.model == "gpt-4o"
    assert isinstance(compatible, OpenAICompatibleExtractClient)
    assert compatible.base_url == "http://localhost:8000/v1"


def test_create_extract_client_rejects_unknown_provider():
    with pytest.raises(ValueError, match="Unsupported LLM_PROVIDER"):
        create_extract_client(LLMConfig(provider="cohere", api_key="k"))


def test_extract_client_from_settings():
    assert extract_client_from_settings(Settings(llm_provider="", llm_api_key="k")) is None
    assert extract_client_from_settings(Settings(llm_provider="anthropic", llm_api_key="")) is None

    client = extract_client_from_settings(
        Settings(llm_provider="Anthropic", llm_api_key="k", llm_model="claude-3-5-haiku-latest")
    )

    assert isinstance(client, AnthropicExtractClient)
    assert client.model == "claude-3-5-haiku-latest"
