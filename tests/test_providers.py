"""Translation provider adapters and the single-retry policy."""
from __future__ import annotations

import asyncio
from typing import List

import pytest

from conftest import FakeProvider, make_settings
from translation_workflow.errors import ProviderUnavailable, RateLimited
from translation_workflow.providers import (
    LLMTranslationProvider,
    RetryingProvider,
    StubTranslationProvider,
    build_provider,
)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_retry_once_then_succeed() -> None:
    inner = FakeProvider(confidence=88)
    inner.errors = [ProviderUnavailable("flaky")]
    sleep = RecordingSleep()
    provider = RetryingProvider(inner, backoff=0.5, sleep=sleep)

    result = asyncio.run(provider.translate("Hello", "English", "Spanish"))

    assert result.text == "[Spanish] Hello"
    assert result.confidence == 88
    assert len(inner.calls) == 2
    assert sleep.delays == [0.5]


def test_second_failure_is_surfaced() -> None:
    inner = FakeProvider()
    inner.errors = [ProviderUnavailable("down"), ProviderUnavailable("still down")]
    sleep = RecordingSleep()
    provider = RetryingProvider(inner, backoff=1.0, sleep=sleep)

    with pytest.raises(ProviderUnavailable, match="still down"):
        asyncio.run(provider.translate("Hello", "English", "Spanish"))
    assert len(inner.calls) == 2
    assert sleep.delays == [1.0]


def test_rate_limit_honours_retry_after() -> None:
    inner = FakeProvider()
    inner.errors = [RateLimited("slow down", retry_after=5)]
    sleep = RecordingSleep()
    provider = RetryingProvider(inner, backoff=1.0, sleep=sleep)

    asyncio.run(provider.translate("Hello", "English", "Spanish"))
    assert sleep.delays == [5]


def test_rate_limit_beyond_window_is_surfaced() -> None:
    inner = FakeProvider()
    inner.errors = [RateLimited("come back later", retry_after=120)]
    sleep = RecordingSleep()
    provider = RetryingProvider(inner, backoff=1.0, sleep=sleep, max_delay=30.0)

    with pytest.raises(RateLimited):
        asyncio.run(provider.translate("Hello", "English", "Spanish"))
    assert len(inner.calls) == 1
    assert sleep.delays == []


def test_stub_provider_placeholder() -> None:
    result = asyncio.run(StubTranslationProvider().translate("Hello", "English", "Spanish"))
    assert result.text == "[Translated] Hello"
    assert result.confidence == 95


def test_build_provider_wraps_stub_in_retry() -> None:
    provider = build_provider(make_settings(translation_provider="stub"))
    assert isinstance(provider, RetryingProvider)
    result = asyncio.run(provider.translate("Hi", "en", "fr"))
    assert result.provider == "stub"


@pytest.mark.parametrize("name", ["openai", "anthropic", "google"])
def test_llm_provider_without_credentials_is_unavailable(name: str) -> None:
    provider = LLMTranslationProvider(make_settings(translation_provider=name))
    with pytest.raises(ProviderUnavailable) as excinfo:
        asyncio.run(provider.translate("Hello", "en", "es"))
    assert excinfo.value.context["provider"] == name


def test_unknown_llm_provider_is_unavailable() -> None:
    provider = LLMTranslationProvider(make_settings(), provider="babelfish")
    with pytest.raises(ProviderUnavailable):
        asyncio.run(provider.translate("Hello", "en", "es"))


def test_prompt_uses_language_names() -> None:
    provider = LLMTranslationProvider(make_settings(translation_provider="openai"))
    prompt = provider._create_translation_prompt("Hello", "English", "Spanish")
    assert prompt.startswith("Translate the following text from English to Spanish.")
    assert prompt.endswith("Hello")


class BlockedResponse:
    @property
    def text(self) -> str:
        raise ValueError("The response was blocked")


class BlockingModel:
    async def generate_content_async(self, prompt: str) -> BlockedResponse:
        return BlockedResponse()


def test_blocked_gemini_output_is_unavailable() -> None:
    provider = LLMTranslationProvider(make_settings(translation_provider="google"))
    provider.google_model = BlockingModel()
    with pytest.raises(ProviderUnavailable) as excinfo:
        asyncio.run(provider.translate("Hello", "en", "es"))
    assert excinfo.value.context["provider"] == "google"
