"""External translation providers (LLM-backed) and the retry wrapper."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

import anthropic
import google.generativeai as genai
import openai
import structlog
from google.api_core import exceptions as google_exceptions
from openai import AsyncOpenAI

from .config import EngineSettings
from .errors import ProviderError, ProviderUnavailable, RateLimited
from .languages import language_name

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = "You are a professional translator."


@dataclass
class ProviderResult:
    """Translated text plus the provider's own confidence, if it reports one."""

    text: str
    confidence: Optional[int] = None
    provider: str = "unknown"


class TranslationProvider(Protocol):
    """Black-box translation collaborator."""

    async def translate(self, text: str, source_language: str, target_language: str) -> ProviderResult:
        ...


class StubTranslationProvider:
    """Deterministic placeholder used for demos and local development."""

    confidence = 95

    async def translate(self, text: str, source_language: str, target_language: str) -> ProviderResult:
        return ProviderResult(text=f"[Translated] {text}", confidence=self.confidence, provider="stub")


class LLMTranslationProvider:
    """Translation through OpenAI, Anthropic or Google Gemini."""

    def __init__(self, settings: EngineSettings, provider: Optional[str] = None) -> None:
        self._settings = settings
        self.provider = (provider or settings.translation_provider).lower()
        self.openai_client = self._init_openai_client()
        self.anthropic_client = self._init_anthropic_client()
        self.google_model = self._init_google_model()

    def _init_openai_client(self) -> Optional[AsyncOpenAI]:
        """Return an OpenAI client when credentials are available."""

        if self.provider != "openai" or not self._settings.openai_api_key:
            return None
        return AsyncOpenAI(
            api_key=self._settings.openai_api_key,
            base_url=self._settings.openai_base_url or None,
        )

    def _init_anthropic_client(self) -> Optional[anthropic.AsyncAnthropic]:
        """Return an Anthropic client when credentials are available."""

        if self.provider != "anthropic" or not self._settings.anthropic_api_key:
            return None
        return anthropic.AsyncAnthropic(api_key=self._settings.anthropic_api_key)

    def _init_google_model(self):
        """Return a Google GenerativeModel when credentials are available."""

        if self.provider != "google" or not self._settings.google_api_key:
            return None
        genai.configure(api_key=self._settings.google_api_key)
        return genai.GenerativeModel(self._settings.google_model)

    async def translate(self, text: str, source_language: str, target_language: str) -> ProviderResult:
        """Translate ``text``; SDK failures surface as provider errors."""

        prompt = self._create_translation_prompt(
            text, language_name(source_language), language_name(target_language)
        )
        if self.provider == "openai":
            translation = await self._translate_with_openai(prompt)
        elif self.provider == "anthropic":
            translation = await self._translate_with_anthropic(prompt)
        elif self.provider == "google":
            translation = await self._translate_with_google(prompt)
        else:
            raise ProviderUnavailable(f"Unsupported provider: {self.provider}", provider=self.provider)

        if not translation:
            raise ProviderUnavailable("Provider returned an empty translation", provider=self.provider)
        return ProviderResult(text=translation, provider=self.provider)

    def _create_translation_prompt(self, text: str, source_language: str, target_language: str) -> str:
        """Create a translation prompt."""

        return (
            f"Translate the following text from {source_language} to {target_language}. "
            "Maintain the original formatting and tone. Only return the translated text "
            f"without any additional comments or explanations:\n\n{text}"
        )

    async def _translate_with_openai(self, prompt: str) -> str:
        if not self.openai_client:
            raise ProviderUnavailable("OpenAI API key not configured", provider="openai")
        try:
            response = await self.openai_client.chat.completions.create(
                model=self._settings.openai_model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.3,
            )
        except openai.RateLimitError as exc:
            raise RateLimited(str(exc), retry_after=_retry_after(exc), provider="openai") from exc
        except openai.APIError as exc:
            raise ProviderUnavailable(str(exc), provider="openai") from exc
        return (response.choices[0].message.content or "").strip()

    async def _translate_with_anthropic(self, prompt: str) -> str:
        if not self.anthropic_client:
            raise ProviderUnavailable("Anthropic API key not configured", provider="anthropic")
        try:
            response = await self.anthropic_client.messages.create(
                model=self._settings.anthropic_model,
                max_tokens=1000,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as exc:
            raise RateLimited(str(exc), retry_after=_retry_after(exc), provider="anthropic") from exc
        except anthropic.APIError as exc:
            raise ProviderUnavailable(str(exc), provider="anthropic") from exc
        return "".join(getattr(block, "text", "") for block in response.content).strip()

    async def _translate_with_google(self, prompt: str) -> str:
        if not self.google_model:
            raise ProviderUnavailable("Google API key not configured", provider="google")
        try:
            response = await self.google_model.generate_content_async(f"{SYSTEM_PROMPT}\n\n{prompt}")
        except google_exceptions.ResourceExhausted as exc:
            raise RateLimited(str(exc), provider="google") from exc
        except google_exceptions.GoogleAPIError as exc:
            raise ProviderUnavailable(str(exc), provider="google") from exc
        try:
            return response.text.strip()
        except ValueError as exc:
            # Blocked or empty candidates have no text part.
            raise ProviderUnavailable(str(exc), provider="google") from exc


class RetryingProvider:
    """Retry a failed provider call once after a backoff, then surface the error.

    A rate limit asking for a longer wait than ``max_delay`` is surfaced
    without retrying.
    """

    def __init__(
        self,
        provider: TranslationProvider,
        backoff: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_delay: float = 30.0,
    ) -> None:
        self._provider = provider
        self._backoff = backoff
        self._sleep = sleep
        self._max_delay = max_delay

    async def translate(self, text: str, source_language: str, target_language: str) -> ProviderResult:
        try:
            return await self._provider.translate(text, source_language, target_language)
        except ProviderError as exc:
            delay = self._backoff
            if isinstance(exc, RateLimited) and exc.retry_after:
                if exc.retry_after > self._max_delay:
                    logger.warning(
                        "Translation provider rate limited beyond retry window",
                        retry_after=exc.retry_after,
                        max_delay=self._max_delay,
                    )
                    raise
                delay = max(delay, exc.retry_after)
            logger.warning("Translation provider failed, retrying", error=exc.message, delay=delay)
            await self._sleep(delay)
        return await self._provider.translate(text, source_language, target_language)


def build_provider(settings: EngineSettings) -> TranslationProvider:
    """Provider selected by configuration, wrapped with a single retry."""

    if settings.translation_provider == "stub":
        provider: TranslationProvider = StubTranslationProvider()
    else:
        provider = LLMTranslationProvider(settings)
    return RetryingProvider(
        provider,
        backoff=settings.provider_retry_backoff,
        max_delay=settings.provider_max_retry_delay,
    )


def _retry_after(exc: Exception) -> Optional[float]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or {}
    value = headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None
