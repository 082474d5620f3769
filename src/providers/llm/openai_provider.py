"""OpenAI-compatible LLM provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
When a custom ``openai_base_url`` is configured (e.g. TogetherAI,
Fireworks, a local vLLM server) the client points at that URL instead of
the default OpenAI endpoint, so one adapter covers every
OpenAI-compatible API.
"""

from __future__ import annotations

from typing import Any

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.utils.errors import FolioError, LLMError, RateLimitError

logger = structlog.get_logger(logger_name=__name__)

# Requests give up before the connection is dropped by an upstream proxy.
DEFAULT_TIMEOUT = openai.Timeout(60.0, connect=5.0)


def build_openai_client(settings: Settings, timeout: openai.Timeout = DEFAULT_TIMEOUT) -> openai.AsyncOpenAI:
    """Create the shared async client, honouring a custom base URL."""
    client_kwargs: dict[str, Any] = {"api_key": settings.openai_api_key, "timeout": timeout}
    if settings.openai_base_url:
        client_kwargs["base_url"] = settings.openai_base_url
    return openai.AsyncOpenAI(**client_kwargs)


def _retry_after_ms(exc: openai.APIStatusError) -> int | None:
    value = exc.response.headers.get("retry-after") if exc.response is not None else None
    if not value:
        return None
    try:
        return int(float(value) * 1000)
    except ValueError:
        return None


def translate_openai_error(exc: openai.APIError, provider_name: str) -> FolioError:
    """Map an SDK exception onto the folio error hierarchy.

    ``APITimeoutError`` subclasses ``APIConnectionError``, so both land in
    the retryable branch.
    """
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(
            message=f"{provider_name} rate limit: {exc}",
            provider_name=provider_name,
            retry_after_ms=_retry_after_ms(exc),
        )
    if isinstance(exc, openai.APIConnectionError):
        return LLMError(
            message=f"{provider_name} connection error: {exc}",
            provider_name=provider_name,
            retryable=True,
        )
    if isinstance(exc, openai.APIStatusError):
        return LLMError(
            message=f"{provider_name} API error ({exc.status_code}): {exc}",
            provider_name=provider_name,
            retryable=exc.status_code >= 500,
        )
    return LLMError(message=f"{provider_name} API error: {exc}", provider_name=provider_name)


class OpenAILLMProvider(ILLMProvider):
    """LLM provider backed by an OpenAI-compatible chat completions API.

    Uses ``gpt-4o-mini`` unless ``openai_text_model`` overrides it.
    """

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        self._api_key = settings.openai_api_key
        self._client = client or build_openai_client(settings)
        self._model = settings.openai_text_model or "gpt-4o-mini"
        self._provider_label = "openai-compatible" if settings.openai_base_url else "openai"

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APIError as exc:
            raise translate_openai_error(exc, self.get_provider_name()) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.debug(
            "openai_completion",
            model=self._model,
            provider=self._provider_label,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        """Return 'openai' or 'openai-compatible' depending on configuration."""
        return self._provider_label
