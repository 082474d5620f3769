"""Anthropic LLM provider adapter.

Wraps the ``anthropic`` async client to implement :class:`ILLMProvider`.

Key differences from the OpenAI adapter:
    - Uses Anthropic's Messages API (not chat.completions)
    - System prompt is a separate parameter, not a message in the list
    - Response content is a list of blocks, so text blocks are filtered
      and joined

SDK exceptions are translated by :func:`translate_anthropic_error`, which
the document-AI adapter reuses so both report throttling and transient
failures identically to the retry executor.
"""

from __future__ import annotations

import anthropic
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.utils.errors import FolioError, LLMError, RateLimitError

logger = structlog.get_logger(logger_name=__name__)


def retry_after_ms(exc: anthropic.APIStatusError) -> int | None:
    """Read a ``retry-after`` header (seconds) into milliseconds."""
    value = exc.response.headers.get("retry-after") if exc.response is not None else None
    if not value:
        return None
    try:
        return int(float(value) * 1000)
    except ValueError:
        return None


def translate_anthropic_error(exc: anthropic.APIError, provider_name: str) -> FolioError:
    """Map an SDK exception onto the folio error hierarchy."""
    if isinstance(exc, anthropic.RateLimitError):
        return RateLimitError(
            message=f"Anthropic rate limit: {exc}",
            provider_name=provider_name,
            retry_after_ms=retry_after_ms(exc),
        )
    if isinstance(exc, (anthropic.APITimeoutError, anthropic.APIConnectionError)):
        return LLMError(
            message=f"Anthropic connection error: {exc}",
            provider_name=provider_name,
            retryable=True,
        )
    if isinstance(exc, anthropic.APIStatusError):
        return LLMError(
            message=f"Anthropic API error ({exc.status_code}): {exc}",
            provider_name=provider_name,
            retryable=exc.status_code >= 500 or exc.status_code == 529,
        )
    return LLMError(message=f"Anthropic API error: {exc}", provider_name=provider_name)


class AnthropicLLMProvider(ILLMProvider):
    """LLM provider backed by the Anthropic Claude API.

    Used for enrichment context, LLM reranking and discovery follow-ups.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.anthropic_api_key
        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        self._model = settings.anthropic_model

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        """Generate a text completion via the Anthropic Messages API.

        The system prompt is a top-level parameter here, not a message.
        """
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=temperature,
            )
        except anthropic.APIError as exc:
            raise translate_anthropic_error(exc, self.get_provider_name()) from exc

        text_blocks = [block.text for block in response.content if block.type == "text"]
        if not text_blocks:
            raise LLMError(
                message="Anthropic returned no text content",
                provider_name=self.get_provider_name(),
            )
        logger.debug(
            "anthropic_completion",
            model=self._model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return "\n".join(text_blocks)

    def is_available(self) -> bool:
        """Return ``True`` if an Anthropic API key is configured."""
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        return "anthropic"
