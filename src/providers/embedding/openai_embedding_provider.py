"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Supports both real OpenAI and OpenAI-compatible providers via custom
``base_url`` and model name settings.  OpenAI models are symmetric, so the
task type is accepted and ignored.
"""

from __future__ import annotations

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.embedding_provider import (
    EmbeddingResult,
    EmbeddingTaskType,
    IEmbeddingProvider,
)
from src.providers.llm.openai_provider import build_openai_client
from src.utils.errors import EmbeddingError, RateLimitError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "intfloat/multilingual-e5-large-instruct": 1024,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  Handles
    automatic batching for inputs exceeding the per-call limit.
    """

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        self._api_key = settings.openai_api_key
        self._client = client or build_openai_client(settings)
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 1536)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    async def embed(
        self,
        text: str,
        task_type: EmbeddingTaskType = EmbeddingTaskType.RETRIEVAL_DOCUMENT,
    ) -> EmbeddingResult:
        results = await self.embed_batch([text], task_type)
        return results[0]

    async def embed_batch(
        self,
        texts: list[str],
        task_type: EmbeddingTaskType = EmbeddingTaskType.RETRIEVAL_DOCUMENT,
    ) -> list[EmbeddingResult]:
        """Embed ``texts``, splitting into calls of at most 2048 inputs."""
        if not texts:
            return []

        results: list[EmbeddingResult] = []
        for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
            batch = texts[start : start + _OPENAI_BATCH_LIMIT]
            try:
                response = await self._client.embeddings.create(input=batch, model=self._model)
            except openai.RateLimitError as exc:
                raise RateLimitError(
                    message=f"{self._provider_label} rate limit: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            except openai.APIError as exc:
                status = getattr(exc, "status_code", None)
                raise EmbeddingError(
                    message=f"{self._provider_label} API error: {exc}",
                    provider_name=self.get_provider_name(),
                    retryable=status is None or status >= 500,
                ) from exc

            total_tokens = response.usage.total_tokens if response.usage else 0
            per_text = total_tokens // len(batch) if batch else 0
            ordered = sorted(response.data, key=lambda item: item.index)
            results.extend(
                EmbeddingResult(embedding=item.embedding, token_count=per_text)
                for item in ordered
            )
            logger.debug(
                "openai_embedding_batch",
                model=self._model,
                provider=self._provider_label,
                batch_size=len(batch),
                tokens=total_tokens,
                task_type=task_type.value,
            )
        return results

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
