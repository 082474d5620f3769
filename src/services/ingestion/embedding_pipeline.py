"""Batches chunk text through the embedding provider.

Texts are sent in sub-batches of ``batch_size`` (default 100), each one
through the shared rate limiter.  The result is validated before any chunk
is built from it: one vector per input, every vector of the provider's
advertised dimension.
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.interfaces.embedding_provider import EmbeddingTaskType, IEmbeddingProvider
from src.models.chunk import ChunkCandidate
from src.utils.errors import EmbeddingError
from src.utils.rate_limiter import RateLimiter

logger = structlog.get_logger(logger_name=__name__)


class EmbeddedBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    vectors: list[list[float]] = Field(repr=False)
    token_count: int = 0


class EmbeddingPipeline:
    """Embeds chunk candidates with task type ``RETRIEVAL_DOCUMENT``.

    Parameters
    ----------
    provider:
        The embedding backend.
    rate_limiter:
        Shared limiter; one token per sub-batch request.
    batch_size:
        Maximum texts per provider call.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        rate_limiter: RateLimiter,
        batch_size: int = 100,
    ) -> None:
        self._provider = provider
        self._rate_limiter = rate_limiter
        self._batch_size = max(1, batch_size)

    @property
    def dimension(self) -> int:
        return self._provider.get_dimension()

    @property
    def model_id(self) -> str:
        """``provider:model`` recorded on every chunk embedded through this pipeline."""
        return f"{self._provider.get_provider_name()}:{self._provider.get_model_name()}"

    async def embed_texts(self, texts: list[str]) -> EmbeddedBatch:
        if not texts:
            return EmbeddedBatch(vectors=[], token_count=0)

        vectors: list[list[float]] = []
        tokens = 0
        for start in range(0, len(texts), self._batch_size):
            window = texts[start : start + self._batch_size]
            results = await self._rate_limiter.throttle(
                lambda window=window: self._provider.embed_batch(
                    window, EmbeddingTaskType.RETRIEVAL_DOCUMENT
                )
            )
            if len(results) != len(window):
                raise EmbeddingError(
                    f"Provider returned {len(results)} embeddings for {len(window)} texts",
                    provider_name=self._provider.get_provider_name(),
                )
            vectors.extend(result.embedding for result in results)
            tokens += sum(result.token_count for result in results)

        expected = self._provider.get_dimension()
        for index, vector in enumerate(vectors):
            if len(vector) != expected:
                raise EmbeddingError(
                    f"Embedding {index} has dimension {len(vector)}, expected {expected}",
                    provider_name=self._provider.get_provider_name(),
                    retryable=False,
                )

        logger.debug(
            "texts_embedded",
            count=len(vectors),
            sub_batches=-(-len(texts) // self._batch_size),
            token_count=tokens,
        )
        return EmbeddedBatch(vectors=vectors, token_count=tokens)

    async def embed_candidates(self, candidates: list[ChunkCandidate]) -> EmbeddedBatch:
        """Embed each candidate's enriched (or plain) search text."""
        return await self.embed_texts([c.embedding_input for c in candidates])
