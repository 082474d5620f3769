"""Abstract base class for text-embedding service providers.

Embeddings are produced with a *task type*: documents are embedded as
``RETRIEVAL_DOCUMENT`` at ingest time and queries as ``RETRIEVAL_QUERY``
at search time.  Providers without asymmetric models simply ignore it.
The vector dimension is fixed per provider/model and must match what is
already stored; :meth:`IEmbeddingProvider.get_dimension` advertises it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class EmbeddingTaskType(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    RETRIEVAL_DOCUMENT = "RETRIEVAL_DOCUMENT"
    RETRIEVAL_QUERY = "RETRIEVAL_QUERY"
    SEMANTIC_SIMILARITY = "SEMANTIC_SIMILARITY"


class EmbeddingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    embedding: list[float] = Field(repr=False)
    token_count: int = Field(default=0, ge=0)


# Concrete implementations:
#   OpenAIEmbeddingProvider -- text-embedding-3-small (1536 dims)
#   CohereEmbeddingProvider -- embed-multilingual-v3.0 (1024 dims)
# Located in: src/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and retrieval."""

    @abstractmethod
    async def embed(
        self,
        text: str,
        task_type: EmbeddingTaskType = EmbeddingTaskType.RETRIEVAL_DOCUMENT,
    ) -> EmbeddingResult:
        """Embed a single text."""

    @abstractmethod
    async def embed_batch(
        self,
        texts: list[str],
        task_type: EmbeddingTaskType = EmbeddingTaskType.RETRIEVAL_DOCUMENT,
    ) -> list[EmbeddingResult]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            Texts to embed.  Implementations split into sub-requests when
            the API has a per-call limit.
        task_type:
            Document vs query embedding.

        Returns
        -------
        list[EmbeddingResult]
            One result per input text, positionally aligned.

        Raises
        ------
        src.utils.errors.EmbeddingError
            If the embedding API call fails.
        """

    async def embed_query(self, query: str) -> list[float]:
        """Embed a search query (task type ``RETRIEVAL_QUERY``)."""
        result = await self.embed(query, EmbeddingTaskType.RETRIEVAL_QUERY)
        return result.embedding

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the fixed dimensionality of produced vectors."""

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the embedding model identifier."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured."""
