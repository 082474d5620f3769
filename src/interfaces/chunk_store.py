"""Repository contract for embedded chunks, including both search lookups.

Nearest-neighbour and full-text search are delegated to the store.  Both
lookups return scores normalised to ``[0, 1]`` (higher is better) so the
retrieval engine can fuse them linearly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.chunk import Chunk
from src.models.migration import EmbeddingModelStats, ReindexCandidate
from src.models.search import ChunkMatch, SearchFilters


# Concrete implementation: SQLiteChunkStore (src/providers/storage/)
class IChunkStore(ABC):
    """Persistence and search for :class:`Chunk` rows."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables/indices if missing."""

    @abstractmethod
    async def insert_chunks(self, chunks: list[Chunk]) -> int:
        """Insert all chunks atomically (all or none); return the count."""

    @abstractmethod
    async def search_semantic(
        self,
        embedding: list[float],
        limit: int,
        filters: SearchFilters | None = None,
        min_score: float | None = None,
    ) -> list[ChunkMatch]:
        """Return the ``limit`` most similar chunks (cosine similarity)."""

    @abstractmethod
    async def search_keyword(
        self,
        query: str,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> list[ChunkMatch]:
        """Return the ``limit`` most lexically relevant chunks."""

    @abstractmethod
    async def get_chunks(self, document_id: str) -> list[Chunk]:
        """Return a document's chunks ordered by batch, then position."""

    @abstractmethod
    async def count_chunks(
        self,
        document_id: str | None = None,
        prompt_config_id: str | None = None,
    ) -> int: ...

    @abstractmethod
    async def delete_batch_chunks(self, document_id: str, batch_index: int) -> int:
        """Delete chunks produced by one batch (used before reprocessing it)."""

    @abstractmethod
    async def delete_document_chunks(self, document_id: str) -> int: ...

    # ------------------------------------------------------------------
    # Embedding-model migration
    # ------------------------------------------------------------------

    @abstractmethod
    async def embedding_model_stats(self) -> list[EmbeddingModelStats]:
        """Chunk counts grouped by embedding model and dimension, largest first."""

    @abstractmethod
    async def count_chunks_for_reindex(
        self,
        exclude_model: str | None = None,
        document_ids: list[str] | None = None,
    ) -> int: ...

    @abstractmethod
    async def list_chunks_for_reindex(
        self,
        exclude_model: str | None = None,
        document_ids: list[str] | None = None,
        after_seq: int = 0,
        limit: int = 50,
    ) -> list[ReindexCandidate]:
        """Return the next page of chunks to re-embed in insertion order.

        ``exclude_model`` skips chunks already embedded with that model;
        untracked chunks are always included.
        """

    @abstractmethod
    async def update_embeddings(
        self, embeddings: dict[str, list[float]], model: str, dimension: int
    ) -> int:
        """Replace the vectors of the given chunk ids in one transaction."""

    @abstractmethod
    async def storage_bytes(self) -> int:
        """Approximate bytes used by the backing store."""
