"""Abstract base class for contextual enrichment strategies.

Enrichment prepends a short "situating" text to each chunk before it is
indexed and embedded.  Handlers must never fail a batch: a chunk whose
context cannot be generated is returned with no context.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict

from src.models.chunk import ChunkCandidate


class EnrichmentContext(BaseModel):
    """Document-level facts available to every strategy."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    filename: str
    document_type: str | None = None
    page_count: int
    page_start: int
    page_end: int


# Concrete implementations: NoOpEnrichmentHandler, TemplateEnrichmentHandler,
# LLMEnrichmentHandler, CallableEnrichmentHandler
# Located in: src/services/ingestion/enrichment.py
class IEnrichmentHandler(ABC):
    @abstractmethod
    async def enrich(
        self, chunks: list[ChunkCandidate], context: EnrichmentContext
    ) -> list[ChunkCandidate]:
        """Return ``chunks`` (same order, same length) with context attached."""

    @abstractmethod
    def get_strategy_name(self) -> str: ...
