"""FolioRAG facade: the single entry point used by the API and by scripts.

Holds the composed engines (ingestion, retrieval, discovery, embedding
migration) and the three repositories, and exposes one coroutine per
caller-facing operation.
Construction happens in :func:`src.main.build_folio_rag`; this module
never instantiates vendor clients.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from src.interfaces.chunk_store import IChunkStore
from src.interfaces.document_ai_provider import IDocumentAIProvider
from src.interfaces.document_store import IDocumentStore
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.prompt_config_store import IPromptConfigStore
from src.interfaces.reranker_provider import IRerankerProvider
from src.models.chunk import Chunk
from src.models.document import (
    CorpusStats,
    Document,
    DocumentStatusReport,
    HealthReport,
    IngestionResult,
    IngestOptions,
)
from src.models.migration import EmbeddingMismatch, ReindexOptions, ReindexResult
from src.models.prompt import (
    ApproveStrategyOptions,
    CreatePromptConfig,
    DiscoveryResult,
    PromptConfig,
    PromptConfigFilters,
)
from src.models.search import SearchOptions, SearchResponse, SearchResult
from src.services.discovery_service import DiscoveryService
from src.services.ingestion.batch_orchestrator import IngestionOrchestrator
from src.services.ingestion.batch_processor import ProgressCallback
from src.services.migration_service import EmbeddingMigrationService
from src.services.retrieval.retrieval_engine import RetrievalEngine
from src.utils.rate_limiter import RateLimiter, RateLimiterStatus

logger = structlog.get_logger(logger_name=__name__)


class FolioRAG:
    """Facade over ingestion, retrieval, discovery and administration."""

    def __init__(
        self,
        *,
        orchestrator: IngestionOrchestrator,
        retrieval: RetrievalEngine,
        discovery: DiscoveryService,
        migration: EmbeddingMigrationService,
        document_store: IDocumentStore,
        chunk_store: IChunkStore,
        prompt_configs: IPromptConfigStore,
        document_ai: IDocumentAIProvider,
        embedding_provider: IEmbeddingProvider,
        reranker: IRerankerProvider,
        rate_limiter: RateLimiter,
    ) -> None:
        self._orchestrator = orchestrator
        self._retrieval = retrieval
        self._discovery = discovery
        self._migration = migration
        self._documents = document_store
        self._chunks = chunk_store
        self._prompt_configs = prompt_configs
        self._document_ai = document_ai
        self._embedder = embedding_provider
        self._reranker = reranker
        self._rate_limiter = rate_limiter

    async def initialize(self) -> None:
        """Create the database schema if needed.  Idempotent."""
        await self._documents.initialize()
        await self._chunks.initialize()
        await self._prompt_configs.initialize()
        logger.info(
            "folio_rag_initialized",
            document_ai=self._document_ai.get_provider_name(),
            embeddings=self._embedder.get_provider_name(),
            embedding_dimension=self._embedder.get_dimension(),
            reranker=self._reranker.get_provider_name(),
        )
        # Logs a warning when stored vectors came from another model.
        await self._migration.check_mismatch()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(self, options: IngestOptions) -> IngestionResult:
        return await self._orchestrator.ingest(options)

    async def retry_failed_batches(
        self,
        document_id: str,
        file: bytes | str | Path,
        *,
        max_retries: int | None = None,
        error_filter: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> IngestionResult:
        return await self._orchestrator.retry_failed_batches(
            document_id,
            file,
            max_retries=max_retries,
            error_filter=error_filter,
            on_progress=on_progress,
        )

    async def get_document_status(self, document_id: str) -> DocumentStatusReport:
        return await self._orchestrator.get_document_status(document_id)

    async def list_documents(self, limit: int = 50, offset: int = 0) -> list[Document]:
        return await self._documents.list_documents(limit, offset)

    async def get_document_chunks(self, document_id: str) -> list[Chunk]:
        await self._documents.get_document(document_id)
        return await self._chunks.get_chunks(document_id)

    async def delete_document(self, document_id: str) -> None:
        """Delete a document with its batches and chunks.

        Raises
        ------
        NotFoundError
            If the document does not exist.
        """
        await self._documents.delete_document(document_id)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def search(self, options: SearchOptions) -> list[SearchResult]:
        return await self._retrieval.search(options)

    async def search_with_metadata(self, options: SearchOptions) -> SearchResponse:
        return await self._retrieval.search_with_metadata(options)

    # ------------------------------------------------------------------
    # Discovery and prompt configs
    # ------------------------------------------------------------------

    async def discover(
        self,
        file: bytes | str | Path,
        document_type_hint: str | None = None,
        filename: str | None = None,
    ) -> DiscoveryResult:
        return await self._discovery.discover(file, document_type_hint, filename)

    async def approve_strategy(
        self, session_id: str, overrides: ApproveStrategyOptions | None = None
    ) -> PromptConfig:
        return await self._discovery.approve_strategy(session_id, overrides)

    async def create_prompt_config(self, data: CreatePromptConfig) -> PromptConfig:
        return await self._prompt_configs.create(data)

    async def get_prompt_configs(
        self, filters: PromptConfigFilters | None = None
    ) -> list[PromptConfig]:
        return await self._prompt_configs.list(filters)

    async def get_prompt_config(self, config_id: str) -> PromptConfig:
        return await self._prompt_configs.get(config_id)

    async def activate_prompt_config(self, config_id: str) -> PromptConfig:
        return await self._prompt_configs.activate(config_id)

    async def deactivate_prompt_config(self, config_id: str) -> None:
        await self._prompt_configs.deactivate(config_id)

    async def delete_prompt_config(self, config_id: str) -> None:
        await self._prompt_configs.delete(config_id)

    # ------------------------------------------------------------------
    # Embedding migration
    # ------------------------------------------------------------------

    async def check_embedding_mismatch(self) -> EmbeddingMismatch:
        return await self._migration.check_mismatch()

    async def reindex(self, options: ReindexOptions | None = None) -> ReindexResult:
        """Re-embed chunks whose vectors came from another embedding model."""
        return await self._migration.reindex(options)

    async def reindex_document(self, document_id: str) -> ReindexResult:
        """Re-embed all of one document's chunks.

        Raises
        ------
        NotFoundError
            If the document does not exist.
        """
        await self._documents.get_document(document_id)
        return await self._migration.reindex_document(document_id)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def get_stats(self) -> CorpusStats:
        return CorpusStats(
            total_documents=await self._documents.count_documents(),
            total_chunks=await self._chunks.count_chunks(),
            prompt_configs=await self._prompt_configs.count(),
            storage_bytes=await self._chunks.storage_bytes(),
        )

    def get_rate_limiter_status(self) -> RateLimiterStatus:
        return self._rate_limiter.get_status()

    async def health_check(self) -> HealthReport:
        """Report database reachability and provider configuration.

        ``unhealthy`` when the database cannot be queried, ``degraded``
        when a required provider has no credentials.
        """
        try:
            await self._documents.count_documents()
            database = True
        except Exception as exc:
            logger.error("health_check_database_failed", error=str(exc))
            database = False

        document_ai = self._document_ai.is_available()
        embeddings = self._embedder.is_available()
        if not database:
            status = "unhealthy"
        elif document_ai and embeddings:
            status = "healthy"
        else:
            status = "degraded"
        return HealthReport(
            status=status,
            database=database,
            document_ai=document_ai,
            embeddings=embeddings,
            reranker=self._reranker.get_provider_name(),
        )
