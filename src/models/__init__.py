"""folio-rag domain models -- re-exports the public model classes.

Organised by concern:
    - chunk.py -- chunk types, parsed candidates, stored chunks
    - config.py -- typed engine configuration sections
    - document.py -- documents, batches, ingestion results, progress events
    - migration.py -- embedding-model mismatch reports and re-index runs
    - prompt.py -- versioned prompt configs and discovery results
    - search.py -- search options, filters, results, reranker contract
"""

from __future__ import annotations

from src.models.chunk import (
    Chunk,
    ChunkCandidate,
    ChunkType,
    ConfidenceCategory,
    ExtractedSection,
)
from src.models.config import (
    BatchConfig,
    EnrichmentConfig,
    EnrichmentStrategy,
    GenerationConfig,
    RagConfig,
    RateLimitConfig,
    RerankerKind,
    RerankingConfig,
)
from src.models.document import (
    Batch,
    BatchResult,
    BatchSpec,
    BatchStatus,
    CorpusStats,
    Document,
    DocumentStatus,
    DocumentStatusReport,
    HealthReport,
    IngestionResult,
    IngestOptions,
    PdfDocument,
    PdfMetadata,
    ProgressEvent,
    TokenUsage,
    derive_document_status,
)
from src.models.migration import (
    EmbeddingMismatch,
    EmbeddingModelStats,
    MismatchSeverity,
    ReindexFailure,
    ReindexOptions,
    ReindexProgress,
    ReindexResult,
)
from src.models.prompt import (
    ApproveStrategyOptions,
    ChunkStrategy,
    CreatePromptConfig,
    DiscoveryResult,
    PromptConfig,
    PromptConfigFilters,
)
from src.models.search import (
    ChunkMatch,
    PageRange,
    RerankCandidate,
    RerankedItem,
    SearchExplanation,
    SearchFilters,
    SearchMode,
    SearchOptions,
    SearchResponse,
    SearchResult,
    TypeBoost,
)

__all__ = [
    "ApproveStrategyOptions",
    "Batch",
    "BatchConfig",
    "BatchResult",
    "BatchSpec",
    "BatchStatus",
    "Chunk",
    "ChunkCandidate",
    "ChunkMatch",
    "ChunkStrategy",
    "ChunkType",
    "ConfidenceCategory",
    "CorpusStats",
    "CreatePromptConfig",
    "DiscoveryResult",
    "Document",
    "DocumentStatus",
    "DocumentStatusReport",
    "EmbeddingMismatch",
    "EmbeddingModelStats",
    "EnrichmentConfig",
    "EnrichmentStrategy",
    "ExtractedSection",
    "GenerationConfig",
    "HealthReport",
    "IngestOptions",
    "IngestionResult",
    "MismatchSeverity",
    "PageRange",
    "PdfDocument",
    "PdfMetadata",
    "ProgressEvent",
    "PromptConfig",
    "PromptConfigFilters",
    "RagConfig",
    "RateLimitConfig",
    "ReindexFailure",
    "ReindexOptions",
    "ReindexProgress",
    "ReindexResult",
    "RerankCandidate",
    "RerankedItem",
    "RerankerKind",
    "RerankingConfig",
    "SearchExplanation",
    "SearchFilters",
    "SearchMode",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "TokenUsage",
    "TypeBoost",
    "derive_document_status",
]
