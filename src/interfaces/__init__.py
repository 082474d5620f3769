"""Abstract contracts for every external service and store folio-rag uses.

Services depend only on these ABCs.  Concrete adapters live in
``src/providers/`` and are wired together in ``src/main.py``, so tests can
inject fakes without touching a network or a database file.

CONCRETE PROVIDER MAP:
    Interface              ->  Concrete implementations (in src/providers/)
    ---------------------------------------------------------------------
    IDocumentAIProvider    ->  AnthropicDocumentProvider, OpenAIDocumentProvider
    ILLMProvider           ->  AnthropicLLMProvider, OpenAILLMProvider
    IEmbeddingProvider     ->  OpenAIEmbeddingProvider, CohereEmbeddingProvider
    IRerankerProvider      ->  LLMReranker, CohereReranker, NoOpReranker
    IDocumentStore         ->  SQLiteDocumentStore
    IChunkStore            ->  SQLiteChunkStore
    IPromptConfigStore     ->  SQLitePromptConfigStore
    ICacheProvider         ->  MemoryCacheProvider
    IEnrichmentHandler     ->  handlers in src/services/ingestion/enrichment.py
"""

from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.chunk_store import IChunkStore
from src.interfaces.document_ai_provider import DocumentAIResponse, IDocumentAIProvider
from src.interfaces.document_store import IDocumentStore
from src.interfaces.embedding_provider import EmbeddingResult, EmbeddingTaskType, IEmbeddingProvider
from src.interfaces.enrichment_handler import EnrichmentContext, IEnrichmentHandler
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.prompt_config_store import IPromptConfigStore
from src.interfaces.reranker_provider import IRerankerProvider

__all__ = [
    "DocumentAIResponse",
    "EmbeddingResult",
    "EmbeddingTaskType",
    "EnrichmentContext",
    "ICacheProvider",
    "IChunkStore",
    "IDocumentAIProvider",
    "IDocumentStore",
    "IEmbeddingProvider",
    "IEnrichmentHandler",
    "ILLMProvider",
    "IPromptConfigStore",
    "IRerankerProvider",
]
