"""folio-rag FastAPI application entry point.

Wires together all providers, stores and engines via dependency injection.
Loads configuration from ``.env`` and ``config/config.yaml``, configures
structured logging, and exposes the :class:`FolioRAG` facade on
``app.state.folio``.

:func:`build_folio_rag` is also the composition root for scripts and tests
that use the facade without the web server.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router as api_router
from src.config.loader import build_rag_config, load_config
from src.config.settings import Settings
from src.interfaces.document_ai_provider import IDocumentAIProvider
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.reranker_provider import IRerankerProvider
from src.models.config import GenerationConfig, RagConfig, RerankerKind, RerankingConfig
from src.providers.cache.memory_cache import MemoryCacheProvider
from src.providers.document_ai.anthropic_document_provider import AnthropicDocumentProvider
from src.providers.document_ai.openai_document_provider import OpenAIDocumentProvider
from src.providers.embedding.cohere_embedding_provider import CohereEmbeddingProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.providers.llm.anthropic_provider import AnthropicLLMProvider
from src.providers.llm.openai_provider import OpenAILLMProvider
from src.providers.reranker.cohere_reranker import CohereReranker
from src.providers.reranker.llm_reranker import LLMReranker
from src.providers.reranker.noop_reranker import NoOpReranker
from src.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from src.providers.storage.sqlite_document_store import SQLiteDocumentStore
from src.providers.storage.sqlite_prompt_config_store import SQLitePromptConfigStore
from src.services.discovery_service import DiscoveryService
from src.services.folio_service import FolioRAG
from src.services.ingestion.batch_orchestrator import IngestionOrchestrator, retry_options_for
from src.services.ingestion.batch_processor import BatchProcessor
from src.services.ingestion.embedding_pipeline import EmbeddingPipeline
from src.services.ingestion.enrichment import ContextFunction, create_enrichment_handler
from src.services.ingestion.extraction_parser import ChunkTypeMapper, ExtractionParser
from src.services.ingestion.pdf_processor import PdfProcessor
from src.services.migration_service import EmbeddingMigrationService
from src.services.retrieval.retrieval_engine import RetrievalEngine
from src.utils.errors import ConfigurationError
from src.utils.logging import configure_logging, get_logger
from src.utils.rate_limiter import RateLimiter

_VERSION = "0.1.0"

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _pick(tag: str, settings: Settings, kind: str) -> str:
    """Resolve an ``auto`` provider tag to the first vendor with a key."""
    if tag != "auto":
        return tag
    if kind == "embedding":
        available = settings.get_available_embedding_providers()
        return available[0] if available else "openai"
    available = settings.get_available_llm_providers()
    return available[0] if available else "anthropic"


def build_document_ai_provider(
    settings: Settings, generation: GenerationConfig
) -> IDocumentAIProvider:
    tag = _pick(settings.document_ai_provider, settings, "llm")
    if tag == "anthropic":
        return AnthropicDocumentProvider(settings, generation)
    if tag == "openai":
        return OpenAIDocumentProvider(settings, generation)
    raise ConfigurationError(f"Unknown document AI provider: {tag!r}")


def build_llm_provider(settings: Settings) -> ILLMProvider:
    tag = _pick(settings.llm_provider, settings, "llm")
    if tag == "anthropic":
        return AnthropicLLMProvider(settings)
    if tag == "openai":
        return OpenAILLMProvider(settings)
    raise ConfigurationError(f"Unknown LLM provider: {tag!r}")


def build_embedding_provider(
    settings: Settings, http_client: httpx.AsyncClient
) -> IEmbeddingProvider:
    tag = _pick(settings.embedding_provider, settings, "embedding")
    if tag == "openai":
        return OpenAIEmbeddingProvider(settings)
    if tag == "cohere":
        return CohereEmbeddingProvider(
            settings.cohere_api_key, http_client, settings.cohere_embedding_model
        )
    raise ConfigurationError(f"Unknown embedding provider: {tag!r}")


def build_reranker(
    config: RerankingConfig,
    llm: ILLMProvider,
    http_client: httpx.AsyncClient,
    rate_limiter: RateLimiter | None = None,
) -> IRerankerProvider:
    """Select the reranker named by ``config.provider``.

    Cohere without an API key falls back to the LLM reranker.
    """
    if not config.enabled or config.provider is RerankerKind.NONE:
        return NoOpReranker()
    if config.provider is RerankerKind.COHERE:
        if config.cohere_api_key:
            return CohereReranker(config.cohere_api_key, http_client, config.cohere_model)
        _logger.warning("cohere_reranker_unconfigured", fallback="llm")
    return LLMReranker(llm, rate_limiter)


# ---------------------------------------------------------------------------
# Composition root
# ---------------------------------------------------------------------------


def build_folio_rag(
    settings: Settings,
    rag_config: RagConfig,
    http_client: httpx.AsyncClient,
    *,
    document_ai: IDocumentAIProvider | None = None,
    llm: ILLMProvider | None = None,
    embedding_provider: IEmbeddingProvider | None = None,
    reranker: IRerankerProvider | None = None,
    enrichment_function: ContextFunction | None = None,
) -> FolioRAG:
    """Construct every store, provider and engine behind the facade.

    Keyword arguments replace the provider the settings would select.
    """
    rate_limiter = RateLimiter(
        rag_config.rate_limit.requests_per_minute, rag_config.rate_limit.adaptive
    )
    document_ai = document_ai or build_document_ai_provider(settings, rag_config.generation)
    llm = llm or build_llm_provider(settings)
    embedding_provider = embedding_provider or build_embedding_provider(settings, http_client)
    reranker = reranker or build_reranker(rag_config.reranking, llm, http_client, rate_limiter)

    document_store = SQLiteDocumentStore(settings.database_path)
    chunk_store = SQLiteChunkStore(settings.database_path)
    prompt_configs = SQLitePromptConfigStore(settings.database_path)
    pdf_processor = PdfProcessor()
    embeddings = EmbeddingPipeline(
        embedding_provider, rate_limiter, rag_config.embedding_batch_size
    )

    enrichment = create_enrichment_handler(
        rag_config.enrichment,
        llm=llm,
        custom=enrichment_function,
        rate_limiter=rate_limiter,
    )
    batch_processor = BatchProcessor(
        document_ai=document_ai,
        parser=ExtractionParser(ChunkTypeMapper(rag_config.chunk_type_mapping)),
        enrichment=enrichment,
        embeddings=embeddings,
        document_store=document_store,
        chunk_store=chunk_store,
        rate_limiter=rate_limiter,
        retry_options=retry_options_for(rag_config.batch),
        use_structured_output=rag_config.use_structured_output,
    )
    orchestrator = IngestionOrchestrator(
        pdf_processor=pdf_processor,
        batch_processor=batch_processor,
        document_store=document_store,
        prompt_configs=prompt_configs,
        document_ai=document_ai,
        batch_config=rag_config.batch,
    )
    discovery = DiscoveryService(
        document_ai=document_ai,
        pdf_processor=pdf_processor,
        prompt_configs=prompt_configs,
        sessions=MemoryCacheProvider(
            max_size=settings.discovery_max_sessions,
            ttl=settings.discovery_session_ttl_seconds,
        ),
        rate_limiter=rate_limiter,
    )
    retrieval = RetrievalEngine(chunk_store, embedding_provider, reranker, rag_config.reranking)

    return FolioRAG(
        orchestrator=orchestrator,
        retrieval=retrieval,
        discovery=discovery,
        migration=EmbeddingMigrationService(chunk_store, embeddings),
        document_store=document_store,
        chunk_store=chunk_store,
        prompt_configs=prompt_configs,
        document_ai=document_ai,
        embedding_provider=embedding_provider,
        reranker=reranker,
        rate_limiter=rate_limiter,
    )


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None, folio: FolioRAG | None = None) -> FastAPI:
    """Build and configure the FastAPI application.

    Parameters
    ----------
    settings:
        Defaults to ``Settings()`` (environment + ``.env``).
    folio:
        A pre-built facade; when omitted one is composed at startup.
    """
    app_settings = settings or Settings()

    @asynccontextmanager
    async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
        http_client = httpx.AsyncClient(timeout=30.0)
        rag_config = build_rag_config(load_config(settings=app_settings))
        facade = folio or build_folio_rag(app_settings, rag_config, http_client)
        await facade.initialize()
        application.state.folio = facade
        application.state.settings = app_settings
        application.state.version = _VERSION

        _logger.info("app_startup", version=_VERSION, environment=app_settings.app_env)
        yield

        await http_client.aclose()
        _logger.info("app_shutdown", message="HTTP client closed")

    application = FastAPI(
        title="folio-rag API",
        version=_VERSION,
        description=(
            "Ingest PDFs into typed, embedded chunks and search them with hybrid "
            "semantic + keyword retrieval and optional reranking."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    application.include_router(api_router)
    return application


def main() -> None:
    settings = Settings()
    configure_logging(
        log_level=settings.log_level,
        json_output=(settings.app_env == "production"),
    )
    uvicorn.run(
        create_app(settings),
        host=settings.app_host,
        port=settings.app_port,
    )


if __name__ == "__main__":
    main()
