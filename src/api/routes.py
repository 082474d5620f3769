"""FastAPI API routes for folio-rag.

Service dependencies are resolved from ``app.state`` via FastAPI's
``Depends`` using the ``Annotated`` pattern.  Application errors raised by
the facade propagate to :class:`ErrorHandlingMiddleware`, which maps them
to 404 / 400 / 429 / 500.

Endpoint                                   Method  Description
----------------------------------------------------------------------
/api/v1/documents                          POST    Upload a PDF and ingest it
/api/v1/documents                          GET     List documents
/api/v1/documents/{id}                     GET     Processing status
/api/v1/documents/{id}/chunks              GET     Stored chunks (no vectors)
/api/v1/documents/{id}/retry               POST    Reprocess failed batches
/api/v1/documents/{id}/reindex             POST    Re-embed one document's chunks
/api/v1/documents/{id}                     DELETE  Delete with batches + chunks
/api/v1/search                             POST    Hybrid / semantic / keyword
/api/v1/embeddings/mismatch                GET     Chunks embedded with another model
/api/v1/embeddings/reindex                 POST    Re-embed stale chunks
/api/v1/discovery                          POST    Propose a processing strategy
/api/v1/discovery/{session_id}/approve     POST    Turn a proposal into a config
/api/v1/prompt-configs                     GET     List prompt configs
/api/v1/prompt-configs                     POST    Create a prompt config
/api/v1/prompt-configs/{id}/activate       POST    Make a config the default
/api/v1/prompt-configs/{id}                DELETE  Delete an unused config
/api/v1/stats                              GET     Corpus statistics
/api/v1/health                             GET     Health check
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, Response, UploadFile

from src.api.schemas import (
    ChunkListResponse,
    ChunkView,
    DocumentListResponse,
    HealthResponse,
    ReindexRequest,
    SearchRequest,
    SearchResultsResponse,
)
from src.models.document import CorpusStats, DocumentStatusReport, IngestionResult, IngestOptions
from src.models.migration import EmbeddingMismatch, ReindexResult
from src.models.prompt import (
    ApproveStrategyOptions,
    CreatePromptConfig,
    DiscoveryResult,
    PromptConfig,
    PromptConfigFilters,
)
from src.services.folio_service import FolioRAG
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_ALLOWED_CONTENT_TYPES = frozenset({"application/pdf", "application/octet-stream"})
_MAX_FILE_SIZE = 100 * 1024 * 1024
_UPLOAD_CHUNK_SIZE = 64 * 1024


def _get_folio(request: Request) -> FolioRAG:
    """Return the facade from application state."""
    return request.app.state.folio


FolioDep = Annotated[FolioRAG, Depends(_get_folio)]


async def _read_pdf_upload(file: UploadFile) -> bytes:
    """Read an upload in chunks, rejecting wrong types and oversized files early."""
    if file.content_type and file.content_type not in _ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=415,
            detail=f"Unsupported content type {file.content_type!r}; expected application/pdf",
        )
    parts: list[bytes] = []
    total_size = 0
    while True:
        chunk = await file.read(_UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > _MAX_FILE_SIZE:
            raise HTTPException(status_code=413, detail="File exceeds the 100 MB upload limit")
        parts.append(chunk)
    if not total_size:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    return b"".join(parts)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@router.post("/documents", response_model=IngestionResult, status_code=201)
async def ingest_document(
    folio: FolioDep,
    file: Annotated[UploadFile, File(description="PDF to ingest")],
    document_type: Annotated[str | None, Form()] = None,
    prompt_config_id: Annotated[str | None, Form()] = None,
    custom_prompt: Annotated[str | None, Form()] = None,
    experiment_id: Annotated[str | None, Form()] = None,
    skip_existing: Annotated[bool, Form()] = False,
) -> IngestionResult:
    content = await _read_pdf_upload(file)
    _logger.info("document_upload_received", filename=file.filename, size=len(content))
    return await folio.ingest(
        IngestOptions(
            file=content,
            filename=file.filename,
            document_type=document_type,
            prompt_config_id=prompt_config_id,
            custom_prompt=custom_prompt,
            experiment_id=experiment_id,
            skip_existing=skip_existing,
        )
    )


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(
    folio: FolioDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DocumentListResponse:
    documents = await folio.list_documents(limit, offset)
    stats = await folio.get_stats()
    return DocumentListResponse(documents=documents, total=stats.total_documents)


@router.get("/documents/{document_id}", response_model=DocumentStatusReport)
async def get_document_status(document_id: str, folio: FolioDep) -> DocumentStatusReport:
    return await folio.get_document_status(document_id)


@router.get("/documents/{document_id}/chunks", response_model=ChunkListResponse)
async def get_document_chunks(document_id: str, folio: FolioDep) -> ChunkListResponse:
    chunks = await folio.get_document_chunks(document_id)
    return ChunkListResponse(
        document_id=document_id, chunks=[ChunkView.from_chunk(c) for c in chunks]
    )


@router.post("/documents/{document_id}/retry", response_model=IngestionResult)
async def retry_failed_batches(
    document_id: str,
    folio: FolioDep,
    file: Annotated[UploadFile, File(description="The document's original PDF")],
    max_retries: Annotated[int | None, Form(ge=0, le=10)] = None,
    error_filter: Annotated[str | None, Form()] = None,
) -> IngestionResult:
    content = await _read_pdf_upload(file)
    return await folio.retry_failed_batches(
        document_id, content, max_retries=max_retries, error_filter=error_filter
    )


@router.post("/documents/{document_id}/reindex", response_model=ReindexResult)
async def reindex_document(document_id: str, folio: FolioDep) -> ReindexResult:
    return await folio.reindex_document(document_id)


@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(document_id: str, folio: FolioDep) -> Response:
    await folio.delete_document(document_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.post("/search", response_model=SearchResultsResponse)
async def search(body: SearchRequest, folio: FolioDep) -> SearchResultsResponse:
    response = await folio.search_with_metadata(body)
    return SearchResultsResponse.from_response(response)


# ---------------------------------------------------------------------------
# Embedding migration
# ---------------------------------------------------------------------------


@router.get("/embeddings/mismatch", response_model=EmbeddingMismatch)
async def check_embedding_mismatch(folio: FolioDep) -> EmbeddingMismatch:
    return await folio.check_embedding_mismatch()


@router.post("/embeddings/reindex", response_model=ReindexResult)
async def reindex(folio: FolioDep, body: ReindexRequest | None = None) -> ReindexResult:
    result = await folio.reindex((body or ReindexRequest()).to_options())
    _logger.info("reindex_requested", processed=result.total_processed, failed=result.failed)
    return result


# ---------------------------------------------------------------------------
# Discovery and prompt configs
# ---------------------------------------------------------------------------


@router.post("/discovery", response_model=DiscoveryResult, status_code=201)
async def discover(
    folio: FolioDep,
    file: Annotated[UploadFile, File(description="PDF to analyse")],
    document_type_hint: Annotated[str | None, Form()] = None,
) -> DiscoveryResult:
    content = await _read_pdf_upload(file)
    return await folio.discover(content, document_type_hint, file.filename)


@router.post("/discovery/{session_id}/approve", response_model=PromptConfig, status_code=201)
async def approve_strategy(
    session_id: str,
    folio: FolioDep,
    overrides: ApproveStrategyOptions | None = None,
) -> PromptConfig:
    return await folio.approve_strategy(session_id, overrides)


@router.get("/prompt-configs", response_model=list[PromptConfig])
async def list_prompt_configs(
    folio: FolioDep,
    document_type: str | None = None,
    is_active: bool | None = None,
    is_default: bool | None = None,
) -> list[PromptConfig]:
    return await folio.get_prompt_configs(
        PromptConfigFilters(
            document_type=document_type, is_active=is_active, is_default=is_default
        )
    )


@router.post("/prompt-configs", response_model=PromptConfig, status_code=201)
async def create_prompt_config(body: CreatePromptConfig, folio: FolioDep) -> PromptConfig:
    return await folio.create_prompt_config(body)


@router.post("/prompt-configs/{config_id}/activate", response_model=PromptConfig)
async def activate_prompt_config(config_id: str, folio: FolioDep) -> PromptConfig:
    return await folio.activate_prompt_config(config_id)


@router.delete("/prompt-configs/{config_id}", status_code=204)
async def delete_prompt_config(config_id: str, folio: FolioDep) -> Response:
    await folio.delete_prompt_config(config_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.get("/stats", response_model=CorpusStats)
async def get_stats(folio: FolioDep) -> CorpusStats:
    return await folio.get_stats()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, folio: FolioDep) -> HealthResponse:
    report = await folio.health_check()
    return HealthResponse(
        status=report.status,
        version=request.app.state.version,
        database=report.database,
        document_ai=report.document_ai,
        embeddings=report.embeddings,
        reranker=report.reranker,
        rate_limit_rpm=folio.get_rate_limiter_status().current_rpm,
    )
