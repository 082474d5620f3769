"""Pydantic request/response schemas for the folio-rag API.

Domain models that are already safe to serialise (ingestion results,
status reports, prompt configs, stats) are returned as-is.  The schemas
here cover request bodies and the views that must hide internals, chiefly
chunk embeddings, which never leave the server.

Convention: request schemas end with "Request", response schemas end with
"Response".
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from src.models.chunk import Chunk, ChunkType
from src.models.document import Document
from src.models.migration import ReindexOptions
from src.models.search import SearchExplanation, SearchMode, SearchOptions, SearchResponse


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    code: str | None = None
    detail: str | None = None


class ChunkView(BaseModel):
    """A stored chunk without its embedding."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    document_id: str
    batch_index: int
    chunk_index: int
    prompt_config_id: str | None = None
    chunk_type: ChunkType
    sub_type: str | None = None
    page_start: int
    page_end: int
    confidence: float
    display_content: str
    context_text: str | None = None
    embedding_model: str | None = None
    embedding_dimension: int | None = None
    created_at: datetime

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> ChunkView:
        return cls.model_validate(chunk)


class SearchRequest(SearchOptions):
    """Body of ``POST /search``; identical to the engine's search options."""


class SearchHitResponse(BaseModel):
    chunk: ChunkView
    score: float
    explanation: SearchExplanation | None = None


class SearchResultsResponse(BaseModel):
    results: list[SearchHitResponse]
    total_found: int
    processing_time_ms: int
    search_mode: SearchMode
    reranked: bool = False

    @classmethod
    def from_response(cls, response: SearchResponse) -> SearchResultsResponse:
        return cls(
            results=[
                SearchHitResponse(
                    chunk=ChunkView.from_chunk(r.chunk),
                    score=r.score,
                    explanation=r.explanation,
                )
                for r in response.results
            ],
            total_found=response.total_found,
            processing_time_ms=response.processing_time_ms,
            search_mode=response.search_mode,
            reranked=response.reranked,
        )


class ReindexRequest(BaseModel):
    """Body of ``POST /embeddings/reindex``; every field is optional."""

    batch_size: int = Field(default=50, ge=1, le=1000)
    document_ids: list[str] | None = None
    skip_matching: bool = True

    def to_options(self) -> ReindexOptions:
        return ReindexOptions(**self.model_dump())


class DocumentListResponse(BaseModel):
    documents: list[Document]
    total: int


class ChunkListResponse(BaseModel):
    document_id: str
    chunks: list[ChunkView]


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    database: bool
    document_ai: bool
    embeddings: bool
    reranker: str | None = None
    rate_limit_rpm: int = Field(description="Current adaptive requests-per-minute.")
