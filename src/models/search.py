"""Search request/response models for the retrieval engine and rerankers."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.models.chunk import Chunk, ChunkType


class SearchMode(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


class MatchType(str, Enum):  # noqa: UP042
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    BOTH = "both"


# Heading chunks are structural noise for most queries; they are excluded
# unless the caller names chunk types explicitly.
DEFAULT_SEARCH_CHUNK_TYPES: tuple[ChunkType, ...] = tuple(
    t for t in ChunkType if t is not ChunkType.HEADING
)

# Per-type score multipliers, e.g. {ChunkType.TABLE: 1.5}.
TypeBoost = dict[ChunkType, float]


class PageRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=1)
    end: int = Field(ge=1)

    @model_validator(mode="after")
    def _check(self) -> PageRange:
        if self.start > self.end:
            msg = f"page range start {self.start} > end {self.end}"
            raise ValueError(msg)
        return self


class SearchFilters(BaseModel):
    """Predicates applied by both the semantic and the lexical lookups."""

    model_config = ConfigDict(frozen=True)

    document_types: list[str] | None = None
    chunk_types: list[ChunkType] | None = None
    sub_types: list[str] | None = None
    min_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    document_ids: list[str] | None = None
    page_range: PageRange | None = None
    prompt_config_ids: list[str] | None = None


class SearchOptions(BaseModel):
    """Caller input for :meth:`RetrievalEngine.search`."""

    model_config = ConfigDict(frozen=True)

    query: str = Field(min_length=1)
    mode: SearchMode = SearchMode.HYBRID
    limit: int = Field(default=10, ge=1, le=200)
    filters: SearchFilters | None = None
    min_score: float | None = Field(default=None, ge=0.0, le=1.0)
    include_explanation: bool = False
    type_boost: TypeBoost | None = Field(
        default=None, description="Per-type score multipliers applied after fusion."
    )
    use_reranking: bool | None = Field(
        default=None, description="Overrides the engine's reranking default when set."
    )
    rerank_candidates: int | None = Field(default=None, ge=1, le=500)


# ---------------------------------------------------------------------------
# Store-level hits
# ---------------------------------------------------------------------------
class ChunkMatch(BaseModel):
    """A chunk returned by a single semantic or lexical lookup."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    score: float = Field(ge=0.0)


# ---------------------------------------------------------------------------
# Engine-level results
# ---------------------------------------------------------------------------
class SearchExplanation(BaseModel):
    model_config = ConfigDict(frozen=True)

    match_type: MatchType
    semantic_score: float | None = None
    keyword_score: float | None = None
    boost_applied: float | None = None
    boost_reason: str | None = None
    reranked: bool = False
    original_rank: int | None = None
    rerank_score: float | None = None


class SearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    score: float
    explanation: SearchExplanation | None = None


class SearchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: list[SearchResult]
    total_found: int
    processing_time_ms: int
    search_mode: SearchMode
    reranked: bool = False


# ---------------------------------------------------------------------------
# Reranker contract
# ---------------------------------------------------------------------------
class RerankCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    original_rank: int = Field(ge=0)
    original_score: float


class RerankedItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    relevance_score: float = Field(ge=0.0, le=1.0)
    original_rank: int = Field(ge=0)
