"""Hybrid retrieval over stored chunks.

Three modes:

* ``semantic`` ranks by cosine similarity of the query embedding.
* ``keyword`` ranks by normalised BM25 over the enriched search text.
* ``hybrid`` runs both over ``2 * limit`` candidates in parallel and fuses
  them: ``0.7 * semantic + 0.3 * keyword``, summed when a chunk is found by
  both lookups.

An optional second pass hands a wider candidate pool to the configured
reranker; when it fails the fused order is kept.  Per-type boosts are
applied last.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import structlog

from src.interfaces.chunk_store import IChunkStore
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.reranker_provider import IRerankerProvider
from src.models.chunk import Chunk
from src.models.config import RerankingConfig
from src.models.search import (
    DEFAULT_SEARCH_CHUNK_TYPES,
    ChunkMatch,
    MatchType,
    RerankCandidate,
    SearchExplanation,
    SearchFilters,
    SearchMode,
    SearchOptions,
    SearchResponse,
    SearchResult,
    TypeBoost,
)
from src.utils.errors import EmbeddingError, SearchError, StorageError

logger = structlog.get_logger(logger_name=__name__)

SEMANTIC_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3


@dataclass
class _Scored:
    """Working record for one chunk while results are fused and reordered."""

    chunk: Chunk
    score: float
    semantic_score: float | None = None
    keyword_score: float | None = None
    original_rank: int | None = None
    rerank_score: float | None = None
    boost: float | None = None
    boost_reason: str | None = None

    @property
    def match_type(self) -> MatchType:
        if self.semantic_score is not None and self.keyword_score is not None:
            return MatchType.BOTH
        if self.keyword_score is not None:
            return MatchType.KEYWORD
        return MatchType.SEMANTIC


def effective_filters(filters: SearchFilters | None) -> SearchFilters:
    """Exclude headings unless the caller chose chunk types explicitly."""
    if filters is None:
        return SearchFilters(chunk_types=list(DEFAULT_SEARCH_CHUNK_TYPES))
    if filters.chunk_types is None:
        return filters.model_copy(update={"chunk_types": list(DEFAULT_SEARCH_CHUNK_TYPES)})
    return filters


def fuse(semantic: list[ChunkMatch], keyword: list[ChunkMatch]) -> list[_Scored]:
    """Weighted fusion of the two lookups, best first."""
    by_id: dict[str, _Scored] = {}
    for match in semantic:
        by_id[match.chunk.id] = _Scored(
            chunk=match.chunk,
            score=SEMANTIC_WEIGHT * match.score,
            semantic_score=match.score,
        )
    for match in keyword:
        entry = by_id.get(match.chunk.id)
        if entry is None:
            by_id[match.chunk.id] = _Scored(
                chunk=match.chunk,
                score=KEYWORD_WEIGHT * match.score,
                keyword_score=match.score,
            )
        else:
            entry.score += KEYWORD_WEIGHT * match.score
            entry.keyword_score = match.score
    return sorted(by_id.values(), key=lambda s: s.score, reverse=True)


def apply_type_boost(scored: list[_Scored], boost: TypeBoost) -> list[_Scored]:
    for entry in scored:
        factor = boost.get(entry.chunk.chunk_type)
        if factor is None:
            continue
        entry.score *= factor
        entry.boost = factor
        entry.boost_reason = f"Type boost for {entry.chunk.chunk_type.value}: {factor}x"
    return sorted(scored, key=lambda s: s.score, reverse=True)


class RetrievalEngine:
    """Query-side entry point.

    Parameters
    ----------
    chunk_store:
        Semantic and keyword lookups.
    embedding_provider:
        Embeds queries; must match the dimension of stored chunks.
    reranker:
        Second-pass scorer, used when reranking is enabled.
    reranking_config:
        Default on/off switch and candidate pool size.
    """

    def __init__(
        self,
        chunk_store: IChunkStore,
        embedding_provider: IEmbeddingProvider,
        reranker: IRerankerProvider,
        reranking_config: RerankingConfig | None = None,
    ) -> None:
        self._chunks = chunk_store
        self._embedder = embedding_provider
        self._reranker = reranker
        self._config = reranking_config or RerankingConfig()

    async def search(self, options: SearchOptions) -> list[SearchResult]:
        """Run a search and return ranked results.

        Raises
        ------
        SearchError
            If the query cannot be embedded or the store lookup fails.
        """
        results, _ = await self._search(options)
        return results

    async def search_with_metadata(self, options: SearchOptions) -> SearchResponse:
        started = time.monotonic()
        results, reranked = await self._search(options)
        return SearchResponse(
            results=results,
            total_found=len(results),
            processing_time_ms=int((time.monotonic() - started) * 1000),
            search_mode=options.mode,
            reranked=reranked,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _search(self, options: SearchOptions) -> tuple[list[SearchResult], bool]:
        log = logger.bind(mode=options.mode.value, limit=options.limit)
        filters = effective_filters(options.filters)

        scored = await self._retrieve(options, filters, options.limit)

        reranked = False
        use_reranking = (
            options.use_reranking if options.use_reranking is not None else self._config.enabled
        )
        if use_reranking and len(scored) > 1:
            pool_size = options.rerank_candidates or self._config.default_candidates
            pool = scored
            if len(pool) < pool_size:
                pool = await self._retrieve(options, filters, pool_size)
            scored, reranked = await self._rerank(options.query, pool, options.limit)
        else:
            scored = scored[: options.limit]

        if options.type_boost:
            scored = apply_type_boost(scored, options.type_boost)

        log.info(
            "search_completed",
            results=len(scored),
            reranked=reranked,
            reranker=self._reranker.get_provider_name() if reranked else None,
        )
        return [self._to_result(s, options.include_explanation, reranked) for s in scored], reranked

    async def _retrieve(
        self, options: SearchOptions, filters: SearchFilters, limit: int
    ) -> list[_Scored]:
        try:
            if options.mode is SearchMode.SEMANTIC:
                matches = await self._semantic(options.query, limit, filters, options.min_score)
                return [
                    _Scored(chunk=m.chunk, score=m.score, semantic_score=m.score) for m in matches
                ]
            if options.mode is SearchMode.KEYWORD:
                matches = await self._chunks.search_keyword(options.query, limit, filters)
                return [
                    _Scored(chunk=m.chunk, score=m.score, keyword_score=m.score) for m in matches
                ]

            semantic, keyword = await asyncio.gather(
                self._semantic(options.query, limit * 2, filters, options.min_score),
                self._chunks.search_keyword(options.query, limit * 2, filters),
            )
            return fuse(semantic, keyword)[:limit]
        except (EmbeddingError, StorageError) as exc:
            logger.error("search_failed", mode=options.mode.value, error=str(exc))
            raise SearchError(f"Search failed: {exc}") from exc

    async def _semantic(
        self,
        query: str,
        limit: int,
        filters: SearchFilters,
        min_score: float | None,
    ) -> list[ChunkMatch]:
        embedding = await self._embedder.embed_query(query)
        return await self._chunks.search_semantic(embedding, limit, filters, min_score)

    async def _rerank(
        self, query: str, pool: list[_Scored], top_k: int
    ) -> tuple[list[_Scored], bool]:
        candidates = [
            RerankCandidate(
                id=s.chunk.id,
                content=s.chunk.display_content,
                original_rank=rank,
                original_score=s.score,
            )
            for rank, s in enumerate(pool)
        ]
        try:
            items = await self._reranker.rerank(query, candidates, top_k)
        except Exception as exc:
            logger.warning(
                "rerank_failed",
                reranker=self._reranker.get_provider_name(),
                error=str(exc),
            )
            return pool[:top_k], False

        by_id = {s.chunk.id: s for s in pool}
        reordered: list[_Scored] = []
        for item in items:
            entry = by_id.get(item.id)
            if entry is None:
                continue
            entry.original_rank = item.original_rank
            entry.rerank_score = item.relevance_score
            entry.score = item.relevance_score
            reordered.append(entry)
        if not reordered:
            logger.warning(
                "rerank_returned_no_candidates",
                reranker=self._reranker.get_provider_name(),
                returned=len(items),
            )
            return pool[:top_k], False
        reordered.sort(key=lambda s: s.score, reverse=True)
        return reordered[:top_k], True

    @staticmethod
    def _to_result(entry: _Scored, explain: bool, reranked: bool) -> SearchResult:
        explanation = None
        if explain:
            explanation = SearchExplanation(
                match_type=entry.match_type,
                semantic_score=entry.semantic_score,
                keyword_score=entry.keyword_score,
                boost_applied=entry.boost,
                boost_reason=entry.boost_reason,
                reranked=reranked,
                original_rank=entry.original_rank,
                rerank_score=entry.rerank_score,
            )
        return SearchResult(chunk=entry.chunk, score=entry.score, explanation=explanation)
