"""Integration tests for retrieval over ingested documents.

Real SQLite (vectors + FTS5), hashed embeddings, and an LLM reranker
driven by a scripted completion.
"""

from __future__ import annotations

import json
import re
from typing import Any

import httpx
import pytest

from src.main import build_folio_rag
from src.models.chunk import ChunkType
from src.models.config import BatchConfig, RagConfig, RerankingConfig
from src.models.document import IngestOptions
from src.models.search import PageRange, SearchFilters, SearchMode, SearchOptions
from src.services.folio_service import FolioRAG
from tests.conftest import FakeLLM, page_text

_DOC_RE = re.compile(r"\[DOC_(\d+)\] ([^\n]*)")


def _glacier_judge(prompt: str) -> str:
    """Score every snippet, preferring the glacier passage."""
    scores = [
        {"id": f"DOC_{index}", "score": 0.95 if "glacier" in text else 0.1}
        for index, text in _DOC_RE.findall(prompt)
    ]
    return json.dumps(scores)


def _build(settings, document_ai, fake_embedder, llm: FakeLLM | None = None, **config: Any) -> FolioRAG:
    return build_folio_rag(
        settings,
        RagConfig(batch=BatchConfig(pages_per_batch=4, retry_delay_ms=0), **config),
        httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200))),
        document_ai=document_ai,
        llm=llm or FakeLLM(),
        embedding_provider=fake_embedder,
    )


async def _corpus(folio: FolioRAG, pdf_factory) -> dict[str, str]:
    await folio.initialize()
    ids: dict[str, str] = {}
    for label, document_type in (("Atlas", "Geology"), ("Chronicle", "History")):
        result = await folio.ingest(
            IngestOptions(file=pdf_factory(8, label), filename=f"{label}.pdf", document_type=document_type)
        )
        ids[document_type] = result.document_id
    return ids


# ======================================================================
# Modes
# ======================================================================


class TestRetrievalModes:
    @pytest.mark.asyncio
    async def test_semantic_exact_passage_scores_highest(
        self, settings, document_ai, fake_embedder, pdf_factory
    ) -> None:
        folio = _build(settings, document_ai, fake_embedder)
        await _corpus(folio, pdf_factory)

        results = await folio.search(
            SearchOptions(query=page_text(4), mode=SearchMode.SEMANTIC, limit=2)
        )

        assert [r.chunk.page_start for r in results] == [4, 4]
        assert results[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_keyword_excludes_headings_by_default(
        self, settings, document_ai, fake_embedder, pdf_factory
    ) -> None:
        folio = _build(settings, document_ai, fake_embedder)
        await _corpus(folio, pdf_factory)

        default = await folio.search(SearchOptions(query="chapter overview", mode=SearchMode.KEYWORD))
        headings = await folio.search(
            SearchOptions(
                query="chapter overview",
                mode=SearchMode.KEYWORD,
                filters=SearchFilters(chunk_types=[ChunkType.HEADING]),
            )
        )

        assert default == []
        assert headings
        assert {r.chunk.chunk_type for r in headings} == {ChunkType.HEADING}

    @pytest.mark.asyncio
    async def test_hybrid_marks_matches_from_both_lookups(
        self, settings, document_ai, fake_embedder, pdf_factory
    ) -> None:
        folio = _build(settings, document_ai, fake_embedder)
        await _corpus(folio, pdf_factory)

        response = await folio.search_with_metadata(
            SearchOptions(query="honeybee colony behaviour", limit=4, include_explanation=True)
        )

        top = response.results[0]
        assert "honeybee" in top.chunk.display_content
        assert top.explanation.match_type.value == "both"
        assert top.explanation.semantic_score is not None
        assert top.explanation.keyword_score is not None
        assert response.reranked is False


# ======================================================================
# Filters
# ======================================================================


class TestFilters:
    @pytest.mark.asyncio
    async def test_document_type_filter(
        self, settings, document_ai, fake_embedder, pdf_factory
    ) -> None:
        folio = _build(settings, document_ai, fake_embedder)
        ids = await _corpus(folio, pdf_factory)

        results = await folio.search(
            SearchOptions(query="coral reef", filters=SearchFilters(document_types=["History"]))
        )

        assert results
        assert {r.chunk.document_id for r in results} == {ids["History"]}

    @pytest.mark.asyncio
    async def test_page_range_filter(self, settings, document_ai, fake_embedder, pdf_factory) -> None:
        folio = _build(settings, document_ai, fake_embedder)
        ids = await _corpus(folio, pdf_factory)

        results = await folio.search(
            SearchOptions(
                query="passage explains",
                mode=SearchMode.KEYWORD,
                limit=50,
                filters=SearchFilters(
                    document_ids=[ids["Geology"]], page_range=PageRange(start=3, end=4)
                ),
            )
        )

        assert sorted(r.chunk.page_start for r in results) == [3, 4]

    @pytest.mark.asyncio
    async def test_min_confidence_filter(
        self, settings, document_ai, fake_embedder, pdf_factory
    ) -> None:
        folio = _build(settings, document_ai, fake_embedder)
        await _corpus(folio, pdf_factory)

        results = await folio.search(
            SearchOptions(query="passage", mode=SearchMode.KEYWORD, filters=SearchFilters(min_confidence=0.86))
        )

        assert results == []


# ======================================================================
# Reranking
# ======================================================================


class TestReranking:
    @pytest.mark.asyncio
    async def test_llm_reranker_reorders_pool(
        self, settings, document_ai, fake_embedder, pdf_factory
    ) -> None:
        llm = FakeLLM(_glacier_judge)
        folio = _build(
            settings,
            document_ai,
            fake_embedder,
            llm=llm,
            reranking=RerankingConfig(enabled=True, default_candidates=8),
        )
        ids = await _corpus(folio, pdf_factory)

        response = await folio.search_with_metadata(
            SearchOptions(
                query="passage explains thoroughly",
                limit=2,
                filters=SearchFilters(document_ids=[ids["Geology"]]),
                include_explanation=True,
            )
        )

        assert response.reranked is True
        assert len(llm.calls) == 1
        top = response.results[0]
        assert "glacier" in top.chunk.display_content
        assert top.score == 0.95
        assert top.explanation.reranked is True
        assert top.explanation.original_rank is not None

    @pytest.mark.asyncio
    async def test_unparseable_judgement_keeps_first_pass_order(
        self, settings, document_ai, fake_embedder, pdf_factory
    ) -> None:
        folio = _build(
            settings,
            document_ai,
            fake_embedder,
            llm=FakeLLM("not json"),
            reranking=RerankingConfig(enabled=True, default_candidates=8),
        )
        await _corpus(folio, pdf_factory)

        baseline = await folio.search(SearchOptions(query="quantum computing", limit=2, use_reranking=False))
        reranked = await folio.search_with_metadata(SearchOptions(query="quantum computing", limit=2))

        assert {r.chunk.id for r in reranked.results} == {r.chunk.id for r in baseline}
        assert {r.chunk.page_start for r in baseline} == {4}
