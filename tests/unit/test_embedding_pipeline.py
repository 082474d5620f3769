"""Unit tests for EmbeddingPipeline batching and validation."""

from __future__ import annotations

import pytest

from src.interfaces.embedding_provider import EmbeddingResult, EmbeddingTaskType
from src.models.chunk import ChunkCandidate, ChunkType
from src.services.ingestion.embedding_pipeline import EmbeddingPipeline
from src.utils.errors import EmbeddingError
from src.utils.rate_limiter import RateLimiter
from tests.conftest import FakeEmbeddingProvider


class _ShortProvider(FakeEmbeddingProvider):
    async def embed_batch(self, texts, task_type=EmbeddingTaskType.RETRIEVAL_DOCUMENT):
        results = await super().embed_batch(texts, task_type)
        return results[:-1]


class _WrongDimensionProvider(FakeEmbeddingProvider):
    async def embed_batch(self, texts, task_type=EmbeddingTaskType.RETRIEVAL_DOCUMENT):
        return [EmbeddingResult(embedding=[0.1, 0.2]) for _ in texts]


def _candidate(search: str, enriched: str | None = None) -> ChunkCandidate:
    return ChunkCandidate(
        chunk_type=ChunkType.TEXT,
        page_start=1,
        page_end=1,
        confidence=0.9,
        display_content=search,
        search_content=search,
        enriched_content=enriched,
    )


class TestEmbeddingPipeline:
    @pytest.mark.asyncio
    async def test_sub_batches_and_order(self, fake_embedder) -> None:
        limiter = RateLimiter(100)
        pipeline = EmbeddingPipeline(fake_embedder, limiter, batch_size=2)
        texts = ["alpha words", "beta words", "gamma words", "delta words", "epsilon"]

        batch = await pipeline.embed_texts(texts)

        assert [len(call[0]) for call in fake_embedder.batch_calls] == [2, 2, 1]
        assert batch.vectors == [fake_embedder.vector(t) for t in texts]
        assert batch.token_count == 9
        assert limiter.get_status().available_tokens == 97

    @pytest.mark.asyncio
    async def test_uses_document_task_type(self, fake_embedder) -> None:
        pipeline = EmbeddingPipeline(fake_embedder, RateLimiter(100))
        await pipeline.embed_texts(["some text"])
        assert fake_embedder.batch_calls[0][1] is EmbeddingTaskType.RETRIEVAL_DOCUMENT

    @pytest.mark.asyncio
    async def test_empty_input_skips_provider(self, fake_embedder) -> None:
        batch = await EmbeddingPipeline(fake_embedder, RateLimiter(100)).embed_texts([])
        assert batch.vectors == []
        assert fake_embedder.batch_calls == []

    @pytest.mark.asyncio
    async def test_candidates_embed_enriched_text_when_present(self, fake_embedder) -> None:
        pipeline = EmbeddingPipeline(fake_embedder, RateLimiter(100))
        await pipeline.embed_candidates(
            [_candidate("plain text"), _candidate("body text", "context then body text")]
        )
        assert fake_embedder.batch_calls[0][0] == ["plain text", "context then body text"]

    @pytest.mark.asyncio
    async def test_count_mismatch_raises(self) -> None:
        pipeline = EmbeddingPipeline(_ShortProvider(), RateLimiter(100))
        with pytest.raises(EmbeddingError, match="2 texts"):
            await pipeline.embed_texts(["one text", "two text"])

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_not_retryable(self) -> None:
        pipeline = EmbeddingPipeline(_WrongDimensionProvider(dimension=8), RateLimiter(100))
        with pytest.raises(EmbeddingError) as excinfo:
            await pipeline.embed_texts(["one text"])
        assert excinfo.value.retryable is False
        assert "expected 8" in excinfo.value.message

    def test_dimension_property(self, fake_embedder) -> None:
        assert EmbeddingPipeline(fake_embedder, RateLimiter(100)).dimension == 64

    def test_model_id_names_provider_and_model(self, fake_embedder) -> None:
        pipeline = EmbeddingPipeline(fake_embedder, RateLimiter(100))
        assert pipeline.model_id == "fake_embedding:fake-hash-embedding"
