"""Unit tests for the OpenAI and Cohere embedding providers."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from src.config.settings import Settings
from src.interfaces.embedding_provider import EmbeddingTaskType
from src.providers.embedding import CohereEmbeddingProvider, OpenAIEmbeddingProvider
from src.utils.errors import EmbeddingError, RateLimitError


def _settings(**overrides) -> Settings:
    defaults = {"openai_api_key": "sk-test", "openai_base_url": "", "openai_embedding_model": ""}
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def _embedding_response(count: int, total_tokens: int = 0, reverse: bool = False) -> MagicMock:
    items = [MagicMock(index=i, embedding=[float(i), 1.0]) for i in range(count)]
    response = MagicMock()
    response.data = list(reversed(items)) if reverse else items
    response.usage = MagicMock(total_tokens=total_tokens)
    return response


# ======================================================================
# OpenAI Embedding Provider
# ======================================================================


class TestOpenAIEmbeddingProvider:
    def test_defaults(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings(), client=AsyncMock())
        assert provider.get_model_name() == "text-embedding-3-small"
        assert provider.get_dimension() == 1536
        assert provider.get_provider_name() == "openai_embedding"
        assert provider.is_available() is True

    def test_known_and_compatible_models(self) -> None:
        large = OpenAIEmbeddingProvider(
            _settings(openai_embedding_model="text-embedding-3-large"), client=AsyncMock()
        )
        assert large.get_dimension() == 3072
        compatible = OpenAIEmbeddingProvider(
            _settings(openai_base_url="http://tei:8080/v1", openai_embedding_model="BAAI/bge-base-en-v1.5"),
            client=AsyncMock(),
        )
        assert compatible.get_dimension() == 768
        assert compatible.get_provider_name() == "openai-compatible_embedding"

    @pytest.mark.asyncio
    async def test_results_follow_response_index(self) -> None:
        client = AsyncMock()
        client.embeddings.create = AsyncMock(
            return_value=_embedding_response(3, total_tokens=30, reverse=True)
        )
        provider = OpenAIEmbeddingProvider(_settings(), client=client)

        results = await provider.embed_batch(["a", "b", "c"])

        assert [r.embedding[0] for r in results] == [0.0, 1.0, 2.0]
        assert [r.token_count for r in results] == [10, 10, 10]
        kwargs = client.embeddings.create.await_args.kwargs
        assert kwargs == {"input": ["a", "b", "c"], "model": "text-embedding-3-small"}

    @pytest.mark.asyncio
    async def test_large_inputs_are_split(self) -> None:
        client = AsyncMock()
        client.embeddings.create = AsyncMock(
            side_effect=lambda input, model: _embedding_response(len(input))
        )
        provider = OpenAIEmbeddingProvider(_settings(), client=client)

        results = await provider.embed_batch([f"t{i}" for i in range(2050)])

        assert len(results) == 2050
        sizes = [len(call.kwargs["input"]) for call in client.embeddings.create.await_args_list]
        assert sizes == [2048, 2]

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_call(self) -> None:
        client = AsyncMock()
        assert await OpenAIEmbeddingProvider(_settings(), client=client).embed_batch([]) == []
        client.embeddings.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_embed_query_returns_vector(self) -> None:
        client = AsyncMock()
        client.embeddings.create = AsyncMock(return_value=_embedding_response(1))
        vector = await OpenAIEmbeddingProvider(_settings(), client=client).embed_query("q")
        assert vector == [0.0, 1.0]

    @pytest.mark.asyncio
    async def test_rate_limit_error(self) -> None:
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        client = AsyncMock()
        client.embeddings.create = AsyncMock(
            side_effect=openai.RateLimitError(
                "limited", response=httpx.Response(429, request=request), body=None
            )
        )
        with pytest.raises(RateLimitError):
            await OpenAIEmbeddingProvider(_settings(), client=client).embed_batch(["a"])

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("status", "retryable"), [(502, True), (400, False)])
    async def test_status_errors(self, status: int, retryable: bool) -> None:
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        client = AsyncMock()
        client.embeddings.create = AsyncMock(
            side_effect=openai.APIStatusError(
                "boom", response=httpx.Response(status, request=request), body=None
            )
        )
        with pytest.raises(EmbeddingError) as exc_info:
            await OpenAIEmbeddingProvider(_settings(), client=client).embed_batch(["a"])
        assert exc_info.value.retryable is retryable


# ======================================================================
# Cohere Embedding Provider
# ======================================================================


def _cohere(handler, model: str = "embed-multilingual-v3.0") -> CohereEmbeddingProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CohereEmbeddingProvider("co-key", client, model=model)


class TestCohereEmbeddingProvider:
    def test_dimensions(self) -> None:
        ok = lambda request: httpx.Response(200)  # noqa: E731
        assert _cohere(ok).get_dimension() == 1024
        assert _cohere(ok, model="embed-english-light-v3.0").get_dimension() == 384
        assert _cohere(ok).get_provider_name() == "cohere_embedding"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("task_type", "input_type"),
        [
            (EmbeddingTaskType.RETRIEVAL_DOCUMENT, "search_document"),
            (EmbeddingTaskType.RETRIEVAL_QUERY, "search_query"),
        ],
    )
    async def test_input_type_follows_task(self, task_type, input_type: str) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            bodies.append(body)
            return httpx.Response(
                200,
                json={
                    "embeddings": [[0.5, 0.5] for _ in body["texts"]],
                    "meta": {"billed_units": {"input_tokens": 8}},
                },
            )

        results = await _cohere(handler).embed_batch(["alpha", "beta"], task_type)

        assert bodies[0]["input_type"] == input_type
        assert bodies[0]["texts"] == ["alpha", "beta"]
        assert [r.token_count for r in results] == [4, 4]

    @pytest.mark.asyncio
    async def test_batches_of_96(self) -> None:
        sizes: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            texts = json.loads(request.content)["texts"]
            sizes.append(len(texts))
            return httpx.Response(200, json={"embeddings": [[1.0] for _ in texts]})

        results = await _cohere(handler).embed_batch([str(i) for i in range(100)])

        assert sizes == [96, 4]
        assert len(results) == 100

    @pytest.mark.asyncio
    async def test_rate_limit(self) -> None:
        provider = _cohere(lambda request: httpx.Response(429))
        with pytest.raises(RateLimitError):
            await provider.embed_batch(["a"])

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("status", "retryable"), [(500, True), (401, False)])
    async def test_http_errors(self, status: int, retryable: bool) -> None:
        provider = _cohere(lambda request: httpx.Response(status, text="nope"))
        with pytest.raises(EmbeddingError) as exc_info:
            await provider.embed_batch(["a"])
        assert exc_info.value.retryable is retryable

    @pytest.mark.asyncio
    async def test_transport_error_is_retryable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(EmbeddingError) as exc_info:
            await _cohere(handler).embed_batch(["a"])
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_count_mismatch_is_terminal(self) -> None:
        provider = _cohere(lambda request: httpx.Response(200, json={"embeddings": [[1.0]]}))
        with pytest.raises(EmbeddingError, match="malformed") as exc_info:
            await provider.embed_batch(["a", "b"])
        assert exc_info.value.retryable is False
