"""Cohere embedding provider adapter (REST over httpx).

Cohere's v3 models are asymmetric: documents are embedded with
``input_type=search_document`` and queries with ``search_query``.
"""

from __future__ import annotations

import httpx
import structlog

from src.interfaces.embedding_provider import (
    EmbeddingResult,
    EmbeddingTaskType,
    IEmbeddingProvider,
)
from src.utils.errors import EmbeddingError, RateLimitError

logger = structlog.get_logger(logger_name=__name__)

_COHERE_EMBED_URL = "https://api.cohere.ai/v1/embed"
_COHERE_BATCH_LIMIT = 96

_MODEL_DIMENSIONS: dict[str, int] = {
    "embed-multilingual-v3.0": 1024,
    "embed-english-v3.0": 1024,
    "embed-multilingual-light-v3.0": 384,
    "embed-english-light-v3.0": 384,
}

_INPUT_TYPES: dict[EmbeddingTaskType, str] = {
    EmbeddingTaskType.RETRIEVAL_DOCUMENT: "search_document",
    EmbeddingTaskType.RETRIEVAL_QUERY: "search_query",
    EmbeddingTaskType.SEMANTIC_SIMILARITY: "clustering",
}


class CohereEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by the Cohere embed endpoint.

    Parameters
    ----------
    api_key:
        Cohere API key.
    http_client:
        Shared ``httpx.AsyncClient``; owned and closed by the caller.
    model:
        Embedding model; ``embed-multilingual-v3.0`` (1024 dims) by default.
    """

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        model: str = "embed-multilingual-v3.0",
    ) -> None:
        self._api_key = api_key
        self._http = http_client
        self._model = model
        self._dimension = _MODEL_DIMENSIONS.get(model, 1024)

    async def embed(
        self,
        text: str,
        task_type: EmbeddingTaskType = EmbeddingTaskType.RETRIEVAL_DOCUMENT,
    ) -> EmbeddingResult:
        results = await self.embed_batch([text], task_type)
        return results[0]

    async def embed_batch(
        self,
        texts: list[str],
        task_type: EmbeddingTaskType = EmbeddingTaskType.RETRIEVAL_DOCUMENT,
    ) -> list[EmbeddingResult]:
        if not texts:
            return []

        results: list[EmbeddingResult] = []
        for start in range(0, len(texts), _COHERE_BATCH_LIMIT):
            batch = texts[start : start + _COHERE_BATCH_LIMIT]
            payload = await self._post(batch, _INPUT_TYPES[task_type])
            vectors = payload.get("embeddings")
            if not isinstance(vectors, list) or len(vectors) != len(batch):
                raise EmbeddingError(
                    message="Cohere returned a malformed embeddings payload",
                    provider_name=self.get_provider_name(),
                    retryable=False,
                )
            billed = payload.get("meta", {}).get("billed_units", {}).get("input_tokens", 0)
            per_text = int(billed) // len(batch)
            results.extend(EmbeddingResult(embedding=v, token_count=per_text) for v in vectors)
            logger.debug(
                "cohere_embedding_batch",
                model=self._model,
                batch_size=len(batch),
                input_type=_INPUT_TYPES[task_type],
            )
        return results

    async def _post(self, texts: list[str], input_type: str) -> dict:
        try:
            response = await self._http.post(
                _COHERE_EMBED_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"texts": texts, "model": self._model, "input_type": input_type},
                timeout=30.0,
            )
        except httpx.HTTPError as exc:
            raise EmbeddingError(
                message=f"Cohere request failed: {exc}",
                provider_name=self.get_provider_name(),
                retryable=True,
            ) from exc

        if response.status_code == 429:
            raise RateLimitError(
                message="Cohere rate limit exceeded",
                provider_name=self.get_provider_name(),
            )
        if response.status_code != 200:
            raise EmbeddingError(
                message=f"Cohere embed returned HTTP {response.status_code}: {response.text[:200]}",
                provider_name=self.get_provider_name(),
                retryable=response.status_code >= 500,
            )
        return response.json()

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return "cohere_embedding"

    def is_available(self) -> bool:
        return bool(self._api_key)
