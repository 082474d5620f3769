"""Cohere Rerank API adapter (httpx)."""

from __future__ import annotations

import httpx
import structlog

from src.interfaces.reranker_provider import IRerankerProvider
from src.models.search import RerankCandidate, RerankedItem
from src.utils.errors import RerankingError

logger = structlog.get_logger(logger_name=__name__)

_RERANK_URL = "https://api.cohere.ai/v1/rerank"


class CohereReranker(IRerankerProvider):
    """Reranks with Cohere's dedicated rerank model.

    The ``httpx.AsyncClient`` is injected so the application shares one
    connection pool and tests can mock transport.
    """

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        model: str = "rerank-multilingual-v3.0",
    ) -> None:
        self._api_key = api_key
        self._http = http_client
        self._model = model

    async def rerank(
        self,
        query: str,
        candidates: list[RerankCandidate],
        top_k: int,
    ) -> list[RerankedItem]:
        if not candidates:
            return []
        try:
            return await self._call(query, candidates, top_k)
        except (RerankingError, httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            logger.warning("cohere_rerank_failed", error=str(exc), candidates=len(candidates))
            return self.fallback_ranking(candidates, top_k)

    async def _call(
        self, query: str, candidates: list[RerankCandidate], top_k: int
    ) -> list[RerankedItem]:
        response = await self._http.post(
            _RERANK_URL,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={
                "query": query,
                "documents": [c.content for c in candidates],
                "top_n": top_k,
                "model": self._model,
            },
            timeout=30.0,
        )
        if response.status_code != 200:
            raise RerankingError(
                f"Cohere API error: {response.status_code}",
                provider_name=self.get_provider_name(),
                retryable=response.status_code >= 500,
                details={"status_code": response.status_code, "body": response.text[:500]},
            )

        items: list[RerankedItem] = []
        for entry in response.json()["results"]:
            index = int(entry["index"])
            if not 0 <= index < len(candidates):
                continue
            candidate = candidates[index]
            items.append(
                RerankedItem(
                    id=candidate.id,
                    relevance_score=min(1.0, max(0.0, float(entry["relevance_score"]))),
                    original_rank=candidate.original_rank,
                )
            )
        items.sort(key=lambda i: i.relevance_score, reverse=True)
        logger.debug("cohere_rerank_complete", candidates=len(candidates), returned=len(items))
        return items[:top_k]

    def get_provider_name(self) -> str:
        return "cohere-rerank"
