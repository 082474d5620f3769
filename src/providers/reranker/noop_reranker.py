"""Pass-through reranker used when reranking is disabled."""

from __future__ import annotations

from src.interfaces.reranker_provider import IRerankerProvider
from src.models.search import RerankCandidate, RerankedItem


class NoOpReranker(IRerankerProvider):
    async def rerank(
        self,
        query: str,
        candidates: list[RerankCandidate],
        top_k: int,
    ) -> list[RerankedItem]:
        return self.fallback_ranking(candidates, top_k)

    def get_provider_name(self) -> str:
        return "none"
