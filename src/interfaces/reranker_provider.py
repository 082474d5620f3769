"""Abstract base class for second-pass rerankers.

Every implementation must catch its own failures and return the original
ordering (by ``original_score``) truncated to ``top_k``.  The retrieval
engine guards the call as well, but a reranker that raises is a bug.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.search import RerankCandidate, RerankedItem


# Concrete implementations: LLMReranker, CohereReranker, NoOpReranker
# Located in: src/providers/reranker/
class IRerankerProvider(ABC):
    """Contract for rerankers used by the retrieval engine."""

    @abstractmethod
    async def rerank(
        self,
        query: str,
        candidates: list[RerankCandidate],
        top_k: int,
    ) -> list[RerankedItem]:
        """Score ``candidates`` against ``query`` and return the best ``top_k``.

        Returns
        -------
        list[RerankedItem]
            Sorted by ``relevance_score`` descending; scores in [0, 1].
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"cohere-rerank"``."""

    @staticmethod
    def fallback_ranking(candidates: list[RerankCandidate], top_k: int) -> list[RerankedItem]:
        """Original ordering truncated to ``top_k``, scores clamped to [0, 1]."""
        ordered = sorted(candidates, key=lambda c: c.original_score, reverse=True)[:top_k]
        return [
            RerankedItem(
                id=c.id,
                relevance_score=min(1.0, max(0.0, c.original_score)),
                original_rank=c.original_rank,
            )
            for c in ordered
        ]
