"""LLM-as-judge reranker.

Candidates are shown to the model as ``[DOC_i]`` snippets (first 400
characters) and the model returns ``[{"id": "DOC_i", "score": 0..1}]``.
Truncated responses are repaired by salvaging every complete object and
scores are clamped to ``[0, 1]``.  Any failure, including a reply whose ids
match no candidate, degrades to the original ordering.
"""

from __future__ import annotations

import json
import re

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, TypeAdapter, field_validator

from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.reranker_provider import IRerankerProvider
from src.models.search import RerankCandidate, RerankedItem
from src.utils.errors import RerankingError
from src.utils.rate_limiter import RateLimiter

logger = structlog.get_logger(logger_name=__name__)

SNIPPET_LENGTH = 400

_SYSTEM_PROMPT = "You score search results for relevance. You reply with JSON only."

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*(.*?)(?:```|$)", re.DOTALL)
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)
_OBJECT_RE = re.compile(r'\{\s*"id"\s*:\s*"DOC_\d+"\s*,\s*"score"\s*:\s*[\d.]+\s*\}')
_DOC_ID_RE = re.compile(r"DOC_(\d+)")


class _Score(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    score: float

    @field_validator("score")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return min(1.0, max(0.0, value))


_SCORES_ADAPTER = TypeAdapter(list[_Score])


def build_rerank_prompt(query: str, candidates: list[RerankCandidate]) -> str:
    docs = "\n\n---\n\n".join(
        f"[DOC_{i}] {c.content[:SNIPPET_LENGTH]}{'...' if len(c.content) > SNIPPET_LENGTH else ''}"
        for i, c in enumerate(candidates)
    )
    return (
        "TASK: Score document relevance to query. Return ONLY JSON.\n\n"
        f'QUERY: "{query}"\n\n'
        f"DOCUMENTS:\n{docs}\n\n"
        "INSTRUCTIONS:\n"
        "1. Score each document 0.0 (irrelevant) to 1.0 (highly relevant)\n"
        "2. Return ONLY a JSON array, no explanations\n"
        "3. Use document IDs exactly as shown (DOC_0, DOC_1, etc.)\n\n"
        'OUTPUT FORMAT:\n[{"id":"DOC_0","score":0.85},{"id":"DOC_1","score":0.72}]'
    )


def parse_scores(response: str) -> list[_Score]:
    """Extract the score array, salvaging complete objects from truncated output.

    Raises
    ------
    RerankingError
        If no scores can be recovered.
    """
    block = _CODE_BLOCK_RE.search(response)
    text = block.group(1) if block else response

    array = _ARRAY_RE.search(text)
    try:
        if array is not None:
            return _SCORES_ADAPTER.validate_python(json.loads(array.group(0)))
        objects = _OBJECT_RE.findall(text)
        if objects:
            logger.debug("rerank_response_repaired", objects=len(objects))
            return _SCORES_ADAPTER.validate_python(json.loads("[" + ",".join(objects) + "]"))
    except (json.JSONDecodeError, pydantic.ValidationError) as exc:
        raise RerankingError(f"Unparseable rerank response: {exc}", provider_name="llm") from exc
    raise RerankingError("No JSON found in rerank response", provider_name="llm")


class LLMReranker(IRerankerProvider):
    """Reranks with a text-completion LLM.

    Parameters
    ----------
    llm:
        Completion provider.
    rate_limiter:
        Optional shared limiter.
    max_tokens:
        Output budget for the score array.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        rate_limiter: RateLimiter | None = None,
        max_tokens: int = 2000,
    ) -> None:
        self._llm = llm
        self._rate_limiter = rate_limiter
        self._max_tokens = max_tokens

    async def rerank(
        self,
        query: str,
        candidates: list[RerankCandidate],
        top_k: int,
    ) -> list[RerankedItem]:
        if not candidates:
            return []
        if len(candidates) <= top_k:
            return self.fallback_ranking(candidates, top_k)

        prompt = build_rerank_prompt(query, candidates)

        async def _call() -> str:
            return await self._llm.complete(
                system_prompt=_SYSTEM_PROMPT,
                user_prompt=prompt,
                temperature=0.0,
                max_tokens=self._max_tokens,
            )

        try:
            if self._rate_limiter is not None:
                response = await self._rate_limiter.throttle(_call)
            else:
                response = await _call()
            scores = parse_scores(response)
        except Exception as exc:
            logger.warning("llm_rerank_failed", error=str(exc), candidates=len(candidates))
            return self.fallback_ranking(candidates, top_k)

        items: dict[str, RerankedItem] = {}
        for entry in scores:
            match = _DOC_ID_RE.fullmatch(entry.id.strip())
            if match is None:
                continue
            index = int(match.group(1))
            if index >= len(candidates):
                continue
            candidate = candidates[index]
            items.setdefault(
                candidate.id,
                RerankedItem(
                    id=candidate.id,
                    relevance_score=entry.score,
                    original_rank=candidate.original_rank,
                ),
            )

        if not items:
            logger.warning("llm_rerank_no_known_ids", candidates=len(candidates), scores=len(scores))
            return self.fallback_ranking(candidates, top_k)

        ranked = sorted(items.values(), key=lambda i: i.relevance_score, reverse=True)[:top_k]
        wanted = min(top_k, len(candidates))
        if len(ranked) < wanted:
            # Candidates the model skipped follow the scored ones in first-pass order.
            unscored = [c for c in candidates if c.id not in items][: wanted - len(ranked)]
            ranked.extend(
                RerankedItem(id=c.id, relevance_score=0.0, original_rank=c.original_rank)
                for c in unscored
            )
        logger.debug("llm_rerank_complete", candidates=len(candidates), returned=len(ranked))
        return ranked

    def get_provider_name(self) -> str:
        return f"llm:{self._llm.get_provider_name()}"
