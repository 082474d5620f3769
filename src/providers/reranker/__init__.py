"""Second-pass rerankers.

Three implementations of IRerankerProvider
(src/interfaces/reranker_provider.py):
    - LLMReranker: asks the configured LLM for a 0-1 relevance score per candidate
    - CohereReranker: Cohere's hosted rerank endpoint over httpx
    - NoOpReranker: keeps the first-pass order

Every implementation degrades to the first-pass order on failure.
"""

from src.providers.reranker.cohere_reranker import CohereReranker
from src.providers.reranker.llm_reranker import LLMReranker
from src.providers.reranker.noop_reranker import NoOpReranker

__all__ = ["CohereReranker", "LLMReranker", "NoOpReranker"]
