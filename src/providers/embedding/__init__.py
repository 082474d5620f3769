"""Embedding provider implementations.

Embeddings convert chunk text into vectors stored alongside each chunk and
compared against the query vector at search time.

Two implementations of IEmbeddingProvider:
    1. OpenAIEmbeddingProvider: text-embedding-3-small (1536 dims), also any
       OpenAI-compatible endpoint.
    2. CohereEmbeddingProvider: embed-multilingual-v3.0 (1024 dims), with
       separate document and query input types.

The dimension is fixed per model and must match vectors already stored.
"""

from src.providers.embedding.cohere_embedding_provider import CohereEmbeddingProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["CohereEmbeddingProvider", "OpenAIEmbeddingProvider"]
