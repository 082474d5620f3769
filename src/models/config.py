"""Typed runtime configuration consumed by the engines.

:func:`src.config.loader.build_rag_config` turns the merged YAML + env
dictionary into a :class:`RagConfig`.  Every engine receives only the
section it needs.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from src.models.chunk import ChunkType


class BatchConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    pages_per_batch: int = Field(default=15, ge=1, le=50)
    max_concurrency: int = Field(default=3, ge=1, le=10)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_delay_ms: int = Field(default=1000, ge=0, le=30_000)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=5.0)


class RateLimitConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    requests_per_minute: int = Field(default=60, ge=1, le=1000)
    adaptive: bool = True


class GenerationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=8192, ge=100, le=65_536)


class RerankerKind(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    LLM = "llm"
    COHERE = "cohere"
    NONE = "none"


class RerankingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    provider: RerankerKind = RerankerKind.LLM
    default_candidates: int = Field(default=50, ge=1, le=500)
    default_top_k: int = Field(default=10, ge=1, le=100)
    cohere_api_key: str = ""
    cohere_model: str = "rerank-multilingual-v3.0"


class EnrichmentStrategy(str, Enum):  # noqa: UP042
    NONE = "none"
    TEMPLATE = "template"
    LLM = "llm"
    CUSTOM = "custom"


DEFAULT_CONTEXT_TEMPLATE = "[{document_type}] [{chunk_type}] Page {page}"
DEFAULT_CONTEXT_PROMPT = (
    "Situate this chunk within the document. Briefly explain what this chunk is "
    "about and where it appears in the document in 1-2 sentences:"
)


class EnrichmentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: EnrichmentStrategy = EnrichmentStrategy.NONE
    template: str = DEFAULT_CONTEXT_TEMPLATE
    context_prompt: str = DEFAULT_CONTEXT_PROMPT
    skip_chunk_types: list[ChunkType] = Field(
        default_factory=lambda: [ChunkType.HEADING, ChunkType.IMAGE_REF]
    )
    concurrency_limit: int = Field(default=5, ge=1, le=20)
    max_context_tokens: int = Field(default=150, ge=16, le=1000)


class RagConfig(BaseModel):
    """Aggregate of every engine section."""

    model_config = ConfigDict(frozen=True)

    batch: BatchConfig = Field(default_factory=BatchConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    reranking: RerankingConfig = Field(default_factory=RerankingConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    use_structured_output: bool = True
    embedding_batch_size: int = Field(default=100, ge=1, le=2048)
    chunk_type_mapping: dict[str, ChunkType] = Field(
        default_factory=dict,
        description="Extra subtype -> canonical type entries layered over the built-ins.",
    )
    log_level: str = "INFO"
