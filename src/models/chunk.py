"""Chunk models -- the atomic retrievable unit of an ingested document.

Chunk types are a **closed canonical enum** plus a free-form ``sub_type``.
Custom extraction prompts may invent categories ("CLAUSE", "RECIPE_STEP");
those are mapped onto the canonical enum by
:class:`~src.services.ingestion.extraction_parser.ChunkTypeMapper` and the
raw label survives in ``sub_type`` so it can still be filtered on.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ChunkType(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    """Canonical content categories produced by extraction."""

    TEXT = "TEXT"
    TABLE = "TABLE"
    LIST = "LIST"
    CODE = "CODE"
    HEADING = "HEADING"
    IMAGE_REF = "IMAGE_REF"
    QUOTE = "QUOTE"
    QUESTION = "QUESTION"
    MIXED = "MIXED"


class ConfidenceCategory(str, Enum):  # noqa: UP042
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


# ---------------------------------------------------------------------------
# ExtractedSection: one element of the structured extraction schema.
# ---------------------------------------------------------------------------
class ExtractedSection(BaseModel):
    """Shape the document-AI provider must return on the structured path.

    Validation failures here are what trigger the marker-based fallback.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: ChunkType
    page: int = Field(ge=1)
    confidence: float = Field(ge=0.0, le=1.0)
    content: str = Field(min_length=1)
    sub_type: str | None = Field(default=None, description="Raw type label before mapping.")


# ---------------------------------------------------------------------------
# ChunkCandidate: parser output before enrichment/embedding.
# ---------------------------------------------------------------------------
class ChunkCandidate(BaseModel):
    """A parsed unit of content not yet enriched, embedded, or stored."""

    model_config = ConfigDict(frozen=True)

    chunk_type: ChunkType
    sub_type: str | None = None
    page_start: int = Field(ge=1)
    page_end: int = Field(ge=1)
    confidence: float = Field(ge=0.0, le=1.0)
    display_content: str = Field(description="Markdown as extracted; shown to users.")
    search_content: str = Field(description="Markup-stripped text for indexing.")
    parent_heading: str | None = None
    context_text: str | None = None
    enriched_content: str | None = None

    @property
    def embedding_input(self) -> str:
        """Text fed to the embedding provider and the lexical index."""
        return self.enriched_content or self.search_content


# ---------------------------------------------------------------------------
# Chunk: the persisted, embedded unit.
# ---------------------------------------------------------------------------
class Chunk(BaseModel):
    """A stored chunk with its vector embedding."""

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    batch_index: int = Field(ge=0)
    chunk_index: int = Field(ge=0, description="Position within its batch.")
    prompt_config_id: str | None = Field(
        default=None, description="Weak reference to the PromptConfig used."
    )
    chunk_type: ChunkType
    sub_type: str | None = None
    page_start: int = Field(ge=1)
    page_end: int = Field(ge=1)
    confidence: float = Field(ge=0.0, le=1.0)
    search_content: str
    display_content: str
    enriched_content: str | None = None
    context_text: str | None = None
    embedding: list[float] = Field(default_factory=list, repr=False)
    embedding_model: str | None = Field(
        default=None, description="``provider:model`` id that produced ``embedding``."
    )
    embedding_dimension: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
