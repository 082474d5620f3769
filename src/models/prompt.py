"""Prompt configuration and discovery models.

A :class:`PromptConfig` is an immutable, versioned extraction recipe for a
document type.  Updating a config means creating version ``n + 1``; at most
one config per document type is the active default.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SplitStrategy(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    SEMANTIC = "semantic"
    PAGE = "page"
    FIXED = "fixed"


class ChunkStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_tokens: int = Field(default=500, ge=50, le=4000)
    overlap_tokens: int = Field(default=50, ge=0, le=500)
    split_by: SplitStrategy = SplitStrategy.SEMANTIC
    preserve_tables: bool = True
    preserve_lists: bool = True
    extract_headings: bool = True


class PromptConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    document_type: str
    name: str
    system_prompt: str
    chunk_strategy: ChunkStrategy = Field(default_factory=ChunkStrategy)
    version: int = Field(default=1, ge=1)
    is_active: bool = True
    is_default: bool = False
    created_by: str | None = Field(default=None, description='"discovery", "manual", ...')
    change_log: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def instructions(self) -> list[str]:
        """Non-empty lines of the system prompt, used as extraction instructions."""
        return [line.strip() for line in self.system_prompt.splitlines() if line.strip()]


class CreatePromptConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_type: str = Field(min_length=1)
    name: str = Field(min_length=1)
    system_prompt: str = Field(min_length=10)
    chunk_strategy: ChunkStrategy | None = None
    set_as_default: bool = False
    created_by: str | None = "manual"
    change_log: str | None = None


class PromptConfigFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_type: str | None = None
    is_active: bool | None = None
    is_default: bool | None = None
    created_by: str | None = None


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------
class DetectedElement(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str
    count: int = Field(default=0, ge=0)
    examples: list[str] = Field(default_factory=list)


class DiscoveryResult(BaseModel):
    """AI-suggested processing strategy for a document, pending approval."""

    model_config = ConfigDict(frozen=True)

    id: str
    document_type: str
    document_type_name: str
    language: str | None = None
    complexity: str = "medium"
    page_count: int = Field(ge=1)
    file_hash: str
    filename: str
    detected_elements: list[DetectedElement] = Field(default_factory=list)
    special_instructions: list[str] = Field(default_factory=list)
    example_formats: dict[str, str] = Field(default_factory=dict)
    suggested_chunk_strategy: ChunkStrategy = Field(default_factory=ChunkStrategy)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ApproveStrategyOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str | None = None
    document_type: str | None = None
    system_prompt: str | None = None
    chunk_strategy: ChunkStrategy | None = None
    change_log: str | None = None
