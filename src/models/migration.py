"""Embedding-model bookkeeping: mismatch reports and re-index runs.

Every stored chunk records the ``provider:model`` id and the dimension of the
vector it carries.  When the configured embedding provider changes, the
mismatch report says how many chunks were embedded with something else and
how serious that is; a re-index run re-embeds them with the current provider.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MismatchSeverity(str, Enum):  # noqa: UP042 - StrEnum requires Python 3.11+
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


class EmbeddingModelStats(BaseModel):
    """Chunk count for one (model, dimension) pair.  ``model`` is None for untracked rows."""

    model_config = ConfigDict(frozen=True)

    model: str | None = None
    dimension: int | None = None
    count: int = Field(ge=0)


class EmbeddingMismatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_mismatch: bool
    severity: MismatchSeverity
    current_model: str
    current_dimension: int
    existing_models: list[EmbeddingModelStats] = Field(default_factory=list)
    chunks_to_migrate: int = 0
    total_chunks: int = 0
    message: str | None = None


class ReindexCandidate(BaseModel):
    """A stored chunk queued for re-embedding; ``seq`` is its keyset cursor."""

    model_config = ConfigDict(frozen=True)

    seq: int
    id: str
    text: str


class ReindexPhase(str, Enum):  # noqa: UP042
    EMBEDDING = "embedding"
    COMPLETE = "complete"


class ReindexProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    processed: int
    succeeded: int
    failed: int
    phase: ReindexPhase
    estimated_seconds_remaining: int | None = None


ReindexProgressCallback = Callable[[ReindexProgress], Any]


class ReindexOptions(BaseModel):
    """Parameters of a re-index run.

    ``skip_matching`` leaves chunks already embedded with the current model
    alone; turning it off re-embeds everything in scope.
    """

    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=50, ge=1, le=1000)
    document_ids: list[str] | None = None
    skip_matching: bool = True
    # A ReindexProgressCallback; sync or async.
    on_progress: Any = Field(default=None, repr=False)


class ReindexFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_id: str
    error: str


class ReindexResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    total_processed: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: list[ReindexFailure] = Field(default_factory=list)
    duration_ms: int = 0
    new_model: str
    token_count: int = 0
