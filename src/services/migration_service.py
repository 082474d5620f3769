"""Embedding-model migration: detect stale vectors and re-embed them.

Each chunk records the ``provider:model`` id and dimension of its vector.
Switching the configured embedding provider leaves older chunks in a
different vector space; semantic search then either fails outright (other
dimension) or silently compares incomparable vectors (same dimension, other
model).  :meth:`EmbeddingMigrationService.check_mismatch` reports how many
chunks are affected and :meth:`EmbeddingMigrationService.reindex` re-embeds
them in pages through the shared :class:`EmbeddingPipeline`.

Pages are walked by ``seq`` so rows re-embedded mid-run never shift the
cursor.  A page whose embedding or update fails is recorded chunk by chunk
in the result and the run carries on with the next page.
"""

from __future__ import annotations

import inspect
import time

import structlog

from src.interfaces.chunk_store import IChunkStore
from src.models.migration import (
    EmbeddingMismatch,
    EmbeddingModelStats,
    MismatchSeverity,
    ReindexFailure,
    ReindexOptions,
    ReindexPhase,
    ReindexProgress,
    ReindexProgressCallback,
    ReindexResult,
)
from src.services.ingestion.embedding_pipeline import EmbeddingPipeline
from src.utils.errors import FolioError

logger = structlog.get_logger(logger_name=__name__)

# Above this share of stale chunks a same-dimension mismatch is critical.
CRITICAL_MISMATCH_RATIO = 0.5


def mismatch_severity(
    stats: list[EmbeddingModelStats],
    current_dimension: int,
    chunks_to_migrate: int,
    total_chunks: int,
) -> MismatchSeverity:
    """Critical when any stored vector has another dimension or most chunks are stale."""
    if chunks_to_migrate == 0:
        return MismatchSeverity.NONE
    if any(s.dimension is not None and s.dimension != current_dimension for s in stats):
        return MismatchSeverity.CRITICAL
    if total_chunks and chunks_to_migrate / total_chunks > CRITICAL_MISMATCH_RATIO:
        return MismatchSeverity.CRITICAL
    return MismatchSeverity.WARNING


def _mismatch_message(report: EmbeddingMismatch) -> str:
    percent = round(100 * report.chunks_to_migrate / max(1, report.total_chunks))
    if report.severity is MismatchSeverity.CRITICAL:
        return (
            f"{report.chunks_to_migrate} chunks ({percent}%) were embedded with a different "
            f"model. Current: {report.current_model} ({report.current_dimension}d). "
            "Search results are unreliable until the corpus is re-indexed."
        )
    return (
        f"{report.chunks_to_migrate} chunks ({percent}%) may have outdated embeddings. "
        f"Current model: {report.current_model}. Re-index for consistent results."
    )


async def _report(callback: ReindexProgressCallback | None, progress: ReindexProgress) -> None:
    if callback is None:
        return
    try:
        outcome = callback(progress)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as exc:
        logger.warning("reindex_progress_callback_failed", error=str(exc))


class EmbeddingMigrationService:
    """Tracks which embedding model produced the stored vectors.

    Parameters
    ----------
    chunk_store:
        Source of model statistics and target of the new vectors.
    pipeline:
        The same pipeline ingestion uses, so re-embedded chunks match new ones.
    """

    def __init__(self, chunk_store: IChunkStore, pipeline: EmbeddingPipeline) -> None:
        self._chunks = chunk_store
        self._pipeline = pipeline

    async def check_mismatch(self) -> EmbeddingMismatch:
        current = self._pipeline.model_id
        dimension = self._pipeline.dimension
        stats = await self._chunks.embedding_model_stats()
        total = sum(s.count for s in stats)
        stale = sum(s.count for s in stats if s.model != current)

        report = EmbeddingMismatch(
            has_mismatch=stale > 0,
            severity=mismatch_severity(stats, dimension, stale, total),
            current_model=current,
            current_dimension=dimension,
            existing_models=stats,
            chunks_to_migrate=stale,
            total_chunks=total,
        )
        if not report.has_mismatch:
            return report
        report = report.model_copy(update={"message": _mismatch_message(report)})
        logger.warning(
            "embedding_model_mismatch",
            severity=report.severity.value,
            current_model=current,
            chunks_to_migrate=stale,
            total_chunks=total,
        )
        return report

    async def reindex(self, options: ReindexOptions | None = None) -> ReindexResult:
        """Re-embed stale chunks (or every chunk in scope) with the current model."""
        options = options or ReindexOptions()
        started = time.monotonic()
        model = self._pipeline.model_id
        dimension = self._pipeline.dimension
        exclude = model if options.skip_matching else None
        log = logger.bind(model=model, batch_size=options.batch_size)

        total = await self._chunks.count_chunks_for_reindex(exclude, options.document_ids)
        log.info(
            "reindex_started",
            total=total,
            documents=len(options.document_ids) if options.document_ids else "all",
        )

        processed = succeeded = tokens = 0
        failures: list[ReindexFailure] = []
        after_seq = 0
        while True:
            page = await self._chunks.list_chunks_for_reindex(
                exclude, options.document_ids, after_seq, options.batch_size
            )
            if not page:
                break
            after_seq = page[-1].seq
            try:
                embedded = await self._pipeline.embed_texts([c.text for c in page])
                await self._chunks.update_embeddings(
                    {c.id: v for c, v in zip(page, embedded.vectors)}, model, dimension
                )
            except FolioError as exc:
                log.warning("reindex_page_failed", after_seq=after_seq, error=str(exc))
                failures.extend(ReindexFailure(chunk_id=c.id, error=str(exc)) for c in page)
            else:
                succeeded += len(page)
                tokens += embedded.token_count
            processed += len(page)

            elapsed = time.monotonic() - started
            remaining = max(0, total - processed)
            await _report(
                options.on_progress,
                ReindexProgress(
                    total=total,
                    processed=processed,
                    succeeded=succeeded,
                    failed=len(failures),
                    phase=ReindexPhase.COMPLETE if remaining == 0 else ReindexPhase.EMBEDDING,
                    estimated_seconds_remaining=round(remaining * elapsed / processed),
                ),
            )

        result = ReindexResult(
            success=not failures,
            total_processed=processed,
            succeeded=succeeded,
            failed=len(failures),
            failures=failures,
            duration_ms=int((time.monotonic() - started) * 1000),
            new_model=model,
            token_count=tokens,
        )
        log.info(
            "reindex_completed",
            processed=processed,
            succeeded=succeeded,
            failed=result.failed,
            duration_ms=result.duration_ms,
        )
        return result

    async def reindex_document(self, document_id: str) -> ReindexResult:
        """Re-embed every chunk of one document regardless of its recorded model."""
        return await self.reindex(ReindexOptions(document_ids=[document_id], skip_matching=False))
