"""Contextual enrichment strategies.

A handler prepends a short situating text to each chunk so that the lexical
index and the embedding see "where" the chunk lives as well as "what" it
says::

    enriched_content = context_text + " " + search_content

Strategies:

* ``none``      -- pass-through.
* ``template``  -- static interpolation, zero cost.
* ``llm``       -- one LLM completion per chunk, fanned out under a
  concurrency limit.
* ``custom``    -- a caller-supplied async callable.

Skipped chunk types (headings and image references by default) are returned
untouched.  A failure for one chunk leaves that chunk without context and
never fails the batch.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from src.interfaces.enrichment_handler import EnrichmentContext, IEnrichmentHandler
from src.interfaces.llm_provider import ILLMProvider
from src.models.chunk import ChunkCandidate, ChunkType
from src.models.config import EnrichmentConfig, EnrichmentStrategy
from src.utils.concurrency import throttled_gather
from src.utils.errors import ConfigurationError
from src.utils.rate_limiter import RateLimiter

logger = structlog.get_logger(logger_name=__name__)

ContextFunction = Callable[[ChunkCandidate, EnrichmentContext], Awaitable[str]]

_SYSTEM_PROMPT = (
    "You write short situating context for passages of a document so that "
    "search can find them. Reply with the context only, no preamble."
)


def apply_context(chunk: ChunkCandidate, context_text: str | None) -> ChunkCandidate:
    """Return ``chunk`` with ``context_text`` and ``enriched_content`` set."""
    context_text = (context_text or "").strip()
    if not context_text:
        return chunk
    return chunk.model_copy(
        update={
            "context_text": context_text,
            "enriched_content": f"{context_text} {chunk.search_content}",
        }
    )


class _SkippingHandler(IEnrichmentHandler):
    """Shared skip-list handling; subclasses implement :meth:`_context_for`."""

    def __init__(self, skip_chunk_types: list[ChunkType] | None = None) -> None:
        self._skip = set(skip_chunk_types or [])

    def should_skip(self, chunk: ChunkCandidate) -> bool:
        return chunk.chunk_type in self._skip

    async def _context_for(self, chunk: ChunkCandidate, context: EnrichmentContext) -> str:
        raise NotImplementedError

    async def _safe_context(self, chunk: ChunkCandidate, context: EnrichmentContext) -> str:
        if self.should_skip(chunk):
            return ""
        try:
            return await self._context_for(chunk, context)
        except Exception as exc:
            logger.warning(
                "enrichment_chunk_failed",
                strategy=self.get_strategy_name(),
                document_id=context.document_id,
                chunk_type=chunk.chunk_type.value,
                error=str(exc),
            )
            return ""

    async def enrich(
        self, chunks: list[ChunkCandidate], context: EnrichmentContext
    ) -> list[ChunkCandidate]:
        contexts = [await self._safe_context(chunk, context) for chunk in chunks]
        return [apply_context(chunk, text) for chunk, text in zip(chunks, contexts)]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class NoOpEnrichmentHandler(IEnrichmentHandler):
    async def enrich(
        self, chunks: list[ChunkCandidate], context: EnrichmentContext
    ) -> list[ChunkCandidate]:
        return list(chunks)

    def get_strategy_name(self) -> str:
        return EnrichmentStrategy.NONE.value


class TemplateEnrichmentHandler(_SkippingHandler):
    """Interpolates ``{document_type}``, ``{chunk_type}``, ``{page}``,
    ``{parent_heading}`` and ``{filename}`` into a fixed template."""

    def __init__(self, template: str, skip_chunk_types: list[ChunkType] | None = None) -> None:
        super().__init__(skip_chunk_types)
        self._template = template

    async def _context_for(self, chunk: ChunkCandidate, context: EnrichmentContext) -> str:
        values = {
            "document_type": context.document_type or "Document",
            "chunk_type": chunk.chunk_type.value,
            "page": chunk.page_start,
            "parent_heading": chunk.parent_heading or "",
            "filename": context.filename,
        }
        return self._template.format_map(_DefaultDict(values))

    def get_strategy_name(self) -> str:
        return EnrichmentStrategy.TEMPLATE.value


class _DefaultDict(dict):
    # Unknown placeholders render empty instead of raising KeyError.
    def __missing__(self, key: str) -> str:
        return ""


class LLMEnrichmentHandler(_SkippingHandler):
    """Asks an LLM to situate each chunk in one or two sentences.

    Parameters
    ----------
    llm:
        Text-completion provider.
    context_prompt:
        Instruction placed before the document facts and the chunk.
    concurrency_limit:
        Maximum in-flight completions for one batch.
    max_context_tokens:
        Output budget per completion.
    rate_limiter:
        Optional shared limiter; each completion consumes one token.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        context_prompt: str,
        *,
        skip_chunk_types: list[ChunkType] | None = None,
        concurrency_limit: int = 5,
        max_context_tokens: int = 150,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(skip_chunk_types)
        self._llm = llm
        self._prompt = context_prompt
        self._limit = concurrency_limit
        self._max_tokens = max_context_tokens
        self._rate_limiter = rate_limiter

    def _build_prompt(self, chunk: ChunkCandidate, context: EnrichmentContext) -> str:
        return (
            f"{self._prompt}\n\n"
            "<document_info>\n"
            f"File: {context.filename}\n"
            f"Type: {context.document_type or 'Unknown'}\n"
            f"Total pages: {context.page_count}\n"
            f"Chunk page: {chunk.page_start}\n"
            + (f"Section: {chunk.parent_heading}\n" if chunk.parent_heading else "")
            + "</document_info>\n\n"
            f"<chunk>\n{chunk.display_content}\n</chunk>"
        )

    async def _context_for(self, chunk: ChunkCandidate, context: EnrichmentContext) -> str:
        async def _call() -> str:
            return await self._llm.complete(
                system_prompt=_SYSTEM_PROMPT,
                user_prompt=self._build_prompt(chunk, context),
                temperature=0.3,
                max_tokens=self._max_tokens,
            )

        if self._rate_limiter is not None:
            return await self._rate_limiter.throttle(_call)
        return await _call()

    async def enrich(
        self, chunks: list[ChunkCandidate], context: EnrichmentContext
    ) -> list[ChunkCandidate]:
        contexts = await throttled_gather(
            [self._safe_context(chunk, context) for chunk in chunks],
            limit=self._limit,
        )
        enriched = [
            apply_context(chunk, text if isinstance(text, str) else "")
            for chunk, text in zip(chunks, contexts)
        ]
        logger.debug(
            "llm_enrichment_complete",
            document_id=context.document_id,
            chunks=len(chunks),
            enriched=sum(1 for c in enriched if c.context_text),
        )
        return enriched

    def get_strategy_name(self) -> str:
        return EnrichmentStrategy.LLM.value


class CallableEnrichmentHandler(_SkippingHandler):
    """Wraps a user-supplied ``async (chunk, context) -> str`` function."""

    def __init__(
        self, func: ContextFunction, skip_chunk_types: list[ChunkType] | None = None
    ) -> None:
        super().__init__(skip_chunk_types)
        self._func = func

    async def _context_for(self, chunk: ChunkCandidate, context: EnrichmentContext) -> str:
        return await self._func(chunk, context)

    def get_strategy_name(self) -> str:
        return EnrichmentStrategy.CUSTOM.value


def create_enrichment_handler(
    config: EnrichmentConfig,
    *,
    llm: ILLMProvider | None = None,
    custom: ContextFunction | None = None,
    rate_limiter: RateLimiter | None = None,
) -> IEnrichmentHandler:
    """Build the handler selected by ``config.strategy``.

    Raises
    ------
    ConfigurationError
        If the ``llm`` strategy has no provider or ``custom`` has no function.
    """
    if config.strategy is EnrichmentStrategy.NONE:
        return NoOpEnrichmentHandler()
    if config.strategy is EnrichmentStrategy.TEMPLATE:
        return TemplateEnrichmentHandler(config.template, config.skip_chunk_types)
    if config.strategy is EnrichmentStrategy.LLM:
        if llm is None:
            raise ConfigurationError("LLM enrichment requires an LLM provider")
        return LLMEnrichmentHandler(
            llm,
            config.context_prompt,
            skip_chunk_types=config.skip_chunk_types,
            concurrency_limit=config.concurrency_limit,
            max_context_tokens=config.max_context_tokens,
            rate_limiter=rate_limiter,
        )
    if custom is None:
        raise ConfigurationError("Custom enrichment requires a context function")
    return CallableEnrichmentHandler(custom, config.skip_chunk_types)
