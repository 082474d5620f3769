"""Unit tests for the contextual enrichment strategies."""

from __future__ import annotations

import asyncio

import pytest

from src.interfaces.enrichment_handler import EnrichmentContext
from src.models.chunk import ChunkCandidate, ChunkType
from src.models.config import EnrichmentConfig, EnrichmentStrategy
from src.services.ingestion.enrichment import (
    CallableEnrichmentHandler,
    LLMEnrichmentHandler,
    NoOpEnrichmentHandler,
    TemplateEnrichmentHandler,
    apply_context,
    create_enrichment_handler,
)
from src.utils.errors import ConfigurationError, LLMError
from src.utils.rate_limiter import RateLimiter
from tests.conftest import FakeLLM

_CONTEXT = EnrichmentContext(
    document_id="doc-1",
    filename="manual.pdf",
    document_type="Technical",
    page_count=40,
    page_start=16,
    page_end=30,
)


def _candidate(
    content: str = "Tighten the flange bolts.",
    chunk_type: ChunkType = ChunkType.TEXT,
    page: int = 17,
    parent_heading: str | None = "Assembly",
) -> ChunkCandidate:
    return ChunkCandidate(
        chunk_type=chunk_type,
        page_start=page,
        page_end=page,
        confidence=0.9,
        display_content=content,
        search_content=content,
        parent_heading=parent_heading,
    )


# ======================================================================
# apply_context
# ======================================================================


class TestApplyContext:
    def test_sets_context_and_enriched_content(self) -> None:
        enriched = apply_context(_candidate(), "  From the assembly chapter.  ")
        assert enriched.context_text == "From the assembly chapter."
        assert enriched.enriched_content == "From the assembly chapter. Tighten the flange bolts."

    @pytest.mark.parametrize("context_text", [None, "", "   "])
    def test_blank_context_is_a_no_op(self, context_text: str | None) -> None:
        chunk = _candidate()
        assert apply_context(chunk, context_text) is chunk


# ======================================================================
# Strategies
# ======================================================================


class TestNoOpHandler:
    @pytest.mark.asyncio
    async def test_returns_chunks_unchanged(self) -> None:
        chunks = [_candidate(), _candidate("Another paragraph.")]
        assert await NoOpEnrichmentHandler().enrich(chunks, _CONTEXT) == chunks
        assert NoOpEnrichmentHandler().get_strategy_name() == "none"


class TestTemplateHandler:
    @pytest.mark.asyncio
    async def test_interpolates_placeholders(self) -> None:
        handler = TemplateEnrichmentHandler(
            "[{document_type}] [{chunk_type}] Page {page} {parent_heading} {filename}"
        )
        [chunk] = await handler.enrich([_candidate()], _CONTEXT)
        assert chunk.context_text == "[Technical] [TEXT] Page 17 Assembly manual.pdf"
        assert chunk.enriched_content.endswith("Tighten the flange bolts.")

    @pytest.mark.asyncio
    async def test_missing_document_type_and_unknown_placeholder(self) -> None:
        context = _CONTEXT.model_copy(update={"document_type": None})
        handler = TemplateEnrichmentHandler("[{document_type}]{nonsense}")
        [chunk] = await handler.enrich([_candidate()], context)
        assert chunk.context_text == "[Document]"

    @pytest.mark.asyncio
    async def test_skipped_types_are_untouched(self) -> None:
        handler = TemplateEnrichmentHandler("ctx", [ChunkType.HEADING])
        heading = _candidate("# Assembly steps", ChunkType.HEADING)
        result = await handler.enrich([heading, _candidate()], _CONTEXT)
        assert result[0].enriched_content is None
        assert result[1].context_text == "ctx"


class TestLLMHandler:
    @pytest.mark.asyncio
    async def test_each_chunk_gets_llm_context(self) -> None:
        llm = FakeLLM("This covers flange assembly.")
        handler = LLMEnrichmentHandler(llm, "Situate this chunk.")
        result = await handler.enrich([_candidate(), _candidate("Check torque values.")], _CONTEXT)

        assert [c.context_text for c in result] == ["This covers flange assembly."] * 2
        assert len(llm.calls) == 2
        prompt = llm.calls[0]
        assert prompt.startswith("Situate this chunk.")
        assert "File: manual.pdf" in prompt
        assert "Total pages: 40" in prompt
        assert "Section: Assembly" in prompt
        assert "<chunk>\nTighten the flange bolts.\n</chunk>" in prompt

    @pytest.mark.asyncio
    async def test_failure_leaves_only_that_chunk_plain(self) -> None:
        def _reply(prompt: str):
            if "Check torque" in prompt:
                return LLMError("model refused")
            return "Context sentence."

        handler = LLMEnrichmentHandler(FakeLLM(_reply), "Situate.")
        result = await handler.enrich(
            [_candidate(), _candidate("Check torque values."), _candidate("Seal the housing.")],
            _CONTEXT,
        )
        assert [c.context_text for c in result] == ["Context sentence.", None, "Context sentence."]
        assert result[1].enriched_content is None

    @pytest.mark.asyncio
    async def test_skipped_types_never_reach_the_llm(self) -> None:
        llm = FakeLLM()
        handler = LLMEnrichmentHandler(
            llm, "Situate.", skip_chunk_types=[ChunkType.HEADING, ChunkType.IMAGE_REF]
        )
        await handler.enrich(
            [_candidate("# Heading text", ChunkType.HEADING), _candidate()], _CONTEXT
        )
        assert len(llm.calls) == 1

    @pytest.mark.asyncio
    async def test_concurrency_limit(self) -> None:
        in_flight = 0
        peak = 0

        class _SlowLLM(FakeLLM):
            async def complete(self, system_prompt, user_prompt, temperature=0.3, max_tokens=4000):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return "ctx"

        handler = LLMEnrichmentHandler(_SlowLLM(), "Situate.", concurrency_limit=2)
        await handler.enrich([_candidate(f"Paragraph number {n}.") for n in range(6)], _CONTEXT)
        assert peak == 2

    @pytest.mark.asyncio
    async def test_uses_rate_limiter(self) -> None:
        limiter = RateLimiter(100)
        handler = LLMEnrichmentHandler(FakeLLM(), "Situate.", rate_limiter=limiter)
        await handler.enrich([_candidate(), _candidate()], _CONTEXT)
        assert limiter.get_status().available_tokens == 98


class TestCallableHandler:
    @pytest.mark.asyncio
    async def test_calls_user_function(self) -> None:
        async def _context(chunk: ChunkCandidate, context: EnrichmentContext) -> str:
            return f"{context.filename} p{chunk.page_start}"

        handler = CallableEnrichmentHandler(_context)
        [chunk] = await handler.enrich([_candidate()], _CONTEXT)
        assert chunk.context_text == "manual.pdf p17"
        assert handler.get_strategy_name() == "custom"

    @pytest.mark.asyncio
    async def test_user_function_errors_are_contained(self) -> None:
        async def _context(chunk: ChunkCandidate, context: EnrichmentContext) -> str:
            raise RuntimeError("user bug")

        [chunk] = await CallableEnrichmentHandler(_context).enrich([_candidate()], _CONTEXT)
        assert chunk.context_text is None


# ======================================================================
# Factory
# ======================================================================


class TestCreateEnrichmentHandler:
    def test_none(self) -> None:
        handler = create_enrichment_handler(EnrichmentConfig())
        assert isinstance(handler, NoOpEnrichmentHandler)

    def test_template(self) -> None:
        config = EnrichmentConfig(strategy=EnrichmentStrategy.TEMPLATE)
        assert isinstance(create_enrichment_handler(config), TemplateEnrichmentHandler)

    def test_llm_requires_provider(self) -> None:
        config = EnrichmentConfig(strategy=EnrichmentStrategy.LLM)
        with pytest.raises(ConfigurationError):
            create_enrichment_handler(config)
        assert isinstance(create_enrichment_handler(config, llm=FakeLLM()), LLMEnrichmentHandler)

    def test_custom_requires_function(self) -> None:
        config = EnrichmentConfig(strategy=EnrichmentStrategy.CUSTOM)
        with pytest.raises(ConfigurationError):
            create_enrichment_handler(config)

        async def _context(chunk: ChunkCandidate, context: EnrichmentContext) -> str:
            return "x"

        handler = create_enrichment_handler(config, custom=_context)
        assert isinstance(handler, CallableEnrichmentHandler)
