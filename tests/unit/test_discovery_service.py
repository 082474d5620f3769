"""Unit tests for DiscoveryService and discovery response parsing."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from src.interfaces.document_ai_provider import IDocumentAIProvider
from src.models.prompt import (
    ApproveStrategyOptions,
    ChunkStrategy,
    DiscoveryResult,
    SplitStrategy,
)
from src.providers.cache.memory_cache import MemoryCacheProvider
from src.services.discovery_service import (
    DiscoveryService,
    build_system_prompt,
    parse_discovery_response,
)
from src.services.ingestion.pdf_processor import PdfProcessor
from src.services.ingestion.prompts import DEFAULT_DOCUMENT_INSTRUCTIONS
from src.utils.errors import DiscoveryError, LLMError, NotFoundError, RateLimitError, ValidationError
from src.utils.rate_limiter import RateLimiter
from tests.conftest import DISCOVERY_PAYLOAD


class _Timer:
    now = 0.0

    def __call__(self) -> float:
        return self.now


def _service(document_ai, stores, timer=None) -> DiscoveryService:
    sessions = MemoryCacheProvider(max_size=10, ttl=3600, timer=timer or _Timer())
    return DiscoveryService(
        document_ai, PdfProcessor(), stores.prompt_configs, sessions, RateLimiter(1000)
    )


# ======================================================================
# Response parsing
# ======================================================================


class TestParseDiscoveryResponse:
    def test_full_payload(self) -> None:
        fields = parse_discovery_response(json.dumps(DISCOVERY_PAYLOAD))

        assert fields["document_type"] == "Technical"
        assert fields["document_type_name"] == "Technical Manual"
        assert fields["language"] == "en"
        assert fields["detected_elements"][0].count == 3
        assert fields["special_instructions"] == [
            "Keep part numbers verbatim",
            "Convert spec tables to Markdown",
        ]
        assert fields["example_formats"] == {"part_number": "PN-0000"}
        strategy = fields["suggested_chunk_strategy"]
        assert (strategy.max_tokens, strategy.overlap_tokens) == (800, 100)
        assert strategy.split_by is SplitStrategy.SEMANTIC
        assert fields["confidence"] == 0.85

    def test_fenced_json(self) -> None:
        fields = parse_discovery_response('```json\n{"documentType": "Legal"}\n```')
        assert fields["document_type"] == "Legal"
        assert fields["document_type_name"] == "Legal"

    @pytest.mark.parametrize("text", ["not json at all", "[1, 2, 3]"])
    def test_unparseable_uses_defaults(self, text: str) -> None:
        fields = parse_discovery_response(text, "Invoice")
        assert fields["document_type"] == "Invoice"
        assert fields["confidence"] == 0.5
        assert fields["special_instructions"] == list(DEFAULT_DOCUMENT_INSTRUCTIONS)

    def test_bad_fields_are_tolerated(self) -> None:
        fields = parse_discovery_response(
            json.dumps(
                {
                    "documentType": "Academic",
                    "confidence": "very",
                    "chunkStrategy": {"maxTokens": 5},
                    "detectedElements": [{"type": "table", "count": "many"}, "junk", {"count": 1}],
                    "specialInstructions": ["", "Cite sources"],
                }
            )
        )
        assert fields["confidence"] == 0.5
        assert fields["suggested_chunk_strategy"] == ChunkStrategy()
        assert fields["detected_elements"] == []
        assert fields["special_instructions"] == ["Cite sources"]

    def test_confidence_is_clamped(self) -> None:
        assert parse_discovery_response('{"confidence": 3}')["confidence"] == 1.0


class TestBuildSystemPrompt:
    def test_instructions_then_formats(self) -> None:
        fields = parse_discovery_response(json.dumps(DISCOVERY_PAYLOAD))
        result = DiscoveryResult(
            id="s1", page_count=1, file_hash="h", filename="f.pdf", **fields
        )
        assert build_system_prompt(result).splitlines() == [
            "Keep part numbers verbatim",
            "Convert spec tables to Markdown",
            "Format part_number like: PN-0000",
        ]


# ======================================================================
# Service
# ======================================================================


class TestDiscover:
    @pytest.mark.asyncio
    async def test_discover_stores_session(self, document_ai, open_stores, pdf_factory) -> None:
        stores = await open_stores()
        service = _service(document_ai, stores)

        result = await service.discover(pdf_factory(4), "Technical", "pump.pdf")

        assert result.page_count == 4
        assert result.filename == "pump.pdf"
        assert result.document_type == "Technical"
        mode, prompt = document_ai.calls[0]
        assert mode == "text"
        assert '"Technical"' in prompt
        assert (await service.get_session(result.id)).id == result.id

    @pytest.mark.asyncio
    async def test_invalid_pdf(self, document_ai, open_stores) -> None:
        service = _service(document_ai, await open_stores())
        with pytest.raises(ValidationError):
            await service.discover(b"not a pdf")
        assert document_ai.calls == []

    @pytest.mark.asyncio
    async def test_llm_failure_becomes_discovery_error(self, open_stores, pdf_factory) -> None:
        document_ai = MagicMock(spec=IDocumentAIProvider)
        document_ai.extract_text.side_effect = LLMError("bad request", retryable=False)
        service = _service(document_ai, await open_stores())
        with pytest.raises(DiscoveryError, match="bad request"):
            await service.discover(pdf_factory(1))

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self, open_stores, pdf_factory) -> None:
        document_ai = MagicMock(spec=IDocumentAIProvider)
        document_ai.extract_text.side_effect = RateLimitError("slow", retry_after_ms=1000)
        service = _service(document_ai, await open_stores())
        with pytest.raises(RateLimitError):
            await service.discover(pdf_factory(1))


class TestApproveStrategy:
    @pytest.mark.asyncio
    async def test_creates_default_config(self, document_ai, open_stores, pdf_factory) -> None:
        stores = await open_stores()
        service = _service(document_ai, stores)
        result = await service.discover(pdf_factory(2))

        config = await service.approve_strategy(result.id)

        assert config.document_type == "Technical"
        assert config.name == "Technical Manual"
        assert config.is_default is True
        assert config.created_by == "discovery"
        assert config.version == 1
        assert config.chunk_strategy.max_tokens == 800
        assert config.instructions[0] == "Keep part numbers verbatim"
        assert result.id in config.change_log
        assert (await stores.prompt_configs.get_default("Technical")).id == config.id
        with pytest.raises(NotFoundError):
            await service.get_session(result.id)

    @pytest.mark.asyncio
    async def test_overrides_win(self, document_ai, open_stores, pdf_factory) -> None:
        stores = await open_stores()
        service = _service(document_ai, stores)
        result = await service.discover(pdf_factory(1))

        config = await service.approve_strategy(
            result.id,
            ApproveStrategyOptions(
                name="Pump manuals",
                system_prompt="Keep torque values with their units",
                change_log="Reviewed",
            ),
        )

        assert config.name == "Pump manuals"
        assert config.instructions == ["Keep torque values with their units"]
        assert config.change_log == "Reviewed"

    @pytest.mark.asyncio
    async def test_second_approval_bumps_version(self, document_ai, open_stores, pdf_factory) -> None:
        stores = await open_stores()
        service = _service(document_ai, stores)
        first = await service.approve_strategy((await service.discover(pdf_factory(1))).id)
        second = await service.approve_strategy((await service.discover(pdf_factory(1))).id)

        assert second.version == first.version + 1
        assert (await stores.prompt_configs.get(first.id)).is_default is False

    @pytest.mark.asyncio
    async def test_unknown_session(self, document_ai, open_stores) -> None:
        service = _service(document_ai, await open_stores())
        with pytest.raises(NotFoundError, match="DiscoverySession not found: nope"):
            await service.approve_strategy("nope")

    @pytest.mark.asyncio
    async def test_expired_session(self, document_ai, open_stores, pdf_factory) -> None:
        timer = _Timer()
        service = _service(document_ai, await open_stores(), timer)
        result = await service.discover(pdf_factory(1))
        timer.now = 3601
        with pytest.raises(NotFoundError):
            await service.approve_strategy(result.id)
