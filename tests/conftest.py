"""Shared pytest fixtures for the folio-rag test suite.

The fakes here stand in for the vendor-backed providers so the ingestion
and retrieval pipelines can run end to end against a real SQLite file:

- ``ScriptedDocumentAI`` answers extraction prompts with deterministic
  sections for the page range named in the prompt, and discovery prompts
  with a fixed JSON analysis.
- ``FakeEmbeddingProvider`` hashes words into a small normalised
  bag-of-words vector, so texts sharing words are close in cosine space.
- ``FakeLLM`` returns a canned (or computed) completion.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import math
import re
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, NamedTuple
from unittest.mock import AsyncMock

import fitz
import pytest

from src.config.settings import Settings
from src.interfaces.document_ai_provider import DocumentAIResponse, IDocumentAIProvider
from src.interfaces.embedding_provider import (
    EmbeddingResult,
    EmbeddingTaskType,
    IEmbeddingProvider,
)
from src.interfaces.llm_provider import ILLMProvider
from src.models.chunk import Chunk, ChunkType
from src.models.config import BatchConfig
from src.models.document import Document, PdfDocument, PdfMetadata, ProgressEvent, TokenUsage
from src.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from src.providers.storage.sqlite_document_store import SQLiteDocumentStore
from src.providers.storage.sqlite_prompt_config_store import SQLitePromptConfigStore
from src.services.ingestion.batch_orchestrator import IngestionOrchestrator, retry_options_for
from src.services.ingestion.batch_processor import BatchProcessor
from src.services.ingestion.embedding_pipeline import EmbeddingPipeline
from src.services.ingestion.enrichment import NoOpEnrichmentHandler
from src.services.ingestion.extraction_parser import ExtractionParser
from src.services.ingestion.pdf_processor import PdfProcessor
from src.utils.rate_limiter import RateLimiter

# ---------------------------------------------------------------------------
# Deterministic document content
# ---------------------------------------------------------------------------

TOPICS: tuple[str, ...] = (
    "volcanic eruptions and magma chambers",
    "medieval castle architecture",
    "photosynthesis in green plants",
    "quantum computing qubits",
    "coral reef ecosystems",
    "renaissance oil painting",
    "glacier formation dynamics",
    "honeybee colony behaviour",
)

SCRIPTED_MODEL = "scripted-model"

DISCOVERY_PAYLOAD: dict[str, Any] = {
    "documentType": "Technical",
    "documentTypeName": "Technical Manual",
    "language": "en",
    "complexity": "medium",
    "detectedElements": [{"type": "table", "count": 3, "examples": ["Spec table"]}],
    "specialInstructions": ["Keep part numbers verbatim", "Convert spec tables to Markdown"],
    "exampleFormats": {"part_number": "PN-0000"},
    "chunkStrategy": {
        "maxTokens": 800,
        "overlapTokens": 100,
        "splitBy": "semantic",
        "preserveTables": True,
        "preserveLists": True,
    },
    "confidence": 0.85,
    "reasoning": "Manual with specification tables",
}

_PAGE_RANGE_RE = re.compile(r"STRICTLY to pages (\d+) to (\d+)")
_WORD_RE = re.compile(r"\w+")


def page_text(page: int) -> str:
    return f"This passage explains {TOPICS[(page - 1) % len(TOPICS)]} thoroughly."


def heading_text(page: int) -> str:
    return f"# Chapter {page} overview"


def structured_sections(page_start: int, page_end: int) -> str:
    sections: list[dict[str, Any]] = []
    for page in range(page_start, page_end + 1):
        sections.append(
            {"type": "HEADING", "page": page, "confidence": 0.9, "content": heading_text(page)}
        )
        sections.append(
            {"type": "TEXT", "page": page, "confidence": 0.85, "content": page_text(page)}
        )
    return json.dumps(sections)


def marked_sections(page_start: int, page_end: int) -> str:
    parts: list[str] = []
    for page in range(page_start, page_end + 1):
        parts.append(
            f'<!-- SECTION type="HEADING" page="{page}" confidence="0.9" -->\n'
            f"{heading_text(page)}\n<!-- /SECTION -->"
        )
        parts.append(
            f'<!-- SECTION type="TEXT" page="{page}" confidence="0.8" -->\n'
            f"{page_text(page)}\n<!-- /SECTION -->"
        )
    return "\n\n".join(parts)


def make_pdf(page_count: int = 3, label: str = "Sample page") -> bytes:
    """Build a real PDF with one line of text per page."""
    doc = fitz.open()
    for index in range(page_count):
        page = doc.new_page()
        page.insert_text((72, 72), f"{label} {index + 1}")
    data = doc.tobytes()
    doc.close()
    return data


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ScriptedDocumentAI(IDocumentAIProvider):
    """Answers prompts from the page range they name.

    ``failures`` maps a batch's first page to exceptions raised (one per
    call) before normal answers resume.  ``invalid_structured`` lists first
    pages whose structured answer is not JSON.
    """

    def __init__(self, usage: TokenUsage | None = None) -> None:
        self.usage = usage or TokenUsage(input=100, output=50, total=150)
        self.failures: dict[int, list[BaseException]] = {}
        self.invalid_structured: set[int] = set()
        self.discovery_response = json.dumps(DISCOVERY_PAYLOAD)
        self.calls: list[tuple[str, str]] = []
        self.delay = 0.0
        self.available = True
        self._in_flight = 0
        self.peak_in_flight = 0

    async def extract_structured(self, document: PdfDocument, prompt: str) -> DocumentAIResponse:
        return await self._respond("structured", prompt)

    async def extract_text(self, document: PdfDocument, prompt: str) -> DocumentAIResponse:
        return await self._respond("text", prompt)

    async def _respond(self, mode: str, prompt: str) -> DocumentAIResponse:
        self.calls.append((mode, prompt))
        self._in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            match = _PAGE_RANGE_RE.search(prompt)
            if match is None:
                return DocumentAIResponse(
                    text=self.discovery_response, usage=self.usage, model=SCRIPTED_MODEL
                )
            start, end = int(match.group(1)), int(match.group(2))
            pending = self.failures.get(start)
            if pending:
                raise pending.pop(0)
            if mode == "text":
                text = marked_sections(start, end)
            elif start in self.invalid_structured:
                text = "Sorry, here is the content as prose instead of JSON."
            else:
                text = structured_sections(start, end)
            return DocumentAIResponse(text=text, usage=self.usage, model=SCRIPTED_MODEL)
        finally:
            self._in_flight -= 1

    def page_ranges(self) -> list[tuple[int, int]]:
        ranges: list[tuple[int, int]] = []
        for _, prompt in self.calls:
            match = _PAGE_RANGE_RE.search(prompt)
            if match is not None:
                ranges.append((int(match.group(1)), int(match.group(2))))
        return ranges

    def get_model_name(self) -> str:
        return SCRIPTED_MODEL

    def get_provider_name(self) -> str:
        return "scripted-document"

    def is_available(self) -> bool:
        return self.available


class FakeEmbeddingProvider(IEmbeddingProvider):
    """Hashed bag-of-words vectors, L2-normalised."""

    def __init__(self, dimension: int = 64) -> None:
        self.dimension = dimension
        self.batch_calls: list[tuple[list[str], EmbeddingTaskType]] = []
        self.available = True

    def vector(self, text: str) -> list[float]:
        values = [0.0] * self.dimension
        for word in _WORD_RE.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dimension
            values[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in values))
        return [v / norm for v in values] if norm else values

    async def embed(
        self,
        text: str,
        task_type: EmbeddingTaskType = EmbeddingTaskType.RETRIEVAL_DOCUMENT,
    ) -> EmbeddingResult:
        results = await self.embed_batch([text], task_type)
        return results[0]

    async def embed_batch(
        self,
        texts: list[str],
        task_type: EmbeddingTaskType = EmbeddingTaskType.RETRIEVAL_DOCUMENT,
    ) -> list[EmbeddingResult]:
        self.batch_calls.append((list(texts), task_type))
        return [
            EmbeddingResult(embedding=self.vector(t), token_count=len(t.split())) for t in texts
        ]

    def get_dimension(self) -> int:
        return self.dimension

    def get_model_name(self) -> str:
        return "fake-hash-embedding"

    def get_provider_name(self) -> str:
        return "fake_embedding"

    def is_available(self) -> bool:
        return self.available


class FakeLLM(ILLMProvider):
    """``reply`` is a string, an exception, or ``f(user_prompt)`` returning either."""

    def __init__(self, reply: Any = "Situating context.") -> None:
        self.reply = reply
        self.calls: list[str] = []

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        self.calls.append(user_prompt)
        reply = self.reply(user_prompt) if callable(self.reply) else self.reply
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def get_provider_name(self) -> str:
        return "fake"

    def is_available(self) -> bool:
        return True


class FakeClock:
    """Monotonic clock plus an async sleep that advances it."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ProgressRecorder:
    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def statuses(self, batch_index: int | None = None) -> list[str]:
        return [
            e.status.value
            for e in self.events
            if batch_index is None or e.batch_index == batch_index
        ]


class Stores(NamedTuple):
    documents: SQLiteDocumentStore
    chunks: SQLiteChunkStore
    prompt_configs: SQLitePromptConfigStore


async def _no_sleep(_: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def document_ai() -> ScriptedDocumentAI:
    return ScriptedDocumentAI()


@pytest.fixture
def fake_embedder() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def progress() -> ProgressRecorder:
    return ProgressRecorder()


@pytest.fixture
def pdf_factory() -> Callable[..., bytes]:
    return make_pdf


@pytest.fixture
def pdf_document() -> PdfDocument:
    """A PdfDocument whose bytes are never parsed (the scripted AI ignores them)."""
    return PdfDocument(
        content=b"%PDF-1.7 placeholder",
        metadata=PdfMetadata(
            filename="manual.pdf", file_hash="abc123", file_size=20, page_count=5
        ),
    )


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "folio.db"


@pytest.fixture
def settings(db_path: Path) -> Settings:
    return Settings(_env_file=None, database_path=str(db_path))


@pytest.fixture
def open_stores(db_path: Path) -> Callable[[], Awaitable[Stores]]:
    """Return a coroutine function creating the schema and the three stores."""

    async def _open() -> Stores:
        stores = Stores(
            SQLiteDocumentStore(db_path),
            SQLiteChunkStore(db_path),
            SQLitePromptConfigStore(db_path),
        )
        await stores.documents.initialize()
        return stores

    return _open


@pytest.fixture
def make_document() -> Callable[..., Document]:
    def _make(document_id: str = "doc-1", **overrides: Any) -> Document:
        values: dict[str, Any] = {
            "id": document_id,
            "filename": f"{document_id}.pdf",
            "file_hash": f"hash-{document_id}",
            "file_size": 1024,
            "page_count": 10,
        }
        values.update(overrides)
        return Document(**values)

    return _make


@pytest.fixture
def make_chunk() -> Callable[..., Chunk]:
    def _make(
        chunk_id: str,
        content: str = "Plain paragraph text for testing.",
        *,
        document_id: str = "doc-1",
        batch_index: int = 0,
        chunk_index: int = 0,
        chunk_type: ChunkType = ChunkType.TEXT,
        embedding: list[float] | None = None,
        **overrides: Any,
    ) -> Chunk:
        values: dict[str, Any] = {
            "id": chunk_id,
            "document_id": document_id,
            "batch_index": batch_index,
            "chunk_index": chunk_index,
            "chunk_type": chunk_type,
            "page_start": 1,
            "page_end": 1,
            "confidence": 0.9,
            "search_content": content,
            "display_content": content,
            "embedding": embedding if embedding is not None else [1.0, 0.0, 0.0],
        }
        values.update(overrides)
        return Chunk(**values)

    return _make


@pytest.fixture
def build_orchestrator(
    document_ai: ScriptedDocumentAI, fake_embedder: FakeEmbeddingProvider
) -> Callable[..., IngestionOrchestrator]:
    """Compose a real orchestrator over the given stores and the fakes."""

    def _build(
        stores: Stores,
        *,
        batch_config: BatchConfig | None = None,
        enrichment: Any = None,
        use_structured_output: bool = True,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> IngestionOrchestrator:
        config = batch_config or BatchConfig(pages_per_batch=2, retry_delay_ms=0)
        rate_limiter = RateLimiter(1000)
        processor = BatchProcessor(
            document_ai=document_ai,
            parser=ExtractionParser(),
            enrichment=enrichment or NoOpEnrichmentHandler(),
            embeddings=EmbeddingPipeline(fake_embedder, rate_limiter, batch_size=50),
            document_store=stores.documents,
            chunk_store=stores.chunks,
            rate_limiter=rate_limiter,
            retry_options=retry_options_for(config),
            use_structured_output=use_structured_output,
            sleep=sleep or AsyncMock(side_effect=_no_sleep),
        )
        return IngestionOrchestrator(
            pdf_processor=PdfProcessor(),
            batch_processor=processor,
            document_store=stores.documents,
            prompt_configs=stores.prompt_configs,
            document_ai=document_ai,
            batch_config=config,
        )

    return _build
