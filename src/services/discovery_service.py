"""Document discovery: let the model propose an extraction strategy.

``discover`` sends the PDF with an analysis prompt, turns the model's
camelCase JSON into a :class:`DiscoveryResult` and parks it in a TTL
session store.  ``approve_strategy`` converts a parked result into a
versioned, default :class:`PromptConfig` and drops the session.

A response that is not valid JSON still produces a result, built from
defaults with confidence 0.5, so discovery never blocks ingestion.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any

import pydantic
import structlog

from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.document_ai_provider import IDocumentAIProvider
from src.interfaces.prompt_config_store import IPromptConfigStore
from src.models.prompt import (
    ApproveStrategyOptions,
    ChunkStrategy,
    CreatePromptConfig,
    DetectedElement,
    DiscoveryResult,
    PromptConfig,
)
from src.services.ingestion.extraction_parser import strip_code_fences
from src.services.ingestion.pdf_processor import PdfProcessor
from src.services.ingestion.prompts import DEFAULT_DOCUMENT_INSTRUCTIONS, build_discovery_prompt
from src.utils.errors import DiscoveryError, LLMError, NotFoundError
from src.utils.rate_limiter import RateLimiter

logger = structlog.get_logger(logger_name=__name__)

_SESSION_PREFIX = "discovery:"

# camelCase keys of the discovery JSON -> ChunkStrategy fields.
_STRATEGY_KEYS = {
    "maxTokens": "max_tokens",
    "overlapTokens": "overlap_tokens",
    "splitBy": "split_by",
    "preserveTables": "preserve_tables",
    "preserveLists": "preserve_lists",
    "extractHeadings": "extract_headings",
}


def _parse_strategy(raw: Any) -> ChunkStrategy:
    if not isinstance(raw, dict):
        return ChunkStrategy()
    values = {field: raw[key] for key, field in _STRATEGY_KEYS.items() if key in raw}
    try:
        return ChunkStrategy.model_validate(values)
    except pydantic.ValidationError:
        logger.warning("discovery_chunk_strategy_invalid", strategy=raw)
        return ChunkStrategy()


def _parse_elements(raw: Any) -> list[DetectedElement]:
    elements: list[DetectedElement] = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict) or "type" not in item:
            continue
        try:
            elements.append(
                DetectedElement(
                    type=str(item["type"]),
                    count=int(item.get("count", 0) or 0),
                    examples=[str(e) for e in item.get("examples", []) or []],
                )
            )
        except (TypeError, ValueError, pydantic.ValidationError):
            continue
    return elements


def _parse_confidence(raw: Any) -> float:
    try:
        return min(1.0, max(0.0, float(raw)))
    except (TypeError, ValueError):
        return 0.5


def parse_discovery_response(text: str, document_type_hint: str | None = None) -> dict[str, Any]:
    """Return DiscoveryResult fields from the model's answer.

    Falls back to hint-derived defaults when the answer is not a JSON
    object.
    """
    try:
        data = json.loads(strip_code_fences(text))
        if not isinstance(data, dict):
            raise ValueError("discovery response is not a JSON object")
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("discovery_response_unparseable", error=str(exc))
        return {
            "document_type": document_type_hint or "General",
            "document_type_name": document_type_hint or "General Document",
            "special_instructions": list(DEFAULT_DOCUMENT_INSTRUCTIONS),
            "confidence": 0.5,
            "reasoning": "Failed to parse AI response, using default configuration",
        }

    instructions = data.get("specialInstructions") or []
    formats = data.get("exampleFormats") or {}
    document_type = str(data.get("documentType") or document_type_hint or "General")
    return {
        "document_type": document_type,
        "document_type_name": str(data.get("documentTypeName") or document_type),
        "language": data.get("language") or None,
        "complexity": str(data.get("complexity") or "medium"),
        "detected_elements": _parse_elements(data.get("detectedElements")),
        "special_instructions": [str(i) for i in instructions if str(i).strip()]
        if isinstance(instructions, list)
        else [],
        "example_formats": {str(k): str(v) for k, v in formats.items()}
        if isinstance(formats, dict)
        else {},
        "suggested_chunk_strategy": _parse_strategy(
            data.get("chunkStrategy") or data.get("suggestedChunkStrategy")
        ),
        "confidence": _parse_confidence(data.get("confidence", 0.5)),
        "reasoning": str(data.get("reasoning") or ""),
    }


def build_system_prompt(result: DiscoveryResult) -> str:
    """Instruction lines for a prompt config created from ``result``."""
    lines = list(result.special_instructions) or list(DEFAULT_DOCUMENT_INSTRUCTIONS)
    lines.extend(f"Format {key} like: {value}" for key, value in result.example_formats.items())
    return "\n".join(lines)


class DiscoveryService:
    """Analyses documents and turns approved analyses into prompt configs.

    Parameters
    ----------
    document_ai:
        Reads the PDF and answers the discovery prompt.
    pdf_processor:
        Loads and fingerprints the upload.
    prompt_configs:
        Receives the config created on approval.
    sessions:
        TTL store holding results until approved or expired.
    rate_limiter:
        Shared limiter for the document-AI call.
    """

    def __init__(
        self,
        document_ai: IDocumentAIProvider,
        pdf_processor: PdfProcessor,
        prompt_configs: IPromptConfigStore,
        sessions: ICacheProvider,
        rate_limiter: RateLimiter,
    ) -> None:
        self._document_ai = document_ai
        self._pdf = pdf_processor
        self._prompt_configs = prompt_configs
        self._sessions = sessions
        self._rate_limiter = rate_limiter

    async def discover(
        self,
        file: bytes | str | Path,
        document_type_hint: str | None = None,
        filename: str | None = None,
    ) -> DiscoveryResult:
        """Analyse ``file`` and store the proposal under its ``id``.

        Raises
        ------
        ValidationError
            If the file is not a readable PDF.
        DiscoveryError
            If the document-AI call fails for a reason other than throttling.
        """
        pdf = self._pdf.load(file, filename)
        prompt = build_discovery_prompt(document_type_hint)
        try:
            response = await self._rate_limiter.throttle(
                lambda: self._document_ai.extract_text(pdf, prompt)
            )
        except LLMError as exc:
            raise DiscoveryError(f"Discovery call failed: {exc}") from exc

        fields = parse_discovery_response(response.text, document_type_hint)
        result = DiscoveryResult(
            id=str(uuid.uuid4()),
            page_count=pdf.metadata.page_count,
            file_hash=pdf.metadata.file_hash,
            filename=pdf.metadata.filename,
            **fields,
        )
        await self._sessions.sweep()
        await self._sessions.set(_SESSION_PREFIX + result.id, result)
        logger.info(
            "discovery_completed",
            session_id=result.id,
            document_type=result.document_type,
            confidence=result.confidence,
            tokens=response.usage.total,
        )
        return result

    async def get_session(self, session_id: str) -> DiscoveryResult:
        result = await self._sessions.get(_SESSION_PREFIX + session_id)
        if result is None:
            raise NotFoundError("DiscoverySession", session_id)
        return result

    async def approve_strategy(
        self,
        session_id: str,
        overrides: ApproveStrategyOptions | None = None,
    ) -> PromptConfig:
        """Create a default prompt config from a stored discovery result.

        Raises
        ------
        NotFoundError
            If the session is unknown or has expired.
        """
        result = await self.get_session(session_id)
        overrides = overrides or ApproveStrategyOptions()

        config = await self._prompt_configs.create(
            CreatePromptConfig(
                document_type=overrides.document_type or result.document_type,
                name=overrides.name or result.document_type_name,
                system_prompt=overrides.system_prompt or build_system_prompt(result),
                chunk_strategy=overrides.chunk_strategy or result.suggested_chunk_strategy,
                set_as_default=True,
                created_by="discovery",
                change_log=overrides.change_log
                or f"Approved discovery session {session_id} (confidence {result.confidence:.2f})",
            )
        )
        await self._sessions.delete(_SESSION_PREFIX + session_id)
        logger.info(
            "discovery_strategy_approved",
            session_id=session_id,
            config_id=config.id,
            document_type=config.document_type,
            version=config.version,
        )
        return config
