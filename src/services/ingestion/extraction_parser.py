"""Turns document-AI output into typed chunk candidates.

Three layers, tried in order by the batch processor:

1. **Structured** -- a JSON array validated against
   :class:`~src.models.chunk.ExtractedSection`.  Any schema violation raises
   :class:`~src.utils.errors.ExtractionValidationError`, which makes the
   caller request free text instead.
2. **Marker-based** -- free text carrying paired
   ``<!-- SECTION type=".." page=".." confidence=".." -->`` markers.
3. **Heuristic** -- free text with no markers is split on blank lines and
   heading boundaries, typed by pattern, and given the batch's whole page
   range with a fixed 0.6 confidence.

Every layer drops content shorter than ten characters.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

import pydantic
import structlog
from pydantic import TypeAdapter

from src.models.chunk import ChunkCandidate, ChunkType, ConfidenceCategory, ExtractedSection
from src.utils.errors import ExtractionValidationError

logger = structlog.get_logger(logger_name=__name__)

MIN_CONTENT_LENGTH = 10
HEURISTIC_CONFIDENCE = 0.6
DEFAULT_MARKER_CONFIDENCE = 0.5

_SECTION_RE = re.compile(
    r'<!--\s*SECTION\s+type="([\w\- ]+)"\s+page="(\d+)"\s+confidence="([^"]*)"\s*-->'
    r"\n?(.*?)\n?<!--\s*/SECTION\s*-->",
    re.DOTALL,
)
# Matches markdown code fences (```json ... ``` or ``` ... ```).  The closing
# fence is optional because truncated responses often lose it.
_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)(?:\n?\s*```\s*)?$", re.DOTALL)
_HEURISTIC_SPLIT_RE = re.compile(r"\n(?=#{1,6}\s)|\n\s*\n")
_HEADING_RE = re.compile(r"^#{1,6}\s")

_SECTIONS_ADAPTER = TypeAdapter(list[ExtractedSection])


# ---------------------------------------------------------------------------
# Chunk type mapping
# ---------------------------------------------------------------------------
class ChunkTypeMapper:
    """Maps free-form type labels onto the canonical :class:`ChunkType` enum.

    ``resolve`` returns ``(canonical, sub_type)``.  ``sub_type`` is the raw
    label when it differed from the canonical name, so callers can still
    filter on "CLAUSE" after it was stored as TEXT.
    """

    BUILTIN: dict[str, ChunkType] = {
        "PARAGRAPH": ChunkType.TEXT,
        "PROSE": ChunkType.TEXT,
        "BODY": ChunkType.TEXT,
        "FOOTNOTE": ChunkType.TEXT,
        "TITLE": ChunkType.HEADING,
        "HEADER": ChunkType.HEADING,
        "SECTION_HEADER": ChunkType.HEADING,
        "BULLET_LIST": ChunkType.LIST,
        "NUMBERED_LIST": ChunkType.LIST,
        "STEPS": ChunkType.LIST,
        "IMAGE": ChunkType.IMAGE_REF,
        "FIGURE": ChunkType.IMAGE_REF,
        "CHART": ChunkType.IMAGE_REF,
        "DIAGRAM": ChunkType.IMAGE_REF,
        "CITATION": ChunkType.QUOTE,
        "BLOCKQUOTE": ChunkType.QUOTE,
        "MCQ": ChunkType.QUESTION,
        "MULTIPLE_CHOICE": ChunkType.QUESTION,
        "EXERCISE": ChunkType.QUESTION,
        "SNIPPET": ChunkType.CODE,
        "FORMULA": ChunkType.CODE,
        "EQUATION": ChunkType.CODE,
        "DATA_TABLE": ChunkType.TABLE,
    }

    def __init__(self, extra: dict[str, ChunkType] | None = None) -> None:
        self._table = dict(self.BUILTIN)
        for label, canonical in (extra or {}).items():
            self._table[self._normalise(label)] = ChunkType(canonical)

    @staticmethod
    def _normalise(label: str) -> str:
        return re.sub(r"[\s\-]+", "_", label.strip()).upper()

    def resolve(self, label: str) -> tuple[ChunkType | None, str | None]:
        key = self._normalise(label)
        if key in ChunkType.__members__:
            return ChunkType[key], None
        mapped = self._table.get(key)
        if mapped is not None:
            return mapped, key
        return None, key


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown fence, tolerating a missing close."""
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text.strip()


def clean_for_search(content: str) -> str:
    """Strip markdown/HTML/table syntax, keeping the words for indexing."""
    text = re.sub(r"<!--.*?-->", " ", content, flags=re.DOTALL)
    text = re.sub(r"\[IMAGE:\s*([^\]]*)\]", r"\1", text)
    text = re.sub(r"#{1,6}\s", "", text)
    text = re.sub(r"[*_]{1,3}(?=\S)|(?<=\S)[*_]{1,3}", "", text)
    text = text.replace("`", "")
    text = re.sub(r"\|?\s*:?-{3,}:?\s*", " ", text)
    text = text.replace("|", " ")
    text = re.sub(r"^\s*>\s?", "", text, flags=re.MULTILINE)
    return re.sub(r"\s+", " ", text).strip()


def detect_chunk_type(content: str) -> ChunkType:
    """Guess a chunk's type from markdown patterns."""
    if "|" in content and "---" in content:
        return ChunkType.TABLE
    if re.search(r"^[-*]\s", content, re.MULTILINE) or re.search(r"^\d+\.\s", content, re.MULTILINE):
        return ChunkType.LIST
    if "```" in content:
        return ChunkType.CODE
    if _HEADING_RE.match(content):
        return ChunkType.HEADING
    if content.startswith(">"):
        return ChunkType.QUOTE
    if "[IMAGE:" in content:
        return ChunkType.IMAGE_REF
    if re.search(r"^\s*A[).]\s", content, re.MULTILINE) and re.search(
        r"^\s*[B-E][).]\s", content, re.MULTILINE
    ):
        return ChunkType.QUESTION
    return ChunkType.TEXT


def confidence_category(score: float) -> ConfidenceCategory:
    if score >= 0.8:
        return ConfidenceCategory.HIGH
    if score >= 0.5:
        return ConfidenceCategory.MEDIUM
    return ConfidenceCategory.LOW


def _parse_confidence(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_MARKER_CONFIDENCE
    if math.isnan(value):
        return DEFAULT_MARKER_CONFIDENCE
    return min(1.0, max(0.0, value))


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------
class ExtractionParser:
    """Normalises structured or free-text extraction output.

    Parameters
    ----------
    type_mapper:
        Subtype -> canonical mapping; the built-in table when omitted.
    """

    def __init__(self, type_mapper: ChunkTypeMapper | None = None) -> None:
        self._mapper = type_mapper or ChunkTypeMapper()

    # -- structured ---------------------------------------------------------

    def parse_structured(self, raw: str, page_start: int, page_end: int) -> list[ChunkCandidate]:
        """Validate a JSON array of sections.

        Raises
        ------
        ExtractionValidationError
            If the payload is not JSON, not a list, or any element breaks
            the schema (unknown type, page < 1, confidence outside [0, 1],
            empty content).
        """
        try:
            payload: Any = json.loads(strip_code_fences(raw))
        except json.JSONDecodeError as exc:
            raise ExtractionValidationError(f"Structured output is not JSON: {exc}") from exc

        if isinstance(payload, dict) and isinstance(payload.get("sections"), list):
            payload = payload["sections"]
        if not isinstance(payload, list):
            raise ExtractionValidationError(
                f"Structured output must be a JSON array, got {type(payload).__name__}"
            )

        normalised: list[Any] = []
        for item in payload:
            if isinstance(item, dict) and isinstance(item.get("type"), str):
                canonical, sub_type = self._mapper.resolve(item["type"])
                if canonical is not None:
                    item = {**item, "type": canonical.value, "sub_type": sub_type}
            normalised.append(item)

        try:
            sections = _SECTIONS_ADAPTER.validate_python(normalised)
        except pydantic.ValidationError as exc:
            raise ExtractionValidationError(
                f"Structured output failed validation: {exc.error_count()} error(s)",
                details={"errors": exc.errors(include_url=False)[:5]},
            ) from exc

        return self._to_candidates(sections, page_start, page_end)

    # -- free text ----------------------------------------------------------

    def parse_text(self, text: str, page_start: int, page_end: int) -> list[ChunkCandidate]:
        """Parse SECTION markers, degrading to heuristic splitting."""
        sections = self.parse_marked_sections(text)
        if sections:
            return self._to_candidates(sections, page_start, page_end)
        logger.info("extraction_markers_missing", page_start=page_start, page_end=page_end)
        return self.parse_heuristic(text, page_start, page_end)

    def parse_marked_sections(self, text: str) -> list[ExtractedSection]:
        sections: list[ExtractedSection] = []
        for match in _SECTION_RE.finditer(text):
            raw_type, raw_page, raw_confidence, content = match.groups()
            content = content.strip()
            if len(content) < MIN_CONTENT_LENGTH:
                continue
            canonical, sub_type = self._mapper.resolve(raw_type)
            if canonical is None:
                canonical = ChunkType.TEXT
            sections.append(
                ExtractedSection(
                    type=canonical,
                    sub_type=sub_type,
                    page=max(1, int(raw_page)),
                    confidence=_parse_confidence(raw_confidence),
                    content=content,
                )
            )
        return sections

    def parse_heuristic(self, text: str, page_start: int, page_end: int) -> list[ChunkCandidate]:
        candidates: list[ChunkCandidate] = []
        parent_heading: str | None = None
        for part in _HEURISTIC_SPLIT_RE.split(strip_code_fences(text)):
            content = part.strip()
            if len(content) < MIN_CONTENT_LENGTH:
                continue
            chunk_type = detect_chunk_type(content)
            candidates.append(
                ChunkCandidate(
                    chunk_type=chunk_type,
                    page_start=page_start,
                    page_end=page_end,
                    confidence=HEURISTIC_CONFIDENCE,
                    display_content=content,
                    search_content=clean_for_search(content),
                    parent_heading=parent_heading,
                )
            )
            if chunk_type is ChunkType.HEADING:
                parent_heading = clean_for_search(content)
        return candidates

    # -- shared -------------------------------------------------------------

    @staticmethod
    def _to_candidates(
        sections: list[ExtractedSection], page_start: int, page_end: int
    ) -> list[ChunkCandidate]:
        candidates: list[ChunkCandidate] = []
        parent_heading: str | None = None
        for section in sections:
            content = section.content.strip()
            if len(content) < MIN_CONTENT_LENGTH:
                continue
            # Models occasionally cite a page outside the requested range.
            page = min(max(section.page, page_start), page_end)
            candidates.append(
                ChunkCandidate(
                    chunk_type=section.type,
                    sub_type=section.sub_type,
                    page_start=page,
                    page_end=page,
                    confidence=section.confidence,
                    display_content=content,
                    search_content=clean_for_search(content),
                    parent_heading=parent_heading,
                )
            )
            if section.type is ChunkType.HEADING:
                parent_heading = clean_for_search(content)
        return candidates
