"""Unit tests for the structured, marker and heuristic extraction parsers."""

from __future__ import annotations

import json

import pytest

from src.models.chunk import ChunkType, ConfidenceCategory
from src.services.ingestion.extraction_parser import (
    ChunkTypeMapper,
    ExtractionParser,
    clean_for_search,
    confidence_category,
    detect_chunk_type,
    strip_code_fences,
)
from src.utils.errors import ExtractionValidationError
from tests.conftest import marked_sections, structured_sections


def _section(type_: str, page: int, content: str, confidence: float = 0.9) -> dict:
    return {"type": type_, "page": page, "confidence": confidence, "content": content}


def _marker(type_: str, page: str, confidence: str, content: str) -> str:
    return (
        f'<!-- SECTION type="{type_}" page="{page}" confidence="{confidence}" -->\n'
        f"{content}\n<!-- /SECTION -->"
    )


# ======================================================================
# ChunkTypeMapper
# ======================================================================


class TestChunkTypeMapper:
    def test_canonical_label(self) -> None:
        assert ChunkTypeMapper().resolve("table") == (ChunkType.TABLE, None)

    def test_builtin_subtype(self) -> None:
        assert ChunkTypeMapper().resolve("bullet list") == (ChunkType.LIST, "BULLET_LIST")

    def test_unknown_label(self) -> None:
        assert ChunkTypeMapper().resolve("Recipe-Step") == (None, "RECIPE_STEP")

    def test_extra_mapping(self) -> None:
        mapper = ChunkTypeMapper({"clause": ChunkType.TEXT})
        assert mapper.resolve("CLAUSE") == (ChunkType.TEXT, "CLAUSE")


# ======================================================================
# Structured output
# ======================================================================


class TestParseStructured:
    def test_valid_array(self) -> None:
        raw = json.dumps(
            [
                _section("HEADING", 3, "# Installation guide"),
                _section("TEXT", 4, "Mount the pump on a level surface.", 0.85),
            ]
        )
        candidates = ExtractionParser().parse_structured(raw, 3, 4)

        assert [c.chunk_type for c in candidates] == [ChunkType.HEADING, ChunkType.TEXT]
        assert candidates[0].search_content == "Installation guide"
        assert candidates[1].page_start == candidates[1].page_end == 4
        assert candidates[1].parent_heading == "Installation guide"
        assert candidates[1].confidence == 0.85

    def test_code_fenced_payload(self) -> None:
        raw = "```json\n" + json.dumps([_section("TEXT", 1, "Fenced content here.")]) + "\n```"
        assert len(ExtractionParser().parse_structured(raw, 1, 1)) == 1

    def test_sections_wrapper_object(self) -> None:
        raw = json.dumps({"sections": [_section("TEXT", 1, "Wrapped content here.")]})
        assert len(ExtractionParser().parse_structured(raw, 1, 1)) == 1

    def test_subtype_is_mapped_and_kept(self) -> None:
        raw = json.dumps([_section("FIGURE", 1, "[IMAGE: wiring diagram]")])
        candidate = ExtractionParser().parse_structured(raw, 1, 1)[0]
        assert candidate.chunk_type is ChunkType.IMAGE_REF
        assert candidate.sub_type == "FIGURE"

    def test_pages_are_clamped_into_batch_range(self) -> None:
        raw = json.dumps(
            [_section("TEXT", 1, "Cited an early page."), _section("TEXT", 99, "Cited a late page.")]
        )
        candidates = ExtractionParser().parse_structured(raw, 16, 30)
        assert [c.page_start for c in candidates] == [16, 30]

    def test_short_content_dropped(self) -> None:
        raw = json.dumps([_section("TEXT", 1, "tiny"), _section("TEXT", 1, "Long enough text.")])
        candidates = ExtractionParser().parse_structured(raw, 1, 1)
        assert [c.display_content for c in candidates] == ["Long enough text."]

    @pytest.mark.parametrize(
        "raw",
        [
            "Here is your content as prose.",
            json.dumps({"type": "TEXT"}),
            json.dumps([_section("RECIPE", 1, "Unknown type label.")]),
            json.dumps([_section("TEXT", 0, "Page zero is invalid.")]),
            json.dumps([_section("TEXT", 1, "Confidence too high.", 1.4)]),
            json.dumps([_section("TEXT", 1, "")]),
            json.dumps([{"type": "TEXT", "page": 1}]),
        ],
    )
    def test_schema_violations_raise(self, raw: str) -> None:
        with pytest.raises(ExtractionValidationError):
            ExtractionParser().parse_structured(raw, 1, 1)


# ======================================================================
# Marker-based free text
# ======================================================================


class TestParseMarkers:
    def test_markers_become_candidates(self) -> None:
        text = "\n\n".join(
            [
                _marker("HEADING", "2", "0.9", "## Safety notes"),
                _marker("LIST", "2", "0.8", "- Wear gloves\n- Disconnect power"),
            ]
        )
        candidates = ExtractionParser().parse_text(text, 1, 3)
        assert [c.chunk_type for c in candidates] == [ChunkType.HEADING, ChunkType.LIST]
        assert candidates[1].parent_heading == "Safety notes"
        assert candidates[1].page_start == 2

    def test_invalid_confidence_defaults(self) -> None:
        text = _marker("TEXT", "1", "high", "Confidence attribute is not a number.")
        assert ExtractionParser().parse_text(text, 1, 1)[0].confidence == 0.5

    def test_confidence_is_clamped(self) -> None:
        text = _marker("TEXT", "1", "7", "Confidence attribute is out of range.")
        assert ExtractionParser().parse_text(text, 1, 1)[0].confidence == 1.0

    def test_unknown_type_becomes_text_with_subtype(self) -> None:
        text = _marker("RECIPE_STEP", "1", "0.9", "Whisk the eggs until fluffy.")
        candidate = ExtractionParser().parse_text(text, 1, 1)[0]
        assert candidate.chunk_type is ChunkType.TEXT
        assert candidate.sub_type == "RECIPE_STEP"

    def test_short_marked_content_dropped(self) -> None:
        text = _marker("TEXT", "1", "0.9", "short") + _marker("TEXT", "1", "0.9", "Kept paragraph text.")
        assert len(ExtractionParser().parse_marked_sections(text)) == 1


# ======================================================================
# Structured and marker paths agree
# ======================================================================

# (type, page, confidence, content) covering aliases, clamped pages,
# markdown cleanup, heading inheritance and dropped short content.
_EQUIVALENT_SECTIONS = [
    ("TITLE", 1, 0.95, "# Pump Maintenance Guide"),
    ("TEXT", 1, 0.85, "Check the **seal** before each _shift_."),
    ("HEADING", 2, 0.9, "## Safety notes"),
    ("BULLET_LIST", 2, 0.8, "- Wear gloves\n- Disconnect power"),
    ("TABLE", 3, 0.7, "| Part | Torque |\n| --- | --- |\n| Bolt | 12 Nm |"),
    ("FIGURE", 9, 0.6, "[IMAGE: exploded view of the impeller]"),
    ("TEXT", 2, 0.9, "tiny"),
    ("code", 3, 0.75, "`pump --reset` clears the fault latch."),
]


class TestStructuredMarkerEquivalence:
    def test_same_sections_give_identical_candidates(self) -> None:
        parser = ExtractionParser()
        structured = parser.parse_structured(
            json.dumps([_section(t, p, c, conf) for t, p, conf, c in _EQUIVALENT_SECTIONS]), 1, 3
        )
        marked = parser.parse_text(
            "\n\n".join(_marker(t, str(p), str(conf), c) for t, p, conf, c in _EQUIVALENT_SECTIONS),
            1,
            3,
        )

        assert len(structured) == len(_EQUIVALENT_SECTIONS) - 1
        for left, right in zip(structured, marked):
            assert left.model_dump() == right.model_dump()
        assert structured == marked

    def test_equivalent_fields_are_the_interesting_ones(self) -> None:
        candidates = ExtractionParser().parse_text(
            "\n\n".join(_marker(t, str(p), str(conf), c) for t, p, conf, c in _EQUIVALENT_SECTIONS),
            1,
            3,
        )
        by_type = {c.chunk_type: c for c in candidates}

        assert by_type[ChunkType.HEADING].sub_type is None
        assert by_type[ChunkType.LIST].sub_type == "BULLET_LIST"
        assert by_type[ChunkType.LIST].parent_heading == "Safety notes"
        assert by_type[ChunkType.TEXT].parent_heading == "Pump Maintenance Guide"
        assert by_type[ChunkType.TEXT].search_content == "Check the seal before each shift."
        assert by_type[ChunkType.IMAGE_REF].page_start == 3
        assert by_type[ChunkType.IMAGE_REF].search_content == "exploded view of the impeller"
        assert by_type[ChunkType.TABLE].search_content == "Part Torque Bolt 12 Nm"
        assert by_type[ChunkType.CODE].confidence == 0.75

    def test_sample_outputs_differ_only_in_confidence(self) -> None:
        parser = ExtractionParser()
        structured = parser.parse_structured(structured_sections(1, 5), 1, 5)
        marked = parser.parse_text(marked_sections(1, 5), 1, 5)

        assert len(structured) == len(marked)
        for left, right in zip(structured, marked):
            assert left.model_dump(exclude={"confidence"}) == right.model_dump(
                exclude={"confidence"}
            )


# ======================================================================
# Heuristic fallback
# ======================================================================


class TestParseHeuristic:
    def test_unmarked_text_is_split(self) -> None:
        text = (
            "# Maintenance\n\n"
            "Inspect the seals every month.\n\n"
            "- Check pressure\n- Check temperature\n\n"
            "ok"
        )
        candidates = ExtractionParser().parse_text(text, 5, 8)

        assert [c.chunk_type for c in candidates] == [
            ChunkType.HEADING,
            ChunkType.TEXT,
            ChunkType.LIST,
        ]
        assert all(c.confidence == 0.6 for c in candidates)
        assert all((c.page_start, c.page_end) == (5, 8) for c in candidates)
        assert candidates[1].parent_heading == "Maintenance"

    def test_heading_boundary_splits_without_blank_line(self) -> None:
        text = "Intro paragraph about pumps.\n## Next section title"
        candidates = ExtractionParser().parse_heuristic(text, 1, 1)
        assert [c.chunk_type for c in candidates] == [ChunkType.TEXT, ChunkType.HEADING]

    def test_empty_text(self) -> None:
        assert ExtractionParser().parse_text("", 1, 1) == []


# ======================================================================
# Helpers
# ======================================================================


class TestHelpers:
    def test_strip_code_fences(self) -> None:
        assert strip_code_fences("```json\n[1, 2]\n```") == "[1, 2]"
        assert strip_code_fences("```\n[1, 2]") == "[1, 2]"
        assert strip_code_fences("  [1, 2]  ") == "[1, 2]"

    def test_clean_for_search_strips_markup(self) -> None:
        assert clean_for_search("## **Bold** heading") == "Bold heading"
        assert clean_for_search("[IMAGE: pump diagram]") == "pump diagram"
        table = clean_for_search("| Part | Qty |\n|---|---|\n| PN-1 | 4 |")
        assert "|" not in table
        assert "Part" in table and "PN-1" in table

    @pytest.mark.parametrize(
        ("content", "expected"),
        [
            ("| a | b |\n|---|---|\n| 1 | 2 |", ChunkType.TABLE),
            ("- one\n- two", ChunkType.LIST),
            ("1. first\n2. second", ChunkType.LIST),
            ("```python\nprint(1)\n```", ChunkType.CODE),
            ("## Heading text", ChunkType.HEADING),
            ("> quoted words", ChunkType.QUOTE),
            ("See [IMAGE: chart of sales]", ChunkType.IMAGE_REF),
            ("Which is right?\nA) one\nB) two", ChunkType.QUESTION),
            ("Just a sentence.", ChunkType.TEXT),
        ],
    )
    def test_detect_chunk_type(self, content: str, expected: ChunkType) -> None:
        assert detect_chunk_type(content) is expected

    def test_confidence_category(self) -> None:
        assert confidence_category(0.8) is ConfidenceCategory.HIGH
        assert confidence_category(0.5) is ConfidenceCategory.MEDIUM
        assert confidence_category(0.49) is ConfidenceCategory.LOW
