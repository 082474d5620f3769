"""Prompt templates for extraction and discovery.

Templates use ``str.format``-style placeholders filled by the builder
functions below; literal braces in the JSON examples are doubled.
"""

from __future__ import annotations

DEFAULT_DOCUMENT_INSTRUCTIONS: tuple[str, ...] = (
    "Extract all text content preserving structure",
    "Convert tables to Markdown table format",
    "Convert lists to Markdown list format",
    "Preserve headings with appropriate # levels",
    "Note any images with descriptive text",
    "Maintain the logical flow of content",
)

_FORMAT_RULES = """\
### Valid Types
- TEXT: regular paragraphs and prose
- TABLE: data tables in Markdown table format
- LIST: bullet (-) or numbered (1.) lists
- HEADING: section headers using # / ## / ###
- CODE: fenced code blocks with a language tag
- QUOTE: quoted text or citations
- IMAGE_REF: description of an image, chart or figure as [IMAGE: ...]
- QUESTION: multiple choice questions with options A) B) C) D)

## EXTRACTION RULES
1. Extract content exactly as written. Do not summarize or paraphrase.
2. Do not add commentary or interpretation.
3. Keep terminology, figures and abbreviations verbatim.
4. Include all content, even if repetitive.
5. Mark illegible text as [UNCLEAR: partial text visible].
6. If content spans pages, use the starting page number.
"""

_MARKER_TEMPLATE = """\
You are a document processing AI. Extract content following the EXACT format below.

## OUTPUT FORMAT (MANDATORY)
Wrap EVERY content section like this:

<!-- SECTION type="TYPE" page="PAGE" confidence="0.0-1.0" -->
Content in Markdown
<!-- /SECTION -->

{format_rules}
## DOCUMENT-SPECIFIC INSTRUCTIONS
{instructions}

## PAGE RANGE
{page_range}
"""

_STRUCTURED_TEMPLATE = """\
You are a document processing AI. Extract content as a JSON array.

## OUTPUT FORMAT (MANDATORY)
Return ONLY a JSON array, no prose, where every element is:
{{"type": "TYPE", "page": PAGE_NUMBER, "confidence": 0.0-1.0, "content": "Markdown content"}}

{format_rules}
## DOCUMENT-SPECIFIC INSTRUCTIONS
{instructions}

## PAGE RANGE
{page_range}
"""

_DISCOVERY_TEMPLATE = """\
You are a document analysis AI. Analyze the provided document and determine \
the optimal processing strategy.

Return ONLY a JSON object with this structure:
{{
  "documentType": "Medical|Legal|Financial|Technical|Academic|General",
  "documentTypeName": "Human readable name for this document type",
  "language": "en|de|fr|tr|...",
  "complexity": "low|medium|high",
  "detectedElements": [{{"type": "table", "count": 5, "examples": ["..."]}}],
  "specialInstructions": ["Specific, actionable instruction for this document type"],
  "exampleFormats": {{"example1": "How a specific format should look"}},
  "chunkStrategy": {{"maxTokens": 800, "overlapTokens": 100, "splitBy": "semantic",
                    "preserveTables": true, "preserveLists": true}},
  "confidence": 0.85,
  "reasoning": "Brief explanation of why this strategy was chosen"
}}

Do not generate a full extraction prompt; only structured analysis and
specific instructions.
{hint}"""


def _instruction_block(
    instructions: list[str] | tuple[str, ...],
    example_formats: dict[str, str] | None = None,
) -> str:
    lines = [f"- {item}" for item in instructions if item.strip()]
    if not lines:
        lines = [f"- {item}" for item in DEFAULT_DOCUMENT_INSTRUCTIONS]
    block = "\n".join(lines)
    if example_formats:
        block += "\n\n### Example Formats\n" + "\n".join(
            f"- **{key}**: `{value}`" for key, value in example_formats.items()
        )
    return block


def _page_range_block(page_start: int, page_end: int) -> str:
    scope = (
        f"Process page {page_start} of this document."
        if page_start == page_end
        else f"Process pages {page_start}-{page_end} of this document."
    )
    return f"{scope}\nRestrict your extraction STRICTLY to pages {page_start} to {page_end}."


def build_extraction_prompt(
    instructions: list[str] | tuple[str, ...],
    page_start: int,
    page_end: int,
    *,
    structured: bool,
    example_formats: dict[str, str] | None = None,
) -> str:
    """Build the page-range-scoped extraction prompt.

    ``structured=True`` asks for a JSON array; otherwise the model is told
    to wrap sections in SECTION markers.
    """
    template = _STRUCTURED_TEMPLATE if structured else _MARKER_TEMPLATE
    return template.format(
        format_rules=_FORMAT_RULES,
        instructions=_instruction_block(instructions, example_formats),
        page_range=_page_range_block(page_start, page_end),
    )


def build_discovery_prompt(document_type_hint: str | None = None) -> str:
    hint = ""
    if document_type_hint:
        hint = (
            f'\nHint: the user expects this to be a "{document_type_hint}" document. '
            "Consider this when analyzing."
        )
    return _DISCOVERY_TEMPLATE.format(hint=hint)
