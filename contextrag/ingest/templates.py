"""
ContextRAG - Extraction Prompt Templates
========================================

Prompts sent with each page batch. The model wraps every logical unit in a
SECTION marker pair:

    <!-- SECTION type="TABLE" page="2" confidence="0.88" -->
    | A | B |
    <!-- /SECTION -->

Usage:
    from contextrag.ingest.templates import build_extraction_prompt

    prompt = build_extraction_prompt(page_start=11, page_end=20)
"""

from typing import Dict, List, Optional, Sequence

from contextrag.shared.enums import ChunkType


# =============================================================================
# Base Template
# =============================================================================

BASE_EXTRACTION_TEMPLATE = """You are a document processing AI. Extract content following the EXACT format below.

## OUTPUT FORMAT (MANDATORY - DO NOT MODIFY)

Use this structure for EVERY content section:

<!-- SECTION type="[TYPE]" page="[PAGE]" confidence="[0.0-1.0]" -->
[Content here in Markdown format]
<!-- /SECTION -->

### Valid Types:
- TEXT: Regular paragraphs and prose
- TABLE: Data tables in Markdown format
- LIST: Bullet (-) or numbered (1. 2. 3.) lists
- HEADING: Section headers with # ## ### levels
- CODE: Code blocks with language specification
- QUOTE: Quoted text or citations
- IMAGE_REF: Description of images, charts, figures
- QUESTION: Multiple choice questions with options (A, B, C, D, E)
{custom_types}
### Format Rules:
1. Tables: Markdown table with a separator row
   | Column1 | Column2 |
   |---------|---------|
   | data    | data    |
2. Lists: "- item" or "1. item", one per line
3. Headings: at most 3 levels (#, ##, ###)
4. Code: fenced with the language name
5. Images: [IMAGE: description of what the image shows]
6. Questions: question text followed by one option per line, "A) ...", "B) ..."

## DOCUMENT-SPECIFIC INSTRUCTIONS
{document_instructions}

## EXTRACTION RULES
1. Extract content exactly as written. Do not summarize, paraphrase or interpret.
2. Keep terminology, figures, references and foreign terms verbatim.
3. Include all content, even if it seems repetitive.
4. Mark illegible text as [UNCLEAR: partial text visible].
5. If content spans pages, use the starting page number.
6. Use lower confidence scores where extraction quality is uncertain.

## PAGE RANGE
{page_range}
"""

DEFAULT_DOCUMENT_INSTRUCTIONS = """- Extract all text content preserving structure
- Convert tables to Markdown table format
- Convert lists to Markdown list format
- Preserve headings with appropriate # levels
- Note any images with descriptive text
- Maintain the logical flow of content"""

STRUCTURED_EXTRACTION_SUFFIX = """
Return ONLY a JSON object of the form:
{"sections": [{"type": "TEXT", "page": 1, "confidence": 0.9, "content": "..."}]}
Content keeps its Markdown formatting. Sections appear in reading order."""


# =============================================================================
# Builders
# =============================================================================

def format_page_range(
    page_start: Optional[int],
    page_end: Optional[int],
    excerpt: bool = False
) -> str:
    if page_start is None or page_end is None:
        return ""
    if page_start == page_end:
        text = f"Process page {page_start} of this document."
    else:
        text = f"Process pages {page_start}-{page_end} of this document."
    if excerpt:
        text += (
            f" The attached file contains only these pages: its first page is "
            f"page {page_start}. Report page numbers in the original document's numbering."
        )
    return text


def build_extraction_prompt(
    page_start: Optional[int] = None,
    page_end: Optional[int] = None,
    instructions: Optional[Sequence[str]] = None,
    example_formats: Optional[Dict[str, str]] = None,
    custom_prompt: Optional[str] = None,
    custom_types: Optional[List[str]] = None,
    structured: bool = False,
    excerpt: bool = False
) -> str:
    """
    Build the extraction prompt for one batch.

    Args:
        page_start, page_end: Inclusive page range of the batch
        instructions: Document-specific instruction lines
        example_formats: Named example snippets appended to the instructions
        custom_prompt: Free-form instructions, used verbatim when given
        custom_types: Extra type tags accepted through chunk_type_mapping
        structured: Ask for JSON sections instead of SECTION markers
        excerpt: The attached file holds only the batch's pages
    """
    if custom_prompt:
        block = custom_prompt.strip()
    elif instructions:
        block = "\n".join(f"- {line}" for line in instructions)
    else:
        block = DEFAULT_DOCUMENT_INSTRUCTIONS

    if example_formats:
        block += "\n\n### Example Formats:\n"
        block += "\n".join(f"- **{key}**: `{value}`" for key, value in example_formats.items())

    extra_types = ""
    if custom_types:
        known = {t.value for t in ChunkType}
        extra = [t for t in custom_types if t.upper() not in known]
        if extra:
            extra_types = "".join(f"- {t.upper()}: Domain-specific content\n" for t in extra)

    prompt = BASE_EXTRACTION_TEMPLATE.format(
        custom_types=extra_types,
        document_instructions=block,
        page_range=format_page_range(page_start, page_end, excerpt),
    )
    if structured:
        prompt += STRUCTURED_EXTRACTION_SUFFIX
    return prompt
