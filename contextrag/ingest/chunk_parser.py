"""
ContextRAG - Chunk Parser
=========================

Turns one batch's raw model output into ordered, typed sections.

Two passes:
1. Marker parse: every well-formed
       <!-- SECTION type="X" page="N" confidence="0.9" --> ... <!-- /SECTION -->
   pair becomes one section, in source order.
2. Fallback parse (no well-formed pair found): split on blank lines and
   heading lines, classify each fragment by content heuristics, and give
   every fragment a fixed, lower confidence.

Malformed or missing markers are the common case with a generative model,
so neither pass raises on bad input.

Usage:
    parser = ChunkParser(min_chunk_length=10)
    sections = parser.parse(raw_text, page_start=11, page_end=20)
    for section in sections:
        processed = parser.process_section(section)
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from contextrag.shared.enums import ChunkType, ConfidenceLevel, ParseMethod
from contextrag.shared.models import ParsedSection

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
FALLBACK_CONFIDENCE = 0.6
MIN_CHUNK_LENGTH = 10

# A start marker, then a body that never contains another start marker,
# then an end marker. An unterminated start marker is skipped, not merged.
SECTION_PATTERN = re.compile(
    r"<!--\s*SECTION\b(?P<attrs>[^>]*?)-->"
    r"(?P<body>(?:(?!<!--\s*SECTION\b).)*?)"
    r"<!--\s*/\s*SECTION\s*-->",
    re.DOTALL | re.IGNORECASE,
)

ATTRIBUTE_PATTERN = re.compile(
    r"""(?P<key>[\w-]+)\s*=\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<bare>[^\s"'>]+))"""
)

# Fallback segmentation: before a heading line, or at a blank line
FALLBACK_SPLIT = re.compile(r"\n(?=[ \t]*#{1,6}\s)|\n[ \t]*\n")

LIST_LINE = re.compile(r"^\s*(?:[-*+•]|\d+[.)])\s+", re.MULTILINE)
HEADING_START = re.compile(r"^#{1,6}\s")
QUESTION_OPTION = re.compile(r"^\s*[A-E][).]\s", re.MULTILINE)

# cleanForSearch steps, applied in order
_CLEAN_STEPS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"<!--.*?-->", re.DOTALL), " "),
    (re.compile(r"\[IMAGE:[^\]]*\]"), " "),
    (re.compile(r"```[\w+-]*"), " "),
    (re.compile(r"^[ \t]*#{1,6}[ \t]+", re.MULTILINE), ""),
    (re.compile(r"\*\*|__"), ""),
    (re.compile(r"\*"), ""),
    (re.compile(r"`"), ""),
    (re.compile(r":?-{3,}:?"), " "),
    (re.compile(r"\|"), " "),
    (re.compile(r"\s+"), " "),
)


# =============================================================================
# Structured Output Schema
# =============================================================================

class ExtractedSection(BaseModel):
    """One section returned by structured-output extraction."""
    type: str = "TEXT"
    page: Optional[int] = None
    confidence: Optional[float] = None
    content: str


class ExtractionOutput(BaseModel):
    """Structured-output extraction payload."""
    sections: List[ExtractedSection] = Field(default_factory=list)


# =============================================================================
# Processed Output
# =============================================================================

@dataclass
class ProcessedSection:
    """A section split into search-indexed and display forms."""
    search_content: str
    display_content: str
    type: ChunkType
    page: int
    confidence: float
    index: int
    sub_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Normalization Helpers
# =============================================================================

def clean_for_search(content: str) -> str:
    """
    Strip markup and collapse whitespace for search indexing.

    Removes headings, emphasis, code fences and backticks, table pipes,
    horizontal rules, image references and HTML comments. Steps are
    re-applied until the text stops changing, so the result is a fixed
    point: clean_for_search(clean_for_search(x)) == clean_for_search(x).
    """
    if not content:
        return ""
    current = content
    while True:
        cleaned = current
        for pattern, replacement in _CLEAN_STEPS:
            cleaned = pattern.sub(replacement, cleaned)
        cleaned = cleaned.strip()
        if cleaned == current:
            return cleaned
        current = cleaned


def parse_confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    """Parse and clamp a confidence value into [0, 1]; unparsable -> default."""
    if value is None:
        return default
    try:
        confidence = float(str(value).strip())
    except (TypeError, ValueError):
        return default
    if math.isnan(confidence):
        return default
    return min(1.0, max(0.0, confidence))


def parse_page(value: Any, default: int) -> int:
    """Parse a 1-indexed page number; unparsable or < 1 -> default."""
    if value is None:
        return default
    try:
        page = int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return default
    return page if page >= 1 else default


def parse_attributes(raw: str) -> Dict[str, str]:
    """Parse key="value" pairs from a marker; keys are lower-cased."""
    attrs = {}
    for match in ATTRIBUTE_PATTERN.finditer(raw or ""):
        value = match.group("dq")
        if value is None:
            value = match.group("sq")
        if value is None:
            value = match.group("bare")
        attrs[match.group("key").lower()] = value
    return attrs


def is_table_separator(line: str) -> bool:
    stripped = line.strip()
    return (
        "|" in stripped
        and "-" in stripped
        and set(stripped) <= set("|-: ")
    )


def detect_content_type(content: str) -> ChunkType:
    """
    Classify an unmarked fragment.

    Precedence: table > list > code > heading > quote > image > question > text.
    """
    lines = content.splitlines()
    if "|" in content and any(is_table_separator(line) for line in lines):
        return ChunkType.TABLE
    if LIST_LINE.search(content):
        return ChunkType.LIST
    if "```" in content:
        return ChunkType.CODE
    if HEADING_START.match(content):
        return ChunkType.HEADING
    if content.startswith(">"):
        return ChunkType.QUOTE
    if "[IMAGE:" in content:
        return ChunkType.IMAGE_REF
    if len(QUESTION_OPTION.findall(content)) >= 2:
        return ChunkType.QUESTION
    return ChunkType.TEXT


# =============================================================================
# Parser
# =============================================================================

class ChunkParser:
    """
    Parses raw model output into ParsedSection lists.

    Attributes:
        min_chunk_length: Sections whose cleaned content is shorter are dropped
            by `process_sections`, and fallback fragments shorter are skipped
        chunk_type_mapping: Custom tag -> ChunkType; the raw tag is kept as sub_type
    """

    def __init__(
        self,
        min_chunk_length: int = MIN_CHUNK_LENGTH,
        chunk_type_mapping: Optional[Mapping[str, ChunkType]] = None,
        fallback_confidence: float = FALLBACK_CONFIDENCE
    ):
        self.min_chunk_length = min_chunk_length
        self.fallback_confidence = fallback_confidence
        self.chunk_type_mapping = {
            key.strip().upper(): value
            for key, value in (chunk_type_mapping or {}).items()
        }

    # =========================================================================
    # Type Mapping
    # =========================================================================

    def map_type(self, tag: Optional[str]) -> Tuple[ChunkType, Optional[str]]:
        """Map a model tag to (ChunkType, sub_type)."""
        raw = (tag or "").strip()
        if not raw:
            return ChunkType.TEXT, None

        key = raw.upper()
        if key in self.chunk_type_mapping:
            return self.chunk_type_mapping[key], raw

        chunk_type = ChunkType.from_tag(raw)
        if chunk_type.value == key.replace("-", "_").replace(" ", "_"):
            return chunk_type, None
        return ChunkType.TEXT, raw

    # =========================================================================
    # Marker Parsing
    # =========================================================================

    def has_valid_markers(self, raw_text: str) -> bool:
        """True when at least one well-formed marker pair exists."""
        return bool(raw_text) and SECTION_PATTERN.search(raw_text) is not None

    def parse_annotated(self, raw_text: str, default_page: int = 1) -> List[ParsedSection]:
        """
        Parse every well-formed marker pair, in document order.

        Ordinals are 0..N-1 in emission order. Unknown tags become TEXT,
        unparsable confidence becomes 0.5, out-of-range confidence is clamped.
        """
        sections = []
        if not raw_text:
            return sections

        for index, match in enumerate(SECTION_PATTERN.finditer(raw_text)):
            attrs = parse_attributes(match.group("attrs"))
            chunk_type, sub_type = self.map_type(attrs.get("type"))
            sections.append(ParsedSection(
                type=chunk_type,
                page=parse_page(attrs.get("page"), default_page),
                confidence=parse_confidence(attrs.get("confidence")),
                content=match.group("body").strip(),
                index=index,
                sub_type=sub_type,
                parse_method=ParseMethod.MARKERS,
            ))
        return sections

    # =========================================================================
    # Fallback Parsing
    # =========================================================================

    def parse_fallback(self, raw_text: str, page_start: int = 1) -> List[ParsedSection]:
        """
        Heuristic segmentation for output without markers.

        Every fragment is attributed to page_start and gets the fallback
        confidence.
        """
        sections = []
        if not raw_text:
            return sections

        text = raw_text.replace("\r\n", "\n")
        for part in FALLBACK_SPLIT.split(text):
            fragment = part.strip()
            if not fragment or len(fragment) < self.min_chunk_length:
                continue
            sections.append(ParsedSection(
                type=detect_content_type(fragment),
                page=page_start,
                confidence=self.fallback_confidence,
                content=fragment,
                index=len(sections),
                parse_method=ParseMethod.FALLBACK,
            ))
        return sections

    # =========================================================================
    # Structured Output
    # =========================================================================

    def parse_structured(
        self,
        output: ExtractionOutput,
        default_page: int = 1
    ) -> List[ParsedSection]:
        """Convert validated structured-output sections."""
        sections = []
        for index, item in enumerate(output.sections):
            chunk_type, sub_type = self.map_type(item.type)
            sections.append(ParsedSection(
                type=chunk_type,
                page=parse_page(item.page, default_page),
                confidence=parse_confidence(item.confidence),
                content=(item.content or "").strip(),
                index=index,
                sub_type=sub_type,
                parse_method=ParseMethod.STRUCTURED,
            ))
        return sections

    # =========================================================================
    # Batch Entry Point
    # =========================================================================

    def parse(
        self,
        raw_text: str,
        page_start: int = 1,
        page_end: Optional[int] = None
    ) -> List[ParsedSection]:
        """
        Parse one batch: markers when present, fallback otherwise.

        Pages are clamped into [page_start, page_end] when page_end is given.
        """
        if self.has_valid_markers(raw_text):
            sections = self.parse_annotated(raw_text, default_page=page_start)
        else:
            logger.info(
                f"No SECTION markers found for pages {page_start}-{page_end or page_start}, "
                f"using fallback parser"
            )
            sections = self.parse_fallback(raw_text, page_start)

        if page_end is not None:
            for section in sections:
                section.page = min(max(section.page, page_start), page_end)
        return sections

    def process_section(self, section: ParsedSection) -> ProcessedSection:
        """Split a section into search content and display content."""
        return ProcessedSection(
            search_content=clean_for_search(section.content),
            display_content=section.content,
            type=section.type,
            page=section.page,
            confidence=section.confidence,
            index=section.index,
            sub_type=section.sub_type,
            metadata={
                "parse_method": section.parse_method.value,
                "confidence_level": ConfidenceLevel.from_score(section.confidence).value,
            },
        )

    def process_sections(self, sections: List[ParsedSection]) -> List[ProcessedSection]:
        """Process sections, dropping those whose search content is too short."""
        processed = []
        for section in sections:
            item = self.process_section(section)
            if not item.search_content or len(item.search_content) < self.min_chunk_length:
                logger.debug(
                    f"Dropping section {section.index} ({section.type.value}): "
                    f"{len(item.search_content)} chars after cleaning"
                )
                continue
            processed.append(item)
        return processed
