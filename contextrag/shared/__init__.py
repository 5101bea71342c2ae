"""Enums, data models, errors and LLM output parsing shared across layers."""

from contextrag.shared.parsing import (
    extract_and_parse_json,
    extract_json_string,
    find_json_boundaries,
    parse_json,
    repair_truncated_array,
    strip_markdown_fences,
)
