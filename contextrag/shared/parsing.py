"""
ContextRAG - Robust LLM Output Parsing
======================================

Handles markdown-wrapped JSON, preambles, truncated arrays and validation.
"""

import json
import logging
import re
from typing import Type, TypeVar

from pydantic import BaseModel, ValidationError

from contextrag.shared.exceptions import LLMParsingError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def strip_markdown_fences(text: str) -> str:
    """Remove markdown code fences from text."""
    text = re.sub(r'^```(?:json|JSON)?\s*\n?', '', text, flags=re.MULTILINE)
    text = re.sub(r'\n?```\s*$', '', text, flags=re.MULTILINE)
    return text


def find_json_boundaries(text: str) -> tuple[int, int]:
    """
    Find the start and end indices of JSON in text.

    Handles both objects {} and arrays [], preferring whichever opens first.
    """
    obj_start = text.find('{')
    obj_end = text.rfind('}')
    arr_start = text.find('[')
    arr_end = text.rfind(']')

    if obj_start == -1 and arr_start == -1:
        return -1, -1
    if obj_start == -1:
        return arr_start, arr_end
    if arr_start == -1:
        return obj_start, obj_end
    if obj_start < arr_start:
        return obj_start, obj_end
    return arr_start, arr_end


def repair_truncated_array(text: str) -> str:
    """
    Close a JSON array whose response was cut off mid-way.

    Keeps every complete object before the cut: '[{"a":1},{"a"' -> '[{"a":1}]'.
    """
    start = text.find('[')
    if start == -1:
        return text
    body = text[start:]
    if body.rstrip().endswith(']'):
        return body
    last_object_end = body.rfind('}')
    if last_object_end == -1:
        return '[]'
    return body[:last_object_end + 1] + ']'


def extract_json_string(text: str) -> str:
    """
    Extract JSON string from LLM output.

    Handles:
    - ```json ... ``` blocks
    - Preambles ("Here is the JSON: {...}")
    - Postscripts ("Let me know if...")
    """
    text = strip_markdown_fences(text)
    start_idx, end_idx = find_json_boundaries(text)

    if start_idx == -1:
        raise LLMParsingError("No JSON object/array found in text")

    if text[start_idx] == '[' and (end_idx == -1 or end_idx < start_idx):
        return repair_truncated_array(text[start_idx:])

    if end_idx == -1 or end_idx < start_idx:
        raise LLMParsingError("Malformed JSON: end before start")

    return text[start_idx:end_idx + 1]


def parse_json(text: str):
    """Extract and decode JSON, repairing a truncated array once."""
    json_str = extract_json_string(text)
    try:
        return json.loads(json_str)
    except json.JSONDecodeError as e:
        if json_str.lstrip().startswith('['):
            repaired = repair_truncated_array(json_str[:-1] if json_str.endswith(']') else json_str)
            try:
                return json.loads(repaired)
            except json.JSONDecodeError:
                pass
        logger.warning(f"JSON decode error: {e}")
        raise LLMParsingError(f"Invalid JSON syntax: {e}") from e


def extract_and_parse_json(text: str, model_class: Type[T]) -> T:
    """
    Robustly extracts JSON from LLM output and validates against Pydantic model.

    Args:
        text: Raw LLM response
        model_class: Pydantic model to validate against

    Returns:
        Validated Pydantic model instance

    Raises:
        LLMParsingError: If parsing or validation fails
    """
    data = parse_json(text)
    try:
        return model_class.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Pydantic validation error: {e}")
        raise LLMParsingError(f"Schema validation failed: {e}") from e
