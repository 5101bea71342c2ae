"""
Unit tests for extraction prompt templates.
"""

from contextrag.ingest.templates import (
    DEFAULT_DOCUMENT_INSTRUCTIONS,
    build_extraction_prompt,
    format_page_range,
)


class TestFormatPageRange:

    def test_single_page(self):
        assert format_page_range(4, 4) == "Process page 4 of this document."

    def test_range(self):
        assert format_page_range(11, 20) == "Process pages 11-20 of this document."

    def test_excerpt_explains_numbering(self):
        text = format_page_range(11, 20, excerpt=True)
        assert "its first page is page 11" in text

    def test_no_range(self):
        assert format_page_range(None, None) == ""


class TestBuildExtractionPrompt:

    def test_default_instructions(self):
        prompt = build_extraction_prompt(1, 10)

        assert '<!-- SECTION type="[TYPE]" page="[PAGE]" confidence="[0.0-1.0]" -->' in prompt
        assert DEFAULT_DOCUMENT_INSTRUCTIONS in prompt
        assert "Process pages 1-10" in prompt

    def test_instruction_lines(self):
        prompt = build_extraction_prompt(instructions=["Keep clause numbers", "Tables as Markdown"])
        assert "- Keep clause numbers\n- Tables as Markdown" in prompt
        assert DEFAULT_DOCUMENT_INSTRUCTIONS not in prompt

    def test_custom_prompt_wins(self):
        prompt = build_extraction_prompt(
            custom_prompt="  Only extract signature blocks.  ",
            instructions=["ignored"],
        )
        assert "Only extract signature blocks." in prompt
        assert "- ignored" not in prompt

    def test_example_formats(self):
        prompt = build_extraction_prompt(example_formats={"Clause": "12.3 Termination"})
        assert "- **Clause**: `12.3 Termination`" in prompt

    def test_custom_types_listed_once(self):
        prompt = build_extraction_prompt(custom_types=["definition", "TABLE"])
        assert "- DEFINITION: Domain-specific content" in prompt
        assert "- TABLE: Domain-specific content" not in prompt

    def test_structured_suffix(self):
        assert '{"sections": [' in build_extraction_prompt(structured=True)
        assert '{"sections": [' not in build_extraction_prompt()
