"""
ContextRAG - Contextual Enhancement Unit Tests
==============================================
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from contextrag.config import EnhancementConfig
from contextrag.ingest.chunk_parser import ProcessedSection
from contextrag.ingest.contextual_preprocessor import EnhancementPipeline
from contextrag.providers.base import LLMResponse
from contextrag.shared.enums import ChunkType, EnhancementStrategy
from contextrag.shared.exceptions import ConfigurationError, TransientServiceError
from contextrag.shared.models import DocumentContext


def section(content="Payment is due within thirty days.", chunk_type=ChunkType.TEXT, page=4, index=0):
    return ProcessedSection(
        search_content=content,
        display_content=content,
        type=chunk_type,
        page=page,
        confidence=0.9,
        index=index,
    )


@pytest.fixture
def doc():
    return DocumentContext(
        filename="msa.pdf",
        document_type="Contract",
        page_count=40,
        parent_heading="Payment Terms",
    )


@pytest.fixture
def llm():
    mock = AsyncMock()
    mock.generate = AsyncMock(return_value=LLMResponse(text="  Payment schedule of the master agreement.  "))
    return mock


class TestTemplateStrategy:

    @pytest.mark.asyncio
    async def test_template_with_heading(self, doc):
        pipeline = EnhancementPipeline(EnhancementConfig(strategy=EnhancementStrategy.TEMPLATE))
        context = await pipeline.generate_context(section(), doc)
        assert context == "[Contract] [TEXT] Page 4 > Payment Terms"

    @pytest.mark.asyncio
    async def test_template_places_heading_itself(self, doc):
        config = EnhancementConfig(
            strategy=EnhancementStrategy.TEMPLATE,
            template="{filename} / {parent_heading} / p{page}",
        )
        context = await EnhancementPipeline(config).generate_context(section(), doc)
        assert context == "msa.pdf / Payment Terms / p4"

    @pytest.mark.asyncio
    async def test_unknown_placeholder_left_empty(self, doc):
        config = EnhancementConfig(strategy=EnhancementStrategy.TEMPLATE, template="{chunk_type}{missing}")
        context = await EnhancementPipeline(config).generate_context(section(), doc.with_heading(None))
        assert context == "TEXT"

    @pytest.mark.asyncio
    async def test_skipped_types_get_no_context(self, doc):
        pipeline = EnhancementPipeline(EnhancementConfig(strategy=EnhancementStrategy.TEMPLATE))
        context = await pipeline.generate_context(section("# Terms", ChunkType.HEADING), doc)
        assert context == ""
        assert pipeline.stats["skipped"] == 1

    @pytest.mark.parametrize("template", ["[{document_type}] {chunk_type} {", "Page {0}", "{missing[0]}"])
    def test_unrenderable_template_rejected(self, llm, template):
        for strategy in (EnhancementStrategy.TEMPLATE, EnhancementStrategy.GENERATED):
            with pytest.raises(ConfigurationError, match="enhancement.template"):
                EnhancementPipeline(EnhancementConfig(strategy=strategy, template=template), llm)


class TestNoneStrategy:

    @pytest.mark.asyncio
    async def test_returns_empty(self, doc):
        pipeline = EnhancementPipeline(EnhancementConfig(strategy=EnhancementStrategy.NONE))
        assert await pipeline.generate_context(section(), doc) == ""


class TestGeneratedStrategy:

    @pytest.mark.asyncio
    async def test_generated_context_trimmed(self, doc, llm):
        pipeline = EnhancementPipeline(EnhancementConfig(strategy=EnhancementStrategy.GENERATED), llm)
        context = await pipeline.generate_context(section(), doc)

        assert context == "Payment schedule of the master agreement."
        prompt = llm.generate.await_args.args[0]
        assert "Payment Terms" in prompt
        assert "Payment is due within thirty days." in prompt

    @pytest.mark.asyncio
    async def test_cache_hit_skips_call(self, doc, llm):
        pipeline = EnhancementPipeline(EnhancementConfig(strategy=EnhancementStrategy.GENERATED), llm)
        await pipeline.generate_context(section(), doc)
        await pipeline.generate_context(section(), doc)

        assert llm.generate.await_count == 1
        assert pipeline.stats["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_cache_evicts_least_recently_used(self, doc, llm):
        config = EnhancementConfig(strategy=EnhancementStrategy.GENERATED, cache_size=2)
        pipeline = EnhancementPipeline(config, llm)
        first, second, third = (section(f"Clause {n} governs late payment.") for n in (1, 2, 3))

        await pipeline.generate_context(first, doc)
        await pipeline.generate_context(second, doc)
        await pipeline.generate_context(first, doc)
        await pipeline.generate_context(third, doc)
        await pipeline.generate_context(second, doc)

        assert llm.generate.await_count == 4
        assert pipeline.stats["cache_hits"] == 1
        assert pipeline.get_stats()["cache_size"] == 2

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_template(self, doc, llm):
        llm.generate.side_effect = TransientServiceError("overloaded")
        pipeline = EnhancementPipeline(EnhancementConfig(strategy=EnhancementStrategy.GENERATED), llm)

        context = await pipeline.generate_context(section(), doc)

        assert context == "[Contract] [TEXT] Page 4 > Payment Terms"
        assert pipeline.stats["template_fallbacks"] == 1

    @pytest.mark.asyncio
    async def test_empty_response_falls_back_to_template(self, doc, llm):
        llm.generate.return_value = LLMResponse(text="   ")
        pipeline = EnhancementPipeline(EnhancementConfig(strategy=EnhancementStrategy.GENERATED), llm)

        assert await pipeline.generate_context(section(), doc) == "[Contract] [TEXT] Page 4 > Payment Terms"

    def test_requires_llm(self):
        with pytest.raises(ConfigurationError):
            EnhancementPipeline(EnhancementConfig(strategy=EnhancementStrategy.GENERATED))


class TestCustomStrategy:

    @pytest.mark.asyncio
    async def test_custom_handler(self, doc):
        async def handler(item, document):
            return f"{document.filename}:{item.page}"

        config = EnhancementConfig(strategy=EnhancementStrategy.CUSTOM, custom_handler=handler)
        assert await EnhancementPipeline(config).generate_context(section(), doc) == "msa.pdf:4"

    @pytest.mark.asyncio
    async def test_custom_handler_error_falls_back(self, doc):
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        config = EnhancementConfig(strategy=EnhancementStrategy.CUSTOM, custom_handler=handler)

        context = await EnhancementPipeline(config).generate_context(section(), doc)
        assert context.startswith("[Contract] [TEXT]")

    def test_requires_handler(self):
        with pytest.raises(ConfigurationError):
            EnhancementPipeline(EnhancementConfig(strategy=EnhancementStrategy.CUSTOM))


class TestProcessChunks:

    @pytest.mark.asyncio
    async def test_order_preserved(self, doc):
        pipeline = EnhancementPipeline(EnhancementConfig(strategy=EnhancementStrategy.TEMPLATE))
        sections = [section(page=p, index=i) for i, p in enumerate([3, 1, 2])]

        contexts = await pipeline.process_chunks(sections, [doc] * 3)

        assert [c.split("Page ")[1][0] for c in contexts] == ["3", "1", "2"]
        assert pipeline.stats["total_processed"] == 3

    @pytest.mark.asyncio
    async def test_length_mismatch(self, doc):
        pipeline = EnhancementPipeline()
        with pytest.raises(ValueError):
            await pipeline.process_chunks([section()], [])


class TestConcurrency:

    @staticmethod
    def tracking_llm():
        state = {"in_flight": 0, "peak": 0}

        async def generate(prompt, **kwargs):
            state["in_flight"] += 1
            state["peak"] = max(state["peak"], state["in_flight"])
            await asyncio.sleep(0.01)
            state["in_flight"] -= 1
            return LLMResponse(text="Situating context.")

        mock = AsyncMock()
        mock.generate = AsyncMock(side_effect=generate)
        return mock, state

    @pytest.mark.asyncio
    async def test_generated_calls_bounded_across_batches(self, doc):
        llm, state = self.tracking_llm()
        config = EnhancementConfig(strategy=EnhancementStrategy.GENERATED, concurrency_limit=2)
        pipeline = EnhancementPipeline(config, llm)

        # Three batches enriching at once share the enhancer's own limit
        await asyncio.gather(*[
            pipeline.process_chunks(
                [section(f"Batch {b} clause {n} on payment.", index=n) for n in range(4)],
                [doc] * 4,
            )
            for b in range(3)
        ])

        assert llm.generate.await_count == 12
        assert state["peak"] == 2

    @pytest.mark.asyncio
    async def test_limit_not_capped_by_batch_concurrency(self, doc):
        llm, state = self.tracking_llm()
        config = EnhancementConfig(strategy=EnhancementStrategy.GENERATED, concurrency_limit=4)
        pipeline = EnhancementPipeline(config, llm)

        # A single batch in flight still fans out up to the enhancer's limit
        await pipeline.process_chunks(
            [section(f"Clause {n} on termination.", index=n) for n in range(6)],
            [doc] * 6,
        )

        assert state["peak"] == 4
