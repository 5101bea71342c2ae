"""
Contextual Chunk Enhancement
============================

Implements Anthropic's Contextual Retrieval approach: each chunk gets a short
context string describing its place in the document, prepended to the chunk
text before embedding.

Strategies:
- NONE: no context
- TEMPLATE: deterministic string from document/chunk metadata, no API call
- GENERATED: LLM-written 1-2 sentence situating context
- CUSTOM: caller-supplied async callback

GENERATED and CUSTOM are best-effort: any error is logged and the TEMPLATE
result is used instead. LLM calls run under this pipeline's own semaphore,
independent of the ingestion concurrency cap.

Usage:
    from contextrag.ingest.contextual_preprocessor import EnhancementPipeline

    pipeline = EnhancementPipeline(EnhancementConfig(strategy=EnhancementStrategy.GENERATED), llm)
    contexts = await pipeline.process_chunks(sections, doc_contexts)
"""

import asyncio
import hashlib
import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence

from contextrag.config import EnhancementConfig
from contextrag.ingest.chunk_parser import ProcessedSection
from contextrag.providers.base import TextGenerator
from contextrag.shared.enums import ChunkType, EnhancementStrategy
from contextrag.shared.exceptions import ConfigurationError
from contextrag.shared.models import DocumentContext

logger = logging.getLogger(__name__)

MAX_PROMPT_CHUNK_CHARS = 4000

LLM_CONTEXT_PROMPT = """{instruction}

<document_info>
File: {filename}
Type: {document_type}
Total pages: {page_count}
Section: {parent_heading}
</document_info>

<chunk type="{chunk_type}" page="{page}">
{content}
</chunk>

Respond with ONLY the situating context, no explanations."""


class EnhancementPipeline:
    """
    Generates retrieval context per chunk.

    Attributes:
        config: Enhancement configuration
        stats: Processing statistics
    """

    def __init__(
        self,
        config: EnhancementConfig = None,
        llm: Optional[TextGenerator] = None
    ):
        self.config = config or EnhancementConfig()
        self.llm = llm
        self._semaphore = asyncio.Semaphore(self.config.concurrency_limit)
        self._cache: OrderedDict[str, str] = OrderedDict()
        self.stats = {
            "total_processed": 0,
            "skipped": 0,
            "llm_calls": 0,
            "cache_hits": 0,
            "template_fallbacks": 0,
            "errors": 0,
        }

        if self.config.strategy == EnhancementStrategy.GENERATED and self.llm is None:
            raise ConfigurationError("The generated enhancement strategy requires an LLM service")
        if self.config.strategy == EnhancementStrategy.CUSTOM and self.config.custom_handler is None:
            raise ConfigurationError("The custom enhancement strategy requires custom_handler")
        template_error = self.config.template_error()
        if template_error and self.config.strategy != EnhancementStrategy.NONE:
            raise ConfigurationError(template_error)

    @property
    def strategy(self) -> EnhancementStrategy:
        return self.config.strategy

    def should_skip(self, chunk_type: ChunkType) -> bool:
        """True when the chunk type is in the configured skip set."""
        return chunk_type in self.config.skip_chunk_types

    # =========================================================================
    # Strategies
    # =========================================================================

    def template_context(self, section: ProcessedSection, doc: DocumentContext) -> str:
        """
        Deterministic context from static metadata.

        Placeholders: {filename}, {document_type}, {chunk_type}, {page},
        {parent_heading}. A parent heading is appended when the template
        does not place it itself.
        """
        text = self.config.render_template(
            filename=doc.filename,
            document_type=doc.document_type or "Document",
            chunk_type=section.type.value,
            page=section.page,
            parent_heading=doc.parent_heading or "",
        )
        if doc.parent_heading and "{parent_heading}" not in self.config.template:
            text = f"{text} > {doc.parent_heading}"
        return text

    def _cache_key(self, section: ProcessedSection, doc: DocumentContext) -> str:
        raw = f"{doc.filename}|{doc.parent_heading}|{section.type.value}|{section.display_content}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    async def _generated_context(self, section: ProcessedSection, doc: DocumentContext) -> str:
        key = self._cache_key(section, doc)
        if self.config.enable_cache and key in self._cache:
            self._cache.move_to_end(key)
            self.stats["cache_hits"] += 1
            return self._cache[key]

        prompt = LLM_CONTEXT_PROMPT.format(
            instruction=self.config.context_prompt,
            filename=doc.filename,
            document_type=doc.document_type or "Unknown",
            page_count=doc.page_count,
            parent_heading=doc.parent_heading or "-",
            chunk_type=section.type.value,
            page=section.page,
            content=section.display_content[:MAX_PROMPT_CHUNK_CHARS],
        )

        async with self._semaphore:
            response = await self.llm.generate(
                prompt,
                max_tokens=self.config.max_context_tokens,
                temperature=self.config.temperature,
            )
        self.stats["llm_calls"] += 1

        context = response.text.strip()
        if not context:
            raise ValueError("empty context returned")
        if self.config.enable_cache:
            self._remember(key, context)
        return context

    def _remember(self, key: str, context: str) -> None:
        """LRU insert bounded by config.cache_size."""
        if key in self._cache:
            self._cache.move_to_end(key)
        elif len(self._cache) >= self.config.cache_size:
            self._cache.popitem(last=False)
        self._cache[key] = context

    async def _custom_context(self, section: ProcessedSection, doc: DocumentContext) -> str:
        async with self._semaphore:
            result = await self.config.custom_handler(section, doc)
        return (result or "").strip()

    async def generate_context(self, section: ProcessedSection, doc: DocumentContext) -> str:
        """
        Context string for one chunk; empty when skipped or strategy is NONE.

        Never raises for GENERATED/CUSTOM failures: falls back to the template.
        """
        if self.should_skip(section.type):
            self.stats["skipped"] += 1
            return ""

        strategy = self.config.strategy
        if strategy == EnhancementStrategy.NONE:
            return ""
        if strategy == EnhancementStrategy.TEMPLATE:
            return self.template_context(section, doc)

        try:
            if strategy == EnhancementStrategy.GENERATED:
                return await self._generated_context(section, doc)
            return await self._custom_context(section, doc)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats["errors"] += 1
            self.stats["template_fallbacks"] += 1
            logger.warning(
                f"{strategy.value} context generation failed for chunk {section.index} "
                f"(page {section.page}), using template: {e}"
            )
            return self.template_context(section, doc)

    async def process_chunks(
        self,
        sections: Sequence[ProcessedSection],
        contexts: Sequence[DocumentContext]
    ) -> List[str]:
        """
        Generate context for every section, preserving order.

        Args:
            sections: Processed sections of one batch
            contexts: Per-section document context (carries the parent heading)
        """
        if len(sections) != len(contexts):
            raise ValueError("sections and contexts must have the same length")
        if not sections:
            return []

        results = await asyncio.gather(*[
            self.generate_context(section, doc)
            for section, doc in zip(sections, contexts)
        ])
        self.stats["total_processed"] += len(sections)
        return list(results)

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats, strategy=self.config.strategy.value, cache_size=len(self._cache))
