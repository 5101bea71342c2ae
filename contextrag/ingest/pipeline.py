"""
Ingestion Pipeline
==================

Turns one PDF into persisted, embedded chunks:

1. Dedup: documents are unique per (content hash, experiment id)
2. Plan: split pages into batches, write document and batch rows
3. Per batch (BatchScheduler):
   a. extract  - document-grounded model call over the batch's pages;
                 structured JSON first when enabled, SECTION markers otherwise
   b. parse    - markers, fallback segmentation, or structured sections
   c. enrich   - contextual retrieval strings (best-effort)
   d. embed    - document-task embeddings, dimension checked
   e. persist  - all of the batch's chunks in one transaction
4. Settle: overall status from batch outcomes

Chunk ordinals are `(page_start - 1) * CHUNK_INDEX_STRIDE + parse ordinal`,
so stored order never depends on completion order.

Usage:
    pipeline = IngestionPipeline(config, llm, embedder, documents, batches, chunks)
    result = await pipeline.ingest(PdfSource.from_path("report.pdf"))
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional

from contextrag.config import ContextRAGConfig
from contextrag.core.logging_config import get_logger
from contextrag.ingest.chunk_parser import ChunkParser, ExtractionOutput, ProcessedSection
from contextrag.ingest.contextual_preprocessor import EnhancementPipeline
from contextrag.ingest.pdf_source import PdfSource
from contextrag.ingest.scheduler import BatchScheduler, overall_status
from contextrag.ingest.templates import build_extraction_prompt
from contextrag.providers.embeddings import TextEmbedder
from contextrag.shared.enums import BatchStatus, ChunkType, DocumentStatus, EmbeddingTask
from contextrag.shared.exceptions import IngestionError, StructuredOutputError
from contextrag.shared.models import (
    Batch,
    Chunk,
    Document,
    DocumentContext,
    IngestOptions,
    IngestResult,
    ParsedSection,
    RequestContext,
    TokenUsage,
)
from contextrag.utils.rate_limiter import AdaptiveRateLimiter

CHUNK_INDEX_STRIDE = 1000
MAX_HEADING_CHARS = 200


@dataclass
class BatchExtraction:
    """Model output for one batch: raw marker text or structured sections."""
    raw_text: Optional[str] = None
    sections: Optional[List[ParsedSection]] = None
    usage: TokenUsage = field(default_factory=TokenUsage)


def chunk_ordinal(page_start: int, section_index: int) -> int:
    """Document-wide ordinal from the batch's first page and the parse ordinal."""
    return (page_start - 1) * CHUNK_INDEX_STRIDE + section_index


def heading_text(section: ProcessedSection) -> str:
    """First line of a heading's search text, truncated."""
    lines = section.search_content.splitlines()
    first = lines[0] if lines else ""
    return first.strip()[:MAX_HEADING_CHARS]


class IngestionPipeline:
    """
    Batch ingestion over a document-capable generation service.

    Attributes:
        config: Complete configuration
        llm: Composite generation service (document-grounded generation
            required; structured generation used when enabled)
        embedder: Embedding provider; its model id is stored on every chunk
    """

    def __init__(
        self,
        config: ContextRAGConfig,
        llm,
        embedder: TextEmbedder,
        documents,
        batches,
        chunks,
        enhancer: Optional[EnhancementPipeline] = None,
        rate_limiter: Optional[AdaptiveRateLimiter] = None,
        parser: Optional[ChunkParser] = None,
        sleep=asyncio.sleep
    ):
        self.config = config
        self.llm = llm
        self.embedder = embedder
        self.documents = documents
        self.batches = batches
        self.chunks = chunks
        self.enhancer = enhancer or EnhancementPipeline(config.enhancement, llm)
        self.rate_limiter = rate_limiter or AdaptiveRateLimiter.from_config(config.rate_limit)
        self.parser = parser or ChunkParser(
            min_chunk_length=config.batch.min_chunk_length,
            chunk_type_mapping=config.batch.chunk_type_mapping,
        )
        self.scheduler = BatchScheduler(
            max_concurrency=config.batch.max_concurrency,
            retry_config=config.batch.retry_config(),
            rate_limiter=self.rate_limiter,
            on_batch_update=self.batches.update,
            sleep=sleep,
        )

    @property
    def use_structured_output(self) -> bool:
        return (
            self.config.batch.use_structured_output
            and getattr(self.llm, "supports_structured_documents", False)
        )

    # =========================================================================
    # Entry Point
    # =========================================================================

    async def ingest(
        self,
        source: PdfSource,
        options: Optional[IngestOptions] = None
    ) -> IngestResult:
        """
        Ingest one PDF.

        Returns per-batch outcomes and an overall status even when batches
        fail. Raises only for problems before batch work starts.

        Raises:
            IngestionError: If the document exists and neither skip_existing
                nor reingest is set
        """
        options = options or IngestOptions()
        context = RequestContext.new(experiment_id=options.experiment_id)
        log = get_logger(__name__, context)
        started = time.perf_counter()

        existing = await self.documents.find_by_hash(source.content_hash, options.experiment_id)
        if existing is not None:
            if options.reingest:
                await self.documents.delete_with_cascade(existing.id)
                log.info("Deleted previous ingestion", previous_document_id=str(existing.id))
            elif options.skip_existing:
                log.info(
                    "Document already ingested, skipping",
                    document_id=str(existing.id),
                    status=existing.status.value,
                )
                return IngestResult(
                    document_id=existing.id,
                    status=existing.status,
                    chunk_count=existing.chunk_count,
                    skipped=True,
                )
            else:
                raise IngestionError(
                    f"Document {source.filename} was already ingested as {existing.id}",
                    details={"document_id": str(existing.id), "content_hash": source.content_hash},
                )

        document = Document(
            filename=source.filename,
            content_hash=source.content_hash,
            page_count=source.page_count,
            experiment_id=options.experiment_id,
            document_type=options.document_type,
            status=DocumentStatus.PROCESSING,
            metadata=dict(options.metadata),
        )
        await self.documents.create(document)
        context = context.with_document(document.id)
        log = get_logger(__name__, context)

        planned = BatchScheduler.create_batches(source.page_count, self.config.batch.pages_per_batch)
        for batch in planned:
            batch.document_id = document.id
        await self.batches.create_many(planned)

        log.info(
            "Ingestion started",
            filename=source.filename,
            pages=source.page_count,
            batches=len(planned),
            structured=self.use_structured_output,
        )

        doc_context = DocumentContext(
            filename=source.filename,
            document_type=options.document_type,
            page_count=source.page_count,
        )

        async def extract(batch: Batch) -> BatchExtraction:
            return await self._extract(source, batch, options)

        async def process(batch: Batch, extraction: BatchExtraction) -> int:
            return await self._process(document, doc_context, batch, extraction, options, context)

        try:
            results = await self.scheduler.run(
                planned,
                extract,
                process,
                on_progress=options.on_progress,
                cancel_event=options.cancel_event,
            )
        except BaseException:
            await self.documents.update_status(document.id, DocumentStatus.FAILED)
            raise

        status = overall_status(results)
        chunk_count = sum(r.chunk_count for r in results)
        usage = TokenUsage()
        for r in results:
            usage.add(r.token_usage)

        await self.documents.update_status(document.id, status, chunk_count)

        result = IngestResult(
            document_id=document.id,
            status=status,
            batches=results,
            chunk_count=chunk_count,
            token_usage=usage,
            duration_ms=int((time.perf_counter() - started) * 1000),
            cancelled=any(r.status == BatchStatus.CANCELLED for r in results),
        )
        log.info(
            "Ingestion finished",
            status=status.value,
            chunks=chunk_count,
            succeeded_batches=result.successful_batch_count,
            failed_batches=result.failed_batch_count,
            duration_ms=result.duration_ms,
            **usage.to_dict(),
        )
        return result

    # =========================================================================
    # Batch Steps
    # =========================================================================

    async def _extract(
        self,
        source: PdfSource,
        batch: Batch,
        options: IngestOptions
    ) -> BatchExtraction:
        """One model call over the batch's pages."""
        excerpt = await asyncio.to_thread(source.extract_pages, batch.page_start, batch.page_end)
        gen = self.config.generation
        prompt_args = dict(
            page_start=batch.page_start,
            page_end=batch.page_end,
            instructions=options.instructions,
            example_formats=options.example_formats,
            custom_prompt=options.custom_prompt,
            custom_types=list(self.config.batch.chunk_type_mapping),
            excerpt=excerpt is not source.data,
        )

        if self.use_structured_output:
            try:
                structured = await self.llm.generate_structured(
                    build_extraction_prompt(structured=True, **prompt_args),
                    ExtractionOutput,
                    document=excerpt,
                    max_retries=gen.structured_max_retries,
                    max_tokens=gen.max_output_tokens,
                    temperature=gen.temperature,
                )
                return BatchExtraction(
                    sections=self.parser.parse_structured(structured.data, batch.page_start),
                    usage=structured.usage,
                )
            except StructuredOutputError as e:
                get_logger(__name__).warning(
                    "Structured extraction failed, falling back to markers",
                    batch_index=batch.index,
                    pages=batch.page_range,
                    error=str(e),
                )

        response = await self.llm.generate_with_document(
            build_extraction_prompt(structured=False, **prompt_args),
            excerpt,
            max_tokens=gen.max_output_tokens,
            temperature=gen.temperature,
        )
        return BatchExtraction(raw_text=response.text, usage=response.usage)

    async def _process(
        self,
        document: Document,
        doc_context: DocumentContext,
        batch: Batch,
        extraction: BatchExtraction,
        options: IngestOptions,
        context: RequestContext
    ) -> int:
        """Parse, enrich, embed and persist one batch. Returns chunks written."""
        log = get_logger(__name__, context).bind(batch_index=batch.index, pages=batch.page_range)

        if extraction.sections is not None:
            sections = extraction.sections
            for section in sections:
                section.page = min(max(section.page, batch.page_start), batch.page_end)
        else:
            sections = self.parser.parse(extraction.raw_text or "", batch.page_start, batch.page_end)

        processed = self.parser.process_sections(sections)
        if not processed:
            log.warning("Batch produced no chunks", parsed_sections=len(sections))
            return 0

        # Each chunk sees the most recent preceding heading of its batch
        contexts = []
        heading = None
        for section in processed:
            contexts.append(doc_context.with_heading(heading))
            if section.type == ChunkType.HEADING:
                heading = heading_text(section) or heading
        enrichment = await self.enhancer.process_chunks(processed, contexts)

        chunks = [
            Chunk(
                document_id=document.id,
                chunk_index=chunk_ordinal(batch.page_start, section.index),
                chunk_type=section.type,
                content=section.search_content,
                display_content=section.display_content,
                page_start=section.page,
                page_end=section.page,
                confidence=section.confidence,
                context=enrichment[i] or None,
                sub_type=section.sub_type,
                domain=options.domain,
                metadata=dict(
                    section.metadata,
                    batch_index=batch.index,
                    parent_heading=contexts[i].parent_heading,
                ),
            )
            for i, section in enumerate(processed)
        ]

        vectors = await self.embedder.embed_batch(
            [chunk.embedding_text for chunk in chunks], EmbeddingTask.DOCUMENT
        )
        if len(vectors) != len(chunks):
            raise IngestionError(
                f"Embedder returned {len(vectors)} vectors for {len(chunks)} chunks",
                batch_index=batch.index,
            )
        for chunk, vector in zip(chunks, vectors):
            chunk.embedding = self.embedder.validate_vector(vector)
            chunk.embedding_model = self.embedder.model_name

        written = await self.chunks.create_many(chunks)
        log.debug("Batch persisted", chunks=written)
        return written
