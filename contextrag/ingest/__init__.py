"""
ContextRAG - Ingestion Layer
============================

Components:
- pdf_source.py: PDF loading, hashing and page excerpts
- templates.py: extraction prompts
- chunk_parser.py: SECTION marker parsing with heuristic fallback
- scheduler.py: page batching with bounded concurrency, retry and rate limiting
- contextual_preprocessor.py: per-chunk retrieval context
- pipeline.py: end-to-end ingestion of one document

Quick Start:
    from contextrag.ingest import IngestionPipeline, PdfSource

    pipeline = IngestionPipeline(config, llm, embedder, documents, batches, chunks)
    result = await pipeline.ingest(PdfSource.from_path("/path/to/file.pdf"))
    print(result.status, result.chunk_count)
"""

from contextrag.ingest.chunk_parser import ChunkParser, ProcessedSection, clean_for_search
from contextrag.ingest.contextual_preprocessor import EnhancementPipeline
from contextrag.ingest.pdf_source import PdfSource
from contextrag.ingest.pipeline import CHUNK_INDEX_STRIDE, IngestionPipeline
from contextrag.ingest.scheduler import BatchScheduler, overall_status

__all__ = [
    'ChunkParser',
    'ProcessedSection',
    'clean_for_search',
    'EnhancementPipeline',
    'PdfSource',
    'IngestionPipeline',
    'CHUNK_INDEX_STRIDE',
    'BatchScheduler',
    'overall_status',
]
