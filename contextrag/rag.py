"""
ContextRAG
==========

Top-level facade: configuration is validated once, components are built
from it, and ingestion and retrieval share one store and one embedder.

Usage:
    from contextrag import ContextRAG, ContextRAGConfig, IngestOptions

    async with ContextRAG(ContextRAGConfig.from_env()) as rag:
        result = await rag.ingest("contract.pdf", IngestOptions(document_type="Contract"))
        print(result.status, result.failed_batch_count)

        for hit in await rag.search("termination notice period", limit=5):
            print(hit.rank, hit.score, hit.chunk.display_content[:80])
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union
from uuid import UUID

from contextrag.config import ContextRAGConfig
from contextrag.database import DatabaseConnection, Repositories
from contextrag.ingest.contextual_preprocessor import EnhancementPipeline
from contextrag.ingest.pdf_source import PdfSource
from contextrag.ingest.pipeline import IngestionPipeline
from contextrag.providers.embeddings import TextEmbedder
from contextrag.providers.factory import create_embedder, create_llm_service
from contextrag.retrieval.reranker import BaseReranker, create_reranker
from contextrag.retrieval.search_service import HybridRetrievalEngine
from contextrag.shared.enums import SearchMode
from contextrag.shared.exceptions import NotFoundError
from contextrag.shared.models import (
    Batch,
    Document,
    IngestOptions,
    IngestResult,
    RankedResult,
    SearchFilters,
    SearchOptions,
    SearchResponse,
)
from contextrag.utils.rate_limiter import AdaptiveRateLimiter

logger = logging.getLogger(__name__)

PdfInput = Union[str, Path, bytes, PdfSource]


class ContextRAG:
    """
    Ingestion and hybrid retrieval over one PostgreSQL store.

    Components may be injected (tests, custom providers); anything not
    injected is built from the configuration.
    """

    def __init__(
        self,
        config: ContextRAGConfig,
        repositories: Optional[Repositories] = None,
        llm=None,
        embedder: Optional[TextEmbedder] = None,
        reranker: Optional[BaseReranker] = None,
        apply_schema: bool = True
    ):
        """
        Raises:
            ConfigurationError: If the configuration is invalid or a required
                provider capability is missing
        """
        self.config = config.validate()

        self.db: Optional[DatabaseConnection] = None
        if repositories is None:
            self.db = DatabaseConnection.from_config(config.database)
            repositories = Repositories(self.db, fts_language=config.search.fts_language)
        self.repositories = repositories
        self._apply_schema = apply_schema
        self._initialized = False
        self._init_lock = asyncio.Lock()

        self.llm = llm or create_llm_service(config)
        self.embedder = embedder or create_embedder(config.embedding, config.batch.retry_config())
        self.rate_limiter = AdaptiveRateLimiter.from_config(config.rate_limit)
        self.enhancer = EnhancementPipeline(config.enhancement, self.llm)
        self.reranker = reranker or create_reranker(config.reranking, self.llm)

        self.pipeline = IngestionPipeline(
            config,
            self.llm,
            self.embedder,
            repositories.documents,
            repositories.batches,
            repositories.chunks,
            enhancer=self.enhancer,
            rate_limiter=self.rate_limiter,
        )
        self.engine = HybridRetrievalEngine(
            repositories.chunks,
            self.embedder,
            config=config.search,
            reranking=config.reranking,
            reranker=self.reranker,
            documents=repositories.documents,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """Connect the pool and create the schema (once)."""
        async with self._init_lock:
            if self._initialized:
                return
            if self.db is not None:
                await self.db.connect()
                if self._apply_schema:
                    await self.db.apply_schema()
            self._initialized = True
            logger.info(
                f"ContextRAG ready: embedder={self.embedder.model_name} "
                f"({self.embedder.dimension}d), enhancement={self.config.enhancement.strategy.value}, "
                f"reranker={self.reranker.name if self.reranker else None}"
            )

    async def close(self) -> None:
        close_reranker = getattr(self.reranker, "close", None)
        if close_reranker is not None:
            await close_reranker()
        if self.db is not None:
            await self.db.close()
        self._initialized = False

    async def __aenter__(self) -> "ContextRAG":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # =========================================================================
    # Ingestion
    # =========================================================================

    async def ingest(
        self,
        source: PdfInput,
        options: Optional[IngestOptions] = None,
        filename: Optional[str] = None
    ) -> IngestResult:
        """
        Ingest a PDF given as a path, raw bytes or a PdfSource.

        Returns per-batch outcomes and an overall status (completed,
        partial or failed).
        """
        await self.initialize()
        if isinstance(source, PdfSource):
            pdf = source
        elif isinstance(source, bytes):
            pdf = await asyncio.to_thread(PdfSource.from_bytes, source, filename or "document.pdf")
        else:
            pdf = await asyncio.to_thread(PdfSource.from_path, source)
        return await self.pipeline.ingest(pdf, options)

    async def get_document(self, document_id: UUID) -> Document:
        """Raises NotFoundError for an unknown id."""
        await self.initialize()
        document = await self.repositories.documents.get_by_id(document_id)
        if document is None:
            raise NotFoundError("document", document_id)
        return document

    async def get_batches(self, document_id: UUID) -> List[Batch]:
        """Batch rows of a document, in page order."""
        await self.get_document(document_id)
        return await self.repositories.batches.get_by_document(document_id)

    async def delete_document(self, document_id: UUID) -> None:
        """
        Delete a document with its batches and chunks.

        Raises:
            NotFoundError: If the document does not exist
        """
        await self.get_document(document_id)
        await self.repositories.documents.delete_with_cascade(document_id)

    # =========================================================================
    # Retrieval
    # =========================================================================

    async def search(
        self,
        query: str,
        mode: Union[SearchMode, str] = SearchMode.HYBRID,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        options: Optional[SearchOptions] = None
    ) -> List[RankedResult]:
        await self.initialize()
        return await self.engine.search(query, mode, filters, limit, options)

    async def search_with_metadata(
        self,
        query: str,
        mode: Union[SearchMode, str] = SearchMode.HYBRID,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        options: Optional[SearchOptions] = None
    ) -> SearchResponse:
        await self.initialize()
        return await self.engine.search_with_metadata(query, mode, filters, limit, options)

    # =========================================================================
    # Statistics
    # =========================================================================

    async def embedding_model_counts(self) -> Dict[str, int]:
        """
        Chunk counts per embedding model.

        Logs a warning when chunks embedded by another model exist; those
        chunks are invisible to semantic search until re-ingested.
        """
        await self.initialize()
        counts = await self.repositories.chunks.count_by_embedding_model()
        current = self.embedder.model_name
        stale = {model: n for model, n in counts.items() if model != current}
        if stale:
            logger.warning(
                f"Chunks embedded with models other than {current}: {stale}. "
                f"Re-ingest those documents to search them semantically."
            )
        return counts

    async def get_stats(self) -> Dict[str, object]:
        await self.initialize()
        stats: Dict[str, object] = {
            "documents": await self.repositories.documents.count(),
            "chunks": await self.repositories.chunks.count(),
            "embedding_models": await self.repositories.chunks.count_by_embedding_model(),
            "rate_limiter": self.rate_limiter.get_status(),
            "enhancement": self.enhancer.get_stats(),
        }
        if self.db is not None:
            stats["connection"] = await self.db.get_stats()
        return stats

    async def health_check(self) -> Dict[str, bool]:
        database = True
        if self.db is not None:
            database = await self.db.health_check()
        return {"database": database}
