"""
ContextRAG - Facade Unit Tests
==============================

The ContextRAG facade wired to in-memory repositories and deterministic
providers: ingestion, retrieval, document management and statistics.
"""

import logging
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import numpy as np
import pytest

from contextrag import ContextRAG, ContextRAGConfig
from contextrag.shared.enums import BatchStatus, ChunkType, DocumentStatus
from contextrag.shared.exceptions import ConfigurationError, NotFoundError
from contextrag.shared.models import Chunk, IngestOptions, SearchFilters
from tests.conftest import FakePdf


@pytest.fixture
def rag(config, repositories, fake_llm, embedder):
    return ContextRAG(config, repositories=repositories, llm=fake_llm, embedder=embedder)


class TestConstruction:

    def test_invalid_config_rejected_before_work(self, repositories, fake_llm, embedder):
        with pytest.raises(ConfigurationError):
            ContextRAG(ContextRAGConfig(), repositories=repositories, llm=fake_llm, embedder=embedder)

    def test_reranker_disabled_by_default(self, rag):
        assert rag.reranker is None

    @pytest.mark.asyncio
    async def test_context_manager_closes_reranker(self, config, repositories, fake_llm, embedder):
        reranker = MagicMock()
        reranker.close = AsyncMock()

        async with ContextRAG(
            config, repositories=repositories, llm=fake_llm, embedder=embedder, reranker=reranker
        ) as rag:
            assert rag.db is None

        reranker.close.assert_awaited_once()


class TestIngestAndSearch:

    @pytest.mark.asyncio
    async def test_ingested_document_is_searchable(self, rag):
        result = await rag.ingest(FakePdf.with_pages(32), IngestOptions(document_type="Contract"))

        assert result.status == DocumentStatus.COMPLETED
        results = await rag.search("paragraph text for page 12", limit=3)

        assert results
        assert results[0].chunk.page_start == 12
        assert all(r.chunk.chunk_type != ChunkType.HEADING for r in results)

    @pytest.mark.asyncio
    async def test_search_scoped_to_document(self, rag):
        first = await rag.ingest(FakePdf.with_pages(5, filename="a.pdf", seed="a"))
        await rag.ingest(FakePdf.with_pages(5, filename="b.pdf", seed="b"))

        results = await rag.search(
            "contract terms", limit=20, filters=SearchFilters(document_ids=[first.document_id])
        )

        assert {r.chunk.document_id for r in results} == {first.document_id}

    @pytest.mark.asyncio
    async def test_search_unknown_document(self, rag):
        with pytest.raises(NotFoundError):
            await rag.search("contract", filters=SearchFilters(document_ids=[uuid4()]))

    @pytest.mark.asyncio
    async def test_search_with_metadata(self, rag):
        await rag.ingest(FakePdf.with_pages(10))

        response = await rag.search_with_metadata("contract terms", mode="keyword", limit=4)

        assert response.query == "contract terms"
        assert len(response.results) == 4
        assert response.total_found >= 4
        assert response.reranked is False


class TestDocuments:

    @pytest.mark.asyncio
    async def test_get_document_and_batches(self, rag):
        result = await rag.ingest(FakePdf.with_pages(25, filename="msa.pdf"))

        document = await rag.get_document(result.document_id)
        batches = await rag.get_batches(result.document_id)

        assert document.filename == "msa.pdf"
        assert document.page_count == 25
        assert [(b.page_start, b.page_end) for b in batches] == [(1, 10), (11, 20), (21, 25)]
        assert all(b.status == BatchStatus.COMPLETED for b in batches)

    @pytest.mark.asyncio
    async def test_get_unknown_document(self, rag):
        with pytest.raises(NotFoundError):
            await rag.get_document(uuid4())

    @pytest.mark.asyncio
    async def test_delete_cascades(self, rag, repositories):
        result = await rag.ingest(FakePdf.with_pages(12))

        await rag.delete_document(result.document_id)

        assert await repositories.chunks.get_by_document(result.document_id) == []
        assert await repositories.batches.get_by_document(result.document_id) == []
        with pytest.raises(NotFoundError):
            await rag.delete_document(result.document_id)


class TestStatistics:

    @pytest.mark.asyncio
    async def test_embedding_model_counts_warns_on_stale_models(self, rag, repositories, caplog):
        result = await rag.ingest(FakePdf.with_pages(3))
        stale = Chunk(
            document_id=result.document_id,
            chunk_index=999,
            chunk_type=ChunkType.TEXT,
            content="Embedded before the model upgrade.",
            display_content="Embedded before the model upgrade.",
            page_start=3,
            page_end=3,
            embedding=np.zeros(8, dtype=np.float32),
            embedding_model="legacy-embed",
        )
        await repositories.chunks.create_many([stale])

        with caplog.at_level(logging.WARNING, logger="contextrag.rag"):
            counts = await rag.embedding_model_counts()

        assert counts == {"fake-embed-v1": result.chunk_count, "legacy-embed": 1}
        assert "legacy-embed" in caplog.text

    @pytest.mark.asyncio
    async def test_get_stats(self, rag):
        result = await rag.ingest(FakePdf.with_pages(10))

        stats = await rag.get_stats()

        assert stats["documents"] == 1
        assert stats["chunks"] == result.chunk_count
        assert stats["rate_limiter"]["configured_rpm"] == 6000
        assert "enhancement" in stats
        assert "connection" not in stats

    @pytest.mark.asyncio
    async def test_health_check_without_database(self, rag):
        assert await rag.health_check() == {"database": True}
