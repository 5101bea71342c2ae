"""
ContextRAG - Hybrid Retrieval Engine
====================================

Single search entry point over the chunk store.

Pipeline:
    Query → semantic pass (query-task embedding, cosine similarity)
          → keyword pass  (full-text rank, no stemming)
                 ↓
          Union of candidates, weighted merge
                 ↓
          Type boost → deterministic ordering
                 ↓
          Re-rank top candidates (optional, failure keeps prior order);
          the type boost multiplies the re-rank score and the head is
          re-ordered
                 ↓
          Top `limit` RankedResults

Merge (hybrid mode):
    score = semantic_weight * similarity + keyword_weight * (rank / max_rank)

A candidate missing from one pass contributes 0 for that signal, so every
candidate of either pass is kept and the score is monotonic in both inputs.
Ties are ordered by chunk_index, then chunk id.

Usage:
    from contextrag.retrieval.search_service import HybridRetrievalEngine

    engine = HybridRetrievalEngine(chunks, embedder, documents=documents)
    results = await engine.search("termination clauses", mode="hybrid", limit=5)
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from uuid import UUID

from contextrag.config import RerankingConfig, SearchConfig
from contextrag.core.logging_config import get_logger
from contextrag.providers.embeddings import TextEmbedder
from contextrag.retrieval.reranker import BaseReranker
from contextrag.shared.enums import ChunkType, EmbeddingTask, SearchMode
from contextrag.shared.exceptions import NotFoundError, SearchError
from contextrag.shared.models import (
    Chunk,
    RankedResult,
    RequestContext,
    ScoredChunk,
    SearchExplanation,
    SearchFilters,
    SearchOptions,
    SearchResponse,
)


@dataclass
class _Candidate:
    chunk: Chunk
    semantic: Optional[float] = None
    keyword: Optional[float] = None
    merged: float = 0.0
    boost: float = 1.0
    score: float = 0.0
    rerank: Optional[float] = None


def _order_key(candidate: _Candidate):
    return (-candidate.score, candidate.chunk.chunk_index, str(candidate.chunk.id))


class HybridRetrievalEngine:
    """
    Semantic + keyword retrieval with merge, boosting and optional re-ranking.

    Holds no mutable state per query; concurrent searches are independent.
    """

    def __init__(
        self,
        chunks,
        embedder: TextEmbedder,
        config: SearchConfig = None,
        reranking: RerankingConfig = None,
        reranker: Optional[BaseReranker] = None,
        documents=None
    ):
        """
        Args:
            chunks: Chunk store exposing search_semantic / search_keyword
            embedder: The embedding provider used at ingestion
            config: Merge weights, limits and default exclusions
            reranking: Candidate count for re-ranking
            reranker: Optional reranker
            documents: Document store used to reject unknown document ids
        """
        self.chunks = chunks
        self.embedder = embedder
        self.config = config or SearchConfig()
        self.reranking = reranking or RerankingConfig()
        self.reranker = reranker
        self.documents = documents

    # =========================================================================
    # Main Search Methods
    # =========================================================================

    async def search(
        self,
        query: str,
        mode: Union[SearchMode, str] = SearchMode.HYBRID,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        options: Optional[SearchOptions] = None
    ) -> List[RankedResult]:
        """
        Execute a search and return ranked results.

        Args:
            query: Search query text
            mode: semantic, keyword or hybrid
            filters: Predicates applied inside both passes
            limit: Number of results (default from config)
            options: Weights, boosts, re-ranking and explanation switches

        Raises:
            SearchError: For an empty query or a non-positive limit
            NotFoundError: If a filtered document id does not exist
        """
        response = await self.search_with_metadata(query, mode, filters, limit, options)
        return response.results

    async def search_with_metadata(
        self,
        query: str,
        mode: Union[SearchMode, str] = SearchMode.HYBRID,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        options: Optional[SearchOptions] = None
    ) -> SearchResponse:
        """Execute a search and return results with query metadata."""
        started = time.perf_counter()
        log = get_logger(__name__, RequestContext.new())

        if not query or not query.strip():
            raise SearchError("Query must not be empty")
        mode = SearchMode(mode)
        limit = self.config.default_limit if limit is None else limit
        if limit < 1:
            raise SearchError(f"limit must be >= 1, got {limit}")
        options = options or SearchOptions()

        filters = filters or SearchFilters()
        if self.config.exclude_headings_by_default:
            filters = filters.with_default_exclusions({ChunkType.HEADING})
        await self._check_documents(filters.document_ids)

        rerank_requested = options.rerank and self.reranker is not None
        if options.rerank and self.reranker is None:
            log.warning("Re-ranking requested but no reranker is configured")
        rerank_candidates = options.rerank_candidates or self.reranking.default_candidates

        candidate_limit = limit * self.config.candidate_multiplier
        if rerank_requested:
            candidate_limit = max(candidate_limit, rerank_candidates)

        semantic_hits, keyword_hits = await self._run_passes(
            query, mode, filters, candidate_limit, options
        )
        candidates = self._merge(mode, semantic_hits, keyword_hits, options)
        self._apply_boosts(candidates, options.type_boosts)
        candidates.sort(key=_order_key)

        reranked = False
        if rerank_requested and len(candidates) > 1:
            candidates, reranked = await self._rerank(query, candidates, rerank_candidates, log)

        results = [
            RankedResult(
                chunk=c.chunk,
                score=c.score,
                rank=rank,
                explanation=self._explain(c) if options.explain else None,
            )
            for rank, c in enumerate(candidates[:limit], start=1)
        ]

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        log.info(
            "Search completed",
            mode=mode.value,
            semantic_hits=len(semantic_hits),
            keyword_hits=len(keyword_hits),
            results=len(results),
            reranked=reranked,
            duration_ms=elapsed_ms,
        )
        return SearchResponse(
            query=query,
            mode=mode,
            results=results,
            total_found=len(candidates),
            processing_time_ms=elapsed_ms,
            reranked=reranked,
        )

    # =========================================================================
    # Passes
    # =========================================================================

    async def _check_documents(self, document_ids: List[UUID]) -> None:
        if not document_ids or self.documents is None:
            return
        missing = await self.documents.find_missing(list(document_ids))
        if missing:
            raise NotFoundError("document", missing[0])

    async def _semantic_pass(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
        options: SearchOptions
    ) -> List[ScoredChunk]:
        embedding = await self.embedder.embed(query, EmbeddingTask.QUERY)
        return await self.chunks.search_semantic(
            embedding,
            limit,
            filters=filters,
            min_similarity=options.min_similarity,
            embedding_model=self.embedder.model_name,
        )

    async def _run_passes(
        self,
        query: str,
        mode: SearchMode,
        filters: SearchFilters,
        limit: int,
        options: SearchOptions
    ):
        if mode == SearchMode.SEMANTIC:
            return await self._semantic_pass(query, filters, limit, options), []
        if mode == SearchMode.KEYWORD:
            return [], await self.chunks.search_keyword(query, limit, filters=filters)

        semantic_hits, keyword_hits = await asyncio.gather(
            self._semantic_pass(query, filters, limit, options),
            self.chunks.search_keyword(query, limit, filters=filters),
        )
        return semantic_hits, keyword_hits

    # =========================================================================
    # Scoring
    # =========================================================================

    def _weights(self, options: SearchOptions):
        semantic = self.config.semantic_weight if options.semantic_weight is None else options.semantic_weight
        keyword = self.config.keyword_weight if options.keyword_weight is None else options.keyword_weight
        if not (0.0 <= semantic <= 1.0 and 0.0 <= keyword <= 1.0) or (semantic == 0 and keyword == 0):
            raise SearchError(
                f"Search weights must be in [0, 1] and not both zero, got "
                f"semantic={semantic}, keyword={keyword}"
            )
        return semantic, keyword

    def _merge(
        self,
        mode: SearchMode,
        semantic_hits: List[ScoredChunk],
        keyword_hits: List[ScoredChunk],
        options: SearchOptions
    ) -> List[_Candidate]:
        """Union of both passes with a monotonic weighted merge."""
        by_id: Dict[UUID, _Candidate] = {}

        for hit in semantic_hits:
            by_id[hit.chunk.id] = _Candidate(chunk=hit.chunk, semantic=min(max(hit.score, 0.0), 1.0))

        max_keyword = max((hit.score for hit in keyword_hits), default=0.0)
        for hit in keyword_hits:
            normalized = hit.score / max_keyword if max_keyword > 0 else 0.0
            candidate = by_id.setdefault(hit.chunk.id, _Candidate(chunk=hit.chunk))
            candidate.keyword = normalized

        if mode == SearchMode.SEMANTIC:
            for c in by_id.values():
                c.merged = c.semantic or 0.0
        elif mode == SearchMode.KEYWORD:
            for c in by_id.values():
                c.merged = c.keyword or 0.0
        else:
            semantic_weight, keyword_weight = self._weights(options)
            for c in by_id.values():
                c.merged = semantic_weight * (c.semantic or 0.0) + keyword_weight * (c.keyword or 0.0)

        return list(by_id.values())

    @staticmethod
    def _apply_boosts(candidates: List[_Candidate], boosts: Dict[ChunkType, float]) -> None:
        for c in candidates:
            c.boost = boosts.get(c.chunk.chunk_type, 1.0) if boosts else 1.0
            c.score = c.merged * c.boost

    async def _rerank(
        self,
        query: str,
        candidates: List[_Candidate],
        top_n: int,
        log
    ):
        """
        Re-rank the top candidates; on failure keep the current order.

        On success only the re-ranked head is returned, so every returned
        score is on the reranker's scale times the candidate's type boost.
        Head candidates the reranker leaves unscored get a re-rank score of 0.
        """
        head = candidates[:top_n]
        try:
            ranked = await self.reranker.rerank(query, [c.chunk.embedding_text for c in head])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("Re-ranking failed, keeping merged order", error=str(e), reranker=self.reranker.name)
            return candidates, False

        scores = dict(ranked)
        for index, candidate in enumerate(head):
            candidate.rerank = scores.get(index, 0.0)
            candidate.score = candidate.rerank * candidate.boost
        head.sort(key=_order_key)
        return head, True

    @staticmethod
    def _explain(candidate: _Candidate) -> SearchExplanation:
        return SearchExplanation(
            semantic_score=candidate.semantic,
            keyword_score=candidate.keyword,
            merged_score=candidate.merged,
            type_boost=candidate.boost,
            rerank_score=candidate.rerank,
            reranked=candidate.rerank is not None,
        )
