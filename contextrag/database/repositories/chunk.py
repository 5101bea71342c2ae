"""
ContextRAG - Chunk Repository
=============================

Chunk persistence plus the two retrieval passes:
- semantic: cosine similarity over the pgvector column (1.0 = identical)
- keyword: ts_rank over to_tsvector(<language>, content), no stemming

Both passes accept the same SearchFilters and order ties by chunk_index
then id, so repeated queries return identical rows.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from uuid import UUID

import asyncpg
import numpy as np

from contextrag.database.repositories.base import (
    BaseRepository,
    affected_rows,
    build_filter_clause,
)
from contextrag.shared.enums import ChunkType
from contextrag.shared.exceptions import DatabaseError, EmbeddingError
from contextrag.shared.models import Chunk, ScoredChunk, SearchFilters

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+", re.UNICODE)
_LANGUAGE = re.compile(r"^[a-z_]+$")

CHUNK_COLUMNS = """
    c.id, c.document_id, c.chunk_index, c.chunk_type, c.sub_type, c.domain,
    c.content, c.display_content, c.context, c.confidence,
    c.page_start, c.page_end, c.embedding_model, c.metadata, c.created_at
"""


def build_tsquery(query: str) -> str:
    """
    OR-join the query's word tokens for to_tsquery.

    Tokens are \\w+ runs, so no tsquery operator can reach the database.
    """
    seen = []
    for token in _TOKEN.findall(query.lower()):
        if token not in seen:
            seen.append(token)
    return " | ".join(seen)


class ChunkRepository(BaseRepository[Chunk]):
    """Repository for chunk persistence and vector/full-text search."""

    def __init__(self, connection, fts_language: str = "simple"):
        super().__init__(connection)
        if not _LANGUAGE.match(fts_language):
            raise ValueError(f"Invalid text search configuration: {fts_language!r}")
        self.fts_language = fts_language

    @property
    def table_name(self) -> str:
        return "chunks"

    def _to_entity(self, row: dict) -> Chunk:
        return Chunk(
            id=row['id'],
            document_id=row['document_id'],
            chunk_index=row['chunk_index'],
            chunk_type=ChunkType(row['chunk_type']),
            sub_type=row.get('sub_type'),
            domain=row.get('domain'),
            content=row['content'],
            display_content=row['display_content'],
            context=row.get('context'),
            confidence=row.get('confidence', 1.0),
            page_start=row['page_start'],
            page_end=row['page_end'],
            embedding=row.get('embedding'),
            embedding_model=row.get('embedding_model'),
            metadata=row.get('metadata') or {},
            created_at=row.get('created_at'),
        )

    def _to_record(self, entity: Chunk) -> Dict[str, Any]:
        if entity.embedding is None or not entity.embedding_model:
            raise EmbeddingError(
                f"Chunk {entity.chunk_index} of document {entity.document_id} "
                f"has no embedding or embedding model"
            )
        return {
            'id': entity.id,
            'document_id': entity.document_id,
            'chunk_index': entity.chunk_index,
            'chunk_type': entity.chunk_type.value,
            'sub_type': entity.sub_type,
            'domain': entity.domain,
            'content': entity.content,
            'display_content': entity.display_content,
            'context': entity.context,
            'confidence': float(entity.confidence),
            'page_start': entity.page_start,
            'page_end': entity.page_end,
            'embedding': np.asarray(entity.embedding, dtype=np.float32),
            'embedding_model': entity.embedding_model,
            'metadata': entity.metadata or {},
        }

    # =========================================================================
    # Batch Operations
    # =========================================================================

    async def create_many(self, chunks: List[Chunk]) -> int:
        """
        Insert all chunks of one batch in a single transaction.

        Either every chunk is written or none is.
        """
        count = await super().create_many(chunks)
        if count:
            logger.debug(f"Inserted {count} chunks for document {chunks[0].document_id}")
        return count

    async def delete_by_document(self, document_id: UUID) -> int:
        """Bulk delete a document's chunks. Returns the number deleted."""
        result = await self.db.execute("DELETE FROM chunks WHERE document_id = $1", document_id)
        return affected_rows(result)

    # =========================================================================
    # Query Operations
    # =========================================================================

    async def get_by_document(
        self,
        document_id: UUID,
        include_embedding: bool = False
    ) -> List[Chunk]:
        columns = CHUNK_COLUMNS + (", c.embedding" if include_embedding else "")
        rows = await self.db.fetch(
            f"SELECT {columns} FROM chunks c WHERE c.document_id = $1 ORDER BY c.chunk_index, c.id",
            document_id
        )
        return [self._to_entity(dict(row)) for row in rows]

    async def count_by_embedding_model(self) -> Dict[str, int]:
        """Chunk counts grouped by the model that produced their vectors."""
        rows = await self.db.fetch(
            """
            SELECT embedding_model, COUNT(*) AS count
            FROM chunks
            GROUP BY embedding_model
            ORDER BY embedding_model
            """
        )
        return {row['embedding_model']: row['count'] for row in rows}

    # =========================================================================
    # Search Operations
    # =========================================================================

    async def search_semantic(
        self,
        query_embedding: np.ndarray,
        limit: int,
        filters: Optional[SearchFilters] = None,
        min_similarity: Optional[float] = None,
        embedding_model: Optional[str] = None
    ) -> List[ScoredChunk]:
        """
        Top-K chunks by cosine similarity, filters applied before ranking.

        Args:
            query_embedding: Query vector
            limit: Maximum rows
            filters: Predicates shared with the keyword pass
            min_similarity: Drop rows below this similarity
            embedding_model: Only compare against vectors from this model
        """
        params: List[Any] = [np.asarray(query_embedding, dtype=np.float32), limit]
        predicates = ["c.embedding IS NOT NULL"]
        if embedding_model:
            params.append(embedding_model)
            predicates.append(f"c.embedding_model = ${len(params)}")

        filter_sql, filter_params = build_filter_clause(filters, len(params) + 1)
        predicates.extend(filter_sql)
        params.extend(filter_params)

        if min_similarity is not None:
            params.append(float(min_similarity))
            predicates.append(f"1 - (c.embedding <=> $1::vector) >= ${len(params)}")

        query = f"""
            SELECT {CHUNK_COLUMNS},
                   1 - (c.embedding <=> $1::vector) AS similarity
            FROM chunks c
            WHERE {' AND '.join(predicates)}
            ORDER BY c.embedding <=> $1::vector, c.chunk_index, c.id
            LIMIT $2
        """
        try:
            rows = await self.db.fetch(query, *params)
        except asyncpg.PostgresError as e:
            raise DatabaseError(f"Semantic search failed: {e}") from e

        return [
            ScoredChunk(
                chunk=self._to_entity(dict(row)),
                score=max(0.0, float(row['similarity'])),
            )
            for row in rows
        ]

    async def search_keyword(
        self,
        query_text: str,
        limit: int,
        filters: Optional[SearchFilters] = None
    ) -> List[ScoredChunk]:
        """Top-K chunks by full-text rank, same filters as the semantic pass."""
        tsquery = build_tsquery(query_text)
        if not tsquery:
            return []

        language = self.fts_language
        params: List[Any] = [tsquery, limit]
        vector_sql = f"to_tsvector('{language}', c.content)"
        predicates = [f"{vector_sql} @@ to_tsquery('{language}', $1)"]

        filter_sql, filter_params = build_filter_clause(filters, len(params) + 1)
        predicates.extend(filter_sql)
        params.extend(filter_params)

        query = f"""
            SELECT {CHUNK_COLUMNS},
                   ts_rank({vector_sql}, to_tsquery('{language}', $1)) AS rank
            FROM chunks c
            WHERE {' AND '.join(predicates)}
            ORDER BY rank DESC, c.chunk_index, c.id
            LIMIT $2
        """
        try:
            rows = await self.db.fetch(query, *params)
        except asyncpg.PostgresError as e:
            raise DatabaseError(f"Keyword search failed: {e}") from e

        return [
            ScoredChunk(chunk=self._to_entity(dict(row)), score=float(row['rank']))
            for row in rows
        ]
