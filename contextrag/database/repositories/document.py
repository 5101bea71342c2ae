"""
ContextRAG - Document Repository
================================

Repository for documents. Documents are unique per
(content_hash, experiment_id); deleting one cascades to its batches and
chunks.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from contextrag.database.repositories.base import BaseRepository
from contextrag.shared.enums import DocumentStatus
from contextrag.shared.models import Document

logger = logging.getLogger(__name__)


class DocumentRepository(BaseRepository[Document]):
    """Repository for document operations."""

    @property
    def table_name(self) -> str:
        return "documents"

    def _to_entity(self, row: dict) -> Document:
        return Document(
            id=row['id'],
            filename=row['filename'],
            content_hash=row['content_hash'],
            page_count=row.get('page_count', 0),
            experiment_id=row.get('experiment_id'),
            document_type=row.get('document_type'),
            status=DocumentStatus(row.get('status') or DocumentStatus.PENDING.value),
            chunk_count=row.get('chunk_count', 0),
            metadata=row.get('metadata') or {},
            created_at=row.get('created_at'),
            updated_at=row.get('updated_at'),
        )

    def _to_record(self, entity: Document) -> Dict[str, Any]:
        return {
            'id': entity.id,
            'filename': entity.filename,
            'content_hash': entity.content_hash,
            'experiment_id': entity.experiment_id,
            'document_type': entity.document_type,
            'page_count': entity.page_count,
            'status': entity.status.value,
            'chunk_count': entity.chunk_count,
            'metadata': entity.metadata or {},
        }

    # =========================================================================
    # Custom Queries
    # =========================================================================

    async def find_by_hash(
        self,
        content_hash: str,
        experiment_id: Optional[str] = None
    ) -> Optional[Document]:
        """Find the document with this content hash in this experiment."""
        row = await self.db.fetchrow(
            """
            SELECT * FROM documents
            WHERE content_hash = $1 AND experiment_id IS NOT DISTINCT FROM $2
            """,
            content_hash, experiment_id
        )
        return self._to_entity(dict(row)) if row else None

    async def find_missing(self, ids: List[UUID]) -> List[UUID]:
        """Return the ids in `ids` that do not exist."""
        if not ids:
            return []
        rows = await self.db.fetch(
            "SELECT id FROM documents WHERE id = ANY($1::uuid[])", list(ids)
        )
        found = {row['id'] for row in rows}
        return [i for i in ids if i not in found]

    async def update_status(
        self,
        id: UUID,
        status: DocumentStatus,
        chunk_count: Optional[int] = None
    ) -> None:
        """Set status and, when given, the chunk count."""
        await self.db.execute(
            """
            UPDATE documents SET
                status = $2,
                chunk_count = COALESCE($3, chunk_count),
                updated_at = CURRENT_TIMESTAMP
            WHERE id = $1
            """,
            id, status.value, chunk_count
        )

    async def list_documents(
        self,
        experiment_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Document]:
        if experiment_id is None:
            rows = await self.db.fetch(
                "SELECT * FROM documents ORDER BY created_at DESC LIMIT $1 OFFSET $2",
                limit, offset
            )
        else:
            rows = await self.db.fetch(
                """
                SELECT * FROM documents WHERE experiment_id = $1
                ORDER BY created_at DESC LIMIT $2 OFFSET $3
                """,
                experiment_id, limit, offset
            )
        return [self._to_entity(dict(row)) for row in rows]

    async def delete_with_cascade(self, id: UUID) -> bool:
        """Delete a document with its batches and chunks (FK cascade)."""
        deleted = await self.delete(id)
        if deleted:
            logger.info(f"Deleted document {id} with its batches and chunks")
        return deleted
