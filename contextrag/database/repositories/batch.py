"""
ContextRAG - Batch Repository
=============================

Persists batch rows so per-batch progress and failures survive the
ingestion call.
"""

import logging
from typing import Any, Dict, List
from uuid import UUID

from contextrag.database.repositories.base import BaseRepository
from contextrag.shared.enums import BatchStatus
from contextrag.shared.models import Batch, TokenUsage

logger = logging.getLogger(__name__)


class BatchRepository(BaseRepository[Batch]):
    """Repository for batch operations."""

    @property
    def table_name(self) -> str:
        return "batches"

    def _to_entity(self, row: dict) -> Batch:
        return Batch(
            id=row['id'],
            document_id=row['document_id'],
            index=row['batch_index'],
            page_start=row['page_start'],
            page_end=row['page_end'],
            status=BatchStatus(row['status']),
            retry_count=row.get('retry_count', 0),
            token_usage=TokenUsage(
                input_tokens=row.get('input_tokens', 0),
                output_tokens=row.get('output_tokens', 0),
            ),
            chunk_count=row.get('chunk_count', 0),
            error=row.get('error'),
            started_at=row.get('started_at'),
            completed_at=row.get('completed_at'),
        )

    def _to_record(self, entity: Batch) -> Dict[str, Any]:
        return {
            'id': entity.id,
            'document_id': entity.document_id,
            'batch_index': entity.index,
            'page_start': entity.page_start,
            'page_end': entity.page_end,
            'status': entity.status.value,
            'retry_count': entity.retry_count,
            'input_tokens': entity.token_usage.input_tokens,
            'output_tokens': entity.token_usage.output_tokens,
            'chunk_count': entity.chunk_count,
            'error': entity.error,
        }

    async def update(self, batch: Batch) -> None:
        """Write the batch's current state."""
        await self.db.execute(
            """
            UPDATE batches SET
                status = $2,
                retry_count = $3,
                input_tokens = $4,
                output_tokens = $5,
                chunk_count = $6,
                error = $7,
                started_at = $8,
                completed_at = $9,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = $1
            """,
            batch.id,
            batch.status.value,
            batch.retry_count,
            batch.token_usage.input_tokens,
            batch.token_usage.output_tokens,
            batch.chunk_count,
            batch.error,
            batch.started_at,
            batch.completed_at,
        )

    async def get_by_document(self, document_id: UUID) -> List[Batch]:
        rows = await self.db.fetch(
            "SELECT * FROM batches WHERE document_id = $1 ORDER BY batch_index",
            document_id
        )
        return [self._to_entity(dict(row)) for row in rows]

    async def get_failed(self, document_id: UUID) -> List[Batch]:
        rows = await self.db.fetch(
            """
            SELECT * FROM batches
            WHERE document_id = $1 AND status = ANY($2::text[])
            ORDER BY batch_index
            """,
            document_id,
            [BatchStatus.FAILED.value, BatchStatus.CANCELLED.value],
        )
        return [self._to_entity(dict(row)) for row in rows]
