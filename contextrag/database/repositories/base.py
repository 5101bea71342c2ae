"""
ContextRAG - Base Repository
============================

Abstract base class for the repository pattern, plus the filter-clause
builder shared by the semantic and keyword chunk queries.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar
from uuid import UUID

import asyncpg

from contextrag.shared.exceptions import DatabaseError
from contextrag.shared.models import SearchFilters

logger = logging.getLogger(__name__)

T = TypeVar('T')


def affected_rows(status: str) -> int:
    """Row count from an asyncpg command status such as 'DELETE 3'."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def build_filter_clause(
    filters: Optional[SearchFilters],
    first_param: int,
    alias: str = "c"
) -> Tuple[List[str], List[Any]]:
    """
    Translate SearchFilters into SQL predicates.

    Args:
        filters: Filters to apply (None means no predicates)
        first_param: Index of the first positional parameter to use
        alias: Alias of the chunks table in the enclosing query

    Returns:
        (predicates, params); predicates are joined with AND by the caller
    """
    predicates: List[str] = []
    params: List[Any] = []
    if filters is None:
        return predicates, params

    def add(template: str, value: Any) -> None:
        params.append(value)
        predicates.append(template.format(p=f"${first_param + len(params) - 1}", a=alias))

    if filters.document_ids:
        add("{a}.document_id = ANY({p}::uuid[])", list(filters.document_ids))
    if filters.document_types:
        add(
            "{a}.document_id IN (SELECT id FROM documents WHERE document_type = ANY({p}::text[]))",
            list(filters.document_types),
        )
    if filters.chunk_types:
        add("{a}.chunk_type = ANY({p}::text[])", [t.value for t in filters.chunk_types])
    if filters.exclude_chunk_types:
        add("NOT ({a}.chunk_type = ANY({p}::text[]))", [t.value for t in filters.exclude_chunk_types])
    if filters.sub_types:
        add("{a}.sub_type = ANY({p}::text[])", list(filters.sub_types))
    if filters.domains:
        add("{a}.domain = ANY({p}::text[])", list(filters.domains))
    if filters.min_confidence is not None:
        add("{a}.confidence >= {p}", float(filters.min_confidence))

    return predicates, params


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository with common operations.

    Subclasses must implement:
    - table_name: str
    - _to_entity(row) -> T
    - _to_record(entity) -> dict
    """

    def __init__(self, connection):
        """
        Initialize repository with database connection.

        Args:
            connection: DatabaseConnection instance
        """
        self.db = connection

    @property
    @abstractmethod
    def table_name(self) -> str:
        """Table name for this repository."""
        pass

    @abstractmethod
    def _to_entity(self, row: dict) -> T:
        """Convert database row to entity object."""
        pass

    @abstractmethod
    def _to_record(self, entity: T) -> Dict[str, Any]:
        """Convert entity object to database record."""
        pass

    # =========================================================================
    # Read Operations
    # =========================================================================

    async def get_by_id(self, id: UUID) -> Optional[T]:
        query = f"SELECT * FROM {self.table_name} WHERE id = $1"
        row = await self.db.fetchrow(query, id)
        return self._to_entity(dict(row)) if row else None

    async def count(self) -> int:
        return await self.db.fetchval(f"SELECT COUNT(*) FROM {self.table_name}")

    # =========================================================================
    # Write Operations
    # =========================================================================

    async def create(self, entity: T) -> T:
        """Insert one entity and return it as stored."""
        record = self._to_record(entity)
        columns = list(record.keys())
        placeholders = [f"${i + 1}" for i in range(len(columns))]

        query = f"""
            INSERT INTO {self.table_name} ({', '.join(columns)})
            VALUES ({', '.join(placeholders)})
            RETURNING *
        """
        try:
            row = await self.db.fetchrow(query, *record.values())
        except asyncpg.PostgresError as e:
            raise DatabaseError(
                f"Failed to insert into {self.table_name}: {e}",
                details={"table": self.table_name}
            ) from e
        return self._to_entity(dict(row))

    async def create_many(self, entities: List[T]) -> int:
        """Insert entities in one transaction. Returns the count inserted."""
        if not entities:
            return 0

        records = [self._to_record(e) for e in entities]
        columns = list(records[0].keys())
        query = f"""
            INSERT INTO {self.table_name} ({', '.join(columns)})
            VALUES ({', '.join(f'${i + 1}' for i in range(len(columns)))})
        """
        try:
            async with self.db.transaction() as conn:
                await conn.executemany(query, [tuple(r.values()) for r in records])
        except asyncpg.PostgresError as e:
            raise DatabaseError(
                f"Failed to insert {len(records)} rows into {self.table_name}: {e}",
                details={"table": self.table_name}
            ) from e
        return len(records)

    async def delete(self, id: UUID) -> bool:
        """Delete an entity. Returns True if a row was deleted."""
        result = await self.db.execute(f"DELETE FROM {self.table_name} WHERE id = $1", id)
        return affected_rows(result) == 1
