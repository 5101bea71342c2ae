"""
ContextRAG - Database Layer
===========================

PostgreSQL + pgvector persistence.

Components:
- connection.py: Connection pool management and schema bootstrap
- schema.sql: documents, batches, chunks (cascade delete, GIN full-text index)
- repositories/: Operations for each table

Usage:
    from contextrag.database import DatabaseConnection, Repositories

    db = DatabaseConnection("postgresql://...")
    await db.connect()
    await db.apply_schema()

    repos = Repositories(db)
    doc = await repos.documents.find_by_hash(content_hash)
    hits = await repos.chunks.search_keyword("termination clause", limit=10)
"""

from contextrag.database.connection import DatabaseConnection
from contextrag.database.repositories import (
    BatchRepository,
    ChunkRepository,
    DocumentRepository,
)


class Repositories:
    """
    Container for all repository instances.

    Provides convenient access to all repositories with a single
    database connection.
    """

    def __init__(self, db: DatabaseConnection, fts_language: str = "simple"):
        self.db = db
        self.documents = DocumentRepository(db)
        self.batches = BatchRepository(db)
        self.chunks = ChunkRepository(db, fts_language=fts_language)


__all__ = [
    'DatabaseConnection',
    'DocumentRepository',
    'BatchRepository',
    'ChunkRepository',
    'Repositories',
]
