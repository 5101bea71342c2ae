"""
ContextRAG - Database Repositories
==================================

Repository classes for database operations.
"""

from contextrag.database.repositories.base import BaseRepository, build_filter_clause
from contextrag.database.repositories.batch import BatchRepository
from contextrag.database.repositories.chunk import ChunkRepository
from contextrag.database.repositories.document import DocumentRepository

__all__ = [
    'BaseRepository',
    'build_filter_clause',
    'DocumentRepository',
    'BatchRepository',
    'ChunkRepository',
]
