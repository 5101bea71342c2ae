"""
ContextRAG - Batch Document Ingestion & Hybrid Retrieval

Ingests PDFs in page batches through a document-capable generation model,
splits the output into typed chunks, optionally enriches them with
retrieval context, embeds them into PostgreSQL/pgvector, and serves hybrid
(vector + full-text) search with optional re-ranking.
"""

__version__ = "1.0.0"

from contextrag.config import (
    BatchConfig,
    ContextRAGConfig,
    DatabaseConfig,
    EmbeddingConfig,
    EnhancementConfig,
    GenerationConfig,
    LLMProviderConfig,
    RateLimitConfig,
    RerankingConfig,
    SearchConfig,
)
from contextrag.rag import ContextRAG
from contextrag.shared.enums import (
    BatchStatus,
    ChunkType,
    DocumentStatus,
    EnhancementStrategy,
    SearchMode,
)
from contextrag.shared.exceptions import (
    ConfigurationError,
    ContextRAGError,
    NotFoundError,
)
from contextrag.shared.models import (
    BatchProgress,
    IngestOptions,
    IngestResult,
    RankedResult,
    SearchFilters,
    SearchOptions,
    SearchResponse,
)

__all__ = [
    'ContextRAG',
    # Configuration
    'ContextRAGConfig',
    'BatchConfig',
    'DatabaseConfig',
    'EmbeddingConfig',
    'EnhancementConfig',
    'GenerationConfig',
    'LLMProviderConfig',
    'RateLimitConfig',
    'RerankingConfig',
    'SearchConfig',
    # Enums
    'BatchStatus',
    'ChunkType',
    'DocumentStatus',
    'EnhancementStrategy',
    'SearchMode',
    # Models
    'BatchProgress',
    'IngestOptions',
    'IngestResult',
    'RankedResult',
    'SearchFilters',
    'SearchOptions',
    'SearchResponse',
    # Errors
    'ContextRAGError',
    'ConfigurationError',
    'NotFoundError',
]
