"""
ContextRAG - Retrieval Layer
============================

Hybrid (vector + full-text) search with optional re-ranking.
"""

from contextrag.retrieval.reranker import (
    BaseReranker,
    CohereReranker,
    LLMReranker,
    create_reranker,
)
from contextrag.retrieval.search_service import HybridRetrievalEngine

__all__ = [
    'HybridRetrievalEngine',
    'BaseReranker',
    'LLMReranker',
    'CohereReranker',
    'create_reranker',
]
