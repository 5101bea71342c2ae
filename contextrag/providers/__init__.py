"""
ContextRAG - Providers
======================

Generation and embedding providers behind narrow capability interfaces.

Components:
- base.py: TextGenerator, DocumentGenerator, StructuredGenerator
- anthropic_service.py: text, PDF and structured generation
- openai_service.py: text and structured generation
- composite.py: routes each capability to a provider that has it
- embeddings.py: Voyage and OpenAI text embedders
- factory.py: builds providers from configuration
"""

from contextrag.providers.anthropic_service import AnthropicService
from contextrag.providers.base import (
    BaseLLMService,
    DocumentGenerator,
    LLMResponse,
    StructuredGenerator,
    StructuredResult,
    TextGenerator,
)
from contextrag.providers.composite import CompositeLLMService
from contextrag.providers.embeddings import (
    OpenAITextEmbedder,
    TextEmbedder,
    VoyageTextEmbedder,
)
from contextrag.providers.factory import (
    create_embedder,
    create_llm_provider,
    create_llm_service,
)
from contextrag.providers.openai_service import OpenAIService

__all__ = [
    'TextGenerator',
    'DocumentGenerator',
    'StructuredGenerator',
    'BaseLLMService',
    'LLMResponse',
    'StructuredResult',
    'AnthropicService',
    'OpenAIService',
    'CompositeLLMService',
    'TextEmbedder',
    'VoyageTextEmbedder',
    'OpenAITextEmbedder',
    'create_llm_provider',
    'create_llm_service',
    'create_embedder',
]
