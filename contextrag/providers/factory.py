"""
ContextRAG - Provider Factory
=============================

Builds generation and embedding providers from configuration.
"""

import logging
from typing import List, Optional

from contextrag.config import ContextRAGConfig, EmbeddingConfig, LLMProviderConfig
from contextrag.providers.anthropic_service import AnthropicService
from contextrag.providers.base import BaseLLMService
from contextrag.providers.composite import CompositeLLMService
from contextrag.providers.embeddings import OpenAITextEmbedder, TextEmbedder, VoyageTextEmbedder
from contextrag.providers.openai_service import OpenAIService
from contextrag.shared.exceptions import ConfigurationError
from contextrag.utils.retry import RetryConfig

logger = logging.getLogger(__name__)


def create_llm_provider(
    config: LLMProviderConfig,
    max_tokens: int = 8192,
    temperature: float = 0.3
) -> BaseLLMService:
    """
    Factory function to create a single generation provider.

    Args:
        config: Provider id, model and API key
            - "anthropic": text, document and structured generation
            - "openai": text and structured generation
    """
    if config.provider == "anthropic":
        return AnthropicService(
            api_key=config.api_key,
            model=config.model,
            max_tokens=max_tokens,
            temperature=temperature,
        )
    if config.provider == "openai":
        return OpenAIService(
            api_key=config.api_key,
            model=config.model,
            max_tokens=max_tokens,
            temperature=temperature,
        )
    raise ConfigurationError(f"Unknown LLM provider: {config.provider}")


def create_llm_service(config: ContextRAGConfig) -> CompositeLLMService:
    """
    Build the composite generation service for ingestion.

    Document-grounded generation is required; structured generation is
    required when structured-output extraction is enabled.
    """
    gen = config.generation
    providers: List[BaseLLMService] = [
        create_llm_provider(config.llm, gen.max_output_tokens, gen.temperature)
    ]
    if config.document_llm is not None:
        providers.append(
            create_llm_provider(config.document_llm, gen.max_output_tokens, gen.temperature)
        )

    return CompositeLLMService(
        providers,
        require_text=True,
        require_documents=True,
        require_structured=config.batch.use_structured_output,
    )


def create_embedder(
    config: EmbeddingConfig,
    retry_config: Optional[RetryConfig] = None
) -> TextEmbedder:
    """Factory function to create the configured embedding provider."""
    if config.provider == "voyage":
        return VoyageTextEmbedder(
            model=config.model,
            api_key=config.api_key,
            dimension=config.dimension,
            batch_size=config.batch_size,
            retry_config=retry_config,
        )
    if config.provider == "openai":
        return OpenAITextEmbedder(
            model=config.model,
            api_key=config.api_key,
            dimension=config.dimension,
            batch_size=config.batch_size,
            retry_config=retry_config,
        )
    raise ConfigurationError(f"Unknown embedding provider: {config.provider}")
