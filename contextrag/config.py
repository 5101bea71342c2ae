"""
ContextRAG - Configuration
==========================

Dataclass configuration for ingestion, enrichment, retrieval and providers.
All values have defaults; `ContextRAGConfig.from_env()` reads overrides from
the environment (after loading a .env file).

Usage:
    config = ContextRAGConfig(
        database=DatabaseConfig(connection_string="postgresql://..."),
        llm=LLMProviderConfig(provider="anthropic", api_key="..."),
        embedding=EmbeddingConfig(provider="voyage", api_key="..."),
        batch=BatchConfig(pages_per_batch=10),
    )
    config.validate()
"""

import os
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Set

from dotenv import load_dotenv

from contextrag.shared.enums import ChunkType, EnhancementStrategy
from contextrag.shared.exceptions import ConfigurationError
from contextrag.utils.retry import RetryConfig

DEFAULT_CONTEXT_TEMPLATE = "[{document_type}] [{chunk_type}] Page {page}"

DEFAULT_CONTEXT_PROMPT = (
    "Situate this chunk within the document. Briefly explain what this chunk "
    "is about and where it appears in the document in 1-2 sentences:"
)

LLM_PROVIDERS = ("anthropic", "openai")
EMBEDDING_PROVIDERS = ("voyage", "openai")
RERANK_PROVIDERS = ("llm", "cohere")

# Values used to check that a context template renders
TEMPLATE_SAMPLE_VALUES = {
    "filename": "report.pdf",
    "document_type": "Document",
    "chunk_type": "TEXT",
    "page": 1,
    "parent_heading": "Introduction",
}


class _BlankMissing(dict):
    """format_map mapping that leaves unknown placeholders empty."""

    def __missing__(self, key):
        return ""


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class BatchConfig:
    """Batch ingestion configuration."""
    pages_per_batch: int = 15
    max_concurrency: int = 3
    max_retries: int = 3
    retry_delay: float = 1.0            # seconds
    backoff_multiplier: float = 2.0
    max_retry_delay: float = 30.0       # seconds
    request_timeout: Optional[float] = None

    # Parsing
    use_structured_output: bool = False
    min_chunk_length: int = 10
    chunk_type_mapping: Dict[str, ChunkType] = field(default_factory=dict)

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            initial_delay=self.retry_delay,
            max_delay=self.max_retry_delay,
            multiplier=self.backoff_multiplier,
            timeout=self.request_timeout,
        )


@dataclass
class RateLimitConfig:
    """Adaptive rate limiting configuration."""
    requests_per_minute: float = 60
    adaptive: bool = True
    decrease_factor: float = 0.5
    increase_factor: float = 1.1
    recovery_threshold: int = 10
    cooldown_seconds: float = 30.0
    min_rate_fraction: float = 0.2


@dataclass
class GenerationConfig:
    """Generation parameters for extraction calls."""
    temperature: float = 0.3
    max_output_tokens: int = 8192
    structured_max_retries: int = 2


@dataclass
class LLMProviderConfig:
    """A generation provider."""
    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration."""
    provider: str = "voyage"
    model: str = "voyage-3"
    api_key: str = ""
    dimension: Optional[int] = None
    batch_size: int = 128


@dataclass
class EnhancementConfig:
    """Contextual enrichment configuration."""
    strategy: EnhancementStrategy = EnhancementStrategy.NONE
    template: str = DEFAULT_CONTEXT_TEMPLATE
    context_prompt: str = DEFAULT_CONTEXT_PROMPT
    max_context_tokens: int = 100
    skip_chunk_types: Set[ChunkType] = field(
        default_factory=lambda: {ChunkType.HEADING, ChunkType.IMAGE_REF}
    )
    concurrency_limit: int = 5
    temperature: float = 0.1
    enable_cache: bool = True
    cache_size: int = 1000
    custom_handler: Optional[Callable[..., Awaitable[str]]] = None

    def render_template(self, **values) -> str:
        """Fill the context template; unknown placeholders render empty."""
        return self.template.format_map(_BlankMissing(values)).strip()

    def template_error(self) -> Optional[str]:
        """Why the context template cannot be rendered, or None."""
        try:
            self.render_template(**TEMPLATE_SAMPLE_VALUES)
        except (ValueError, IndexError, KeyError, AttributeError, TypeError) as e:
            return f"enhancement.template cannot be rendered: {e}"
        return None


@dataclass
class RerankingConfig:
    """Reranking configuration."""
    enabled: bool = False
    provider: str = "llm"
    default_candidates: int = 50
    snippet_length: int = 400
    cohere_api_key: str = ""
    cohere_model: str = "rerank-v3.5"


@dataclass
class SearchConfig:
    """Hybrid retrieval configuration."""
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    default_limit: int = 10
    candidate_multiplier: int = 2
    exclude_headings_by_default: bool = True
    fts_language: str = "simple"


@dataclass
class DatabaseConfig:
    """Database configuration."""
    connection_string: str = ""
    min_connections: int = 2
    max_connections: int = 10

    @property
    def enabled(self) -> bool:
        return bool(self.connection_string)


@dataclass
class ContextRAGConfig:
    """
    Complete configuration.

    `llm` serves text and structured generation. `document_llm`, when set,
    serves document-grounded (PDF) generation; otherwise `llm` must support it.
    """
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    llm: LLMProviderConfig = field(default_factory=LLMProviderConfig)
    document_llm: Optional[LLMProviderConfig] = None
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    enhancement: EnhancementConfig = field(default_factory=EnhancementConfig)
    reranking: RerankingConfig = field(default_factory=RerankingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    log_level: str = "INFO"

    def validate(self) -> "ContextRAGConfig":
        """
        Check every value before any work starts.

        Raises:
            ConfigurationError: listing every problem found
        """
        problems = []
        b = self.batch
        if not 1 <= b.pages_per_batch <= 50:
            problems.append("batch.pages_per_batch must be between 1 and 50")
        if not 1 <= b.max_concurrency <= 10:
            problems.append("batch.max_concurrency must be between 1 and 10")
        if not 0 <= b.max_retries <= 10:
            problems.append("batch.max_retries must be between 0 and 10")
        if not 0.1 <= b.retry_delay <= 60:
            problems.append("batch.retry_delay must be between 0.1 and 60 seconds")
        if not 1 <= b.backoff_multiplier <= 5:
            problems.append("batch.backoff_multiplier must be between 1 and 5")
        if b.max_retry_delay < b.retry_delay:
            problems.append("batch.max_retry_delay must be >= batch.retry_delay")
        if b.min_chunk_length < 0:
            problems.append("batch.min_chunk_length must be >= 0")

        if self.rate_limit.requests_per_minute <= 0:
            problems.append("rate_limit.requests_per_minute must be positive")
        if not 0 < self.rate_limit.decrease_factor < 1:
            problems.append("rate_limit.decrease_factor must be in (0, 1)")
        if self.rate_limit.increase_factor <= 1:
            problems.append("rate_limit.increase_factor must be > 1")

        for name, provider in (("llm", self.llm), ("document_llm", self.document_llm)):
            if provider is None:
                continue
            if provider.provider not in LLM_PROVIDERS:
                problems.append(f"{name}.provider must be one of {LLM_PROVIDERS}")
            if not provider.api_key:
                problems.append(f"{name}.api_key is required")

        if self.embedding.provider not in EMBEDDING_PROVIDERS:
            problems.append(f"embedding.provider must be one of {EMBEDDING_PROVIDERS}")
        if not self.embedding.api_key:
            problems.append("embedding.api_key is required")

        s = self.search
        for weight_name in ("semantic_weight", "keyword_weight"):
            if not 0 <= getattr(s, weight_name) <= 1:
                problems.append(f"search.{weight_name} must be between 0 and 1")
        if s.semantic_weight == 0 and s.keyword_weight == 0:
            problems.append("search weights cannot both be zero")
        if s.default_limit < 1:
            problems.append("search.default_limit must be >= 1")

        e = self.enhancement
        if e.concurrency_limit < 1:
            problems.append("enhancement.concurrency_limit must be >= 1")
        if e.enable_cache and e.cache_size < 1:
            problems.append("enhancement.cache_size must be >= 1 when caching is enabled")
        if e.strategy == EnhancementStrategy.CUSTOM and e.custom_handler is None:
            problems.append("enhancement.custom_handler is required for the custom strategy")
        template_error = e.template_error()
        if template_error:
            problems.append(template_error)

        r = self.reranking
        if r.enabled:
            if r.provider not in RERANK_PROVIDERS:
                problems.append(f"reranking.provider must be one of {RERANK_PROVIDERS}")
            if r.provider == "cohere" and not r.cohere_api_key:
                problems.append("reranking.cohere_api_key is required for the cohere reranker")

        if not self.database.enabled:
            problems.append("database.connection_string is required")

        if problems:
            raise ConfigurationError(
                "Invalid configuration: " + "; ".join(problems),
                details={"problems": problems}
            )
        return self

    @classmethod
    def from_env(cls) -> "ContextRAGConfig":
        """Create config from environment variables (.env is loaded first)."""
        load_dotenv()

        llm_provider = os.getenv("CONTEXTRAG_LLM_PROVIDER", "anthropic").lower()
        llm_key_var = "ANTHROPIC_API_KEY" if llm_provider == "anthropic" else "OPENAI_API_KEY"
        embedding_provider = os.getenv("CONTEXTRAG_EMBEDDING_PROVIDER", "voyage").lower()
        embedding_key_var = "VOYAGE_API_KEY" if embedding_provider == "voyage" else "OPENAI_API_KEY"

        document_provider = os.getenv("CONTEXTRAG_DOCUMENT_PROVIDER")
        document_llm = None
        if document_provider and document_provider.lower() != llm_provider:
            document_provider = document_provider.lower()
            document_llm = LLMProviderConfig(
                provider=document_provider,
                model=os.getenv("CONTEXTRAG_DOCUMENT_MODEL", LLMProviderConfig.model),
                api_key=os.getenv(
                    "ANTHROPIC_API_KEY" if document_provider == "anthropic" else "OPENAI_API_KEY", ""
                ),
            )

        dimension = os.getenv("CONTEXTRAG_EMBEDDING_DIMENSION")

        return cls(
            database=DatabaseConfig(
                connection_string=os.getenv("DATABASE_URL", ""),
                min_connections=int(os.getenv("DB_MIN_CONNECTIONS", "2")),
                max_connections=int(os.getenv("DB_MAX_CONNECTIONS", "10")),
            ),
            llm=LLMProviderConfig(
                provider=llm_provider,
                model=os.getenv(
                    "CONTEXTRAG_LLM_MODEL",
                    "claude-sonnet-4-20250514" if llm_provider == "anthropic" else "gpt-4o"
                ),
                api_key=os.getenv(llm_key_var, ""),
            ),
            document_llm=document_llm,
            embedding=EmbeddingConfig(
                provider=embedding_provider,
                model=os.getenv(
                    "CONTEXTRAG_EMBEDDING_MODEL",
                    "voyage-3" if embedding_provider == "voyage" else "text-embedding-3-small"
                ),
                api_key=os.getenv(embedding_key_var, ""),
                dimension=int(dimension) if dimension else None,
            ),
            batch=BatchConfig(
                pages_per_batch=int(os.getenv("CONTEXTRAG_PAGES_PER_BATCH", "15")),
                max_concurrency=int(os.getenv("CONTEXTRAG_MAX_CONCURRENCY", "3")),
                max_retries=int(os.getenv("CONTEXTRAG_MAX_RETRIES", "3")),
                use_structured_output=_env_bool("CONTEXTRAG_STRUCTURED_OUTPUT", False),
            ),
            rate_limit=RateLimitConfig(
                requests_per_minute=float(os.getenv("CONTEXTRAG_REQUESTS_PER_MINUTE", "60")),
                adaptive=_env_bool("CONTEXTRAG_ADAPTIVE_RATE_LIMIT", True),
            ),
            enhancement=EnhancementConfig(
                strategy=EnhancementStrategy(os.getenv("CONTEXTRAG_ENHANCEMENT", "none").lower()),
            ),
            reranking=RerankingConfig(
                enabled=_env_bool("CONTEXTRAG_RERANKING", False),
                provider=os.getenv("CONTEXTRAG_RERANK_PROVIDER", "llm").lower(),
                cohere_api_key=os.getenv("COHERE_API_KEY", ""),
            ),
            search=SearchConfig(
                semantic_weight=float(os.getenv("CONTEXTRAG_SEMANTIC_WEIGHT", "0.7")),
                keyword_weight=float(os.getenv("CONTEXTRAG_KEYWORD_WEIGHT", "0.3")),
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
