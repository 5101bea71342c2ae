"""Custom exceptions for the ContextRAG system."""

from typing import Any, Dict, Optional


class ContextRAGError(Exception):
    """Base exception for all ContextRAG errors."""

    default_code = "CONTEXTRAG_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# Configuration

class ConfigurationError(ContextRAGError):
    """Invalid or missing configuration, raised before any work starts."""
    default_code = "CONFIGURATION_ERROR"


# Ingestion

class IngestionError(ContextRAGError):
    """Error while ingesting a batch or document."""
    default_code = "INGESTION_ERROR"

    def __init__(
        self,
        message: str,
        batch_index: Optional[int] = None,
        retryable: bool = False,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.batch_index = batch_index
        self.retryable = retryable
        if batch_index is not None:
            self.details.setdefault("batch_index", batch_index)


# External services (generation, embedding, reranking providers)

class ExternalServiceError(ContextRAGError):
    """Base class for errors reported by an external provider."""
    default_code = "EXTERNAL_SERVICE_ERROR"


class RateLimitError(ExternalServiceError):
    """Provider signalled a rate limit. Always retryable."""
    default_code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        if retry_after is not None:
            self.details.setdefault("retry_after", retry_after)


class QuotaExceededError(ExternalServiceError):
    """Account quota or credit exhausted. Not retryable."""
    default_code = "QUOTA_EXCEEDED"


class ContentPolicyError(ExternalServiceError):
    """Provider refused the content. Not retryable."""
    default_code = "CONTENT_POLICY"


class TransientServiceError(ExternalServiceError):
    """Network, timeout or 5xx failure."""
    default_code = "TRANSIENT_SERVICE_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


class StructuredOutputError(ExternalServiceError):
    """Structured output failed validation after all feedback retries."""
    default_code = "STRUCTURED_OUTPUT_INVALID"


class LLMParsingError(ContextRAGError):
    """Raised when LLM output cannot be parsed."""
    default_code = "LLM_PARSING_ERROR"


# Embeddings

class EmbeddingError(ContextRAGError):
    """Error generating embeddings."""
    default_code = "EMBEDDING_ERROR"


class DimensionMismatchError(EmbeddingError):
    """Vector dimension differs from the configured provider's dimension."""
    default_code = "DIMENSION_MISMATCH"

    def __init__(self, expected: int, actual: int, **kwargs):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}",
            **kwargs
        )
        self.expected = expected
        self.actual = actual
        self.details.update({"expected": expected, "actual": actual})


# Retrieval

class SearchError(ContextRAGError):
    """Error during search operation."""
    default_code = "SEARCH_ERROR"


class RerankingError(SearchError):
    """Reranker call failed or returned an unusable response."""
    default_code = "RERANKING_ERROR"


class DatabaseError(ContextRAGError):
    """Error in database operations."""
    default_code = "DATABASE_ERROR"


class NotFoundError(ContextRAGError):
    """Referenced resource does not exist."""
    default_code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: Any, **kwargs):
        super().__init__(f"{resource_type} not found: {resource_id}", **kwargs)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.details.update({"resource_type": resource_type, "resource_id": str(resource_id)})
