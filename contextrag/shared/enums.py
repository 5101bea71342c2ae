"""Shared enumerations for ingestion and retrieval."""

from enum import Enum


class ChunkType(Enum):
    """Closed set of content types a chunk can carry."""
    TEXT = "TEXT"
    TABLE = "TABLE"
    LIST = "LIST"
    HEADING = "HEADING"
    CODE = "CODE"
    QUOTE = "QUOTE"
    IMAGE_REF = "IMAGE_REF"
    QUESTION = "QUESTION"
    MIXED = "MIXED"

    @classmethod
    def from_tag(cls, tag: str) -> "ChunkType":
        """Map a model-emitted tag to a type, TEXT when unknown."""
        if not tag:
            return cls.TEXT
        normalized = tag.strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError:
            return cls.TEXT


class BatchStatus(Enum):
    """Lifecycle of one page-range batch."""
    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED)


class DocumentStatus(Enum):
    """Overall ingestion status of a document."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class SearchMode(Enum):
    """Search mode for hybrid retrieval."""
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


class EnhancementStrategy(Enum):
    """Contextual enrichment strategy."""
    NONE = "none"
    TEMPLATE = "template"
    GENERATED = "generated"
    CUSTOM = "custom"


class EmbeddingTask(Enum):
    """Embedding input type, for providers with asymmetric query/document models."""
    QUERY = "query"
    DOCUMENT = "document"


class ParseMethod(Enum):
    """How a section was recovered from model output."""
    MARKERS = "markers"
    FALLBACK = "fallback"
    STRUCTURED = "structured"


class ConfidenceLevel(Enum):
    """Coarse confidence bucket stored alongside the numeric score."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @classmethod
    def from_score(cls, score: float) -> "ConfidenceLevel":
        if score >= 0.8:
            return cls.HIGH
        if score >= 0.5:
            return cls.MEDIUM
        return cls.LOW
