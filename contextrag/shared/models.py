"""
ContextRAG - Shared Data Models
================================

Dataclasses passed between the ingestion pipeline, the store and the
retrieval engine.

Ownership:
    Document  -> owns Batches and Chunks (cascade delete)
    ParsedSection, RankedResult -> transient, never persisted
"""

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set
from uuid import UUID

import numpy as np

from contextrag.shared.enums import (
    BatchStatus,
    ChunkType,
    DocumentStatus,
    ParseMethod,
    SearchMode,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Request Context
# =============================================================================

@dataclass(frozen=True)
class RequestContext:
    """
    Request-scoped tracing context.

    Created once per ingest or search call and passed down explicitly,
    so concurrent calls never share correlation state.
    """
    correlation_id: str
    document_id: Optional[str] = None
    experiment_id: Optional[str] = None

    @classmethod
    def new(cls, **kwargs) -> "RequestContext":
        return cls(correlation_id=uuid.uuid4().hex[:12], **kwargs)

    def with_document(self, document_id: Any) -> "RequestContext":
        return replace(self, document_id=str(document_id))

    def as_log_fields(self) -> Dict[str, str]:
        fields = {"correlation_id": self.correlation_id}
        if self.document_id:
            fields["document_id"] = self.document_id
        if self.experiment_id:
            fields["experiment_id"] = self.experiment_id
        return fields


# =============================================================================
# Usage Accounting
# =============================================================================

@dataclass
class TokenUsage:
    """Token counts reported by a generation provider."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, other: Optional["TokenUsage"]) -> None:
        if other is None:
            return
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens

    def to_dict(self) -> Dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


# =============================================================================
# Persistent Entities
# =============================================================================

@dataclass
class Document:
    """A source document, unique per (content_hash, experiment_id)."""
    filename: str
    content_hash: str
    page_count: int
    id: UUID = field(default_factory=uuid.uuid4)
    experiment_id: Optional[str] = None
    document_type: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PENDING
    chunk_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None


@dataclass
class Batch:
    """A contiguous, 1-indexed, inclusive page range of one document."""
    index: int
    page_start: int
    page_end: int
    document_id: Optional[UUID] = None
    id: UUID = field(default_factory=uuid.uuid4)
    status: BatchStatus = BatchStatus.PENDING
    retry_count: int = 0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    chunk_count: int = 0
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def page_count(self) -> int:
        return self.page_end - self.page_start + 1

    @property
    def page_range(self) -> str:
        return f"{self.page_start}-{self.page_end}"


@dataclass
class ParsedSection:
    """One logical unit recovered from a batch's raw model output."""
    type: ChunkType
    page: int
    confidence: float
    content: str
    index: int
    sub_type: Optional[str] = None
    parse_method: ParseMethod = ParseMethod.MARKERS


@dataclass
class Chunk:
    """The persisted, searchable unit."""
    document_id: UUID
    chunk_index: int
    chunk_type: ChunkType
    content: str
    display_content: str
    page_start: int
    page_end: int
    id: UUID = field(default_factory=uuid.uuid4)
    confidence: float = 1.0
    context: Optional[str] = None
    sub_type: Optional[str] = None
    domain: Optional[str] = None
    embedding: Optional[np.ndarray] = None
    embedding_model: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def embedding_text(self) -> str:
        """Text sent to the embedding provider: context first, then content."""
        if self.context:
            return f"{self.context}\n\n{self.content}"
        return self.content


# =============================================================================
# Ingestion Inputs / Outputs
# =============================================================================

@dataclass
class DocumentContext:
    """Static document metadata available to enrichment strategies."""
    filename: str
    document_type: Optional[str] = None
    page_count: int = 0
    parent_heading: Optional[str] = None

    def with_heading(self, heading: Optional[str]) -> "DocumentContext":
        return replace(self, parent_heading=heading)


@dataclass
class BatchProgress:
    """Progress event delivered to the caller's callback."""
    batch_index: int
    current: int
    total: int
    page_start: int
    page_end: int
    status: BatchStatus
    retry_count: int = 0
    error: Optional[str] = None


ProgressCallback = Callable[[BatchProgress], Any]


@dataclass
class IngestOptions:
    """Per-call ingestion options."""
    experiment_id: Optional[str] = None
    document_type: Optional[str] = None
    domain: Optional[str] = None
    custom_prompt: Optional[str] = None
    instructions: List[str] = field(default_factory=list)
    example_formats: Dict[str, str] = field(default_factory=dict)
    skip_existing: bool = True
    reingest: bool = False
    on_progress: Optional[ProgressCallback] = None
    cancel_event: Optional[asyncio.Event] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchResult:
    """Terminal outcome of one batch."""
    batch_index: int
    page_start: int
    page_end: int
    status: BatchStatus
    chunk_count: int = 0
    retry_count: int = 0
    error: Optional[str] = None
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def succeeded(self) -> bool:
        return self.status == BatchStatus.COMPLETED


@dataclass
class IngestResult:
    """Ingestion outcome: per-batch results plus an overall status."""
    document_id: UUID
    status: DocumentStatus
    batches: List[BatchResult] = field(default_factory=list)
    chunk_count: int = 0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    duration_ms: int = 0
    skipped: bool = False
    cancelled: bool = False

    @property
    def failed_batches(self) -> List[BatchResult]:
        return [b for b in self.batches if not b.succeeded]

    @property
    def failed_batch_count(self) -> int:
        return len(self.failed_batches)

    @property
    def successful_batch_count(self) -> int:
        return sum(1 for b in self.batches if b.succeeded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": str(self.document_id),
            "status": self.status.value,
            "chunk_count": self.chunk_count,
            "failed_batch_count": self.failed_batch_count,
            "successful_batch_count": self.successful_batch_count,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "duration_ms": self.duration_ms,
            "token_usage": self.token_usage.to_dict(),
            "batches": [
                {
                    "index": b.batch_index,
                    "pages": f"{b.page_start}-{b.page_end}",
                    "status": b.status.value,
                    "chunk_count": b.chunk_count,
                    "retry_count": b.retry_count,
                    "error": b.error,
                }
                for b in self.batches
            ],
        }


# =============================================================================
# Search Models
# =============================================================================

@dataclass
class SearchFilters:
    """Query-time predicate set. Pure value object."""
    document_ids: List[UUID] = field(default_factory=list)
    document_types: List[str] = field(default_factory=list)
    chunk_types: List[ChunkType] = field(default_factory=list)
    exclude_chunk_types: List[ChunkType] = field(default_factory=list)
    sub_types: List[str] = field(default_factory=list)
    domains: List[str] = field(default_factory=list)
    min_confidence: Optional[float] = None

    def with_default_exclusions(self, excluded: Set[ChunkType]) -> "SearchFilters":
        """Apply default type exclusions unless chunk types were requested explicitly."""
        if self.chunk_types or not excluded:
            return self
        merged = list(self.exclude_chunk_types)
        for chunk_type in sorted(excluded, key=lambda t: t.value):
            if chunk_type not in merged:
                merged.append(chunk_type)
        return replace(self, exclude_chunk_types=merged)


@dataclass
class SearchOptions:
    """Per-query tuning knobs."""
    min_similarity: Optional[float] = None
    type_boosts: Dict[ChunkType, float] = field(default_factory=dict)
    rerank: bool = False
    rerank_candidates: Optional[int] = None
    explain: bool = False
    semantic_weight: Optional[float] = None
    keyword_weight: Optional[float] = None


@dataclass
class ScoredChunk:
    """A store hit: chunk plus its raw pass score."""
    chunk: Chunk
    score: float


@dataclass
class SearchExplanation:
    """Which signals contributed to a result's final score."""
    semantic_score: Optional[float] = None
    keyword_score: Optional[float] = None
    merged_score: float = 0.0
    type_boost: float = 1.0
    rerank_score: Optional[float] = None
    reranked: bool = False

    @property
    def signals(self) -> List[str]:
        found = []
        if self.semantic_score is not None:
            found.append("semantic")
        if self.keyword_score is not None:
            found.append("keyword")
        if self.type_boost != 1.0:
            found.append("type_boost")
        if self.reranked:
            found.append("rerank")
        return found


@dataclass
class RankedResult:
    """One ranked search result. Ephemeral."""
    chunk: Chunk
    score: float
    rank: int = 0
    explanation: Optional[SearchExplanation] = None

    @property
    def chunk_id(self) -> UUID:
        return self.chunk.id


@dataclass
class SearchResponse:
    """Ranked results plus query metadata."""
    query: str
    mode: SearchMode
    results: List[RankedResult]
    total_found: int
    processing_time_ms: int
    reranked: bool = False
