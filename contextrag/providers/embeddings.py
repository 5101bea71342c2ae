"""
ContextRAG - Embedding Providers
================================

Text embedding interface with implementations for:
- Voyage AI (voyage-3, voyage-3-lite, ...), with query/document input types
- OpenAI (text-embedding-3-small/large)

Every returned vector is checked against the provider's declared dimension.
Calls are retried with the shared RetryPolicy.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np
import openai
import voyageai
from voyageai import error as voyage_errors

from contextrag.providers.errors import translate_sdk_error
from contextrag.shared.enums import EmbeddingTask
from contextrag.shared.exceptions import (
    ConfigurationError,
    ContextRAGError,
    DimensionMismatchError,
    EmbeddingError,
    RateLimitError,
    TransientServiceError,
)
from contextrag.utils.retry import RetryConfig, with_retry

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingStats:
    """Statistics for embedding operations."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retry_count: int = 0
    total_texts: int = 0


class TextEmbedder(ABC):
    """Abstract interface for text embedding models."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return embedding dimension."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return model identifier."""
        pass

    @abstractmethod
    async def embed_batch(
        self,
        texts: List[str],
        task: EmbeddingTask = EmbeddingTask.DOCUMENT
    ) -> List[np.ndarray]:
        """Embed multiple texts, preserving order."""
        pass

    async def embed(
        self,
        text: str,
        task: EmbeddingTask = EmbeddingTask.DOCUMENT
    ) -> np.ndarray:
        """Embed a single text."""
        vectors = await self.embed_batch([text], task)
        return vectors[0]

    def validate_vector(self, vector: np.ndarray) -> np.ndarray:
        """Raise DimensionMismatchError unless the vector matches `dimension`."""
        actual = int(np.asarray(vector).shape[-1])
        if actual != self.dimension:
            raise DimensionMismatchError(expected=self.dimension, actual=actual)
        return vector


class _BatchingEmbedder(TextEmbedder):
    """Shared batching, retry and validation."""

    def __init__(self, model: str, dimension: int, batch_size: int, retry_config: Optional[RetryConfig]):
        self._model = model
        self._dimension = dimension
        self._batch_size = batch_size
        self._retry_config = retry_config or RetryConfig(max_retries=3)
        self._stats = EmbeddingStats()

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def stats(self) -> EmbeddingStats:
        return self._stats

    @abstractmethod
    async def _request(self, texts: List[str], task: EmbeddingTask) -> List[List[float]]:
        """One provider request; raises shared-taxonomy errors only."""
        pass

    async def embed_batch(
        self,
        texts: List[str],
        task: EmbeddingTask = EmbeddingTask.DOCUMENT,
        on_progress: Optional[Callable[[int, int], None]] = None
    ) -> List[np.ndarray]:
        if not texts:
            return []

        all_embeddings: List[np.ndarray] = []
        total_batches = (len(texts) + self._batch_size - 1) // self._batch_size

        for batch_idx, start in enumerate(range(0, len(texts), self._batch_size)):
            current_batch = texts[start:start + self._batch_size]
            self._stats.total_requests += 1

            def _on_retry(attempt, exc, delay):
                self._stats.retry_count += 1

            try:
                raw = await with_retry(
                    lambda: self._request(current_batch, task),
                    self._retry_config,
                    _on_retry,
                )
            except ContextRAGError:
                self._stats.failed_requests += 1
                raise

            if len(raw) != len(current_batch):
                self._stats.failed_requests += 1
                raise EmbeddingError(
                    f"{self.model_name} returned {len(raw)} embeddings for "
                    f"{len(current_batch)} texts in batch {batch_idx}"
                )

            vectors = [self.validate_vector(np.asarray(v, dtype=np.float32)) for v in raw]
            all_embeddings.extend(vectors)
            self._stats.successful_requests += 1
            self._stats.total_texts += len(current_batch)

            if on_progress:
                on_progress(batch_idx + 1, total_batches)

        return all_embeddings


# =============================================================================
# TEXT EMBEDDER IMPLEMENTATIONS
# =============================================================================

class VoyageTextEmbedder(_BatchingEmbedder):
    """
    Voyage AI text embeddings.

    Voyage trains asymmetric query/document encoders, so the task is passed
    through as `input_type`.

    Models:
    - voyage-3 (1024 dim, best quality)
    - voyage-3-lite (512 dim, faster)
    - voyage-3-large (1024 dim)
    """

    DIMENSIONS = {
        "voyage-3": 1024,
        "voyage-3-lite": 512,
        "voyage-3-large": 1024,
        "voyage-3.5": 1024,
        "voyage-3.5-lite": 1024,
        "voyage-2": 1024,
    }
    MAX_BATCH_SIZE = 128

    def __init__(
        self,
        model: str = "voyage-3",
        api_key: Optional[str] = None,
        dimension: Optional[int] = None,
        batch_size: int = MAX_BATCH_SIZE,
        retry_config: RetryConfig = None,
        client=None
    ):
        if client is None and not api_key:
            raise ConfigurationError("VOYAGE_API_KEY is required for the voyage embedding provider")
        super().__init__(
            model=model,
            dimension=dimension or self.DIMENSIONS.get(model, 1024),
            batch_size=min(batch_size, self.MAX_BATCH_SIZE),
            retry_config=retry_config,
        )
        self._client = client or voyageai.AsyncClient(api_key=api_key, max_retries=0)

    def _translate(self, error: Exception) -> ContextRAGError:
        errors = voyage_errors
        text = str(error)
        if isinstance(error, getattr(errors, "RateLimitError", ())):
            return RateLimitError(f"voyage rate limit: {text}", details={"provider": "voyage"})
        if isinstance(error, getattr(errors, "AuthenticationError", ())):
            return ConfigurationError(f"voyage rejected credentials: {text}")
        if isinstance(error, (
            getattr(errors, "Timeout", ()),
            getattr(errors, "APIConnectionError", ()),
            getattr(errors, "ServiceUnavailableError", ()),
            getattr(errors, "ServerError", ()),
            getattr(errors, "TryAgain", ()),
        )):
            return TransientServiceError(f"voyage unavailable: {text}")
        return EmbeddingError(f"voyage embedding failed: {text}")

    async def _request(self, texts: List[str], task: EmbeddingTask) -> List[List[float]]:
        try:
            result = await self._client.embed(
                texts=texts,
                model=self._model,
                input_type=task.value,
            )
        except voyage_errors.VoyageError as e:
            raise self._translate(e) from e
        return result.embeddings


class OpenAITextEmbedder(_BatchingEmbedder):
    """
    OpenAI text embeddings.

    Models:
    - text-embedding-3-small (1536 dim)
    - text-embedding-3-large (3072 dim)
    - text-embedding-ada-002 (1536 dim)

    OpenAI has no query/document distinction; the task is ignored.
    """

    DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }
    MAX_BATCH_SIZE = 2048

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        dimension: Optional[int] = None,
        batch_size: int = 512,
        retry_config: RetryConfig = None,
        client: Optional[openai.AsyncOpenAI] = None
    ):
        if client is None and not api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for the openai embedding provider")
        native = self.DIMENSIONS.get(model, 1536)
        super().__init__(
            model=model,
            dimension=dimension or native,
            batch_size=min(batch_size, self.MAX_BATCH_SIZE),
            retry_config=retry_config,
        )
        # v3 models can shorten vectors server-side
        self._request_dimensions = dimension if dimension and dimension != native else None
        self._client = client or openai.AsyncOpenAI(api_key=api_key, max_retries=0)

    async def _request(self, texts: List[str], task: EmbeddingTask) -> List[List[float]]:
        kwargs = {"input": texts, "model": self._model}
        if self._request_dimensions:
            kwargs["dimensions"] = self._request_dimensions
        try:
            response = await self._client.embeddings.create(**kwargs)
        except openai.OpenAIError as e:
            raise translate_sdk_error(e, openai, "openai") from e
        ordered = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in ordered]
