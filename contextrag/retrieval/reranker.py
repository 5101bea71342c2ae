"""
ContextRAG - Re-ranking Module
==============================

Re-ranking models for refining the top hybrid-search candidates.

Supports:
- LLM-based re-ranking (any TextGenerator; JSON scores validated with pydantic)
- Cohere Rerank API (over httpx)

Rerankers raise RerankingError on any failure; the retrieval engine catches
it and keeps the pre-rerank order.

Usage:
    from contextrag.retrieval.reranker import LLMReranker

    reranker = LLMReranker(llm)
    ranked = await reranker.rerank(query, documents, top_k=10)
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

import httpx
from pydantic import BaseModel, RootModel, field_validator

from contextrag.config import RerankingConfig
from contextrag.providers.base import TextGenerator
from contextrag.providers.errors import translate_http_error
from contextrag.shared.exceptions import (
    ConfigurationError,
    ContextRAGError,
    LLMParsingError,
    RerankingError,
)
from contextrag.shared.parsing import extract_and_parse_json

logger = logging.getLogger(__name__)

DOC_ID_PATTERN = re.compile(r"DOC_(\d+)")


# =============================================================================
# Base Reranker
# =============================================================================

class BaseReranker(ABC):
    """Abstract base class for re-ranking models."""

    name = "base"

    @abstractmethod
    async def score(
        self,
        query: str,
        documents: List[str]
    ) -> List[float]:
        """
        Score documents against query.

        Returns:
            One relevance score per document, in input order (higher = more relevant)

        Raises:
            RerankingError: If the reranker cannot produce scores
        """
        pass

    async def rerank(
        self,
        query: str,
        documents: List[str],
        top_k: int = None
    ) -> List[Tuple[int, float]]:
        """
        Re-rank documents and return sorted indices with scores.

        Equal scores keep their input order.

        Returns:
            List of (original_index, score) tuples, sorted by score desc
        """
        if not documents:
            return []

        scores = await self.score(query, documents)
        if len(scores) != len(documents):
            raise RerankingError(
                f"{self.name} returned {len(scores)} scores for {len(documents)} documents"
            )

        indexed_scores = sorted(enumerate(scores), key=lambda x: -x[1])
        if top_k:
            indexed_scores = indexed_scores[:top_k]
        return indexed_scores


# =============================================================================
# LLM Reranker
# =============================================================================

class RerankScore(BaseModel):
    id: str
    score: float
    reason: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value) -> str:
        return str(value)

    @field_validator("score")
    @classmethod
    def clamp_score(cls, value: float) -> float:
        return min(max(value, 0.0), 1.0)


class RerankResponse(RootModel[List[RerankScore]]):
    pass


RERANK_PROMPT = """TASK: Score document relevance to query. Return ONLY JSON.

QUERY: "{query}"

DOCUMENTS:
{documents}

INSTRUCTIONS:
1. Score each document 0.0 (irrelevant) to 1.0 (highly relevant)
2. Return ONLY a JSON array, no explanations
3. Use document IDs exactly as shown (DOC_0, DOC_1, etc.)

OUTPUT FORMAT (return EXACTLY this structure):
[{{"id":"DOC_0","score":0.85}},{{"id":"DOC_1","score":0.72}}]

JSON RESPONSE:"""


class LLMReranker(BaseReranker):
    """
    Re-ranking with a generation model.

    Each candidate is shown as a DOC_<i> snippet; the model answers with a
    JSON array of {id, score}. Truncated arrays are repaired; documents the
    model did not score get 0.0.

    Best for:
    - Queries needing reasoning over content
    - Small candidate sets (top 20-50)
    """

    name = "llm"

    def __init__(
        self,
        llm: TextGenerator,
        snippet_length: int = 400,
        temperature: float = 0.0,
        max_tokens: int = 2048
    ):
        self.llm = llm
        self.snippet_length = snippet_length
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_prompt(self, query: str, documents: List[str]) -> str:
        snippets = []
        for i, doc in enumerate(documents):
            text = doc[:self.snippet_length]
            if len(doc) > self.snippet_length:
                text += "..."
            snippets.append(f"[DOC_{i}] {text}")
        return RERANK_PROMPT.format(query=query, documents="\n\n---\n\n".join(snippets))

    async def score(
        self,
        query: str,
        documents: List[str]
    ) -> List[float]:
        """Score documents with one generation call."""
        if not documents:
            return []

        prompt = self.build_prompt(query, documents)
        try:
            response = await self.llm.generate(
                prompt, max_tokens=self.max_tokens, temperature=self.temperature
            )
            parsed = extract_and_parse_json(response.text, RerankResponse)
        except LLMParsingError as e:
            raise RerankingError(f"Unparsable rerank response: {e}", details={"reranker": self.name}) from e
        except ContextRAGError as e:
            raise RerankingError(f"Rerank call failed: {e}", details={"reranker": self.name}) from e

        scores = [0.0] * len(documents)
        scored = 0
        for item in parsed.root:
            match = DOC_ID_PATTERN.search(item.id)
            if not match:
                continue
            index = int(match.group(1))
            if 0 <= index < len(documents):
                scores[index] = item.score
                scored += 1

        if scored == 0:
            raise RerankingError("Rerank response scored no known documents", details={"reranker": self.name})
        if scored < len(documents):
            logger.debug(f"LLM reranker scored {scored}/{len(documents)} documents")
        return scores


# =============================================================================
# Cohere Reranker
# =============================================================================

class CohereReranker(BaseReranker):
    """
    Re-ranking through the Cohere Rerank API.

    Models:
    - rerank-v3.5 (multilingual)
    - rerank-english-v3.0
    - rerank-multilingual-v3.0
    """

    name = "cohere"
    API_URL = "https://api.cohere.com/v2/rerank"

    def __init__(
        self,
        api_key: str,
        model: str = "rerank-v3.5",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        if not api_key and client is None:
            raise ConfigurationError("COHERE_API_KEY is required for the cohere reranker")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def score(
        self,
        query: str,
        documents: List[str]
    ) -> List[float]:
        if not documents:
            return []

        client = self._get_client()
        try:
            response = await client.post(
                self.API_URL,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "query": query,
                    "documents": documents,
                    "top_n": len(documents),
                },
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            translated = translate_http_error(e, "cohere")
            raise RerankingError(f"Cohere rerank failed: {translated}", details={"reranker": self.name}) from e
        except ValueError as e:
            raise RerankingError(f"Cohere returned invalid JSON: {e}", details={"reranker": self.name}) from e

        scores = [0.0] * len(documents)
        for item in payload.get("results", []):
            index = item.get("index")
            if isinstance(index, int) and 0 <= index < len(documents):
                scores[index] = float(item.get("relevance_score", 0.0))
        return scores

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# =============================================================================
# Factory
# =============================================================================

def create_reranker(
    config: RerankingConfig,
    llm: Optional[TextGenerator] = None
) -> Optional[BaseReranker]:
    """
    Factory function to create the configured reranker.

    Returns:
        None when reranking is disabled
    """
    if not config.enabled:
        return None
    if config.provider == "llm":
        if llm is None:
            raise ConfigurationError("The llm reranker requires a text generation provider")
        return LLMReranker(llm, snippet_length=config.snippet_length)
    if config.provider == "cohere":
        return CohereReranker(config.cohere_api_key, model=config.cohere_model)
    raise ConfigurationError(f"Unknown reranker provider: {config.provider}")
