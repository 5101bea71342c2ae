"""
Unit tests for the reranker implementations.

Covers:
- BaseReranker ordering contract
- LLMReranker (JSON scores keyed by DOC ids)
- CohereReranker (HTTP API, exercised through httpx.MockTransport)
- create_reranker factory
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from contextrag.config import RerankingConfig
from contextrag.providers.base import LLMResponse
from contextrag.retrieval.reranker import (
    BaseReranker,
    CohereReranker,
    LLMReranker,
    create_reranker,
)
from contextrag.shared.exceptions import ConfigurationError, RerankingError, TransientServiceError


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def documents():
    return [
        "Either party may terminate the agreement with thirty days notice.",
        "The supplier shall deliver goods within ten business days.",
        "Termination for cause takes effect immediately upon written notice.",
    ]


def llm_returning(text):
    llm = AsyncMock()
    llm.generate = AsyncMock(return_value=LLMResponse(text=text))
    return llm


class FixedReranker(BaseReranker):
    def __init__(self, scores):
        self.scores = scores

    async def score(self, query, documents):
        return list(self.scores)


# =============================================================================
# BaseReranker
# =============================================================================

class TestBaseReranker:

    @pytest.mark.asyncio
    async def test_sorted_by_score(self):
        ranked = await FixedReranker([0.2, 0.9, 0.5]).rerank("q", ["a", "b", "c"])
        assert ranked == [(1, 0.9), (2, 0.5), (0, 0.2)]

    @pytest.mark.asyncio
    async def test_ties_keep_input_order(self):
        ranked = await FixedReranker([0.5, 0.5, 0.5]).rerank("q", ["a", "b", "c"])
        assert [i for i, _ in ranked] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_top_k(self):
        ranked = await FixedReranker([0.2, 0.9, 0.5]).rerank("q", ["a", "b", "c"], top_k=1)
        assert ranked == [(1, 0.9)]

    @pytest.mark.asyncio
    async def test_score_count_mismatch(self):
        with pytest.raises(RerankingError):
            await FixedReranker([0.2]).rerank("q", ["a", "b"])

    @pytest.mark.asyncio
    async def test_empty_documents(self):
        assert await FixedReranker([]).rerank("q", []) == []


# =============================================================================
# LLMReranker
# =============================================================================

class TestLLMReranker:

    @pytest.mark.asyncio
    async def test_scores_by_doc_id(self, documents):
        payload = json.dumps([
            {"id": "DOC_2", "score": 0.92},
            {"id": "DOC_0", "score": 0.81},
            {"id": "DOC_1", "score": 0.05},
        ])
        reranker = LLMReranker(llm_returning(payload))

        ranked = await reranker.rerank("termination notice", documents)

        assert [i for i, _ in ranked] == [2, 0, 1]
        assert ranked[0][1] == pytest.approx(0.92)

    @pytest.mark.asyncio
    async def test_markdown_wrapped_response(self, documents):
        text = 'Here are the scores:\n```json\n[{"id": "DOC_1", "score": 0.7}]\n```'
        scores = await LLMReranker(llm_returning(text)).score("delivery", documents)
        assert scores == [0.0, 0.7, 0.0]

    @pytest.mark.asyncio
    async def test_unscored_documents_get_zero(self, documents):
        text = '[{"id": "DOC_0", "score": 0.6}]'
        scores = await LLMReranker(llm_returning(text)).score("termination", documents)
        assert scores == [0.6, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_truncated_array_repaired(self, documents):
        text = '[{"id": "DOC_1", "score": 0.9}, {"id": "DOC_0", "sc'
        scores = await LLMReranker(llm_returning(text)).score("delivery", documents)
        assert scores == [0.0, 0.9, 0.0]

    @pytest.mark.asyncio
    async def test_scores_clamped(self, documents):
        text = '[{"id": "DOC_0", "score": 4.2}, {"id": "DOC_1", "score": -1}]'
        scores = await LLMReranker(llm_returning(text)).score("q", documents)
        assert scores[:2] == [1.0, 0.0]

    @pytest.mark.asyncio
    async def test_out_of_range_ids_ignored(self, documents):
        text = '[{"id": "DOC_7", "score": 0.9}, {"id": "DOC_2", "score": 0.4}]'
        scores = await LLMReranker(llm_returning(text)).score("q", documents)
        assert scores == [0.0, 0.0, 0.4]

    @pytest.mark.asyncio
    async def test_nothing_scored_raises(self, documents):
        text = '[{"id": "DOC_9", "score": 0.9}]'
        with pytest.raises(RerankingError):
            await LLMReranker(llm_returning(text)).score("q", documents)

    @pytest.mark.asyncio
    async def test_unparsable_response_raises(self, documents):
        with pytest.raises(RerankingError):
            await LLMReranker(llm_returning("I cannot rank these.")).score("q", documents)

    @pytest.mark.asyncio
    async def test_provider_failure_raises_reranking_error(self, documents):
        llm = AsyncMock()
        llm.generate = AsyncMock(side_effect=TransientServiceError("overloaded"))

        with pytest.raises(RerankingError):
            await LLMReranker(llm).score("q", documents)

    def test_prompt_truncates_snippets(self):
        reranker = LLMReranker(AsyncMock(), snippet_length=10)
        prompt = reranker.build_prompt("query", ["0123456789ABCDEF", "short"])

        assert "[DOC_0] 0123456789..." in prompt
        assert "[DOC_1] short" in prompt
        assert "ABCDEF" not in prompt


# =============================================================================
# CohereReranker
# =============================================================================

def cohere_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestCohereReranker:

    @pytest.mark.asyncio
    async def test_scores_mapped_by_index(self, documents):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={
                "results": [
                    {"index": 2, "relevance_score": 0.88},
                    {"index": 0, "relevance_score": 0.61},
                ]
            })

        reranker = CohereReranker("co-key", client=cohere_client(handler))
        scores = await reranker.score("termination", documents)

        assert scores == [0.61, 0.0, 0.88]
        assert requests[0]["top_n"] == 3
        assert requests[0]["model"] == "rerank-v3.5"

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self, documents):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"results": []})

        await CohereReranker("co-key", client=cohere_client(handler)).score("q", documents)
        assert seen["auth"] == "Bearer co-key"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 401])
    async def test_http_errors_raise_reranking_error(self, documents, status):
        reranker = CohereReranker(
            "co-key", client=cohere_client(lambda request: httpx.Response(status, text="nope"))
        )
        with pytest.raises(RerankingError):
            await reranker.score("q", documents)

    @pytest.mark.asyncio
    async def test_invalid_json_raises_reranking_error(self, documents):
        reranker = CohereReranker(
            "co-key", client=cohere_client(lambda request: httpx.Response(200, text="<html>"))
        )
        with pytest.raises(RerankingError):
            await reranker.score("q", documents)

    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            CohereReranker("")


# =============================================================================
# Factory
# =============================================================================

class TestCreateReranker:

    def test_disabled_returns_none(self):
        assert create_reranker(RerankingConfig(enabled=False)) is None

    def test_llm_provider(self):
        reranker = create_reranker(RerankingConfig(enabled=True, snippet_length=120), llm=AsyncMock())
        assert isinstance(reranker, LLMReranker)
        assert reranker.snippet_length == 120

    def test_llm_provider_requires_llm(self):
        with pytest.raises(ConfigurationError):
            create_reranker(RerankingConfig(enabled=True, provider="llm"))

    def test_cohere_provider(self):
        config = RerankingConfig(enabled=True, provider="cohere", cohere_api_key="co-key")
        assert isinstance(create_reranker(config), CohereReranker)

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            create_reranker(RerankingConfig(enabled=True, provider="magic"))
