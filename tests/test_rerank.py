"""
Tests for the DashScope-compatible rerank client.
"""

import json

import httpx
import pytest

from langchain_memory.rerank import DashScopeRerankClient, RerankResult


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestDashScopeRerankClient:
    async def test_sends_payload_and_parses_results(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"results": [
                    {"index": 2, "relevance_score": 0.9},
                    {"index": 0, "relevance_score": 0.4},
                ]},
            )

        async with _client(handler) as http:
            reranker = DashScopeRerankClient(
                api_key="sk-test",
                model="gte-rerank-v2",
                endpoint="https://rerank.example/v1/reranks",
                client=http,
            )
            results = await reranker.rerank("tea", ["coffee", "water", "green tea"], top_n=2)

        assert results == [RerankResult(2, 0.9), RerankResult(0, 0.4)]
        assert seen["url"] == "https://rerank.example/v1/reranks"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"] == {
            "model": "gte-rerank-v2",
            "query": "tea",
            "documents": ["coffee", "water", "green tea"],
            "top_n": 2,
        }

    async def test_no_documents_no_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with _client(handler) as http:
            reranker = DashScopeRerankClient(api_key="sk-test", client=http)
            assert await reranker.rerank("tea", [], top_n=3) == []

    async def test_http_error_raises(self):
        def handler(request):
            return httpx.Response(500, json={"message": "internal error"})

        async with _client(handler) as http:
            reranker = DashScopeRerankClient(api_key="sk-test", client=http)
            with pytest.raises(httpx.HTTPStatusError):
                await reranker.rerank("tea", ["coffee"], top_n=1)

    async def test_missing_results_is_empty(self):
        def handler(request):
            return httpx.Response(200, json={"request_id": "abc"})

        async with _client(handler) as http:
            reranker = DashScopeRerankClient(api_key="sk-test", client=http)
            assert await reranker.rerank("tea", ["coffee"], top_n=1) == []
