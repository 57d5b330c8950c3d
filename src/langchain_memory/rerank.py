"""
Rerank port and a DashScope-compatible HTTP client.

The vector store uses a reranker, when configured, as the second phase of
retrieval: phase one pulls ``count * multiplier`` nearest candidates by
embedding distance, phase two asks the reranker to reorder them.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from .config import DEFAULT_RERANK_ENDPOINT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RerankResult:
    index: int  # position in the submitted documents list
    relevance_score: float


class RerankPort(Protocol):
    async def rerank(
        self, query: str, documents: list[str], top_n: int
    ) -> list[RerankResult]:
        """Return the best ``top_n`` documents as indices, most relevant first."""
        ...


class DashScopeRerankClient:
    """Reranker backed by the DashScope ``/reranks`` endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "gte-rerank-v2",
        endpoint: str = DEFAULT_RERANK_ENDPOINT,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._model = model
        self._endpoint = endpoint
        self._timeout = timeout
        self._client = client

    async def rerank(
        self, query: str, documents: list[str], top_n: int
    ) -> list[RerankResult]:
        if not documents:
            return []

        payload = {
            "model": self._model,
            "query": query,
            "documents": documents,
            "top_n": top_n,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        if self._client is not None:
            resp = await self._client.post(self._endpoint, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._endpoint, json=payload, headers=headers)
        resp.raise_for_status()

        data = resp.json()
        results = [
            RerankResult(
                index=int(item["index"]),
                relevance_score=float(item.get("relevance_score", 0.0)),
            )
            for item in data.get("results") or []
        ]
        logger.debug("Reranked %d documents, kept %d", len(documents), len(results))
        return results
