"""
In-process memory store with keyword scoring.

For deployments without an embedding model. Relevance combines content
matches, keyword matches, importance weighting and a logarithmic time decay.
"""

import asyncio
import copy
import math
from typing import Optional

from .base import (
    MemoryEntry,
    MemoryStats,
    MemoryStore,
    compute_stats,
    utcnow,
)


def relevance_score(entry: MemoryEntry, terms: list[str], now=None) -> float:
    if not terms:
        return 0.0

    content = entry.content.lower()
    keywords = [k.lower() for k in entry.keywords]
    score = 0.0
    for term in terms:
        term = term.lower()
        if term in content:
            score += 1.0
        if term in keywords:
            score += 2.0
        elif any(term in k for k in keywords):
            score += 1.0

    if score <= 0:
        return 0.0

    score *= 0.5 + entry.importance / 10.0
    age_hours = ((now or utcnow()) - entry.created_at).total_seconds() / 3600
    score *= 1.0 / (1.0 + math.log(1.0 + max(age_hours, 0.0) / 24.0))
    return score


class KeywordMemoryStore(MemoryStore):
    """List-backed store: exact-content dedup, keyword search, capacity eviction."""

    def __init__(self, max_entries: int = 200):
        self.max_entries = max_entries
        self._entries: list[MemoryEntry] = []
        self._lock = asyncio.Lock()

    async def add(self, entry: MemoryEntry) -> MemoryEntry:
        async with self._lock:
            for existing in self._entries:
                if existing.content == entry.content:
                    return copy.deepcopy(existing)

            self._entries.append(copy.deepcopy(entry))
            if len(self._entries) > self.max_entries:
                weakest = min(self._entries, key=lambda e: (e.importance, e.created_at))
                self._entries.remove(weakest)
            return entry

    async def update(self, entry: MemoryEntry) -> bool:
        async with self._lock:
            for existing in self._entries:
                if existing.id == entry.id:
                    existing.content = entry.content
                    existing.category = entry.category
                    existing.importance = entry.importance
                    existing.keywords = list(entry.keywords)
                    existing.created_at = utcnow()
                    return True
            return False

    async def get(self, memory_id: str) -> Optional[MemoryEntry]:
        async with self._lock:
            for existing in self._entries:
                if existing.id == memory_id:
                    return copy.deepcopy(existing)
            return None

    async def get_recent(self, count: int) -> list[MemoryEntry]:
        async with self._lock:
            ordered = sorted(self._entries, key=lambda e: e.created_at, reverse=True)
            return [copy.deepcopy(e) for e in ordered[:count]]

    async def search(self, query: str, count: int) -> list[MemoryEntry]:
        async with self._lock:
            terms = query.split()
            now = utcnow()
            scored = [(relevance_score(e, terms, now), e) for e in self._entries]
            scored = [pair for pair in scored if pair[0] > 0]
            scored.sort(key=lambda pair: (pair[0], pair[1].importance), reverse=True)
            return [copy.deepcopy(e) for _, e in scored[:count]]

    async def remove(self, memory_id: str) -> bool:
        async with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.id != memory_id]
            return len(self._entries) < before

    async def count(self) -> int:
        async with self._lock:
            return len(self._entries)

    async def stats(self) -> MemoryStats:
        async with self._lock:
            return compute_stats(self._entries)
