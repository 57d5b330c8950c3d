"""
Tests for the keyword-scored in-process memory store.
"""

from datetime import timedelta

from langchain_memory.store import KeywordMemoryStore, MemoryEntry
from langchain_memory.store.base import clamp_importance, format_age, merge_keywords, utcnow
from langchain_memory.store.keyword import relevance_score


class TestEntryHelpers:
    def test_importance_clamped(self):
        assert MemoryEntry(content="x", importance=42).importance == 10
        assert MemoryEntry(content="x", importance=-3).importance == 1
        assert clamp_importance(7) == 7

    def test_merge_keywords_case_insensitive(self):
        assert merge_keywords(["Tea", "go"], ["tea", "GO", " rust ", ""]) == ["Tea", "go", "rust"]

    def test_format_age(self):
        now = utcnow()
        assert format_age(now - timedelta(seconds=20), now) == "just now"
        assert format_age(now - timedelta(minutes=5), now) == "5 min ago"
        assert format_age(now - timedelta(hours=3), now) == "3 h ago"
        assert format_age(now - timedelta(days=2, hours=1), now) == "2 d ago"


class TestRelevance:
    def test_no_match_scores_zero(self):
        entry = MemoryEntry(content="likes tea", keywords=["drinks"])
        assert relevance_score(entry, ["rust"]) == 0.0

    def test_keyword_match_beats_content_match(self):
        now = utcnow()
        by_keyword = MemoryEntry(content="something", keywords=["python"], created_at=now)
        by_content = MemoryEntry(content="uses python daily", created_at=now)
        assert relevance_score(by_keyword, ["python"], now) > relevance_score(by_content, ["python"], now)

    def test_older_entries_decay(self):
        now = utcnow()
        fresh = MemoryEntry(content="python", created_at=now)
        stale = MemoryEntry(content="python", created_at=now - timedelta(days=30))
        assert relevance_score(fresh, ["python"], now) > relevance_score(stale, ["python"], now)


class TestKeywordMemoryStore:
    async def test_exact_duplicate_returns_existing(self, keyword_store):
        first = await keyword_store.add(MemoryEntry(content="likes tea"))
        again = await keyword_store.add(MemoryEntry(content="likes tea"))
        assert again.id == first.id
        assert await keyword_store.count() == 1

    async def test_search_orders_by_relevance(self, keyword_store):
        await keyword_store.add(MemoryEntry(content="project uses postgres", keywords=["database"]))
        await keyword_store.add(MemoryEntry(content="likes tea"))
        await keyword_store.add(MemoryEntry(content="database backups run nightly", importance=2))

        results = await keyword_store.search("database", 5)
        assert [r.content for r in results] == [
            "project uses postgres",
            "database backups run nightly",
        ]

    async def test_capacity_evicts_weakest(self):
        store = KeywordMemoryStore(max_entries=3)
        for content, importance in zip(["a", "b", "c", "d"], [2, 8, 5, 9]):
            await store.add(MemoryEntry(content=content, importance=importance))
        assert sorted(e.importance for e in await store.get_recent(10)) == [5, 8, 9]

    async def test_update_and_remove(self, keyword_store):
        entry = await keyword_store.add(MemoryEntry(content="likes tea"))
        assert await keyword_store.update(MemoryEntry(id=entry.id, content="likes coffee"))
        assert (await keyword_store.get(entry.id)).content == "likes coffee"
        assert await keyword_store.remove(entry.id) is True
        assert await keyword_store.update(MemoryEntry(id=entry.id, content="x")) is False

    async def test_results_are_copies(self, keyword_store):
        entry = await keyword_store.add(MemoryEntry(content="likes tea"))
        fetched = await keyword_store.get(entry.id)
        fetched.content = "changed"
        assert (await keyword_store.get(entry.id)).content == "likes tea"

    async def test_stats(self, keyword_store):
        await keyword_store.add(MemoryEntry(content="a", category="todo", importance=4))
        await keyword_store.add(MemoryEntry(content="b", category="todo", importance=8))
        stats = await keyword_store.stats()
        assert stats.total_count == 2
        assert stats.by_category == {"todo": 2}
        assert stats.average_importance == 6.0
