"""
Vector memory store on SQLite + numpy.

Memory rows and their raw float32 embeddings live in a single SQLite file,
accessed through aiosqlite so queries never block the event loop.
Similarity search runs in-process with numpy over a cached embedding matrix.

Architecture:
  - add → embed → nearest row → merge if within the dedup distance, else
    insert and evict the weakest row when over capacity
  - search → embed query → ``count * multiplier`` nearest candidates →
    optional rerank → best ``count``
  - every mutation marks the matrix cache dirty, so the next query reloads
    it and always sees the previous write

Distance is cosine distance: 0 = identical, 2 = opposite. The default dedup
distance 0.15 corresponds to a similarity of about 0.85.

Usage:
    store = await VectorMemoryStore.open(embeddings, "memories.db")
    await store.add(MemoryEntry(content="User prefers tea"))
    await store.close()
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite
import numpy as np
from langchain_core.embeddings import Embeddings

from ..rerank import RerankPort
from .base import (
    MemoryEntry,
    MemoryStats,
    MemoryStore,
    compute_stats,
    merge_keywords,
    utcnow,
)

CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS memories (
        id TEXT PRIMARY KEY,
        category TEXT NOT NULL,
        importance INTEGER NOT NULL,
        content TEXT NOT NULL,
        keywords TEXT NOT NULL,
        created_at TEXT NOT NULL,
        embedding BLOB NOT NULL
    )
"""

CREATE_INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_memories_eviction ON memories (importance, created_at)"
)

ENTRY_COLUMNS = "id, category, importance, content, keywords, created_at"


def _timestamp(value: datetime) -> str:
    # Fixed-width UTC so ORDER BY created_at sorts chronologically
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_entry(row) -> MemoryEntry:
    return MemoryEntry(
        id=row["id"],
        category=row["category"],
        importance=row["importance"],
        content=row["content"],
        keywords=json.loads(row["keywords"] or "[]"),
        created_at=_parse_timestamp(row["created_at"]),
    )


class VectorMemoryStore(MemoryStore):
    """
    Embedding-indexed memory store with semantic dedup and capacity eviction.

    Build it with ``await VectorMemoryStore.open(...)``, which opens the
    database before returning. All public operations serialize on one
    ``asyncio.Lock``: dedup-then-merge and insert-then-evict are multi-step
    operations on the backing file.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        db_path: Path,
        reranker: Optional[RerankPort] = None,
        max_entries: int = 200,
        dedup_distance: float = 0.15,
        rerank_candidate_multiplier: int = 3,
        embed_timeout: Optional[float] = 30.0,
        logger: Optional[logging.Logger] = None,
    ):
        self._embeddings = embeddings
        self._reranker = reranker
        self._db_path = Path(db_path)
        self.max_entries = max_entries
        self.dedup_distance = dedup_distance
        self.rerank_candidate_multiplier = rerank_candidate_multiplier
        self._embed_timeout = embed_timeout
        self._log = logger or logging.getLogger(__name__)

        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._dirty = True
        self._matrix_ids: list[str] = []
        self._matrix: Optional[np.ndarray] = None
        self._norms: Optional[np.ndarray] = None

    @classmethod
    async def open(
        cls,
        embeddings: Embeddings,
        db_path: Path,
        **kwargs,
    ) -> "VectorMemoryStore":
        """Create the store and open its database; raises ``sqlite3.Error`` on a bad path."""
        store = cls(embeddings, db_path, **kwargs)
        await store._connect()
        return store

    @classmethod
    async def from_config(
        cls,
        config,
        embeddings: Embeddings,
        reranker: Optional[RerankPort] = None,
    ) -> "VectorMemoryStore":
        return await cls.open(
            embeddings,
            config.database_path,
            reranker=reranker,
            max_entries=config.max_entries,
            dedup_distance=config.dedup_distance,
            rerank_candidate_multiplier=config.rerank_candidate_multiplier,
            embed_timeout=config.embed_timeout,
        )

    async def _connect(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(str(self._db_path), timeout=10.0)
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute(CREATE_TABLE_SQL)
            await conn.execute(CREATE_INDEX_SQL)
            await conn.commit()
        except Exception:
            await conn.close()
            raise
        self._conn = conn
        self._dirty = True

    @property
    def db(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("VectorMemoryStore is not open; use `await VectorMemoryStore.open(...)`")
        return self._conn

    # ── Public API ──

    async def add(self, entry: MemoryEntry) -> MemoryEntry:
        async with self._lock:
            vector = await self._embed(entry.content)

            nearest = await self._nearest(vector, 1)
            if nearest and nearest[0][1] <= self.dedup_distance:
                existing = await self._get_row(nearest[0][0])
                if existing is not None:
                    return await self._merge(existing, entry, vector, nearest[0][1])

            await self._insert_row(entry, vector)
            await self._evict_if_needed()
            return entry

    async def update(self, entry: MemoryEntry) -> bool:
        async with self._lock:
            existing = await self._get_row(entry.id)
            if existing is None:
                return False

            vector = None
            if existing.content != entry.content:
                vector = await self._embed(entry.content)

            entry.created_at = utcnow()
            await self._update_row(entry, vector)
            if vector is not None:
                await self._absorb_duplicates(entry, vector)
            return True

    async def get(self, memory_id: str) -> Optional[MemoryEntry]:
        async with self._lock:
            return await self._get_row(memory_id)

    async def get_recent(self, count: int) -> list[MemoryEntry]:
        async with self._lock:
            async with self.db.execute(
                f"SELECT {ENTRY_COLUMNS} FROM memories ORDER BY created_at DESC LIMIT ?",
                (count,),
            ) as cursor:
                rows = await cursor.fetchall()
            return [_row_to_entry(r) for r in rows]

    async def search(self, query: str, count: int) -> list[MemoryEntry]:
        """
        Two-phase retrieval.

        Phase 1 takes ``count * rerank_candidate_multiplier`` nearest rows by
        cosine distance. Phase 2, when a reranker is configured, reorders
        and truncates them; any reranker failure falls back to phase 1
        order. An empty store, or an embedding failure or timeout, yields ``[]``.
        """
        if count <= 0:
            return []
        async with self._lock:
            if await self._count() == 0:
                return []

            try:
                vector = await self._embed(query)
            except Exception as e:
                self._log.warning("Memory search skipped, embedding failed: %r", e)
                return []

            candidate_count = count * max(1, self.rerank_candidate_multiplier)
            nearest = await self._nearest(vector, candidate_count)
            entries = await self._load_entries([memory_id for memory_id, _ in nearest])
            if not entries:
                return []

            if self._reranker is not None:
                try:
                    results = await self._reranker.rerank(
                        query, [e.content for e in entries], count
                    )
                    reranked = [
                        entries[r.index] for r in results if 0 <= r.index < len(entries)
                    ]
                    return reranked[:count]
                except Exception as e:
                    self._log.debug("Rerank failed, using vector order: %s", e)

            return entries[:count]

    async def remove(self, memory_id: str) -> bool:
        async with self._lock:
            cursor = await self.db.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            await self.db.commit()
            self._dirty = True
            return cursor.rowcount > 0

    async def count(self) -> int:
        async with self._lock:
            return await self._count()

    async def stats(self) -> MemoryStats:
        async with self._lock:
            async with self.db.execute(f"SELECT {ENTRY_COLUMNS} FROM memories") as cursor:
                rows = await cursor.fetchall()
            return compute_stats([_row_to_entry(r) for r in rows])

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    # ── Embedding + similarity ──

    async def _embed(self, text: str) -> np.ndarray:
        vector = await asyncio.wait_for(
            self._embeddings.aembed_query(text), timeout=self._embed_timeout
        )
        return np.asarray(vector, dtype=np.float32)

    async def _refresh_matrix(self):
        """Reload the embedding matrix after any mutation."""
        if not self._dirty:
            return
        async with self.db.execute("SELECT id, embedding FROM memories") as cursor:
            rows = await cursor.fetchall()

        ids: list[str] = []
        vectors: list[np.ndarray] = []
        dim = None
        for row in rows:
            vector = np.frombuffer(row["embedding"], dtype=np.float32)
            if dim is None:
                dim = vector.shape[0]
            if vector.shape[0] != dim:
                self._log.warning(
                    "Skipping memory %s: embedding dimension %d != %d",
                    row["id"], vector.shape[0], dim,
                )
                continue
            ids.append(row["id"])
            vectors.append(vector)

        if vectors:
            self._matrix = np.vstack(vectors)
            self._norms = np.linalg.norm(self._matrix, axis=1)
        else:
            self._matrix = None
            self._norms = None
        self._matrix_ids = ids
        self._dirty = False

    async def _distances(self, vector: np.ndarray) -> np.ndarray:
        await self._refresh_matrix()
        if self._matrix is None or self._matrix.shape[1] != vector.shape[0]:
            return np.empty(0, dtype=np.float32)
        query_norm = float(np.linalg.norm(vector))
        denom = self._norms * query_norm
        sims = np.zeros(len(self._matrix_ids), dtype=np.float64)
        nonzero = denom > 0
        sims[nonzero] = (self._matrix[nonzero] @ vector) / denom[nonzero]
        return 1.0 - sims

    async def _nearest(self, vector: np.ndarray, k: int) -> list[tuple[str, float]]:
        distances = await self._distances(vector)
        if distances.size == 0 or k <= 0:
            return []
        order = np.argsort(distances, kind="stable")[:k]
        return [(self._matrix_ids[i], float(distances[i])) for i in order]

    # ── Row helpers (caller holds the lock) ──

    async def _merge(
        self,
        existing: MemoryEntry,
        entry: MemoryEntry,
        vector: np.ndarray,
        distance: float,
    ) -> MemoryEntry:
        new_vector = None
        if entry.importance >= existing.importance:
            if entry.content != existing.content:
                new_vector = vector
            existing.content = entry.content
            existing.category = entry.category
            existing.importance = entry.importance
        existing.keywords = merge_keywords(existing.keywords, entry.keywords)
        existing.created_at = utcnow()
        await self._update_row(existing, new_vector)
        self._log.info(
            "Merged duplicate memory into %s (distance %.3f)", existing.id, distance
        )
        # The row moved to a new vector; it may now sit next to another row
        if new_vector is not None:
            await self._absorb_duplicates(existing, new_vector)
        return existing

    async def _absorb_duplicates(self, entry: MemoryEntry, vector: np.ndarray):
        """After the row's vector changed, fold any other row that became a duplicate."""
        for memory_id, distance in await self._nearest(vector, 4):
            if memory_id == entry.id or distance > self.dedup_distance:
                continue
            other = await self._get_row(memory_id)
            if other is None:
                continue
            entry.keywords = merge_keywords(entry.keywords, other.keywords)
            entry.importance = max(entry.importance, other.importance)
            await self.db.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            await self._update_row(entry, None)
            self._log.info("Folded duplicate memory %s into %s", memory_id, entry.id)

    async def _insert_row(self, entry: MemoryEntry, vector: np.ndarray):
        await self.db.execute(
            """
            INSERT INTO memories (id, category, importance, content, keywords, created_at, embedding)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.category,
                entry.importance,
                entry.content,
                json.dumps(entry.keywords, ensure_ascii=False),
                _timestamp(entry.created_at),
                vector.astype(np.float32).tobytes(),
            ),
        )
        await self.db.commit()
        self._dirty = True

    async def _update_row(self, entry: MemoryEntry, vector: Optional[np.ndarray]):
        params = [
            entry.category,
            entry.importance,
            entry.content,
            json.dumps(entry.keywords, ensure_ascii=False),
            _timestamp(entry.created_at),
        ]
        if vector is not None:
            sql = """
                UPDATE memories SET category = ?, importance = ?, content = ?,
                    keywords = ?, created_at = ?, embedding = ?
                WHERE id = ?
            """
            params.append(vector.astype(np.float32).tobytes())
        else:
            sql = """
                UPDATE memories SET category = ?, importance = ?, content = ?,
                    keywords = ?, created_at = ?
                WHERE id = ?
            """
        params.append(entry.id)
        await self.db.execute(sql, params)
        await self.db.commit()
        self._dirty = True

    async def _evict_if_needed(self):
        """Evict exactly one row (lowest importance, then oldest) when over capacity."""
        if await self._count() <= self.max_entries:
            return
        async with self.db.execute(
            "SELECT id, importance FROM memories ORDER BY importance ASC, created_at ASC LIMIT 1"
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return
        await self.db.execute("DELETE FROM memories WHERE id = ?", (row["id"],))
        await self.db.commit()
        self._dirty = True
        self._log.info(
            "Evicted memory %s (importance %d) over capacity %d",
            row["id"], row["importance"], self.max_entries,
        )

    async def _count(self) -> int:
        async with self.db.execute("SELECT COUNT(*) FROM memories") as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def _get_row(self, memory_id: str) -> Optional[MemoryEntry]:
        async with self.db.execute(
            f"SELECT {ENTRY_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_entry(row) if row else None

    async def _load_entries(self, ids: list[str]) -> list[MemoryEntry]:
        """Load entries keeping the order of ``ids`` (relevance order)."""
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        async with self.db.execute(
            f"SELECT {ENTRY_COLUMNS} FROM memories WHERE id IN ({placeholders})", ids
        ) as cursor:
            rows = await cursor.fetchall()
        by_id = {r["id"]: _row_to_entry(r) for r in rows}
        return [by_id[i] for i in ids if i in by_id]
