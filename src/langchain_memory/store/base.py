"""
Memory entry model and the store interface shared by all backends.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

CATEGORIES = ("fact", "preference", "decision", "todo", "lesson")

MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_importance(value: int) -> int:
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, int(value)))


def merge_keywords(existing: list[str], new: list[str]) -> list[str]:
    """Union two keyword lists case-insensitively, keeping first spellings."""
    merged = []
    seen = set()
    for keyword in [*existing, *new]:
        keyword = keyword.strip()
        if not keyword or keyword.lower() in seen:
            continue
        seen.add(keyword.lower())
        merged.append(keyword)
    return merged


@dataclass
class MemoryEntry:
    """A single durable memory fact."""

    content: str
    category: str = "fact"
    importance: int = 5
    keywords: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.importance = clamp_importance(self.importance)
        self.keywords = merge_keywords([], self.keywords)


@dataclass
class MemoryStats:
    """Summary statistics of a memory store."""

    total_count: int = 0
    by_category: dict[str, int] = field(default_factory=dict)
    average_importance: float = 0.0
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None


def format_age(created: datetime, now: Optional[datetime] = None) -> str:
    """Human-relative age of a memory."""
    age = (now or utcnow()) - created
    minutes = age.total_seconds() / 60
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{int(minutes)} min ago"
    if minutes < 60 * 24:
        return f"{int(minutes // 60)} h ago"
    return f"{int(minutes // (60 * 24))} d ago"


def compute_stats(entries: list[MemoryEntry]) -> MemoryStats:
    if not entries:
        return MemoryStats()
    by_category: dict[str, int] = {}
    for entry in entries:
        by_category[entry.category] = by_category.get(entry.category, 0) + 1
    return MemoryStats(
        total_count=len(entries),
        by_category=by_category,
        average_importance=sum(e.importance for e in entries) / len(entries),
        oldest=min(e.created_at for e in entries),
        newest=max(e.created_at for e in entries),
    )


class MemoryStore(ABC):
    """Async CRUD + search over memory entries."""

    @abstractmethod
    async def add(self, entry: MemoryEntry) -> MemoryEntry:
        """Add an entry, merging into a near-duplicate if the backend dedups."""

    @abstractmethod
    async def update(self, entry: MemoryEntry) -> bool:
        """Replace the entry with the same id. Returns False if it does not exist."""

    @abstractmethod
    async def get(self, memory_id: str) -> Optional[MemoryEntry]:
        """Fetch one entry by id."""

    @abstractmethod
    async def get_recent(self, count: int) -> list[MemoryEntry]:
        """Most recent entries, newest first."""

    @abstractmethod
    async def search(self, query: str, count: int) -> list[MemoryEntry]:
        """Most relevant entries for a query, best first."""

    @abstractmethod
    async def remove(self, memory_id: str) -> bool:
        """Delete an entry. Returns False if it did not exist."""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored entries."""

    @abstractmethod
    async def stats(self) -> MemoryStats:
        """Summary statistics."""
