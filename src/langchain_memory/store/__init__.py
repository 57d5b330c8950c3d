from .base import (
    CATEGORIES,
    MemoryEntry,
    MemoryStats,
    MemoryStore,
    format_age,
    merge_keywords,
)
from .keyword import KeywordMemoryStore
from .vector import VectorMemoryStore

__all__ = [
    "CATEGORIES",
    "KeywordMemoryStore",
    "MemoryEntry",
    "MemoryStats",
    "MemoryStore",
    "VectorMemoryStore",
    "format_age",
    "merge_keywords",
]
