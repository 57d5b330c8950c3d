"""
Tiered long-term memory for LangChain chat agents.

Manages the context window through a middleware that intercepts messages
before they reach the LLM:

- Working Memory: transcript of the live conversation, rewritten each turn
- Recent Memory: timestamped summaries of trimmed conversation
- Primary Memory: one consolidated document of long-term facts

Trimmed conversation is first mined by a curator into a vector memory store
(SQLite + embeddings, semantic dedup), from which a recall gate injects the
relevant entries into each turn.
"""

from .archiver import ArchiveResult, TierArchiver
from .config import MemoryConfig
from .curator import CurationReport, MemoryCurator
from .decision import DecisionProcess, DecisionResult
from .messages import ContinuationMessage, MessageTag, TaggedSystemMessage, get_tag
from .middleware import MemoryMiddleware
from .recaller import MemoryRecaller
from .rerank import DashScopeRerankClient, RerankPort, RerankResult
from .session import MemorySession
from .store import (
    KeywordMemoryStore,
    MemoryEntry,
    MemoryStats,
    MemoryStore,
    VectorMemoryStore,
)
from .tiers import FileTierStore, InMemoryTierStore, Tier, TierStore
from .token_budget import estimate_message_tokens, estimate_tokens
from .tools import create_memory_tools

__all__ = [
    "ArchiveResult",
    "ContinuationMessage",
    "CurationReport",
    "DashScopeRerankClient",
    "DecisionProcess",
    "DecisionResult",
    "FileTierStore",
    "InMemoryTierStore",
    "KeywordMemoryStore",
    "MemoryConfig",
    "MemoryCurator",
    "MemoryEntry",
    "MemoryMiddleware",
    "MemoryRecaller",
    "MemorySession",
    "MemoryStats",
    "MemoryStore",
    "MessageTag",
    "RerankPort",
    "RerankResult",
    "TaggedSystemMessage",
    "Tier",
    "TierArchiver",
    "TierStore",
    "VectorMemoryStore",
    "create_memory_tools",
    "estimate_message_tokens",
    "estimate_tokens",
    "get_tag",
]
