"""
Memory configuration.
"""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_MEMORY_DIR = Path.home() / ".langchain_memory"
DEFAULT_RERANK_ENDPOINT = "https://dashscope.aliyuncs.com/compatible-api/v1/reranks"

# Allowed values for window_unit
WINDOW_UNITS = ("messages", "tokens")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class MemoryConfig:
    """Configuration for the tiered memory pipeline."""

    # Where tier files, transcripts and the vector database live
    memory_dir: Path = DEFAULT_MEMORY_DIR

    # Sliding window: trim once live size exceeds window_size + overflow_buffer
    window_size: int = 20
    overflow_buffer: int = 5
    window_unit: str = "messages"  # "messages" or "tokens"
    cut_at_user_boundary: bool = False

    # Recent memory is consolidated once it grows past this many characters
    recent_memory_threshold: int = 5000

    # Vector store
    max_entries: int = 200
    dedup_distance: float = 0.15  # cosine distance, ~0.85 similarity
    rerank_candidate_multiplier: int = 3

    # Decision processes
    max_recall_memories: int = 10
    max_curator_mutations: int = 3
    max_tool_rounds: int = 8

    # Timeouts (seconds) for remote calls
    llm_timeout: float = 120.0
    embed_timeout: float = 30.0

    # Component switches
    enable_curator: bool = True
    enable_recaller: bool = True
    enable_archiver: bool = True

    # Embeddings
    embedding_model: str = "text-embedding-3-small"
    embedding_base_url: str = ""  # empty = reuse API_BASE_URL
    embedding_api_key: str = ""  # empty = reuse API_KEY

    # Rerank (optional second retrieval phase)
    rerank_enabled: bool = False
    rerank_model: str = "gte-rerank-v2"
    rerank_api_key: str = ""
    rerank_endpoint: str = DEFAULT_RERANK_ENDPOINT

    def __post_init__(self):
        self.memory_dir = Path(self.memory_dir).expanduser()
        if self.window_unit not in WINDOW_UNITS:
            raise ValueError(
                f"window_unit must be one of {WINDOW_UNITS}, got {self.window_unit!r}"
            )
        if self.window_size < 1:
            raise ValueError("window_size must be at least 1")
        if self.overflow_buffer < 0:
            raise ValueError("overflow_buffer must not be negative")

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Load configuration from environment variables."""
        return cls(
            memory_dir=Path(os.getenv("MEMORY_DIR", str(DEFAULT_MEMORY_DIR))),
            window_size=int(os.getenv("MEMORY_WINDOW_SIZE", "20")),
            overflow_buffer=int(os.getenv("MEMORY_OVERFLOW_BUFFER", "5")),
            window_unit=os.getenv("MEMORY_WINDOW_UNIT", "messages").lower(),
            cut_at_user_boundary=_env_bool("MEMORY_CUT_AT_USER_BOUNDARY", "false"),
            recent_memory_threshold=int(os.getenv("MEMORY_RECENT_THRESHOLD", "5000")),
            max_entries=int(os.getenv("MEMORY_MAX_ENTRIES", "200")),
            dedup_distance=float(os.getenv("MEMORY_DEDUP_DISTANCE", "0.15")),
            rerank_candidate_multiplier=int(os.getenv("MEMORY_RERANK_MULTIPLIER", "3")),
            max_recall_memories=int(os.getenv("MEMORY_MAX_RECALL", "10")),
            max_curator_mutations=int(os.getenv("MEMORY_MAX_MUTATIONS", "3")),
            max_tool_rounds=int(os.getenv("MEMORY_MAX_TOOL_ROUNDS", "8")),
            llm_timeout=float(os.getenv("MEMORY_LLM_TIMEOUT", "120")),
            embed_timeout=float(os.getenv("MEMORY_EMBED_TIMEOUT", "30")),
            enable_curator=_env_bool("MEMORY_ENABLE_CURATOR", "true"),
            enable_recaller=_env_bool("MEMORY_ENABLE_RECALLER", "true"),
            enable_archiver=_env_bool("MEMORY_ENABLE_ARCHIVER", "true"),
            embedding_model=os.getenv("MEMORY_EMBEDDING_MODEL", "text-embedding-3-small"),
            embedding_base_url=os.getenv("MEMORY_EMBEDDING_BASE_URL", ""),
            embedding_api_key=os.getenv("MEMORY_EMBEDDING_API_KEY", ""),
            rerank_enabled=_env_bool("MEMORY_RERANK_ENABLED", "false"),
            rerank_model=os.getenv("MEMORY_RERANK_MODEL", "gte-rerank-v2"),
            rerank_api_key=os.getenv("MEMORY_RERANK_API_KEY", ""),
            rerank_endpoint=os.getenv("MEMORY_RERANK_ENDPOINT", DEFAULT_RERANK_ENDPOINT),
        )

    @property
    def trigger_size(self) -> int:
        """Live conversation size above which the window is trimmed."""
        return self.window_size + self.overflow_buffer

    @property
    def working_memory_path(self) -> Path:
        return self.memory_dir / "working_memory.md"

    @property
    def recent_memory_path(self) -> Path:
        return self.memory_dir / "recent_memory.md"

    @property
    def primary_memory_path(self) -> Path:
        return self.memory_dir / "primary_memory.md"

    @property
    def history_dir(self) -> Path:
        return self.memory_dir / "history"

    @property
    def database_path(self) -> Path:
        return self.memory_dir / "memories.db"
