"""
Storage port for the memory tier documents.

Three mutable text blobs (working, recent, primary) keyed by tier name, plus
an append-only set of immutable transcript files. Components never touch the
filesystem directly; they go through a ``TierStore`` so tests can use the
in-memory fake.
"""

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    WORKING = "working"
    RECENT = "recent"
    PRIMARY = "primary"


def transcript_name(created: datetime) -> str:
    return f"{created:%Y-%m-%d_%H-%M-%S}.md"


class TierStore(ABC):
    """Key-by-tier document storage."""

    @abstractmethod
    def read(self, tier: Tier) -> str:
        """Return the tier's text, ``""`` when missing or unreadable."""

    @abstractmethod
    def write(self, tier: Tier, content: str) -> None:
        """Replace the tier's text wholesale."""

    @abstractmethod
    def write_transcript(self, created: datetime, content: str) -> str:
        """Write an immutable transcript and return its name."""

    def clear(self, tier: Tier) -> None:
        self.write(tier, "")


class InMemoryTierStore(TierStore):
    """Dict-backed tier store for tests and ephemeral sessions."""

    def __init__(self, initial: dict | None = None):
        self.documents: dict[Tier, str] = {tier: "" for tier in Tier}
        for tier, content in (initial or {}).items():
            self.documents[Tier(tier)] = content
        self.transcripts: dict[str, str] = {}

    def read(self, tier: Tier) -> str:
        return self.documents.get(tier, "")

    def write(self, tier: Tier, content: str) -> None:
        self.documents[tier] = content

    def write_transcript(self, created: datetime, content: str) -> str:
        base = transcript_name(created)
        name = base
        suffix = 1
        while name in self.transcripts:
            name = base.replace(".md", f"-{suffix}.md")
            suffix += 1
        self.transcripts[name] = content
        return name


class FileTierStore(TierStore):
    """
    UTF-8 files on disk.

    Writes go through a temp file and ``os.replace`` so a tier is either the
    old document or the new one, never a partial write.
    """

    def __init__(
        self,
        working_path: Path,
        recent_path: Path,
        primary_path: Path,
        history_dir: Path,
    ):
        self.paths = {
            Tier.WORKING: Path(working_path),
            Tier.RECENT: Path(recent_path),
            Tier.PRIMARY: Path(primary_path),
        }
        self.history_dir = Path(history_dir)

    @classmethod
    def from_config(cls, config) -> "FileTierStore":
        return cls(
            working_path=config.working_memory_path,
            recent_path=config.recent_memory_path,
            primary_path=config.primary_memory_path,
            history_dir=config.history_dir,
        )

    def read(self, tier: Tier) -> str:
        path = self.paths[tier]
        if not path.exists():
            return ""
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to read %s memory from %s: %s", tier.value, path, e)
            return ""

    def write(self, tier: Tier, content: str) -> None:
        path = self.paths[tier]
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def write_transcript(self, created: datetime, content: str) -> str:
        # Encode first: a content error must not leave an empty file behind
        data = content.encode("utf-8")
        self.history_dir.mkdir(parents=True, exist_ok=True)
        base = transcript_name(created)
        name = base
        suffix = 1
        while True:
            path = self.history_dir / name
            try:
                # "x" refuses to overwrite: transcripts are never mutated
                with open(path, "xb") as f:
                    f.write(data)
                return name
            except FileExistsError:
                name = base.replace(".md", f"-{suffix}.md")
                suffix += 1
            except BaseException:
                path.unlink(missing_ok=True)
                raise
