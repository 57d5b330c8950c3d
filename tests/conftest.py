"""
Shared pytest configuration.

Puts ``src`` on ``sys.path`` so tests import ``langchain_memory`` directly
without installing the package, and provides the common fixtures.
"""

import sys
from pathlib import Path

import pytest

# Add src to PYTHONPATH
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from langchain_memory.config import MemoryConfig  # noqa: E402
from langchain_memory.store import KeywordMemoryStore  # noqa: E402
from langchain_memory.tiers import InMemoryTierStore  # noqa: E402


@pytest.fixture
def config(tmp_path):
    return MemoryConfig(memory_dir=tmp_path / "memory")


@pytest.fixture
def tiers():
    return InMemoryTierStore()


@pytest.fixture
def keyword_store():
    return KeywordMemoryStore()
