"""
Memory tools for the main agent.

Read-only access to the vector memory store, so the agent can look things
up explicitly in addition to what the recall gate injects.
"""

from langchain.tools import tool

from .store.base import MemoryStore, format_age

MAX_TOOL_RESULTS = 20


def _format_results(entries: list, header: str) -> str:
    lines = [header]
    for entry in entries:
        age = format_age(entry.created_at)
        keywords = f" (keywords: {', '.join(entry.keywords)})" if entry.keywords else ""
        lines.append(
            f"- [{entry.category}](importance: {entry.importance}, {age}) {entry.content}{keywords}"
        )
    return "\n".join(lines)


def create_memory_tools(store: MemoryStore) -> list:
    """Build ``search_memory`` and ``get_recent_memories`` bound to ``store``."""

    @tool
    async def search_memory(query: str, count: int = 10) -> str:
        """
        Search long-term memory for facts, preferences, decisions and todos.

        Use this when the user refers to something from an earlier
        conversation that is not in the current context.

        Args:
            query: Keywords or a short phrase describing what to look up
            count: Maximum number of results (default 10)
        """
        results = await store.search(query, max(1, min(count, MAX_TOOL_RESULTS)))
        if not results:
            return f"No memories found for: {query}"
        return _format_results(results, f"Found {len(results)} memories:")

    @tool
    async def get_recent_memories(count: int = 10) -> str:
        """
        List the most recently saved memories, newest first.

        Args:
            count: Maximum number of results (default 10)
        """
        results = await store.get_recent(max(1, min(count, MAX_TOOL_RESULTS)))
        if not results:
            return "No memories saved yet."
        return _format_results(results, f"{len(results)} most recent memories:")

    return [search_memory, get_recent_memories]
