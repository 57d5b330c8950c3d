"""
Memory recall gate.

Before each completion call, decides which stored memories to show the main
agent. The set is updated incrementally: previously injected memories can be
kept or dropped by position, and new ones found by search fill the remaining
budget.
"""

import logging
from typing import Optional

from langchain.tools import tool

from .decision import DecisionProcess
from .messages import MessageTag, TaggedSystemMessage
from .store.base import MemoryEntry, MemoryStore, format_age
from .tiers import Tier, TierStore

RECALL_SYSTEM_PROMPT = """You are a memory injection assistant. Based on the current conversation and the memories already injected, decide how to update the memories shown to the main assistant.

Your tasks:
1. Judge which injected memories are still relevant to the conversation.
2. Search the memory store for new memories the latest message may need.

Tools:
- keep_memories: declare which injected memories to keep (not calling it keeps all of them)
- search_memory: search the memory store for relevant memories (may be called several times)

Notes:
- Only keep memories related to the current topic.
- Search queries should be short keywords or phrases.
- For trivial exchanges (greetings, small talk) you may drop every memory and not search.
- You do not need to search every turn; search when the topic changes or new information is needed."""

MEMORY_HEADER = (
    "[Long-term memory] The following was retrieved automatically from the memory store. "
    "Refer to it naturally when replying:"
)

PRIMARY_HEADER = "[Primary memory] Persistent long-term information:"


def format_memory_line(entry: MemoryEntry, now=None) -> str:
    age = format_age(entry.created_at, now)
    return f"- [{entry.category}](importance: {entry.importance}, {age}) {entry.content}"


class MemoryRecaller:
    """
    Keeps the injected memory set in step with the conversation.

    Usage:
        recaller = MemoryRecaller(llm, store, tiers)
        message = await recaller.recall("what was my project called?")
        recaller.remember_turn(user_text, assistant_text)
    """

    def __init__(
        self,
        llm,
        store: MemoryStore,
        tiers: Optional[TierStore] = None,
        max_memories: int = 10,
        max_log_lines: int = 20,
        max_rounds: int = 8,
        timeout: Optional[float] = 120.0,
        logger: Optional[logging.Logger] = None,
    ):
        self._store = store
        self._tiers = tiers
        self.max_memories = max_memories
        self.max_log_lines = max_log_lines
        self._log = logger or logging.getLogger(__name__)
        self._process = DecisionProcess(
            llm, max_rounds=max_rounds, timeout=timeout, name="recall", logger=self._log
        )

        self.current: list[MemoryEntry] = []
        self.conversation_log: list[str] = []

    def remember_turn(self, user_input: str, assistant_reply: str = "") -> None:
        """Append one finished turn to the side-log shown to the recall model."""
        if user_input:
            self.conversation_log.append(f"User: {user_input}")
        if assistant_reply:
            self.conversation_log.append(f"Assistant: {assistant_reply}")
        if len(self.conversation_log) > self.max_log_lines:
            del self.conversation_log[: len(self.conversation_log) - self.max_log_lines]

    async def recall(self, user_input: str) -> Optional[TaggedSystemMessage]:
        """
        Update the injected set for ``user_input`` and return the memory message.

        Returns None when there is neither Primary Memory nor anything to
        inject. A failing decision process keeps the previous set.
        """
        count = await self._store.count()
        if count == 0 and not self.current:
            self._log.debug("[recall] memory store empty, skipping")
            return self.format_memory_message([])

        try:
            self.current = await self._select(user_input)
        except Exception as e:
            self._log.warning("[recall] keeping previous memories: %s", e)

        if self.current:
            self._log.info("[recall] injecting %d memories", len(self.current))
        else:
            self._log.debug("[recall] no memories to inject")
        return self.format_memory_message(self.current)

    async def _select(self, user_input: str) -> list[MemoryEntry]:
        previous = list(self.current)
        keep: dict = {"called": False, "indices": []}
        found: list[MemoryEntry] = []
        seen: set[str] = set()
        store = self._store
        log = self._log
        limit = self.max_memories

        @tool
        def keep_memories(indices: list[int]) -> str:
            """Declare which injected memories to keep, by their 1-based numbers. Pass [] to drop all of them. Not calling this keeps all."""
            keep["called"] = True
            keep["indices"] = list(indices)
            log.debug("[recall] keep %s", indices or "none")
            return f"Recorded: keeping {len(indices)} memories"

        @tool
        async def search_memory(query: str) -> str:
            """Search the memory store for memories relevant to a query. May be called several times for different topics."""
            log.debug("[recall] search: %s", query)
            results = await store.search(query, limit)
            for entry in results:
                if entry.id not in seen:
                    seen.add(entry.id)
                    found.append(entry)
            if not results:
                return "No related memories found."
            lines = [f"Found {len(results)} related memories:"]
            lines.extend(f"- [{m.category}](importance: {m.importance}) {m.content}" for m in results)
            return "\n".join(lines)

        await self._process.run(
            RECALL_SYSTEM_PROMPT,
            self._build_prompt(user_input, previous),
            [keep_memories, search_memory],
        )

        if not keep["called"]:
            kept = previous
        else:
            kept = [
                previous[i - 1]
                for i in dict.fromkeys(keep["indices"])
                if 1 <= i <= len(previous)
            ]

        kept_ids = {m.id for m in kept}
        fresh = sorted(
            (m for m in found if m.id not in kept_ids),
            key=lambda m: m.importance,
            reverse=True,
        )
        fresh = fresh[: max(0, limit - len(kept))]
        self._log.debug(
            "[recall] kept %d/%d, added %d", len(kept), len(previous), len(fresh)
        )
        return [*kept, *fresh]

    def _build_prompt(self, user_input: str, previous: list[MemoryEntry]) -> str:
        lines = ["## Current conversation"]
        lines.extend(self.conversation_log)
        lines.append(f"User: {user_input}")
        lines.append("")
        if previous:
            lines.append("## Currently injected memories")
            for i, m in enumerate(previous, 1):
                lines.append(f"[{i}] [{m.category}](importance: {m.importance}) {m.content}")
        else:
            lines.append("## No memories currently injected")
        return "\n".join(lines)

    def format_memory_message(self, memories: list[MemoryEntry]) -> Optional[TaggedSystemMessage]:
        parts = []
        if self._tiers is not None:
            primary = self._tiers.read(Tier.PRIMARY).strip()
            if primary:
                parts.append(f"{PRIMARY_HEADER}\n\n{primary}")
        if memories:
            lines = [MEMORY_HEADER, ""]
            lines.extend(format_memory_line(m) for m in memories)
            parts.append("\n".join(lines))
        if not parts:
            return None
        return TaggedSystemMessage(content="\n\n".join(parts), tag=MessageTag.RECALLED)
