"""
Memory curator ("saver").

Runs on the conversation that is about to be cut from the window and decides,
through a bounded decision process, what to save, update or remove in the
vector memory store. The tier documents are shown to the model as read-only
context; the curator never writes them.

Policy enforced in host code, not left to the model:
  - at most ``max_mutations`` successful save/update/remove calls per run
  - save/update are refused until the store has been searched in this run
  - unknown categories, blank content and unknown ids are refused no-ops
"""

import logging
from dataclasses import dataclass
from typing import Optional

from langchain.tools import tool

from .decision import DecisionProcess
from .store.base import CATEGORIES, MemoryEntry, MemoryStore, clamp_importance
from .tiers import Tier, TierStore
from .transcript import format_messages

CURATOR_SYSTEM_PROMPT = """You are a memory curator. Read the recent conversation, query the memory store, and decide how to manage long-term memories.

## Memory sources

| Memory | Access |
|--------|--------|
| Working memory (previous conversation snapshot) | read-only, shown below |
| Recent memory (conversation summaries) | read-only, shown below |
| Primary memory (long-term key facts) | read-only, shown below |
| Vector memory (fine-grained entries) | read/write via search_memory / get_recent_memories / save_memory / update_memory / remove_memory |

You can only change the vector memory store. The other memories are reference material.

## Procedure

1. Read the conversation and identify information worth remembering.
2. Search the vector store for related memories before saving anything.
3. Decide per finding:
   - nothing related stored -> save a new memory
   - related but stale or incomplete -> update it
   - completely outdated or contradicted -> remove it
   - already stored accurately -> do nothing
4. If nothing is worth remembering, call no tools.

## Categories

- fact: facts (names, jobs, project details)
- preference: likes, habits, style
- decision: decisions or conclusions
- todo: plans and pending tasks
- lesson: lessons learned, technical insights

## Rules

- Always search before saving; search several phrasings if needed.
- Information worth remembering must be saved to the vector store even if the other memories already mention it.
- Each memory must be self-contained and understandable without the conversation.
- At most {max_mutations} save/update/remove operations in total.
- Focus on facts, preferences and decisions the user revealed, and on important actions the assistant performed and their results."""


@dataclass
class CurationReport:
    """What a curation run changed."""

    searches: int = 0
    saved: int = 0
    updated: int = 0
    removed: int = 0
    refused: int = 0

    @property
    def mutations(self) -> int:
        return self.saved + self.updated + self.removed


def _format_entry(entry: MemoryEntry) -> str:
    return f"- ID={entry.id} [{entry.category}](importance: {entry.importance}) {entry.content}"


class MemoryCurator:
    """Decides what to write, update or remove in the vector memory store."""

    def __init__(
        self,
        llm,
        store: MemoryStore,
        tiers: Optional[TierStore] = None,
        max_mutations: int = 3,
        max_rounds: int = 8,
        timeout: Optional[float] = 120.0,
        logger: Optional[logging.Logger] = None,
    ):
        self._store = store
        self._tiers = tiers
        self.max_mutations = max_mutations
        self._log = logger or logging.getLogger(__name__)
        self._process = DecisionProcess(
            llm, max_rounds=max_rounds, timeout=timeout, name="curator", logger=self._log
        )

    async def curate(self, history: list, user_input: Optional[str] = None) -> CurationReport:
        """
        Analyse ``history`` and apply at most ``max_mutations`` store changes.

        Provider failures propagate to the caller, which logs them and
        carries on with the turn.
        """
        report = CurationReport()
        transcript = format_messages(history)
        if not transcript:
            return report

        tools = self._build_tools(report)
        count = await self._store.count()
        prompt = self._build_prompt(transcript, user_input, count)
        system_prompt = CURATOR_SYSTEM_PROMPT.format(max_mutations=self.max_mutations)

        await self._process.run(system_prompt, prompt, tools)

        self._log.info(
            "Curation done: %d saved, %d updated, %d removed, %d refused (%d searches)",
            report.saved, report.updated, report.removed, report.refused, report.searches,
        )
        return report

    def _build_prompt(self, transcript: str, user_input: Optional[str], count: int) -> str:
        parts = [f"## Vector memory store: {count} entries"]
        if user_input:
            parts.append(f"## Latest user input\n{user_input}")
        parts.append(f"## Recent conversation\n{transcript}")

        if self._tiers is not None:
            for tier, title in (
                (Tier.PRIMARY, "Primary memory (read-only)"),
                (Tier.RECENT, "Recent memory (read-only)"),
                (Tier.WORKING, "Working memory (read-only)"),
            ):
                text = self._tiers.read(tier).strip()
                if text:
                    parts.append(f"## {title}\n{text}")
        return "\n\n".join(parts)

    def _build_tools(self, report: CurationReport) -> list:
        store = self._store
        log = self._log
        max_mutations = self.max_mutations

        def refuse(reason: str) -> str:
            report.refused += 1
            log.debug("[curator] refused: %s", reason)
            return f"[FAILED] {reason}"

        def check_write(category: str, content: str) -> Optional[str]:
            if report.mutations >= max_mutations:
                return f"Mutation limit reached ({max_mutations} per run)."
            if report.searches == 0:
                return "Search the memory store with search_memory before saving or updating."
            if category not in CATEGORIES:
                return f"Unknown category {category!r}; use one of {', '.join(CATEGORIES)}."
            if not content.strip():
                return "Memory content must not be empty."
            return None

        @tool
        async def search_memory(query: str, count: int = 5) -> str:
            """Search the vector memory store for existing memories related to a query. Always search before saving or updating."""
            report.searches += 1
            try:
                results = await store.search(query, max(1, min(count, 10)))
            except Exception as e:
                log.warning("[curator] search failed: %s", e)
                return f"[FAILED] Search unavailable: {e}"
            if not results:
                return "No related memories found."
            lines = [f"Found {len(results)} related memories:"]
            lines.extend(_format_entry(m) for m in results)
            return "\n".join(lines)

        @tool
        async def get_recent_memories(count: int = 5) -> str:
            """List the most recently saved memories to see the current state of the store."""
            try:
                results = await store.get_recent(max(1, min(count, 10)))
            except Exception as e:
                log.warning("[curator] listing recent memories failed: %s", e)
                return f"[FAILED] Store unavailable: {e}"
            if not results:
                return "The memory store is empty."
            lines = [f"{len(results)} most recent memories:"]
            lines.extend(_format_entry(m) for m in results)
            return "\n".join(lines)

        @tool
        async def save_memory(
            content: str, category: str, importance: int, keywords: list[str]
        ) -> str:
            """Save a new self-contained memory. category: fact/preference/decision/todo/lesson. importance: 1-10."""
            reason = check_write(category, content)
            if reason:
                return refuse(reason)
            entry = MemoryEntry(
                content=content.strip(),
                category=category,
                importance=clamp_importance(importance),
                keywords=keywords,
            )
            try:
                stored = await store.add(entry)
            except Exception as e:
                log.warning("[curator] save failed: %s", e)
                return f"[FAILED] Save failed: {e}"
            report.saved += 1
            log.info("[curator] saved [%s](importance %d) %s", category, entry.importance, content)
            return f"Saved (ID={stored.id}): {stored.content}"

        @tool
        async def update_memory(
            id: str, content: str, category: str, importance: int, keywords: list[str]
        ) -> str:
            """Replace an existing memory by ID with new content, category, importance (1-10) and keywords."""
            reason = check_write(category, content)
            if reason:
                return refuse(reason)
            entry = MemoryEntry(
                id=id,
                content=content.strip(),
                category=category,
                importance=clamp_importance(importance),
                keywords=keywords,
            )
            try:
                updated = await store.update(entry)
            except Exception as e:
                log.warning("[curator] update failed: %s", e)
                return f"[FAILED] Update failed: {e}"
            if not updated:
                return refuse(f"No memory with ID={id}.")
            report.updated += 1
            log.info("[curator] updated %s: [%s](importance %d) %s", id, category, entry.importance, content)
            return f"Updated: {entry.content}"

        @tool
        async def remove_memory(id: str) -> str:
            """Remove an outdated memory by ID."""
            if report.mutations >= max_mutations:
                return refuse(f"Mutation limit reached ({max_mutations} per run).")
            try:
                removed = await store.remove(id)
            except Exception as e:
                log.warning("[curator] remove failed: %s", e)
                return f"[FAILED] Remove failed: {e}"
            if not removed:
                return refuse(f"No memory with ID={id}.")
            report.removed += 1
            log.info("[curator] removed %s", id)
            return f"Removed: {id}"

        return [search_memory, get_recent_memories, save_memory, update_memory, remove_memory]
