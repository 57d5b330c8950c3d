"""
Tier archiver.

When the window reducer cuts messages, the archiver:
  1. writes the cut messages to an immutable Markdown transcript file
  2. summarizes them and appends the summary to Recent Memory under a
     ``## YYYY-MM-DD HH:MM:SS`` header
Both run concurrently. When Recent Memory grows past its threshold, the
older half of its sections is offered to a consolidation process that may
rewrite Primary Memory; Recent Memory then keeps only the newer half.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from langchain.tools import tool
from langchain_core.messages import HumanMessage, SystemMessage

from .decision import DecisionProcess
from .tiers import Tier, TierStore
from .transcript import content_text, format_messages, render_markdown_transcript

SECTION_PATTERN = re.compile(r"^## \d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$", re.MULTILINE)

# Tool results in the retained tail are context only
RETAINED_RESULT_CHARS = 100

SUMMARY_SYSTEM_PROMPT = """You are a conversation summarizer. The messages below are being removed from the assistant's context window. Write a dense summary of them so the assistant can continue the conversation without them.

You will receive:
1. The conversation being removed
2. The conversation that stays in the window (context only; do not repeat it)

Keep:
- facts, decisions, user preferences, todos and conclusions
- goals and plans the user is working on, and their progress
- key results of tool calls (not the details of the calls)

Drop greetings, confirmations and transient state. Use a short bullet list in the same language as the conversation. Do NOT use markdown headers. Output only the summary."""

CONSOLIDATE_SYSTEM_PROMPT = """You are a memory consolidation assistant. Older conversation summaries are about to be discarded. Extract the information with lasting value and merge it into Primary Memory.

You will receive:
1. The older summaries being discarded
2. The current Primary Memory (persistent long-term information)

Rules:
- Keep facts, decisions, user preferences, todos and conclusions that stay valid long term.
- Pay special attention to the user's goals and plans; keep them in a "Current goals" section, and move finished goals out of it.
- Ignore temporary chatter and tool call details.
- Merge with the existing Primary Memory without losing anything already in it.
- Use Markdown organised in sections, for example:

```markdown
## Current goals
- Building the order module of the shop, refunds still missing

## Todos
- Add a refund_status column to the orders table

## User preferences
- Prefers concise code without heavy comments

## Key facts
- Monorepo: frontend in packages/web, backend in packages/api

## Decisions
- REST everywhere, no GraphQL
```

Call update_primary_memory with the COMPLETE new document. If nothing is worth keeping, do not call the tool and reply "no update"."""


@dataclass
class ArchiveResult:
    """Tier texts after an archive run."""

    recent_memory: str = ""
    primary_memory: str = ""


def split_sections(text: str) -> list[str]:
    """
    Split Recent Memory into timestamp-headed sections.

    Text before the first header stays attached to the first section.
    """
    starts = [m.start() for m in SECTION_PATTERN.finditer(text)]
    if not starts:
        return [text.strip()] if text.strip() else []
    starts[0] = 0
    bounds = starts + [len(text)]
    return [text[a:b].strip() for a, b in zip(bounds, bounds[1:]) if text[a:b].strip()]


class TierArchiver:
    """Owns Recent Memory, Primary Memory and the transcript archive."""

    def __init__(
        self,
        llm,
        tiers: TierStore,
        recent_memory_threshold: int = 5000,
        max_rounds: int = 8,
        timeout: Optional[float] = 120.0,
        logger: Optional[logging.Logger] = None,
    ):
        self._llm = llm
        self._tiers = tiers
        self.recent_memory_threshold = recent_memory_threshold
        self.timeout = timeout
        self._log = logger or logging.getLogger(__name__)
        self._process = DecisionProcess(
            llm, max_rounds=max_rounds, timeout=timeout, name="consolidate", logger=self._log
        )

    def read_recent_memory(self) -> str:
        return self._tiers.read(Tier.RECENT)

    def read_primary_memory(self) -> str:
        return self._tiers.read(Tier.PRIMARY)

    async def archive(self, cut: list, retained: list) -> Optional[ArchiveResult]:
        """
        Archive ``cut`` and return the updated tier texts.

        Returns None when there is nothing to archive. A failed summary
        leaves Recent Memory unchanged and is raised after the transcript
        write has finished.
        """
        if not cut:
            return None

        created = datetime.now()
        _, summary = await asyncio.gather(
            self._save_transcript(cut, created),
            self.summarize(cut, retained),
            return_exceptions=True,
        )
        if isinstance(summary, BaseException):
            raise summary

        if summary:
            self._append_recent(summary, created)
        else:
            self._log.debug("Summary empty, recent memory unchanged")

        try:
            await self.consolidate()
        except Exception as e:
            self._log.warning("Consolidation failed, tiers unchanged: %s", e)

        return ArchiveResult(
            recent_memory=self.read_recent_memory(),
            primary_memory=self.read_primary_memory(),
        )

    async def _save_transcript(self, cut: list, created: datetime) -> Optional[str]:
        content = render_markdown_transcript(cut, created)
        try:
            name = await asyncio.to_thread(self._tiers.write_transcript, created, content)
        except Exception as e:
            self._log.warning("Failed to save transcript of %d messages: %s", len(cut), e)
            return None
        self._log.info("Saved transcript %s (%d messages)", name, len(cut))
        return name

    async def summarize(self, cut: list, retained: list) -> str:
        """Dense summary of ``cut``, with ``retained`` as do-not-repeat context."""
        cut_text = format_messages(cut)
        if not cut_text:
            return ""

        parts = [f"## Conversation being removed\n{cut_text}"]
        retained_text = format_messages(retained, max_result_chars=RETAINED_RESULT_CHARS)
        if retained_text:
            parts.append(
                f"## Conversation still in the window (do not repeat)\n{retained_text}"
            )

        response = await asyncio.wait_for(
            self._llm.ainvoke([
                SystemMessage(content=SUMMARY_SYSTEM_PROMPT),
                HumanMessage(content="\n\n".join(parts)),
            ]),
            timeout=self.timeout,
        )
        return content_text(response)

    def _append_recent(self, summary: str, created: datetime) -> None:
        recent = self.read_recent_memory().rstrip()
        section = f"## {created:%Y-%m-%d %H:%M:%S}\n\n{summary.strip()}"
        updated = f"{recent}\n\n{section}\n" if recent else f"{section}\n"
        self._tiers.write(Tier.RECENT, updated)
        self._log.info("Appended summary to recent memory (%d chars)", len(updated))

    async def consolidate(self) -> bool:
        """
        Promote the older half of Recent Memory into Primary Memory.

        Returns True when Recent Memory was rewritten. Nothing is written
        until the consolidation process has returned.
        """
        recent = self.read_recent_memory()
        if len(recent) <= self.recent_memory_threshold:
            return False

        sections = split_sections(recent)
        if len(sections) < 2:
            self._log.debug("Recent memory has %d section(s), skipping consolidation", len(sections))
            return False

        half = len(sections) // 2
        older, newer = sections[:half], sections[half:]
        primary = self.read_primary_memory()
        captured: dict = {}

        @tool
        def update_primary_memory(content: str) -> str:
            """Replace Primary Memory with this COMPLETE Markdown document (existing content merged with the new information)."""
            captured["content"] = content
            return f"Primary memory will be updated ({len(content)} chars)"

        prompt = "## Older summaries being discarded\n" + "\n\n".join(older)
        if primary.strip():
            prompt += f"\n\n## Current primary memory\n{primary.strip()}"
        else:
            prompt += "\n\n## No primary memory yet"

        await self._process.run(CONSOLIDATE_SYSTEM_PROMPT, prompt, [update_primary_memory])

        if "content" in captured:
            self._tiers.write(Tier.PRIMARY, captured["content"])
            self._log.info("Updated primary memory (%d chars)", len(captured["content"]))
        else:
            self._log.debug("Consolidation promoted nothing")

        self._tiers.write(Tier.RECENT, "\n\n".join(newer) + "\n")
        self._log.info(
            "Consolidated recent memory: %d -> %d sections", len(sections), len(newer)
        )
        return True
