"""
Sliding-window memory middleware.

Intercepts messages before they are sent to the LLM:

- Primary Memory: consolidated long-term document
- Recent Memory: summaries of trimmed conversation
- Working Memory: transcript of the previous session, until the first trim
- Live conversation: the last ``window_size`` messages

Once the live conversation outgrows ``window_size + overflow_buffer``, the
curator sees it first, then the oldest messages are cut, remembered as
trimmed and handed to the archiver. The caller still owns the complete
history; this middleware only affects what the LLM sees.
"""

import logging
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage, ToolMessage

from .archiver import ArchiveResult, TierArchiver
from .config import MemoryConfig
from .curator import MemoryCurator
from .messages import (
    TIER_TAGS,
    ContinuationMessage,
    MessageTag,
    TaggedSystemMessage,
    ensure_message_id,
    get_tag,
)
from .tiers import Tier, TierStore
from .token_budget import conversation_size, estimate_message_tokens
from .transcript import content_text, format_messages

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant with long-term memory."

CONTINUATION_TEXT = (
    "[Earlier conversation was archived to memory. "
    "Continue with the current goal based on the memory above.]"
)

TIER_HEADERS = {
    MessageTag.PRIMARY: "[Primary memory] Persistent long-term information:",
    MessageTag.RECENT: "[Recent memory] Summaries of earlier conversation:",
    MessageTag.WORKING: "[Working memory] Transcript of the previous conversation:",
}

TIER_MESSAGE_IDS = {
    MessageTag.PRIMARY: "memory-primary",
    MessageTag.RECENT: "memory-recent",
    MessageTag.WORKING: "memory-working",
}


class MemoryMiddleware:
    """
    Window reducer for the tiered memory pipeline.

    Usage:
        middleware = MemoryMiddleware(config, tiers, archiver, curator)
        context = await middleware.reduce(history)
        # Send context to the LLM instead of the full history
        middleware.save_working_memory(response_messages)
    """

    def __init__(
        self,
        config: MemoryConfig,
        tiers: TierStore,
        archiver: Optional[TierArchiver] = None,
        curator: Optional[MemoryCurator] = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        inject_primary: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.tiers = tiers
        self.archiver = archiver
        self.curator = curator
        self.system_prompt = system_prompt
        self.inject_primary = inject_primary
        self._log = logger or logging.getLogger(__name__)

        self.trimmed_ids: set[str] = set()
        self.latest_user_input: str = ""
        self.last_conversation: list = []
        # Previous session's transcript, injected until the first trim
        self.working_snapshot: str = tiers.read(Tier.WORKING)

    async def reduce(self, messages: list) -> list:
        """
        Reduce ``messages`` to the context for the next completion call.

        Returns a new list; the input is not modified. Curator and archiver
        failures are logged and never raised.
        """
        system_msgs, live, previous = self._partition(messages)
        if not system_msgs:
            system_msgs = [SystemMessage(content=self.system_prompt)]

        latest = self._latest_user_text(live)
        if latest:
            self.latest_user_input = latest

        archived: Optional[ArchiveResult] = None
        trimmed = False
        size = conversation_size(live, self.config.window_unit)
        if size > self.config.trigger_size:
            cut_index = self._select_cut(live)
            if cut_index > 0:
                archived = await self._trim(live, cut_index)
                live = live[cut_index:]
                trimmed = True
        else:
            self._log.debug(
                "Live conversation size %d within window (%d), no trimming needed",
                size,
                self.config.trigger_size,
            )

        if (live and not isinstance(live[0], HumanMessage)) or (trimmed and not live):
            live = [ContinuationMessage(content=CONTINUATION_TEXT), *live]

        injected = self._tier_messages(previous, archived, trimmed)
        self.last_conversation = [m for m in live if get_tag(m) != MessageTag.CONTINUATION]
        return [*system_msgs, *injected, *live]

    def _partition(self, messages: list) -> tuple[list, list, list]:
        system_msgs = []
        live = []
        previous = []
        for msg in messages:
            tag = get_tag(msg)
            if msg.id and msg.id in self.trimmed_ids:
                continue
            if tag in TIER_TAGS:
                previous.append(msg)
            elif tag != MessageTag.UNTAGGED:
                continue
            elif isinstance(msg, SystemMessage):
                system_msgs.append(msg)
            else:
                live.append(msg)
        return system_msgs, live, previous

    @staticmethod
    def _latest_user_text(live: list) -> str:
        for msg in reversed(live):
            if isinstance(msg, HumanMessage):
                return content_text(msg)
        return ""

    async def _trim(self, live: list, cut_index: int) -> Optional[ArchiveResult]:
        cut, tail = live[:cut_index], live[cut_index:]

        # The curator must see the cut messages before they are marked
        if self.curator is not None:
            try:
                await self.curator.curate(live, self.latest_user_input)
            except Exception as e:
                self._log.warning("Memory curator failed, continuing trim: %s", e)

        for msg in cut:
            self.trimmed_ids.add(ensure_message_id(msg))
        self._log.info(
            "Trimmed %d messages, %d kept (%d trimmed in total)",
            len(cut),
            len(tail),
            len(self.trimmed_ids),
        )

        self.working_snapshot = ""
        try:
            self.tiers.clear(Tier.WORKING)
        except OSError as e:
            self._log.warning("Failed to clear working memory: %s", e)

        if self.archiver is None:
            return None
        try:
            return await self.archiver.archive(cut, tail)
        except Exception as e:
            self._log.warning("Archiving failed, no tier update this turn: %s", e)
            return None

    def _select_cut(self, live: list) -> int:
        """
        Index of the first retained message.

        Flat cut keeps the last ``window_size`` (messages or estimated
        tokens); with ``cut_at_user_boundary`` the cut moves to the nearest
        user message within ``overflow_buffer`` positions. The cut never
        separates a tool call from its results.
        """
        n = len(live)
        if self.config.window_unit == "tokens":
            cut = n
            kept = 0
            for i in range(n - 1, -1, -1):
                kept += estimate_message_tokens(live[i])
                if kept > self.config.window_size:
                    break
                cut = i
        else:
            cut = n - self.config.window_size
        cut = max(cut, 0)

        if self.config.cut_at_user_boundary:
            cut = self._user_boundary(live, cut)

        while cut < n and isinstance(live[cut], ToolMessage):
            cut += 1
        return cut

    def _user_boundary(self, live: list, cut: int) -> int:
        buffer = self.config.overflow_buffer
        start = min(cut, len(live) - 1)
        for i in range(start, max(cut - buffer, 1) - 1, -1):
            if isinstance(live[i], HumanMessage):
                return i
        for i in range(cut + 1, min(cut + buffer, len(live) - 1) + 1):
            if isinstance(live[i], HumanMessage):
                return i
        return cut

    def _tier_messages(
        self,
        previous: list,
        archived: Optional[ArchiveResult],
        trimmed: bool,
    ) -> list:
        if archived is not None:
            texts = {
                MessageTag.PRIMARY: archived.primary_memory,
                MessageTag.RECENT: archived.recent_memory,
                MessageTag.WORKING: "",
            }
        elif previous and not trimmed:
            return self._reattach(previous)
        else:
            texts = {
                MessageTag.PRIMARY: self.tiers.read(Tier.PRIMARY),
                MessageTag.RECENT: self.tiers.read(Tier.RECENT),
                MessageTag.WORKING: self.working_snapshot,
            }

        result = []
        for tag in TIER_TAGS:
            if tag == MessageTag.PRIMARY and not self.inject_primary:
                continue
            text = texts[tag].strip()
            if not text:
                continue
            result.append(self._tier_message(tag, text))
        return result

    @staticmethod
    def _tier_message(tag: MessageTag, text: str) -> TaggedSystemMessage:
        return TaggedSystemMessage(
            content=f"{TIER_HEADERS[tag]}\n\n{text}",
            tag=tag,
            id=TIER_MESSAGE_IDS[tag],
        )

    def primary_message(self) -> Optional[TaggedSystemMessage]:
        """Primary Memory as a tier message, even when ``inject_primary`` is off."""
        text = self.tiers.read(Tier.PRIMARY).strip()
        if not text:
            return None
        return self._tier_message(MessageTag.PRIMARY, text)

    def _reattach(self, previous: list) -> list:
        """Previously injected tier messages, one per tier, unchanged."""
        by_tag = {}
        for msg in previous:
            by_tag.setdefault(get_tag(msg), msg)
        return [
            by_tag[tag]
            for tag in TIER_TAGS
            if tag in by_tag and (self.inject_primary or tag != MessageTag.PRIMARY)
        ]

    def save_working_memory(self, extra_messages: Optional[list] = None) -> str:
        """Rewrite Working Memory from the last emitted conversation plus ``extra_messages``."""
        text = format_messages([*self.last_conversation, *(extra_messages or [])])
        try:
            self.tiers.write(Tier.WORKING, text)
        except OSError as e:
            self._log.warning("Failed to save working memory: %s", e)
            return ""
        self._log.debug("Saved working memory (%d chars)", len(text))
        return text
