"""
Message tagging for injected memory context.

Every message this package injects into the context carries an explicit
``MessageTag``. The reducer uses the tag to strip last turn's injections and
re-inject fresh ones, so the strip/re-inject cycle is idempotent.
"""

import uuid
from enum import Enum

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage


class MessageTag(str, Enum):
    """Origin of a message in the emitted context."""

    UNTAGGED = "untagged"
    PRIMARY = "primary_memory"
    RECENT = "recent_memory"
    WORKING = "working_memory"
    RECALLED = "recalled_memory"
    CONTINUATION = "continuation"


# Tags whose previous copy may be re-attached when nothing changed
TIER_TAGS = (MessageTag.PRIMARY, MessageTag.RECENT, MessageTag.WORKING)


class TaggedSystemMessage(SystemMessage):
    """System message injected by the memory pipeline."""

    tag: MessageTag


class ContinuationMessage(HumanMessage):
    """User-role marker inserted after a trim so the window starts with a user turn."""

    tag: MessageTag = MessageTag.CONTINUATION


def get_tag(message: BaseMessage) -> MessageTag:
    """Return the tag of a message, ``UNTAGGED`` for ordinary messages."""
    tag = getattr(message, "tag", None)
    if isinstance(tag, MessageTag):
        return tag
    if isinstance(tag, str):
        try:
            return MessageTag(tag)
        except ValueError:
            return MessageTag.UNTAGGED
    return MessageTag.UNTAGGED


def ensure_message_id(message: BaseMessage) -> str:
    """Assign a stable id to a message that lacks one and return it."""
    if not message.id:
        message.id = uuid.uuid4().hex
    return message.id
