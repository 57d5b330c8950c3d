"""
Size estimates for the sliding window.

The window can be measured in messages or in estimated tokens. The token
estimate is a character heuristic: it only has to tell when a conversation
has outgrown its window, never to match a provider's tokenizer.
"""

import json

# Characters per token, averaged over English prose and non-Latin scripts
CHARS_PER_TOKEN = 3

# Fixed cost of a message (role, separators) and of one tool call
MESSAGE_OVERHEAD = 4
TOOL_CALL_OVERHEAD = 10


def estimate_tokens(text: str) -> int:
    """Estimated token count of ``text``; at least 1 for non-empty text."""
    if not text:
        return 0
    return max(1, len(text) // CHARS_PER_TOKEN)


def _tool_call_tokens(args) -> int:
    return estimate_tokens(json.dumps(args or {}, ensure_ascii=False)) + TOOL_CALL_OVERHEAD


def _block_tokens(block) -> int:
    if isinstance(block, str):
        return estimate_tokens(block)
    if not isinstance(block, dict):
        return 0
    kind = block.get("type", "")
    if kind == "text":
        return estimate_tokens(block.get("text", ""))
    if kind in ("thinking", "reasoning"):
        return estimate_tokens(block.get(kind) or block.get("thinking") or "")
    if kind in ("tool_use", "tool_call"):
        return _tool_call_tokens(block.get("input") or block.get("args"))
    return 0


def estimate_message_tokens(msg) -> int:
    """Estimated tokens of one message: overhead, content blocks and tool calls."""
    content = getattr(msg, "content", "")
    if isinstance(content, str):
        total = estimate_tokens(content)
    elif isinstance(content, list):
        total = sum(_block_tokens(block) for block in content)
    else:
        total = 0
    total += sum(_tool_call_tokens(call.get("args")) for call in getattr(msg, "tool_calls", None) or [])
    return MESSAGE_OVERHEAD + total


def conversation_size(messages: list, unit: str = "messages") -> int:
    """Size of a conversation in the configured window unit."""
    if unit == "tokens":
        return sum(estimate_message_tokens(m) for m in messages)
    return len(messages)
