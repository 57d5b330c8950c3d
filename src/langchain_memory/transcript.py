"""
Plain-text and Markdown renderings of LangChain messages.

Used for the working memory file, the immutable transcript archive and the
prompts handed to the curator, archiver and recall gate.
"""

import json
from datetime import datetime

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage

ROLE_LABELS = {
    "human": "User",
    "ai": "Assistant",
    "tool": "Tool",
    "system": "System",
}


def role_label(msg: BaseMessage) -> str:
    return ROLE_LABELS.get(msg.type, msg.type.capitalize())


def content_text(msg: BaseMessage) -> str:
    """Flatten the text parts of a message's content."""
    content = msg.content
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict):
                text = (
                    block.get("text")
                    or block.get("thinking")
                    or block.get("reasoning")
                    or ""
                )
                if text:
                    parts.append(text)
        return "\n".join(parts).strip()
    return str(content).strip() if content else ""


def _truncate(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _format_args(args) -> str:
    if not args:
        return ""
    return json.dumps(args, ensure_ascii=False)


def format_messages(messages: list, max_result_chars: int | None = None) -> str:
    """
    Render messages as one line per message: ``Role: text [tool call ...]``.

    Tool results are truncated to ``max_result_chars`` when given. Messages
    with nothing to show are skipped.
    """
    lines = []
    for msg in messages:
        parts = []
        text = content_text(msg)
        if isinstance(msg, ToolMessage):
            if text:
                parts.append(f"[tool result: {_truncate(text, max_result_chars)}]")
        elif text:
            parts.append(text)

        if isinstance(msg, AIMessage):
            for call in msg.tool_calls:
                parts.append(f"[tool call {call['name']}({_format_args(call.get('args'))})]")

        if not parts:
            continue
        lines.append(f"{role_label(msg)}: {' '.join(parts)}")
    return "\n".join(lines)


def render_markdown_transcript(messages: list, created: datetime) -> str:
    """Render messages as a standalone Markdown transcript document."""
    lines = [f"# Conversation transcript {created:%Y-%m-%d %H:%M:%S}", ""]
    for msg in messages:
        lines.append(f"### {role_label(msg)}")
        text = content_text(msg)
        if isinstance(msg, ToolMessage):
            lines.append("**Tool result**")
            lines.append(f"```\n{text}\n```")
        elif text:
            lines.append(text)

        if isinstance(msg, AIMessage):
            for call in msg.tool_calls:
                lines.append(f"**Tool call** `{call['name']}`")
                args = _format_args(call.get("args"))
                if args:
                    lines.append(f"```json\n{args}\n```")
        lines.append("")
    return "\n".join(lines)
