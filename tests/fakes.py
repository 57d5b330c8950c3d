"""
Test doubles for the chat model and embedding ports.
"""

import asyncio

from langchain_core.embeddings import Embeddings
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage


def tool_calls(*calls) -> AIMessage:
    """AIMessage requesting ``(name, args)`` tool calls."""
    return AIMessage(
        content="",
        tool_calls=[
            {"name": name, "args": args, "id": f"call-{name}-{i}"}
            for i, (name, args) in enumerate(calls)
        ],
    )


class ScriptedChatModel:
    """
    Replays scripted responses in order; answers "done" once exhausted.

    A scripted exception is raised instead of returned.
    """

    def __init__(self, responses=None, delay: float = 0.0):
        self.responses = list(responses or [])
        self.delay = delay
        self.calls: list[list] = []
        self.bound_tools: list[str] = []

    def bind_tools(self, tools, **kwargs):
        self.bound_tools = [t.name for t in tools]
        return self

    async def ainvoke(self, messages, **kwargs):
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            return AIMessage(content="done")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def prompt(self, call_index: int = 0) -> str:
        """Human prompt text of one recorded call."""
        for msg in self.calls[call_index]:
            if isinstance(msg, HumanMessage):
                return msg.content
        return ""


class RoutingChatModel(ScriptedChatModel):
    """Answers with ``route(system_prompt, messages)`` instead of a script."""

    def __init__(self, route):
        super().__init__()
        self.route = route

    async def ainvoke(self, messages, **kwargs):
        self.calls.append(list(messages))
        system = next((m.content for m in messages if isinstance(m, SystemMessage)), "")
        return self.route(system, messages)


class TableEmbeddings(Embeddings):
    """Looks vectors up in a fixed table so distances are exact."""

    def __init__(self, table: dict[str, list[float]]):
        self.table = table
        self.calls: list[str] = []

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        self.calls.append(text)
        return list(self.table[text])

    async def aembed_query(self, text: str) -> list[float]:
        return self.embed_query(text)


class FailingEmbeddings(Embeddings):
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        raise RuntimeError("embedding service down")

    def embed_query(self, text: str) -> list[float]:
        raise RuntimeError("embedding service down")

    async def aembed_query(self, text: str) -> list[float]:
        raise RuntimeError("embedding service down")


class SlowEmbeddings(TableEmbeddings):
    """Table embeddings that take ``delay`` seconds per query."""

    def __init__(self, table: dict[str, list[float]], delay: float):
        super().__init__(table)
        self.delay = delay

    async def aembed_query(self, text: str) -> list[float]:
        await asyncio.sleep(self.delay)
        return self.embed_query(text)
