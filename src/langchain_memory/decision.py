"""
Bounded tool-calling loop shared by the curator, recall gate and consolidator.

The model only decides *which* tools to call with *which* arguments; the
tools are host closures that enforce policy (mutation caps, search-before-
write, merge rules). Malformed calls are answered with a ``[FAILED]`` tool
message and otherwise ignored, so a confused model can never abort a turn.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool
from pydantic import ValidationError

from .transcript import content_text


@dataclass
class DecisionResult:
    """Outcome of one decision process run."""

    text: str = ""
    tool_calls: list[dict] = field(default_factory=list)
    rounds: int = 0


class DecisionProcess:
    """
    Run a chat model against a fixed tool set until it stops calling tools.

    Usage:
        process = DecisionProcess(llm, max_rounds=8, timeout=120)
        result = await process.run(system_prompt, user_content, tools)
    """

    def __init__(
        self,
        llm,
        max_rounds: int = 8,
        timeout: Optional[float] = 120.0,
        name: str = "decision",
        logger: Optional[logging.Logger] = None,
    ):
        self._llm = llm
        self.max_rounds = max_rounds
        self.timeout = timeout
        self.name = name
        self._log = logger or logging.getLogger(__name__)

    async def run(
        self,
        system_prompt: str,
        user_content: str,
        tools: list[BaseTool],
    ) -> DecisionResult:
        """Run the loop under the configured timeout."""
        return await asyncio.wait_for(
            self._run(system_prompt, user_content, tools), timeout=self.timeout
        )

    async def _run(
        self,
        system_prompt: str,
        user_content: str,
        tools: list[BaseTool],
    ) -> DecisionResult:
        model = self._llm.bind_tools(tools) if tools else self._llm
        by_name = {t.name: t for t in tools}
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_content)]
        result = DecisionResult()

        for _ in range(self.max_rounds):
            response = await model.ainvoke(messages)
            result.rounds += 1
            messages.append(response)
            result.text = content_text(response)

            calls = getattr(response, "tool_calls", None) or []
            if not isinstance(response, AIMessage) or not calls:
                return result

            for i, call in enumerate(calls):
                result.tool_calls.append(call)
                output = await self._invoke_tool(by_name, call)
                messages.append(
                    ToolMessage(
                        content=output,
                        tool_call_id=call.get("id") or f"{self.name}-{result.rounds}-{i}",
                        name=call.get("name", ""),
                    )
                )

        self._log.debug("[%s] stopped after %d rounds", self.name, self.max_rounds)
        return result

    async def _invoke_tool(self, by_name: dict, call: dict) -> str:
        name = call.get("name", "")
        tool = by_name.get(name)
        if tool is None:
            self._log.debug("[%s] unknown tool %r ignored", self.name, name)
            return f"[FAILED] Unknown tool: {name}"

        self._log.debug("[%s] %s(%s)", self.name, name, call.get("args"))
        try:
            output = await tool.ainvoke(call.get("args") or {})
        except (ValidationError, ValueError, TypeError, KeyError) as e:
            self._log.debug("[%s] invalid arguments for %s: %s", self.name, name, e)
            return f"[FAILED] Invalid arguments for {name}: {e}"
        return str(output)
