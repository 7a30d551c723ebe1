"""
Test doubles for agentlane.

ScriptedAdapter replays a fixed list of model turns so loop tests are
deterministic. RecordingExecutor stands in for the external action handlers.
"""

import asyncio
from typing import Any, Awaitable, Callable

from agentlane.core.domain.events import Action, ActionResult
from agentlane.core.domain.models import StreamResult, ToolExecution
from agentlane.core.interfaces.tools import NativeTool
from agentlane.infrastructure.tools.tool_converter import (
    assistant_tool_calls_to_message,
    tool_result_to_message,
)

Step = Callable[[list[dict[str, Any]], dict[str, NativeTool] | None], Awaitable[StreamResult]]


def text_turn(text: str, reasoning: str = "", finish_reason: str = "stop") -> Step:
    """A model turn answering with plain text."""

    async def step(messages, tools):
        return StreamResult(
            text=text,
            reasoning_text=reasoning,
            finish_reason=finish_reason,
            raw_response_messages=[{"role": "assistant", "content": text}] if text else [],
        )

    return step


def tool_turn(*calls: tuple[str, dict[str, Any]], text: str = "") -> Step:
    """A model turn answering with native tool calls, executed like the real adapter."""

    async def step(messages, tools):
        tool_calls = []
        tool_messages = []
        executions = []
        for index, (name, args) in enumerate(calls):
            call_id = f"call_{index}"
            tool_calls.append(
                {"id": call_id, "type": "function", "function": {"name": name, "arguments": "{}"}}
            )
            tool = (tools or {}).get(name)
            if tool is None:
                execution = ToolExecution(name, call_id, f"ERROR [unknown_tool]: {name} is not available")
            else:
                execution = await tool.execute(call_id, args)
            executions.append(execution)
            tool_messages.append(tool_result_to_message(call_id, name, execution.text))
        return StreamResult(
            text=text,
            finish_reason="tool_calls",
            has_native_tool_calls=True,
            raw_response_messages=[assistant_tool_calls_to_message(tool_calls, text)]
            + tool_messages,
            executions=executions,
        )

    return step


def raising_turn(error: Exception) -> Step:
    async def step(messages, tools):
        raise error

    return step


class ScriptedAdapter:
    """Streaming adapter replaying scripted turns and recording every request."""

    def __init__(self, steps: list[Step] | None = None, delay: float = 0.0):
        self.steps = list(steps or [])
        self.delay = delay
        self.requests: list[list[dict[str, Any]]] = []

    async def stream(self, messages, tools=None, cancel_token=None, timeout=None):
        self.requests.append(list(messages))
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.steps:
            return await text_turn("<end>out of script</end>")(messages, tools)
        step = self.steps.pop(0)
        return await step(messages, tools)


class RecordingExecutor:
    """
    Action executor double.

    Results can be configured per action label; unconfigured actions succeed
    with a generic result. Every executed batch is recorded.
    """

    def __init__(self, results: dict[str, ActionResult] | None = None):
        self.results = dict(results or {})
        self.batches: list[list[Action]] = []

    @property
    def executed(self) -> list[Action]:
        return [action for batch in self.batches for action in batch]

    async def execute(self, actions: list[Action]) -> list[ActionResult]:
        self.batches.append(list(actions))
        out = []
        for action in actions:
            configured = self.results.get(action.label)
            if configured is not None:
                out.append(configured)
            elif action.type == "read":
                out.append(ActionResult(action.label, True, f"1: contents of {action.path}"))
            else:
                out.append(ActionResult(action.label, True, "ok"))
        return out
