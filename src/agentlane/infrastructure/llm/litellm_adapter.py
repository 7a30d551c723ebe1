"""
LiteLLM Streaming Adapter

Issues one streamed completion per loop iteration through LiteLLM and
normalizes the answer into a StreamResult, whichever provider responded.

Responsibilities:
- Aggregate streamed text, reasoning and tool-call deltas
- Race the request against a cancellation token and a hard timeout
- Execute native tool calls through their callbacks and append the
  assistant/tool messages to ``raw_response_messages``
- Translate provider errors into the agentlane error taxonomy
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import litellm
import structlog

from agentlane.core.domain.cancellation import CancellationToken
from agentlane.core.domain.errors import (
    AbortedError,
    ContextOverflowError,
    RequestTimeoutError,
    TransportError,
    is_context_overflow_message,
)
from agentlane.core.domain.models import StreamResult, ToolExecution
from agentlane.core.interfaces.tools import NativeTool
from agentlane.infrastructure.tools.tool_converter import (
    assistant_tool_calls_to_message,
    tool_result_to_message,
    tools_to_openai_format,
)

logger = structlog.get_logger()

CompletionFn = Callable[..., Awaitable[Any]]


@dataclass
class _Accumulator:
    """Collects streamed deltas; readable after cancellation for partial text."""

    text: list[str] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)
    tool_calls: dict[int, dict[str, Any]] = field(default_factory=dict)
    finish_reason: str | None = None

    def add_tool_call_delta(self, delta: Any) -> None:
        index = getattr(delta, "index", None) or 0
        call = self.tool_calls.setdefault(
            index,
            {"id": None, "type": "function", "function": {"name": "", "arguments": ""}},
        )
        if getattr(delta, "id", None):
            call["id"] = delta.id
        function = getattr(delta, "function", None)
        if function is not None:
            if getattr(function, "name", None):
                call["function"]["name"] += function.name
            if getattr(function, "arguments", None):
                call["function"]["arguments"] += function.arguments

    def ordered_tool_calls(self) -> list[dict[str, Any]]:
        calls = []
        for index in sorted(self.tool_calls):
            call = self.tool_calls[index]
            if not call["id"]:
                call["id"] = f"call_{index}_{int(time.time() * 1000)}"
            calls.append(call)
        return calls


class LiteLLMStreamingAdapter:
    """
    Streaming adapter backed by ``litellm.acompletion``.

    Example:
        >>> adapter = LiteLLMStreamingAdapter(model="gpt-4o-mini")
        >>> result = await adapter.stream([{"role": "user", "content": "hi"}])
        >>> result.text
        'Hello!'
    """

    def __init__(
        self,
        model: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        extra_params: dict[str, Any] | None = None,
        max_tool_output_chars: int = 20000,
        completion: CompletionFn | None = None,
        on_text_delta: Callable[[str], None] | None = None,
    ):
        """
        Initialize the adapter.

        Args:
            model: LiteLLM model string (e.g. "gpt-4o-mini", "anthropic/claude-...")
            temperature: Sampling temperature, provider default if None
            max_tokens: Output token cap, provider default if None
            extra_params: Additional provider parameters passed through
            max_tool_output_chars: Truncation limit for tool result messages
            completion: Completion coroutine, ``litellm.acompletion`` by default
            on_text_delta: Optional callback receiving streamed text deltas
        """
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.extra_params = extra_params or {}
        self.max_tool_output_chars = max_tool_output_chars
        self._completion = completion or litellm.acompletion
        self.on_text_delta = on_text_delta
        self.logger = logger.bind(component="litellm_adapter", model=model)

    def _params(self, tools: dict[str, NativeTool] | None) -> dict[str, Any]:
        params: dict[str, Any] = dict(self.extra_params)
        if self.temperature is not None:
            params["temperature"] = self.temperature
        if self.max_tokens is not None:
            params["max_tokens"] = self.max_tokens
        if tools:
            params["tools"] = tools_to_openai_format(tools)
            params["tool_choice"] = "auto"
        return params

    async def _request(
        self,
        messages: list[dict[str, Any]],
        tools: dict[str, NativeTool] | None,
        acc: _Accumulator,
    ) -> None:
        try:
            response = await self._completion(
                model=self.model,
                messages=messages,
                stream=True,
                **self._params(tools),
            )
            async for chunk in response:
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                choice = choices[0]
                delta = getattr(choice, "delta", None)
                if delta is not None:
                    content = getattr(delta, "content", None)
                    if content:
                        acc.text.append(content)
                        if self.on_text_delta:
                            self.on_text_delta(content)
                    reasoning = getattr(delta, "reasoning_content", None)
                    if reasoning:
                        acc.reasoning.append(reasoning)
                    for tool_delta in getattr(delta, "tool_calls", None) or []:
                        acc.add_tool_call_delta(tool_delta)
                if getattr(choice, "finish_reason", None):
                    acc.finish_reason = choice.finish_reason
        except asyncio.CancelledError:
            raise
        except litellm.ContextWindowExceededError as e:
            raise ContextOverflowError(str(e), cause=e) from e
        except Exception as e:
            if is_context_overflow_message(str(e)):
                raise ContextOverflowError(str(e), cause=e) from e
            raise TransportError(f"{type(e).__name__}: {e}", cause=e) from e

    async def _race(
        self,
        request: Awaitable[None],
        acc: _Accumulator,
        cancel_token: CancellationToken | None,
        timeout: float | None,
    ) -> None:
        task = asyncio.ensure_future(request)
        waiters: set[asyncio.Future] = {task}
        cancel_waiter = None
        if cancel_token is not None:
            cancel_waiter = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            task.result()
            return

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if cancel_token is not None and cancel_token.cancelled:
            raise AbortedError(partial_text="".join(acc.text))
        raise RequestTimeoutError(timeout or 0.0)

    async def _run_tool_calls(
        self,
        tool_calls: list[dict[str, Any]],
        tools: dict[str, NativeTool],
        cancel_token: CancellationToken | None,
    ) -> tuple[list[dict[str, Any]], list[ToolExecution]]:
        messages: list[dict[str, Any]] = []
        executions: list[ToolExecution] = []
        for call in tool_calls:
            call_id = call["id"]
            name = call["function"]["name"]
            tool = tools.get(name)

            if cancel_token is not None and cancel_token.cancelled:
                execution = ToolExecution(name, call_id, "ERROR [aborted]: request was cancelled")
            elif tool is None or tool.execute is None:
                self.logger.warning("unknown_tool_call", tool=name)
                execution = ToolExecution(name, call_id, f"ERROR [unknown_tool]: {name} is not available")
            else:
                try:
                    args = json.loads(call["function"]["arguments"] or "{}")
                except json.JSONDecodeError as e:
                    execution = ToolExecution(name, call_id, f"ERROR [invalid_json]: {e}")
                else:
                    if not isinstance(args, dict):
                        execution = ToolExecution(
                            name, call_id, "ERROR [invalid_arguments]: expected a JSON object"
                        )
                    else:
                        try:
                            execution = await tool.execute(call_id, args)
                        except Exception as e:
                            self.logger.error(
                                "tool_callback_failed",
                                tool=name,
                                error=str(e),
                                error_type=type(e).__name__,
                            )
                            execution = ToolExecution(name, call_id, f"ERROR [tool_exception]: {e}")

            executions.append(execution)
            messages.append(
                tool_result_to_message(call_id, name, execution.text, self.max_tool_output_chars)
            )
        return messages, executions

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: dict[str, NativeTool] | None = None,
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> StreamResult:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        acc = _Accumulator()
        start = time.time()
        await self._race(self._request(messages, tools, acc), acc, cancel_token, timeout)

        text = "".join(acc.text)
        reasoning = "".join(acc.reasoning)
        tool_calls = acc.ordered_tool_calls()
        self.logger.debug(
            "stream_completed",
            latency_ms=int((time.time() - start) * 1000),
            chars=len(text),
            tool_calls=len(tool_calls),
            finish_reason=acc.finish_reason,
        )

        if not tool_calls or not tools:
            return StreamResult(
                text=text,
                reasoning_text=reasoning,
                finish_reason=acc.finish_reason,
                raw_response_messages=[{"role": "assistant", "content": text}] if text else [],
            )

        tool_messages, executions = await self._run_tool_calls(tool_calls, tools, cancel_token)
        return StreamResult(
            text=text,
            reasoning_text=reasoning,
            finish_reason=acc.finish_reason or "tool_calls",
            has_native_tool_calls=True,
            raw_response_messages=[assistant_tool_calls_to_message(tool_calls, text)] + tool_messages,
            executions=executions,
        )
