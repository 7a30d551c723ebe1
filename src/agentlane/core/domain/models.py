"""
Core Domain Models

Data models shared by the agentic loop, the action bridge and the runtime:
normalized streaming results, per-iteration step outcomes, loop options
and the structured results every loop exit produces.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from agentlane.core.domain.events import Action, ActionResult


@dataclass
class ToolExecution:
    """
    Record of one native tool call handled inside the streaming adapter.

    Attributes:
        tool_name: Name the model called
        tool_call_id: Provider call id
        text: Text returned to the model as the tool result
        action: Action the call mapped to (None for unknown tools)
        result: ActionResult produced by the guard pipeline
    """

    tool_name: str
    tool_call_id: str
    text: str
    action: Action | None = None
    result: ActionResult | None = None


@dataclass
class StreamResult:
    """
    Normalized result of one model request, independent of the provider.

    Attributes:
        text: Assistant text content
        reasoning_text: Reasoning/thinking content, if the provider exposes it
        finish_reason: Provider finish reason ("stop", "length", "tool_calls")
        has_native_tool_calls: True if the model answered with tool calls
        raw_response_messages: Messages to append to history verbatim
            (assistant message with tool_calls plus tool result messages)
        executions: Native tool calls executed during this request
    """

    text: str = ""
    reasoning_text: str = ""
    finish_reason: str | None = None
    has_native_tool_calls: bool = False
    raw_response_messages: list[dict[str, Any]] = field(default_factory=list)
    executions: list[ToolExecution] = field(default_factory=list)


class StepKind(str, Enum):
    CONTINUE = "continue"
    BREAK = "break"
    RESET_ITERATION = "reset_iteration"


class LoopOutcome(str, Enum):
    """Terminal exits of the agentic loop."""

    ENDED = "ended"
    PLAN_READY = "plan_ready"
    LIMIT_REACHED = "limit_reached"
    TIMED_OUT = "timed_out"
    CONSECUTIVE_FAILURES = "consecutive_failures"
    STALLED = "stalled"
    ABORTED = "aborted"


@dataclass(frozen=True)
class StepOutcome:
    """
    Value returned by one loop step to drive the loop.

    CONTINUE runs another iteration, RESET_ITERATION does so with the
    iteration counter set back to zero, BREAK exits with ``outcome``.
    """

    kind: StepKind
    outcome: LoopOutcome | None = None
    end_message: str | None = None
    early_return: str | None = None

    @classmethod
    def proceed(cls) -> "StepOutcome":
        return cls(StepKind.CONTINUE)

    @classmethod
    def stop(
        cls,
        outcome: LoopOutcome,
        end_message: str | None = None,
        early_return: str | None = None,
    ) -> "StepOutcome":
        return cls(StepKind.BREAK, outcome, end_message, early_return)

    @classmethod
    def reset(cls) -> "StepOutcome":
        return cls(StepKind.RESET_ITERATION)


class ToolMode(str, Enum):
    NATIVE = "native"
    TEXT = "text"


@dataclass
class LoopOptions:
    """
    Options for one agentic loop invocation.

    Attributes:
        max_iterations: Iteration cap (continue actions reset the counter)
        mode: Native tool calling or textual action tags
        overall_timeout: Wall-clock limit for the whole loop in seconds
        iteration_timeout: Hard timeout for each model request in seconds
        max_consecutive_failures: Trip the breaker after this many
            all-failing iterations (None disables it)
        continue_actions: Honor continue actions
        hallucination_guard: Run textual hallucination guards
        malformed_edit_guard: Include the malformed-edit check (off for
            unattended callers, which only get the raw-code check)
        max_stall_retries: Nudges before giving up on a stalled model
        cache_file_contents: Cache successful read results per session
        execution_mode: Execution policy mode ("orchestrator" restricts
            the session to delegation-only actions)
        iteration_warning_at: Append a wrap-up warning from this iteration
        on_say: Callback receiving say messages
        on_event: Callback receiving (event_name, payload) loop events
    """

    max_iterations: int = 50
    mode: ToolMode = ToolMode.NATIVE
    overall_timeout: float | None = None
    iteration_timeout: float | None = None
    max_consecutive_failures: int | None = None
    continue_actions: bool = True
    hallucination_guard: bool = True
    malformed_edit_guard: bool = True
    max_stall_retries: int = 3
    cache_file_contents: bool = True
    execution_mode: str | None = None
    iteration_warning_at: int = 15
    on_say: Callable[[str], None] | None = None
    on_event: Callable[[str, dict[str, Any]], None] | None = None


@dataclass
class LoopResult:
    """
    Structured result of one loop invocation. Every exit path produces one.

    Attributes:
        outcome: Terminal exit reason
        response: Final assistant output (last distinct assistant text)
        thinking: Accumulated reasoning text
        end_message: Message carried by an honored end action
        early_return: Explanation for timeout, breaker or stall exits
        iterations: Iterations performed
        results: All ActionResults produced during the loop
    """

    outcome: LoopOutcome
    response: str = ""
    thinking: str = ""
    end_message: str | None = None
    early_return: str | None = None
    iterations: int = 0
    results: list[ActionResult] = field(default_factory=list)


@dataclass
class ChatResponse:
    """Result of ``AgentRuntime.chat``."""

    response: str
    thinking: str = ""
    outcome: LoopOutcome = LoopOutcome.ENDED


@dataclass
class UnattendedResponse:
    """Result of ``AgentRuntime.chat_unattended``."""

    response: str
    end_message: str | None = None
    outcome: LoopOutcome = LoopOutcome.ENDED
