"""
Context pressure policy.

Estimates how full the model's context window is and progressively reduces
a message list when configured thresholds are crossed:

1. prune: replace old tool outputs with short stubs (recent ones protected)
2. summarize: replace older history with a condensed summary, keep recent
3. hard reset: keep only system prompt, summary and a minimum recent window

Below the first threshold the policy never touches history.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable

TOOL_OUTPUT_MARKER = "<action-output>"
PRUNED_TOOL_CONTENT = "[pruned tool output]"
_ACTION_MARK = re.compile(r"\[[✓✗]\]\s*\w+:")


def message_text(message: dict[str, Any]) -> str:
    """Flatten message content (plain text or multimodal parts) to text."""
    content = message.get("content")
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict):
                parts.append(str(part.get("text", "")))
            else:
                parts.append(str(part))
        return "\n".join(parts)
    return str(content)


def estimate_tokens(messages: list[dict[str, Any]]) -> int:
    """Approximate token count: one token per four characters."""
    chars = 0
    for message in messages:
        content = message.get("content")
        if isinstance(content, list):
            for part in content:
                text = part.get("text") if isinstance(part, dict) else None
                chars += len(text) if text else 100
        else:
            chars += len(message_text(message))
        for call in message.get("tool_calls") or []:
            chars += len(str(call.get("function", {}).get("arguments", "")))
    return math.ceil(chars / 4)


@dataclass
class ModelLimits:
    """
    Context limits and thresholds for one model.

    Attributes:
        context_window: Model context size in tokens
        prune_ratio: Ratio at which old tool outputs are pruned
        summarize_ratio: Ratio at which older history is summarized
        reset_ratio: Ratio at which history is hard-reset
        protect_tool_outputs: Most recent tool outputs never pruned
        keep_recent: Messages kept verbatim when summarizing
        min_recent: Messages kept verbatim on hard reset
        estimator: Token estimator over a message list
    """

    context_window: int = 256000
    prune_ratio: float = 0.6
    summarize_ratio: float = 0.8
    reset_ratio: float = 0.95
    protect_tool_outputs: int = 10
    keep_recent: int = 20
    min_recent: int = 6
    estimator: Callable[[list[dict[str, Any]]], int] = field(default=estimate_tokens)

    def ratio(self, messages: list[dict[str, Any]]) -> float:
        if self.context_window <= 0:
            return 0.0
        return self.estimator(messages) / self.context_window


@dataclass
class PressureReport:
    changed: bool
    ratio: float
    ratio_before: float
    actions_taken: list[str] = field(default_factory=list)


def _is_tool_output(message: dict[str, Any]) -> bool:
    if message.get("role") == "tool":
        return True
    return message.get("role") == "user" and TOOL_OUTPUT_MARKER in message_text(message)


def prune_tool_outputs(messages: list[dict[str, Any]], protect_last: int = 10) -> int:
    """
    Replace old tool outputs in place, keeping the last ``protect_last``.

    Native tool messages keep their role and call id so tool-call pairing
    stays valid; textual action-output blocks shrink to a one-line digest.

    Returns:
        Number of outputs pruned.
    """
    indices = [i for i, m in enumerate(messages) if _is_tool_output(m)]
    to_prune = indices[: max(0, len(indices) - protect_last)]
    pruned = 0
    for index in to_prune:
        message = messages[index]
        if message.get("role") == "tool":
            if message.get("content") == PRUNED_TOOL_CONTENT:
                continue
            messages[index] = {**message, "content": PRUNED_TOOL_CONTENT}
        else:
            text = message_text(message)
            marks = _ACTION_MARK.findall(text)
            if marks:
                digest = f"<action-output>[{len(marks)} actions: {', '.join(marks[:3])}...]</action-output>"
            else:
                digest = "<action-output>[pruned]</action-output>"
            if text == digest:
                continue
            messages[index] = {**message, "content": digest}
        pruned += 1
    return pruned


def safe_tail_start(messages: list[dict[str, Any]], keep: int, floor: int = 0) -> int:
    """
    Index where a kept tail of ``keep`` messages should start.

    The tail never begins with a tool message; the cut moves back to include
    the assistant message that issued the call.
    """
    start = max(floor, len(messages) - keep)
    while start > floor and messages[start].get("role") == "tool":
        start -= 1
    return start


def _summary_message(summary: str) -> dict[str, Any]:
    return {
        "role": "user",
        "content": (
            "<session-summary>\nThe following is a summary of the conversation so far:\n\n"
            f"{summary}\n\nContinue from this point. The recent messages below provide "
            "current context.\n</session-summary>"
        ),
    }


def apply_context_pressure_policy(
    messages: list[dict[str, Any]],
    limits: ModelLimits,
    summarize: Callable[[list[dict[str, Any]]], str],
) -> tuple[list[dict[str, Any]], PressureReport]:
    """
    Reduce ``messages`` according to the thresholds in ``limits``.

    Args:
        messages: Session history, leading system message first
        limits: Model limits and thresholds
        summarize: Builds a summary text from the messages being dropped

    Returns:
        (new_messages, report). ``new_messages`` is the input list itself
        when nothing changed.
    """
    before = limits.ratio(messages)
    report = PressureReport(changed=False, ratio=before, ratio_before=before)
    if before < limits.prune_ratio or len(messages) <= 1:
        return messages, report

    working = list(messages)
    if prune_tool_outputs(working, limits.protect_tool_outputs):
        report.actions_taken.append("prune")
    ratio = limits.ratio(working)

    system, body = working[:1], working[1:]
    if ratio >= limits.summarize_ratio and len(body) > limits.keep_recent:
        start = safe_tail_start(body, limits.keep_recent)
        if start > 0:
            working = system + [_summary_message(summarize(body[:start]))] + body[start:]
            report.actions_taken.append("summarize")
            ratio = limits.ratio(working)

    body = working[1:]
    start = safe_tail_start(body, limits.min_recent)
    if ratio >= limits.reset_ratio and start > 0:
        working = system + [_summary_message(summarize(body[:start]))] + body[start:]
        report.actions_taken.append("reset")
        ratio = limits.ratio(working)

    report.changed = bool(report.actions_taken)
    report.ratio = ratio
    return (working if report.changed else messages), report
