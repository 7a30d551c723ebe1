"""
History policy for action results.

Controls how much of each action result is fed back to the model, both for
the textual ``<action-output>`` continuation block and for native tool
result messages.
"""

from agentlane.core.domain.events import Action, ActionResult, ActionType, EXPLORE_TYPES

MAX_GENERIC_RESULT_CHARS = 1600
MAX_READ_RESULT_CHARS = 14000
MAX_EXPLORE_RESULT_CHARS = 3000
MAX_EXPLORE_PREVIEW_LINES = 12
MAX_CONTINUATION_RESULTS = 8
MAX_ERROR_NOTE_CHARS = 220


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}\n... [truncated {len(text) - max_chars} chars]"


def _summarize_explore(text: str) -> str:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return "No matches"
    preview = lines[:MAX_EXPLORE_PREVIEW_LINES]
    hidden = len(lines) - len(preview)
    body = "\n".join(preview)
    if hidden > 0:
        body += f"\n... [{hidden} more lines]"
    return truncate(body, MAX_EXPLORE_RESULT_CHARS)


def summarize_result_text(action_type: str | None, text: str) -> str:
    """Truncate one result text according to the kind of action that produced it."""
    if action_type == ActionType.READ.value:
        return truncate(text, MAX_READ_RESULT_CHARS)
    if action_type in EXPLORE_TYPES:
        return _summarize_explore(text)
    return truncate(text, MAX_GENERIC_RESULT_CHARS)


def _select(pairs: list[tuple[Action, ActionResult]]) -> list[int]:
    """Pick at most MAX_CONTINUATION_RESULTS indices, newest failures first."""
    if len(pairs) <= MAX_CONTINUATION_RESULTS:
        return list(range(len(pairs)))

    selected: list[int] = []
    for index in reversed(range(len(pairs))):
        if not pairs[index][1].success:
            selected.append(index)
        if len(selected) >= MAX_CONTINUATION_RESULTS:
            break
    for index in reversed(range(len(pairs))):
        if len(selected) >= MAX_CONTINUATION_RESULTS:
            break
        if index not in selected:
            selected.append(index)
    return sorted(selected)


def build_continuation_output(pairs: list[tuple[Action, ActionResult]]) -> str:
    """
    Render executed actions as an ``<action-output>`` block.

    Each entry reads ``[✓] Label`` or ``[✗] Label (error)`` followed by the
    truncated result text. Older successful results are omitted beyond the
    cap; failures are kept preferentially.
    """
    selected = _select(pairs)
    blocks = []
    for index in selected:
        action, result = pairs[index]
        status = "✓" if result.success else "✗"
        error_note = f" ({truncate(result.error, MAX_ERROR_NOTE_CHARS)})" if result.error else ""
        summary = summarize_result_text(action.type, result.result or "")
        blocks.append(f"[{status}] {result.action}{error_note}\n{summary}")

    omitted = len(pairs) - len(selected)
    if omitted > 0:
        blocks.append(f"[i] {omitted} older action result(s) omitted for context hygiene.")

    body = "\n\n".join(blocks)
    return f"<action-output>\n{body}\n</action-output>"
