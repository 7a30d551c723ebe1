"""
Action Guard Pipeline

Every Action passes through the same ordered guards regardless of whether
it came from a native tool call or a textual action tag:

1. control-flow short-circuit (say/end/continue never reach the executor)
2. execution-policy block
3. malformed-content guard (escaped-newline corruption, one repair attempt)
4. read-coverage tracking
5. edit validation (edits require a full read of the file)
6. execution through the shared action executor
7. unresolved-edit tracking
8. file-content caching

Rejections never raise. They become failed ActionResults carrying a
remediation instruction for the model.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import structlog

from agentlane.core.domain.events import (
    Action,
    ActionResult,
    ActionType,
    ControlFlow,
    MUTATING_TYPES,
)
from agentlane.core.domain.policy import ExecutionPolicy
from agentlane.core.interfaces.actions import ActionExecutorProtocol

logger = structlog.get_logger()


class ReadCoverage(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


@dataclass
class LoopState:
    """
    Scratch state for one loop invocation, discarded at loop exit.

    Attributes:
        read_coverage: path -> full/partial read coverage
        unresolved_edits: paths whose last edit/write failed
        blocked_ends: end actions blocked so far
    """

    read_coverage: dict[str, ReadCoverage] = field(default_factory=dict)
    unresolved_edits: set[str] = field(default_factory=set)
    blocked_ends: int = 0

    def mark_read(self, path: str, partial: bool) -> None:
        # A full read is never downgraded by a later partial one.
        if self.read_coverage.get(path) is ReadCoverage.FULL:
            return
        self.read_coverage[path] = ReadCoverage.PARTIAL if partial else ReadCoverage.FULL

    def fully_read(self, path: str) -> bool:
        return self.read_coverage.get(path) is ReadCoverage.FULL


class FileCacheProtocol(Protocol):
    def put(self, path: str, content: str) -> bool: ...

    def invalidate(self, path: str) -> None: ...


# ---------------------------------------------------------------------------
# Escaped-newline corruption
# ---------------------------------------------------------------------------

_INDENTED_ESCAPE = re.compile(r"\\n[ \t]{2,}[^\s]")
_CHAINED_ESCAPES = re.compile(r"(?:\\n[ \t]*){3,}")
_ESCAPE_BEFORE_KEYWORD = re.compile(
    r"\\n[ \t]*(?:const|let|var|if|for|while|return|function|class|import|export|def)\b"
)


def _strip_literals_and_comments(text: str) -> str:
    """
    Blank out string literals and comments, keeping offsets and newlines.

    Escaped newlines inside literals are legitimate and must not count as
    structural corruption.
    """
    out: list[str] = []
    state = "code"
    quote = ""
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""
        if state == "code":
            if ch in "'\"`" and (ch != "'" or nxt):
                state, quote = "string", ch
                out.append(" ")
            elif ch == "/" and nxt == "/":
                state = "line_comment"
                out.append("  ")
                i += 1
            elif ch == "/" and nxt == "*":
                state = "block_comment"
                out.append("  ")
                i += 1
            else:
                out.append(ch)
        elif state == "string":
            if ch == "\\":
                out.append("  ")
                i += 1
            elif ch == quote:
                state = "code"
                out.append(" ")
            else:
                out.append("\n" if ch == "\n" else " ")
        elif state == "line_comment":
            if ch == "\n":
                state = "code"
                out.append("\n")
            else:
                out.append(" ")
        else:
            if ch == "*" and nxt == "/":
                state = "code"
                out.append("  ")
                i += 1
            else:
                out.append("\n" if ch == "\n" else " ")
        i += 1
    return "".join(out)


def detect_escaped_newline_corruption(content: str) -> str | None:
    """
    Detect literal ``\\n`` sequences used as structural line breaks.

    Returns:
        A short description of the corruption, or None if the content looks sane.
    """
    if "\\n" not in content:
        return None

    structural = _strip_literals_and_comments(content)
    if len(_INDENTED_ESCAPE.findall(structural)) >= 2:
        return 'literal "\\n" used for structural line breaks/indentation'
    if _CHAINED_ESCAPES.search(structural):
        return 'multiple chained literal "\\n" sequences detected'
    if len(_ESCAPE_BEFORE_KEYWORD.findall(structural)) >= 2:
        return 'literal "\\n" used between code statements'
    return None


def repair_escaped_newlines(content: str) -> str:
    """
    Turn structural literal escapes into real whitespace.

    Only escapes outside string literals and comments are rewritten. Escapes
    preceded by another backslash are left alone, so double-escaped content
    stays detectable and gets rejected instead of half-repaired.
    """
    structural = _strip_literals_and_comments(content)
    out: list[str] = []
    i = 0
    n = len(content)
    while i < n:
        ch = content[i]
        if (
            ch == "\\"
            and structural[i] == "\\"
            and i + 1 < n
            and structural[i + 1] in "nrt"
            and not (i > 0 and structural[i - 1] == "\\")
        ):
            code = structural[i + 1]
            if code == "r" and content[i + 2 : i + 4] == "\\n":
                out.append("\n")
                i += 4
                continue
            if code in "nt":
                out.append("\n" if code == "n" else "\t")
                i += 2
                continue
        out.append(ch)
        i += 1
    return "".join(out)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def _control_flow_result(action: Action) -> ActionResult:
    if action.control_flow is ControlFlow.SAY:
        return ActionResult(action=action.label, success=True, result=action.message or "")
    if action.control_flow is ControlFlow.END:
        return ActionResult(action=action.label, success=True, result=action.message or "")
    return ActionResult(action=action.label, success=True, result="Continuing.")


def edit_blocked_message(path: str, partial: bool) -> str:
    if partial:
        return (
            f"Cannot edit {path}: you only read part of this file. "
            f"Read the whole file (without offset/limit) first, then retry the edit."
        )
    return (
        f"Cannot edit {path}: you have not read this file yet. "
        f"Read it first, then retry the edit using the exact content and "
        f"line numbers from the read output."
    )


class ActionGuardPipeline:
    """
    Applies the ordered guard chain to actions from either invocation surface.

    The pipeline is loop-scoped: it owns no state of its own beyond the
    LoopState it was given, so one pipeline serves exactly one loop run.
    """

    def __init__(
        self,
        executor: ActionExecutorProtocol,
        state: LoopState,
        policy: ExecutionPolicy | None = None,
        file_cache: FileCacheProtocol | None = None,
        cache_file_contents: bool = True,
    ):
        self.executor = executor
        self.state = state
        self.policy = policy or ExecutionPolicy()
        self.file_cache = file_cache
        self.cache_file_contents = cache_file_contents
        self.logger = logger.bind(component="guard_pipeline")

    def admit(self, action: Action) -> tuple[Action, ActionResult | None]:
        """
        Run the pre-execution guards.

        Returns:
            (action, None) when the (possibly repaired) action may execute,
            otherwise (action, synthesized_result).
        """
        if action.control_flow is not ControlFlow.NONE:
            return action, _control_flow_result(action)

        if self.policy.blocks(action):
            self.logger.info("action_blocked", reason="policy", action=action.label)
            return action, ActionResult.failure(
                action, self.policy.block_message(action), blocked_by="policy"
            )

        if action.type in MUTATING_TYPES and action.content:
            problem = detect_escaped_newline_corruption(action.content)
            if problem:
                repaired = repair_escaped_newlines(action.content)
                if detect_escaped_newline_corruption(repaired) is None:
                    self.logger.info("content_repaired", action=action.label, problem=problem)
                    action = action.with_content(repaired)
                else:
                    return action, ActionResult.failure(
                        action,
                        f"Malformed content ({problem}). Re-send the full content "
                        f"with real line breaks instead of literal \\n sequences.",
                        blocked_by="validation",
                    )

        if action.type == ActionType.READ.value and action.path:
            self.state.mark_read(action.path, action.is_partial_read)

        if action.type == ActionType.EDIT.value and action.path:
            if not self.state.fully_read(action.path):
                partial = action.path in self.state.read_coverage
                return action, ActionResult.failure(
                    action,
                    edit_blocked_message(action.path, partial),
                    blocked_by="validation",
                )

        return action, None

    def settle(self, action: Action, result: ActionResult) -> None:
        """Post-execution bookkeeping: unresolved edits and file caching."""
        path = action.path
        if not path:
            return

        if action.type == ActionType.EDIT.value:
            if result.success:
                self.state.unresolved_edits.discard(path)
            else:
                self.state.unresolved_edits.add(path)
        elif action.is_write_like and result.success:
            self.state.unresolved_edits.discard(path)

        if self.file_cache is None or not self.cache_file_contents:
            return
        if action.type == ActionType.READ.value and result.success and not action.is_partial_read:
            self.file_cache.put(path, result.result)
        elif action.type in MUTATING_TYPES and result.success:
            self.file_cache.invalidate(path)

    async def run(self, action: Action) -> ActionResult:
        """Run one action through the full pipeline (native tool callbacks)."""
        results = await self.run_batch([action])
        return results[0][1]

    async def run_batch(self, actions: list[Action]) -> list[tuple[Action, ActionResult]]:
        """
        Run actions in order through the full pipeline.

        Guards are applied sequentially, so a read earlier in the batch
        satisfies an edit later in the same batch. Admitted actions are
        executed together in one executor call.
        """
        admitted: list[tuple[Action, ActionResult | None]] = [
            self.admit(action) for action in actions
        ]
        to_execute = [action for action, result in admitted if result is None]

        executed: list[ActionResult] = []
        if to_execute:
            executed = await self.executor.execute(to_execute)
            if len(executed) != len(to_execute):
                raise ValueError(
                    f"Executor returned {len(executed)} results for {len(to_execute)} actions"
                )

        pairs: list[tuple[Action, ActionResult]] = []
        executed_iter = iter(executed)
        for action, result in admitted:
            if result is None:
                result = next(executed_iter)
                self.settle(action, result)
            elif result.blocked_by == "validation":
                self.settle(action, result)
            pairs.append((action, result))
        self.logger.debug("batch_settled", **summarize_failures(pairs))
        return pairs


def summarize_failures(pairs: list[tuple[Action, ActionResult]]) -> dict[str, Any]:
    """Small structured digest of a batch for logging."""
    failed = [r for _, r in pairs if not r.success]
    return {
        "total": len(pairs),
        "failed": len(failed),
        "blocked": sum(1 for r in failed if r.blocked_by),
    }
