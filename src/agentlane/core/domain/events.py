"""
Action Events

Actions are the discrete operations derived from model output, either
from a native tool call or from a textual action tag. Both surfaces
produce the same Action shape. ActionResult is the outcome of executing
(or rejecting) exactly one Action.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class ActionType(str, Enum):
    """Built-in action types. Externally registered types are plain strings."""

    READ = "read"
    EDIT = "edit"
    WRITE = "write"
    CREATE = "create"
    BASH = "bash"
    GREP = "grep"
    GLOB = "glob"
    LS = "ls"
    SAY = "say"
    END = "end"
    CONTINUE = "continue"
    PLAN_READY = "plan-ready"


class ControlFlow(str, Enum):
    """Control-flow tag carried by say/end/continue contributions."""

    NONE = "none"
    SAY = "say"
    END = "end"
    CONTINUE = "continue"


WRITE_LIKE_TYPES = frozenset({ActionType.WRITE.value, ActionType.CREATE.value})
MUTATING_TYPES = frozenset({ActionType.EDIT.value, *WRITE_LIKE_TYPES})
EXPLORE_TYPES = frozenset(
    {ActionType.GREP.value, ActionType.GLOB.value, ActionType.LS.value}
)

_LABELS = {
    ActionType.READ.value: "Read",
    ActionType.EDIT.value: "Edit",
    ActionType.WRITE.value: "Write",
    ActionType.CREATE.value: "Create",
    ActionType.BASH.value: "Bash",
    ActionType.GREP.value: "Grep",
    ActionType.GLOB.value: "Glob",
    ActionType.LS.value: "Ls",
}


@dataclass(frozen=True)
class Action:
    """
    A single structured operation derived from model output.

    Attributes:
        type: Action type (built-in ActionType value or registered type)
        path: Target path for file actions
        content: Payload for edit/write/create (diff hunks or file body)
        command: Shell command for bash
        message: Text for say/end
        offset: Starting line for partial reads
        limit: Line count for partial reads
        params: Remaining type-specific arguments
        tool_name: Name of the contribution that produced the action
        control_flow: Control-flow tag of the producing contribution
    """

    type: str
    path: str | None = None
    content: str | None = None
    command: str | None = None
    message: str | None = None
    offset: int | None = None
    limit: int | None = None
    params: dict[str, Any] = field(default_factory=dict)
    tool_name: str | None = None
    control_flow: ControlFlow = ControlFlow.NONE

    @property
    def label(self) -> str:
        """Human readable label, e.g. ``Edit: src/a.py``."""
        if self.type == ActionType.SAY.value:
            return "Says"
        if self.type == ActionType.END.value:
            return "End"
        if self.type == ActionType.CONTINUE.value:
            return "Continue"
        if self.type == ActionType.PLAN_READY.value:
            return "PlanReady"
        name = _LABELS.get(self.type, self.type.replace("-", " ").title())
        target = self.path or self.command or self.params.get("pattern")
        return f"{name}: {target}" if target else name

    @property
    def is_partial_read(self) -> bool:
        return self.offset is not None or self.limit is not None

    @property
    def is_write_like(self) -> bool:
        return self.type in WRITE_LIKE_TYPES

    def with_content(self, content: str) -> "Action":
        return replace(self, content=content)


@dataclass
class ActionResult:
    """
    Outcome of executing or rejecting one Action.

    Attributes:
        action: Label of the action this result belongs to
        success: Whether the action succeeded
        result: Result text (file content, command output, message)
        error: Error description for failed actions
        blocked_by: Reason tag for synthesized rejections
            ("policy", "validation"), None for executed actions
    """

    action: str
    success: bool
    result: str = ""
    error: str | None = None
    blocked_by: str | None = None

    @classmethod
    def failure(
        cls, action: Action, error: str, blocked_by: str | None = None
    ) -> "ActionResult":
        return cls(
            action=action.label,
            success=False,
            result="Blocked" if blocked_by else "",
            error=error,
            blocked_by=blocked_by,
        )
