"""Execution policy: deny-lists restricting what a session may invoke."""

from dataclasses import dataclass, field

from agentlane.core.domain.events import Action

ORCHESTRATOR_MODE = "orchestrator"

ORCHESTRATOR_BLOCKED_TOOLS = frozenset(
    {"read_file", "edit_file", "write_file", "glob", "grep", "ls", "bash"}
)
ORCHESTRATOR_BLOCKED_ACTIONS = frozenset(
    {"read", "edit", "write", "create", "glob", "grep", "ls", "bash"}
)
ORCHESTRATOR_REASON = (
    "Architect lane is orchestration-only. "
    "Delegate implementation to specialist agents."
)


@dataclass(frozen=True)
class ExecutionPolicy:
    """Deny-listed tool names and action types with a reason for observability."""

    blocked_tool_names: frozenset[str] = field(default_factory=frozenset)
    blocked_action_types: frozenset[str] = field(default_factory=frozenset)
    reason: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.blocked_tool_names and not self.blocked_action_types

    def blocks(self, action: Action) -> bool:
        if action.tool_name and action.tool_name in self.blocked_tool_names:
            return True
        return action.type in self.blocked_action_types

    def block_message(self, action: Action) -> str:
        name = action.tool_name or action.type
        return f"Blocked by execution policy: '{name}' is not allowed. {self.reason}".strip()


def resolve_execution_policy(mode: str | None) -> ExecutionPolicy:
    """Return the policy for an execution mode. Unknown modes are unrestricted."""
    if (mode or "").strip().lower() == ORCHESTRATOR_MODE:
        return ExecutionPolicy(
            blocked_tool_names=ORCHESTRATOR_BLOCKED_TOOLS,
            blocked_action_types=ORCHESTRATOR_BLOCKED_ACTIONS,
            reason=ORCHESTRATOR_REASON,
        )
    return ExecutionPolicy()
