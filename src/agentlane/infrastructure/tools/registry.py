"""
Tool Registry
=============

Holds the tool contributions available to every session. A contribution
describes one tool (name, description, JSON Schema), how its arguments map
to an Action, and optionally which control-flow signal it carries.

The contribution map is read by many session lanes at once. Updates build
a new map and swap it in, so readers always see a consistent snapshot.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable

import structlog

from agentlane.core.domain.events import Action, ActionType, ControlFlow
from agentlane.infrastructure.tools.tool_converter import sanitize_tool_name

logger = structlog.get_logger()

ToAction = Callable[[dict[str, Any]], Action | None]


@dataclass(frozen=True)
class ToolContribution:
    """
    External registration record for one tool.

    Attributes:
        name: Tool name as registered (may contain dots)
        description: Description advertised to the model
        parameters_schema: JSON Schema of the arguments
        to_action: Maps call arguments to an Action (None if unusable)
        control_flow: Control-flow tag for say/end/continue tools
        tag: Textual action tag name, None if the tool is native-only
        body_field: Argument receiving the body of a textual tag
        source: Origin of the contribution ("builtin", or an external
            tool server name) for hot reloading
    """

    name: str
    description: str
    parameters_schema: dict[str, Any]
    to_action: ToAction
    control_flow: ControlFlow = ControlFlow.NONE
    tag: str | None = None
    body_field: str = "content"
    source: str = "builtin"

    @property
    def sanitized_name(self) -> str:
        return sanitize_tool_name(self.name)


class ToolRegistry:
    """
    Registry of tool contributions.

    Example:
        >>> registry = ToolRegistry(default_contributions())
        >>> registry.get("read_file").tag
        'read'
    """

    def __init__(
        self,
        contributions: Iterable[ToolContribution] = (),
        allowlist: Iterable[str] | None = None,
        denylist: Iterable[str] | None = None,
    ):
        self.allowlist = set(allowlist) if allowlist is not None else None
        self.denylist = set(denylist or ())
        self._by_name: dict[str, ToolContribution] = {}
        self._by_tag: dict[str, ToolContribution] = {}
        self.logger = logger.bind(component="tool_registry")
        self._swap(list(contributions))

    def _allowed(self, contribution: ToolContribution) -> bool:
        names = {contribution.name, contribution.sanitized_name}
        if self.allowlist is not None and not names & self.allowlist:
            return False
        return not names & self.denylist

    def _swap(self, contributions: list[ToolContribution]) -> None:
        by_name: dict[str, ToolContribution] = {}
        by_tag: dict[str, ToolContribution] = {}
        for contribution in contributions:
            if not self._allowed(contribution):
                continue
            key = contribution.sanitized_name
            if key in by_name and by_name[key].name != contribution.name:
                self.logger.warning(
                    "tool_name_collision",
                    name=contribution.name,
                    existing=by_name[key].name,
                )
            by_name[key] = contribution
            if contribution.tag:
                by_tag[contribution.tag] = contribution
        self._by_name = by_name
        self._by_tag = by_tag

    def register(self, contribution: ToolContribution) -> None:
        current = [c for c in self._by_name.values() if c.name != contribution.name]
        self._swap(current + [contribution])

    def unregister(self, name: str) -> bool:
        key = sanitize_tool_name(name)
        if key not in self._by_name:
            return False
        self._swap([c for k, c in self._by_name.items() if k != key])
        return True

    def replace_source(self, source: str, contributions: Iterable[ToolContribution]) -> None:
        """Replace every contribution of one source (hot reload of a tool server)."""
        kept = [c for c in self._by_name.values() if c.source != source]
        self._swap(kept + list(contributions))
        self.logger.info("tool_source_replaced", source=source, tools=len(self._by_name))

    def get(self, name: str) -> ToolContribution | None:
        return self._by_name.get(sanitize_tool_name(name))

    def by_tag(self, tag: str) -> ToolContribution | None:
        return self._by_tag.get(tag)

    def contributions(self) -> list[ToolContribution]:
        return list(self._by_name.values())

    def tags(self) -> list[str]:
        return list(self._by_tag.keys())

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None


# ---------------------------------------------------------------------------
# Built-in contributions
# ---------------------------------------------------------------------------


def _int_or_none(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _require_path(action_type: ActionType, content_key: str | None = None) -> ToAction:
    def to_action(args: dict[str, Any]) -> Action | None:
        path = _text(args.get("path"))
        if not path:
            return None
        return Action(
            type=action_type.value,
            path=path.strip(),
            content=_text(args.get(content_key)) if content_key else None,
        )

    return to_action


def _read_action(args: dict[str, Any]) -> Action | None:
    path = _text(args.get("path"))
    if not path:
        return None
    return Action(
        type=ActionType.READ.value,
        path=path.strip(),
        offset=_int_or_none(args.get("offset")),
        limit=_int_or_none(args.get("limit")),
    )


def _bash_action(args: dict[str, Any]) -> Action | None:
    command = _text(args.get("command"))
    if not command or not command.strip():
        return None
    return Action(type=ActionType.BASH.value, command=command.strip())


def _search_action(action_type: ActionType) -> ToAction:
    def to_action(args: dict[str, Any]) -> Action | None:
        pattern = _text(args.get("pattern"))
        if not pattern:
            return None
        path = _text(args.get("path"))
        return Action(type=action_type.value, path=path, params={"pattern": pattern})

    return to_action


def _ls_action(args: dict[str, Any]) -> Action | None:
    return Action(type=ActionType.LS.value, path=_text(args.get("path")) or ".")


def _message_action(action_type: ActionType) -> ToAction:
    def to_action(args: dict[str, Any]) -> Action:
        return Action(type=action_type.value, message=(_text(args.get("message")) or "").strip())

    return to_action


def _plan_ready_action(args: dict[str, Any]) -> Action:
    return Action(
        type=ActionType.PLAN_READY.value,
        path=_text(args.get("path")),
        message=(_text(args.get("message")) or "").strip() or None,
    )


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required or []}


_PATH = {"type": "string", "description": "File path relative to the workspace"}
_MESSAGE = {"type": "string", "description": "Message for the user"}


def default_contributions() -> list[ToolContribution]:
    """Built-in file, shell, search and control-flow tools."""
    return [
        ToolContribution(
            name="read_file",
            description="Read a file. Omit offset/limit to read the whole file; "
            "a file must be read in full before it can be edited.",
            parameters_schema=_schema(
                {
                    "path": _PATH,
                    "offset": {"type": "integer", "description": "1-based start line"},
                    "limit": {"type": "integer", "description": "Number of lines"},
                },
                ["path"],
            ),
            to_action=_read_action,
            tag="read",
        ),
        ToolContribution(
            name="edit_file",
            description="Apply unified diff hunks (@@ -start,count @@) to a file you have read in full.",
            parameters_schema=_schema(
                {"path": _PATH, "diff": {"type": "string", "description": "Unified diff hunks"}},
                ["path", "diff"],
            ),
            to_action=_require_path(ActionType.EDIT, "diff"),
            tag="edit",
            body_field="diff",
        ),
        ToolContribution(
            name="write_file",
            description="Create or overwrite a file with the given content.",
            parameters_schema=_schema(
                {"path": _PATH, "content": {"type": "string", "description": "Full file content"}},
                ["path", "content"],
            ),
            to_action=_require_path(ActionType.WRITE, "content"),
            tag="write",
        ),
        ToolContribution(
            name="bash",
            description="Run a shell command in the workspace.",
            parameters_schema=_schema(
                {"command": {"type": "string", "description": "Shell command"}}, ["command"]
            ),
            to_action=_bash_action,
            tag="bash",
            body_field="command",
        ),
        ToolContribution(
            name="grep",
            description="Search file contents with a regular expression.",
            parameters_schema=_schema(
                {"pattern": {"type": "string"}, "path": _PATH}, ["pattern"]
            ),
            to_action=_search_action(ActionType.GREP),
            tag="grep",
            body_field="pattern",
        ),
        ToolContribution(
            name="glob",
            description="Find files matching a glob pattern.",
            parameters_schema=_schema({"pattern": {"type": "string"}}, ["pattern"]),
            to_action=_search_action(ActionType.GLOB),
            tag="glob",
            body_field="pattern",
        ),
        ToolContribution(
            name="ls",
            description="List a directory.",
            parameters_schema=_schema({"path": _PATH}),
            to_action=_ls_action,
            tag="ls",
            body_field="path",
        ),
        ToolContribution(
            name="say",
            description="Show a progress message to the user and keep working.",
            parameters_schema=_schema({"message": _MESSAGE}, ["message"]),
            to_action=_message_action(ActionType.SAY),
            control_flow=ControlFlow.SAY,
            tag="say",
            body_field="message",
        ),
        ToolContribution(
            name="end",
            description="Finish the task with a final summary for the user.",
            parameters_schema=_schema({"message": _MESSAGE}),
            to_action=_message_action(ActionType.END),
            control_flow=ControlFlow.END,
            tag="end",
            body_field="message",
        ),
        ToolContribution(
            name="continue",
            description="Signal that a long task needs more iterations.",
            parameters_schema=_schema({}),
            to_action=_message_action(ActionType.CONTINUE),
            control_flow=ControlFlow.CONTINUE,
            tag="continue",
            body_field="message",
        ),
        ToolContribution(
            name="plan_ready",
            description="Signal that the requested plan is complete.",
            parameters_schema=_schema({"path": _PATH, "message": _MESSAGE}),
            to_action=_plan_ready_action,
            tag="plan-ready",
            body_field="message",
        ),
    ]
