"""
Action Bridge
=============

Reconciles the two invocation surfaces:

- native tool calls: ``build_native_tools`` wraps every contribution in a
  NativeTool whose callback runs the action through the guard pipeline
- textual tags: ``parse_text`` turns free-form output into the same Actions,
  which the loop then runs through the same pipeline

``from_tool_call`` and ``from_text_tag`` are the only places that build
Actions, so both surfaces yield identical Action shapes.
"""

from dataclasses import replace
from typing import Any

import structlog

from agentlane.core.domain.events import Action, ActionResult, ControlFlow
from agentlane.core.domain.guards import ActionGuardPipeline
from agentlane.core.domain.history_policy import summarize_result_text
from agentlane.core.domain.models import ToolExecution
from agentlane.core.interfaces.tools import NativeTool
from agentlane.infrastructure.tools.registry import ToolContribution, ToolRegistry
from agentlane.infrastructure.tools.text_parser import dedupe_actions, find_tags

logger = structlog.get_logger()


def format_tool_result(action: Action, result: ActionResult) -> str:
    """Text returned to the model as the answer to one native tool call."""
    if result.success:
        text = summarize_result_text(action.type, result.result or "")
        return text or "OK"
    code = result.blocked_by or "failed"
    return f"ERROR [{code}]: {result.error or result.result or 'Action failed'}"


class ActionBridge:
    """Builds Actions from tool calls or text tags using the tool registry."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry
        self.logger = logger.bind(component="action_bridge")

    @staticmethod
    def _finish(contribution: ToolContribution, action: Action | None) -> Action | None:
        if action is None:
            return None
        return replace(
            action,
            tool_name=contribution.name,
            control_flow=contribution.control_flow,
        )

    def map_call_to_action(self, tool_name: str, args: dict[str, Any]) -> Action | None:
        """Map a tool call to an Action. None for unknown tools or unusable args."""
        contribution = self.registry.get(tool_name)
        if contribution is None:
            return None
        try:
            action = contribution.to_action(args or {})
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning("tool_args_invalid", tool=tool_name, error=str(e))
            return None
        return self._finish(contribution, action)

    from_tool_call = map_call_to_action

    def control_flow_of(self, tool_name: str) -> ControlFlow:
        contribution = self.registry.get(tool_name)
        return contribution.control_flow if contribution else ControlFlow.NONE

    def from_text_tag(self, tag: str, attrs: dict[str, str], body: str | None) -> Action | None:
        contribution = self.registry.by_tag(tag)
        if contribution is None:
            return None
        args: dict[str, Any] = dict(attrs)
        if body is not None and contribution.body_field not in args:
            args[contribution.body_field] = body
        try:
            action = contribution.to_action(args)
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning("tag_args_invalid", tag=tag, error=str(e))
            return None
        return self._finish(contribution, action)

    def parse_text(self, text: str) -> list[Action]:
        """Parse textual action tags into deduplicated Actions, in order."""
        actions = []
        for parsed in find_tags(text, self.registry.tags()):
            action = self.from_text_tag(parsed.tag, parsed.attrs, parsed.body)
            if action is not None:
                actions.append(action)
        return dedupe_actions(actions)

    def build_text_tools(self) -> dict[str, NativeTool]:
        """Schemas only, used to advertise actions in textual mode."""
        return {
            c.sanitized_name: NativeTool(
                name=c.sanitized_name,
                description=c.description,
                parameters_schema=c.parameters_schema,
            )
            for c in self.registry.contributions()
        }

    def build_native_tools(self, pipeline: ActionGuardPipeline) -> dict[str, NativeTool]:
        """
        Native tools whose callbacks run the guard pipeline.

        Callbacks never raise: unusable arguments and pipeline failures come
        back as error text for the model.
        """
        tools = {}
        for contribution in self.registry.contributions():
            tools[contribution.sanitized_name] = NativeTool(
                name=contribution.sanitized_name,
                description=contribution.description,
                parameters_schema=contribution.parameters_schema,
                execute=self._make_callback(contribution.sanitized_name, pipeline),
            )
        return tools

    def _make_callback(self, tool_name: str, pipeline: ActionGuardPipeline):
        async def execute(tool_call_id: str, args: dict[str, Any]) -> ToolExecution:
            action = self.map_call_to_action(tool_name, args)
            if action is None:
                return ToolExecution(
                    tool_name=tool_name,
                    tool_call_id=tool_call_id,
                    text=f"ERROR [invalid_arguments]: could not use arguments for {tool_name}",
                )
            result = await pipeline.run(action)
            return ToolExecution(
                tool_name=tool_name,
                tool_call_id=tool_call_id,
                text=format_tool_result(action, result),
                action=action,
                result=result,
            )

        return execute
