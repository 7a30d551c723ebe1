"""Native tool shape handed to the streaming adapter."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from agentlane.core.domain.models import ToolExecution

ToolCallback = Callable[[str, dict[str, Any]], Awaitable[ToolExecution]]


@dataclass
class NativeTool:
    """
    A tool advertised to the model for native function calling.

    Attributes:
        name: Provider-facing (sanitized) tool name
        description: Tool description shown to the model
        parameters_schema: JSON Schema of the arguments
        execute: Callback ``(tool_call_id, args) -> ToolExecution``.
            None for schema-only tools advertised in text mode.
    """

    name: str
    description: str
    parameters_schema: dict[str, Any]
    execute: ToolCallback | None = None
