"""
Tool Converter - OpenAI function calling format conversion.

Converts native tools to the JSON Schema format expected by OpenAI-style
function calling (litellm speaks this format for every provider) and builds
the assistant/tool messages that carry tool calls through session history.
"""

import re
from typing import Any

from agentlane.core.interfaces.tools import NativeTool

MAX_TOOL_NAME_LENGTH = 64
_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_tool_name(name: str) -> str:
    """
    Make a tool name acceptable to providers.

    Characters outside ``[A-Za-z0-9_-]`` (dots from namespaced external
    tools, spaces) become underscores; names are capped at 64 chars.

    Example:
        >>> sanitize_tool_name("github.create_issue")
        'github_create_issue'
    """
    return _INVALID_NAME_CHARS.sub("_", name)[:MAX_TOOL_NAME_LENGTH]


def tools_to_openai_format(tools: dict[str, NativeTool]) -> list[dict[str, Any]]:
    """
    Convert native tools to OpenAI function calling format.

    Args:
        tools: Dictionary mapping provider-facing names to NativeTool

    Returns:
        List of tool definitions:
        [
            {
                "type": "function",
                "function": {
                    "name": "tool_name",
                    "description": "Tool description",
                    "parameters": { JSON Schema }
                }
            },
            ...
        ]
    """
    return [
        {
            "type": "function",
            "function": {
                "name": name,
                "description": tool.description,
                "parameters": tool.parameters_schema,
            },
        }
        for name, tool in tools.items()
    ]


def truncate_tool_output(content: str, max_chars: int) -> str:
    if len(content) <= max_chars:
        return content
    overflow = len(content) - max_chars
    return content[:max_chars] + f"\n\n[... TRUNCATED - {overflow} more chars ...]"


def tool_result_to_message(
    tool_call_id: str,
    tool_name: str,
    content: str,
    max_output_chars: int = 20000,
) -> dict[str, Any]:
    """
    Build the tool message answering one tool call.

    Large outputs are truncated to keep a single result from overflowing
    the context window (20,000 chars is roughly 5,000 tokens).

    Returns:
        {"role": "tool", "tool_call_id": ..., "name": ..., "content": ...}
    """
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "name": tool_name,
        "content": truncate_tool_output(content, max_output_chars),
    }


def assistant_tool_calls_to_message(
    tool_calls: list[dict[str, Any]],
    content: str | None = None,
) -> dict[str, Any]:
    """
    Create the assistant message that carries tool calls in history.

    The assistant message must precede the tool messages answering it.
    """
    return {
        "role": "assistant",
        "content": content or None,
        "tool_calls": tool_calls,
    }
