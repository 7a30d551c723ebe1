"""
Unit Tests for the Tool Registry, Action Bridge and Tool Converter

Both invocation surfaces (native tool calls, textual tags) must map to
identical Actions and run through the same guard pipeline.
"""

import pytest

from agentlane.core.domain.events import Action, ActionResult, ControlFlow
from agentlane.core.domain.guards import ActionGuardPipeline, LoopState
from agentlane.infrastructure.tools.bridge import format_tool_result
from agentlane.infrastructure.tools.registry import (
    ToolContribution,
    ToolRegistry,
    default_contributions,
)
from agentlane.infrastructure.tools.tool_converter import (
    assistant_tool_calls_to_message,
    sanitize_tool_name,
    tool_result_to_message,
    tools_to_openai_format,
)
from tests.fakes import RecordingExecutor


def external_tool(name, source="github"):
    return ToolContribution(
        name=name,
        description=f"External {name}",
        parameters_schema={"type": "object", "properties": {"title": {"type": "string"}}},
        to_action=lambda args: Action(type="external", params=dict(args)),
        source=source,
    )


class TestToolConverter:
    def test_sanitize_replaces_invalid_characters(self):
        assert sanitize_tool_name("github.create issue") == "github_create_issue"

    def test_sanitize_caps_length(self):
        assert len(sanitize_tool_name("x" * 100)) == 64

    def test_tools_to_openai_format(self, bridge):
        tools = bridge.build_text_tools()
        converted = tools_to_openai_format(tools)

        names = [t["function"]["name"] for t in converted]
        assert "read_file" in names
        assert all(t["type"] == "function" for t in converted)
        read = next(t for t in converted if t["function"]["name"] == "read_file")
        assert read["function"]["parameters"]["required"] == ["path"]

    def test_tool_result_message_truncates(self):
        message = tool_result_to_message("call_1", "bash", "z" * 50, max_output_chars=10)

        assert message["role"] == "tool"
        assert message["tool_call_id"] == "call_1"
        assert "TRUNCATED - 40 more chars" in message["content"]

    def test_assistant_message_without_text_has_null_content(self):
        message = assistant_tool_calls_to_message([{"id": "1"}])
        assert message == {"role": "assistant", "content": None, "tool_calls": [{"id": "1"}]}


class TestToolRegistry:
    def test_default_contributions_registered_by_name_and_tag(self, registry):
        assert registry.get("read_file").tag == "read"
        assert registry.by_tag("plan-ready").name == "plan_ready"
        assert "edit_file" in registry

    def test_lookup_by_unsanitized_name(self):
        registry = ToolRegistry([external_tool("github.create_issue")])
        assert registry.get("github.create_issue") is registry.get("github_create_issue")

    def test_denylist_excludes_tool(self):
        registry = ToolRegistry(default_contributions(), denylist=["bash"])
        assert registry.get("bash") is None
        assert registry.by_tag("bash") is None

    def test_allowlist_restricts_tools(self):
        registry = ToolRegistry(default_contributions(), allowlist=["read_file", "end"])
        assert sorted(c.name for c in registry.contributions()) == ["end", "read_file"]

    def test_replace_source_hot_reloads_external_tools(self, registry):
        registry.replace_source("github", [external_tool("github.create_issue")])
        registry.replace_source("github", [external_tool("github.close_issue")])

        assert registry.get("github.create_issue") is None
        assert registry.get("github.close_issue") is not None
        assert registry.get("read_file") is not None

    def test_unregister(self, registry):
        assert registry.unregister("bash")
        assert not registry.unregister("bash")

    def test_snapshot_unaffected_by_later_registration(self, registry):
        snapshot = registry.contributions()
        registry.register(external_tool("jira.search"))
        assert len(snapshot) == len(registry) - 1


class TestActionBridge:
    """Native and textual surfaces yield identical Actions."""

    def test_tool_call_and_text_tag_produce_same_action(self, bridge):
        native = bridge.from_tool_call("read_file", {"path": "src/a.py", "limit": 20})
        textual = bridge.parse_text('<read path="src/a.py" limit="20"/>')[0]

        assert native == textual
        assert native.limit == 20
        assert native.tool_name == "read_file"

    def test_edit_body_maps_to_diff(self, bridge):
        action = bridge.parse_text('<edit path="a.py">\n@@ -1,1 @@\n-x\n+y\n</edit>')[0]
        assert action.type == "edit"
        assert action.content == "@@ -1,1 @@\n-x\n+y"

    def test_control_flow_tags(self, bridge):
        actions = bridge.parse_text("<say>Working</say><continue/><end>Done</end>")

        assert [a.control_flow for a in actions] == [
            ControlFlow.SAY,
            ControlFlow.CONTINUE,
            ControlFlow.END,
        ]
        assert actions[2].message == "Done"
        assert bridge.control_flow_of("end") is ControlFlow.END
        assert bridge.control_flow_of("read_file") is ControlFlow.NONE

    def test_unknown_tool_and_unusable_args(self, bridge):
        assert bridge.map_call_to_action("delete_everything", {}) is None
        assert bridge.map_call_to_action("read_file", {}) is None

    def test_truncated_write_merge_keeps_last_attempt(self, bridge):
        text = '<write path="a">partial</write>\n<write path="a">full</write>'
        actions = bridge.parse_text(text)
        assert [a.content for a in actions] == ["full"]

    @pytest.mark.asyncio
    async def test_native_callback_runs_guard_pipeline(self, bridge):
        executor = RecordingExecutor()
        pipeline = ActionGuardPipeline(executor=executor, state=LoopState())
        tools = bridge.build_native_tools(pipeline)

        blocked = await tools["edit_file"].execute("c1", {"path": "a.py", "diff": "@@ -1,1 @@"})
        assert blocked.text.startswith("ERROR [validation]")
        assert blocked.action.type == "edit"

        await tools["read_file"].execute("c2", {"path": "a.py"})
        edited = await tools["edit_file"].execute("c3", {"path": "a.py", "diff": "@@ -1,1 @@"})
        assert edited.result.success
        assert edited.text == "ok"

    @pytest.mark.asyncio
    async def test_native_callback_reports_invalid_arguments(self, bridge):
        pipeline = ActionGuardPipeline(executor=RecordingExecutor(), state=LoopState())
        tools = bridge.build_native_tools(pipeline)

        execution = await tools["bash"].execute("c1", {"command": "   "})
        assert execution.action is None
        assert execution.text.startswith("ERROR [invalid_arguments]")


def test_format_tool_result_success_defaults_to_ok():
    action = Action(type="bash", command="true")
    assert format_tool_result(action, ActionResult("Bash: true", True, "")) == "OK"
    failed = ActionResult("Bash: true", False, error="exit 1")
    assert format_tool_result(action, failed) == "ERROR [failed]: exit 1"
