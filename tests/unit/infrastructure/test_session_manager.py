"""
Unit Tests for SessionManager and the context pressure policy

Tests session lifecycle and eviction, destructive compression,
condensation for token-limit recovery and threshold-driven pruning.
"""

import pytest

from agentlane.core.domain.errors import SessionError
from agentlane.infrastructure.persistence.context_policy import (
    PRUNED_TOOL_CONTENT,
    ModelLimits,
    apply_context_pressure_policy,
    estimate_tokens,
    prune_tool_outputs,
    safe_tail_start,
)
from agentlane.infrastructure.persistence.session_manager import (
    DEFAULT_SESSION_ID,
    FileCache,
    SessionManager,
)


def fill(manager, session_id, pairs):
    for i in range(pairs):
        manager.append(session_id, {"role": "user", "content": f"request {i}"})
        manager.append(session_id, {"role": "assistant", "content": f"answer {i}"})


class TestSessionLifecycle:
    def test_sessions_created_lazily_with_system_prompt(self):
        manager = SessionManager(system_prompt="sys")
        manager.append("chat:42", {"role": "user", "content": "hi"})

        history = manager.history("chat:42")
        assert [m["role"] for m in history] == ["system", "user"]
        assert history[0]["content"] == "sys"

    def test_history_returns_copy(self, sessions):
        sessions.history("a").append({"role": "user", "content": "x"})
        assert len(sessions.history("a")) == 1

    def test_sessions_are_isolated(self, sessions):
        sessions.append("chat:42", {"role": "user", "content": "for 42"})
        sessions.append("chat:43", {"role": "user", "content": "for 43"})

        assert sessions.history("chat:42")[-1]["content"] == "for 42"
        assert sessions.history("chat:43")[-1]["content"] == "for 43"

    def test_empty_session_id_rejected(self, sessions):
        with pytest.raises(SessionError):
            sessions.get_or_create("")

    def test_least_recently_used_evicted_beyond_capacity(self):
        manager = SessionManager(capacity=2)
        manager.get_or_create("a")
        manager.get_or_create("b")
        manager.get_or_create("a")
        manager.get_or_create("c")

        assert sorted(manager.session_ids()) == ["a", "c"]

    def test_default_session_never_evicted(self):
        manager = SessionManager(capacity=2)
        manager.get_or_create(DEFAULT_SESSION_ID)
        manager.get_or_create("a")
        manager.get_or_create("b")

        assert DEFAULT_SESSION_ID in manager.session_ids()
        assert "a" not in manager.session_ids()

    def test_default_session_cannot_be_deleted(self, sessions):
        sessions.get_or_create(DEFAULT_SESSION_ID)
        assert sessions.delete(DEFAULT_SESSION_ID) is False
        assert sessions.exists(DEFAULT_SESSION_ID)

    def test_delete_missing_session(self, sessions):
        assert sessions.delete("nope") is False

    def test_clear_resets_history_and_cache(self, sessions):
        fill(sessions, "a", 2)
        sessions.file_cache("a").put("x.py", "x")
        sessions.clear("a")

        assert len(sessions.history("a")) == 1
        assert len(sessions.file_cache("a")) == 0

    def test_rebuild_system_prompts(self, sessions):
        fill(sessions, "a", 1)
        sessions.rebuild_system_prompts(lambda: "new prompt")

        assert sessions.history("a")[0]["content"] == "new prompt"
        assert sessions.history("b")[0]["content"] == "new prompt"

    def test_summaries(self, sessions):
        fill(sessions, "a", 1)
        rows = sessions.summaries()
        assert rows[0]["session_id"] == "a"
        assert rows[0]["messages"] == 3


class TestCompression:
    def test_no_op_at_or_below_ceiling(self, sessions):
        fill(sessions, "a", 5)
        before = sessions.history("a")

        assert sessions.compress("a", max_messages=10) is False
        assert sessions.history("a") == before

    def test_keeps_system_and_most_recent(self, sessions):
        fill(sessions, "a", 10)

        assert sessions.compress("a", max_messages=4) is True
        history = sessions.history("a")
        assert history[0]["role"] == "system"
        assert [m["content"] for m in history[1:]] == [
            "request 8",
            "answer 8",
            "request 9",
            "answer 9",
        ]

    def test_compression_is_idempotent(self, sessions):
        fill(sessions, "a", 10)
        sessions.compress("a", max_messages=4)
        once = sessions.history("a")

        assert sessions.compress("a", max_messages=4) is False
        assert sessions.history("a") == once

    def test_tail_never_starts_with_tool_message(self, sessions):
        sessions.append("a", {"role": "user", "content": "go"})
        sessions.append("a", {"role": "assistant", "content": None, "tool_calls": [{"id": "1"}]})
        sessions.append("a", {"role": "tool", "tool_call_id": "1", "content": "out"})
        sessions.append("a", {"role": "assistant", "content": "done"})

        sessions.compress("a", max_messages=2)

        assert [m["role"] for m in sessions.history("a")] == ["system", "assistant", "tool", "assistant"]


class TestCondensation:
    def test_condense_round_trip(self, sessions):
        sessions.append("a", {"role": "user", "content": "Add pagination to the API"})
        sessions.append("a", {"role": "assistant", "content": '<read path="api.py"/>'})
        sessions.append("a", {"role": "user", "content": "<action-output>\n[✓] Read: api.py\n</action-output>"})
        sessions.append("a", {"role": "user", "content": "Also update the docs"})
        sessions.file_cache("a").put("api.py", "code")

        summary = sessions.apply_condensation("a")

        history = sessions.history("a")
        assert len(history) == 2
        assert history[0]["role"] == "system"
        assert history[1] == {"role": "user", "content": summary}
        assert "Add pagination to the API; Also update the docs" in summary
        assert '<read path="api.py"/>' in summary
        assert "action-output" not in summary
        assert len(sessions.file_cache("a")) == 0

    def test_condense_does_not_modify_history(self, sessions):
        fill(sessions, "a", 2)
        sessions.condense("a")
        assert len(sessions.history("a")) == 5

    def test_summary_lists_native_tool_calls(self):
        summary = SessionManager.summarize_messages(
            [{"role": "assistant", "content": None, "tool_calls": [{"function": {"name": "read_file"}}]}]
        )
        assert "Actions performed: read_file" in summary


class TestFileCache:
    def test_lru_bound(self):
        cache = FileCache(max_entries=2)
        cache.put("a", "1")
        cache.put("b", "2")
        cache.get("a")
        cache.put("c", "3")

        assert cache.keys() == ["a", "c"]

    def test_oversized_content_not_cached(self):
        cache = FileCache(max_chars=5)
        cache.put("a", "tiny")
        assert cache.put("a", "much too large") is False
        assert cache.get("a") is None


class TestContextPressurePolicy:
    def tool_heavy(self, outputs=20, size=400):
        messages = [{"role": "system", "content": "sys"}]
        for i in range(outputs):
            messages.append({"role": "assistant", "content": None, "tool_calls": [{"id": str(i)}]})
            messages.append({"role": "tool", "tool_call_id": str(i), "content": "x" * size})
        return messages

    def test_estimate_tokens_is_chars_over_four(self):
        assert estimate_tokens([{"role": "user", "content": "abcdefgh"}]) == 2
        assert estimate_tokens([{"role": "user", "content": "abcde"}]) == 2

    def test_below_threshold_is_untouched(self):
        messages = self.tool_heavy(outputs=2)
        limits = ModelLimits(context_window=100000)

        result, report = apply_context_pressure_policy(messages, limits, lambda m: "s")

        assert result is messages
        assert not report.changed

    def test_prune_keeps_recent_tool_outputs_and_pairing(self):
        messages = self.tool_heavy(outputs=20)
        limits = ModelLimits(context_window=2500, protect_tool_outputs=5, summarize_ratio=10, reset_ratio=10)

        result, report = apply_context_pressure_policy(messages, limits, lambda m: "s")

        assert report.actions_taken == ["prune"]
        tool_contents = [m["content"] for m in result if m["role"] == "tool"]
        assert tool_contents[:15] == [PRUNED_TOOL_CONTENT] * 15
        assert all(c == "x" * 400 for c in tool_contents[15:])
        assert all(m.get("tool_call_id") for m in result if m["role"] == "tool")
        assert messages[2]["content"] == "x" * 400

    def test_policy_is_idempotent_once_relieved(self):
        limits = ModelLimits(context_window=2500, protect_tool_outputs=5, summarize_ratio=10, reset_ratio=10)
        once, _ = apply_context_pressure_policy(self.tool_heavy(), limits, lambda m: "s")

        twice, report = apply_context_pressure_policy(once, limits, lambda m: "s")

        assert twice is once
        assert not report.changed

    def test_summarize_replaces_older_history(self):
        messages = [{"role": "system", "content": "sys"}]
        for i in range(30):
            messages.append({"role": "user", "content": f"request {i} " + "y" * 200})
        limits = ModelLimits(context_window=1000, keep_recent=4, min_recent=2)

        result, report = apply_context_pressure_policy(messages, limits, lambda m: f"{len(m)} dropped")

        assert "summarize" in report.actions_taken
        assert result[0]["content"] == "sys"
        assert "<session-summary>" in result[1]["content"]
        assert report.ratio < report.ratio_before

    def test_session_manager_applies_policy(self, sessions):
        fill(sessions, "a", 40)
        limits = ModelLimits(context_window=50, keep_recent=4, min_recent=2)

        report = sessions.apply_context_pressure_policy("a", limits)

        assert report.changed
        assert len(sessions.history("a")) < 81

    def test_safe_tail_start_moves_back_over_tool_messages(self):
        messages = [
            {"role": "user"},
            {"role": "assistant"},
            {"role": "tool"},
            {"role": "tool"},
        ]
        assert safe_tail_start(messages, 2) == 1


def test_prune_textual_action_output_to_digest():
    messages = [
        {"role": "user", "content": "<action-output>\n[✓] Read: a.py\nbody\n[✗] Edit: a.py (x)\n</action-output>"},
        {"role": "user", "content": "<action-output>\n[✓] Bash: ls\n</action-output>"},
    ]

    assert prune_tool_outputs(messages, protect_last=1) == 1
    assert messages[0]["content"].startswith("<action-output>[2 actions:")
    assert "Bash: ls" in messages[1]["content"]
