"""Unit tests for textual action-tag parsing."""

from agentlane.core.domain.events import Action
from agentlane.infrastructure.tools.text_parser import (
    dedupe_actions,
    find_tags,
    find_unclosed_tag,
    parse_attrs,
)

TAGS = ["read", "edit", "write", "end", "continue", "plan-ready"]


def test_parse_attrs_supports_both_quote_styles():
    assert parse_attrs(' path="a b.py" offset=\'3\'') == {"path": "a b.py", "offset": "3"}


def test_finds_self_closing_and_body_tags_in_order():
    text = (
        'Let me look.\n<read path="src/app.py"/>\n'
        '<edit path="src/app.py">\n@@ -1,1 @@\n-a\n+b\n</edit>\n'
        "<end>Done.</end>"
    )
    tags = find_tags(text, TAGS)

    assert [t.tag for t in tags] == ["read", "edit", "end"]
    assert tags[0].attrs == {"path": "src/app.py"}
    assert tags[0].body is None
    assert tags[1].body == "@@ -1,1 @@\n-a\n+b"
    assert tags[2].body == "Done."


def test_tag_prefix_does_not_match_longer_names():
    assert find_tags("<ending>nope</ending>", ["end"]) == []


def test_unknown_tags_ignored():
    assert find_tags("<delete path='x'/>", TAGS) == []


def test_attribute_values_may_contain_angle_brackets():
    tags = find_tags('<write path="a.html" note="x>y">body</write>', TAGS)
    assert tags[0].attrs["note"] == "x>y"
    assert tags[0].body == "body"


class TestUnclosedTags:
    def test_truncated_edit_detected(self):
        assert find_unclosed_tag('<edit path="a.py">\n@@ -1,2 @@\n-a') == "edit"

    def test_closed_blocks_are_fine(self):
        assert find_unclosed_tag('<write path="a">x</write><edit path="b">y</edit>') is None

    def test_self_closing_not_counted_as_open(self):
        assert find_unclosed_tag('<write path="a"/>') is None

    def test_second_block_truncated(self):
        text = '<write path="a">x</write>\n<write path="b">partial'
        assert find_unclosed_tag(text) == "write"


class TestDedupe:
    def test_write_keeps_last_attempt_per_path(self):
        actions = [
            Action(type="write", path="a", content="v1"),
            Action(type="read", path="b"),
            Action(type="write", path="a", content="v2"),
        ]
        deduped = dedupe_actions(actions)

        assert [(a.type, a.content) for a in deduped] == [("read", None), ("write", "v2")]

    def test_plan_ready_keeps_first(self):
        actions = [
            Action(type="plan-ready", message="first"),
            Action(type="plan-ready", message="second"),
        ]
        assert [a.message for a in dedupe_actions(actions)] == ["first"]

    def test_edits_are_not_deduplicated(self):
        actions = [Action(type="edit", path="a", content="1"), Action(type="edit", path="a", content="2")]
        assert len(dedupe_actions(actions)) == 2
