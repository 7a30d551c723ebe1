"""Unit tests for the textual-mode hallucination guard."""

from agentlane.core.domain.hallucination import HallucinationGuard
from agentlane.core.prompts.loop_prompts import MALFORMED_EDIT_PROMPT, RAW_CODE_PROMPT


def test_raw_code_outside_actions_is_redirected():
    guard = HallucinationGuard()
    text = "Here is the fix:\ndef handler(event):\n    return None\n"
    assert guard.check(text) == RAW_CODE_PROMPT


def test_fenced_code_is_accepted():
    guard = HallucinationGuard()
    text = "You could write:\n```python\ndef handler(event):\n    pass\n```"
    assert guard.check(text) is None


def test_plain_prose_is_accepted():
    assert HallucinationGuard().check("The tests pass now.") is None


def test_malformed_edit_detected():
    guard = HallucinationGuard()
    text = '<edit path="a.py">\nreplace foo with bar\n</edit>'
    assert guard.is_malformed_edit(text)
    assert guard.check(text) == MALFORMED_EDIT_PROMPT


def test_proper_edit_is_not_malformed():
    text = '<edit path="a.py">\n@@ -1,1 @@\n-foo\n+bar\n</edit>'
    assert not HallucinationGuard().is_malformed_edit(text)


def test_malformed_edit_check_can_be_skipped():
    guard = HallucinationGuard()
    text = '<edit path="a.py">\nreplace foo with bar\n</edit>'
    assert guard.check(text, include_malformed_edits=False) is None


def test_custom_code_patterns():
    guard = HallucinationGuard(code_patterns=[r"^SELECT\s+"])
    assert guard.check("SELECT * FROM users") == RAW_CODE_PROMPT
    assert guard.check("def f(): pass") is None
