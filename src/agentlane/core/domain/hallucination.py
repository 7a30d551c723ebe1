"""Hallucination guards for textual action mode."""

import re
from typing import Iterable, Pattern

from agentlane.core.prompts.loop_prompts import MALFORMED_EDIT_PROMPT, RAW_CODE_PROMPT

DEFAULT_CODE_PATTERNS: tuple[str, ...] = (
    r"^(async\s+)?(function|class|const|let|var|export|import)\s+",
    r"constructor\s*\([^)]*\)\s*\{",
    r"^\s*(public|private|protected)\s+",
    r"^(async\s+)?def\s+\w+\s*\(",
)

_CLOSE_EDIT = re.compile(r"</edit", re.IGNORECASE)
_PROPER_EDIT = re.compile(
    r"<edit\s+path=[\"'][^\"']+[\"'][^>]*>[\s\S]*?@@ -\d+,\d+ @@", re.IGNORECASE
)


class HallucinationGuard:
    """
    Detects responses that should not be executed or accepted as-is.

    Detection patterns are heuristics and configurable; the policy is fixed:
    malformed edit tags and raw code outside action tags are redirected with
    a corrective instruction instead of being executed.
    """

    def __init__(
        self,
        code_patterns: Iterable[str] = DEFAULT_CODE_PATTERNS,
        check_malformed_edits: bool = True,
    ):
        self.code_patterns: list[Pattern[str]] = [
            re.compile(p, re.MULTILINE) for p in code_patterns
        ]
        self.check_malformed_edits = check_malformed_edits

    def is_malformed_edit(self, text: str) -> bool:
        return bool(_CLOSE_EDIT.search(text)) and not _PROPER_EDIT.search(text)

    def looks_like_raw_code(self, text: str) -> bool:
        # Fenced code is an explanation, not an attempted edit.
        if "```" in text:
            return False
        return any(p.search(text) for p in self.code_patterns)

    def check(self, text: str, include_malformed_edits: bool = True) -> str | None:
        """Return a corrective prompt, or None if the response is acceptable."""
        check_edits = self.check_malformed_edits and include_malformed_edits
        if check_edits and self.is_malformed_edit(text):
            return MALFORMED_EDIT_PROMPT
        if self.looks_like_raw_code(text):
            return RAW_CODE_PROMPT
        return None
