"""
Stall ("ralph") recovery.

An iteration that yields no actionable result is a stall. Each stall is
fingerprinted over its explicit fields; a repeated fingerprint means the
model is looping without progress and gets a stronger change-strategy
nudge. After ``max_retries`` nudges the loop gives up.
"""

import hashlib
import json
from dataclasses import dataclass
from enum import Enum

from agentlane.core.prompts.loop_prompts import (
    STALL_CHANGE_STRATEGY_PROMPT,
    STALL_NUDGE_PROMPT,
)

MAX_RALPH_RETRIES = 3
FINGERPRINT_TEXT_CHARS = 2000
TASK_PREVIEW_CHARS = 500


@dataclass(frozen=True)
class StallFingerprint:
    """Structured fingerprint of a stalled response."""

    mode: str
    text: str
    reasoning: str
    finish_reason: str | None

    @classmethod
    def of(
        cls, mode: str, text: str, reasoning: str, finish_reason: str | None
    ) -> "StallFingerprint":
        return cls(
            mode=mode,
            text=(text or "").strip()[:FINGERPRINT_TEXT_CHARS],
            reasoning=(reasoning or "").strip()[:FINGERPRINT_TEXT_CHARS],
            finish_reason=finish_reason,
        )

    @property
    def digest(self) -> str:
        payload = json.dumps(
            {
                "mode": self.mode,
                "text": self.text,
                "reasoning": self.reasoning,
                "finish_reason": self.finish_reason,
            },
            sort_keys=True,
            ensure_ascii=False,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class StallVerdict(str, Enum):
    NUDGE = "nudge"
    GIVE_UP = "give_up"


@dataclass(frozen=True)
class StallDecision:
    verdict: StallVerdict
    prompt: str = ""
    repeated: bool = False


class StallRecovery:
    """Tracks consecutive stalls within one loop invocation."""

    def __init__(self, task: str, max_retries: int = MAX_RALPH_RETRIES):
        self.task = (task or "").strip()[:TASK_PREVIEW_CHARS]
        self.max_retries = max_retries
        self.attempts = 0
        self._last_digest: str | None = None

    def on_progress(self) -> None:
        """An iteration produced actionable results; start over."""
        self.attempts = 0
        self._last_digest = None

    def on_stall(self, fingerprint: StallFingerprint) -> StallDecision:
        digest = fingerprint.digest
        repeated = digest == self._last_digest
        self._last_digest = digest

        if self.attempts >= self.max_retries:
            return StallDecision(StallVerdict.GIVE_UP, repeated=repeated)

        self.attempts += 1
        template = STALL_CHANGE_STRATEGY_PROMPT if repeated else STALL_NUDGE_PROMPT
        return StallDecision(
            StallVerdict.NUDGE, prompt=template.format(task=self.task), repeated=repeated
        )
