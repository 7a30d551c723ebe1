"""
Session Manager
===============

Owns one message store and one bounded file-content cache per session id.

Responsibilities:
- Lazy session creation with least-recently-used eviction beyond capacity
- Append/read/clear/delete of session history
- Destructive compression to a message ceiling
- Condensation into a natural-language summary for token-limit recovery
- Context pressure policy (prune, summarize, hard reset)

The reserved default session is never evicted and cannot be deleted.
None of the operations raise for a missing session; sessions are created
on demand (``delete`` excepted).
"""

import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from agentlane.core.domain.errors import SessionError
from agentlane.infrastructure.persistence.context_policy import (
    ModelLimits,
    PressureReport,
    apply_context_pressure_policy,
    estimate_tokens,
    message_text,
    safe_tail_start,
)

logger = structlog.get_logger()

DEFAULT_SESSION_ID = "default"
DEFAULT_CAPACITY = 50
DEFAULT_MAX_MESSAGES = 200
FILE_CACHE_SIZE = 50
FILE_CACHE_MAX_CHARS = 50000

_ACTION_TAG = re.compile(r"<(bash|read|edit|write|grep|glob|ls|explore)\b[^>]*>")
_INTERNAL_MARKERS = ("<system-instruction>", "<action-output>", "<session-summary>", "[stall-nudge]")


class FileCache:
    """Recency-ordered cache of file contents with a bounded entry count."""

    def __init__(self, max_entries: int = FILE_CACHE_SIZE, max_chars: int = FILE_CACHE_MAX_CHARS):
        self.max_entries = max_entries
        self.max_chars = max_chars
        self._entries: OrderedDict[str, str] = OrderedDict()

    def get(self, path: str) -> str | None:
        if path not in self._entries:
            return None
        self._entries.move_to_end(path)
        return self._entries[path]

    def put(self, path: str, content: str) -> bool:
        """Cache ``content`` for ``path``. Oversized content is not cached."""
        if len(content) >= self.max_chars:
            self._entries.pop(path, None)
            return False
        self._entries[path] = content
        self._entries.move_to_end(path)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return True

    def invalidate(self, path: str) -> None:
        self._entries.pop(path, None)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries


@dataclass
class Session:
    """One conversation: message store, file cache and activity bookkeeping."""

    id: str
    messages: list[dict[str, Any]]
    file_cache: FileCache
    last_activity: float = field(default_factory=time.monotonic)
    created_at: float = field(default_factory=time.time)
    compressions: int = 0
    condensations: int = 0

    def touch(self) -> None:
        self.last_activity = time.monotonic()


class SessionManager:
    """
    In-memory session registry.

    Example:
        >>> manager = SessionManager(system_prompt="You are a coding agent.")
        >>> manager.append("chat:42", {"role": "user", "content": "hi"})
        >>> [m["role"] for m in manager.history("chat:42")]
        ['system', 'user']
    """

    def __init__(
        self,
        system_prompt: str | Callable[[], str] = "",
        capacity: int = DEFAULT_CAPACITY,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        file_cache_size: int = FILE_CACHE_SIZE,
        file_cache_max_chars: int = FILE_CACHE_MAX_CHARS,
        default_session_id: str = DEFAULT_SESSION_ID,
    ):
        self._system_prompt = system_prompt
        self.capacity = capacity
        self.max_messages = max_messages
        self.file_cache_size = file_cache_size
        self.file_cache_max_chars = file_cache_max_chars
        self.default_session_id = default_session_id
        self._sessions: dict[str, Session] = {}
        self.logger = logger.bind(component="session_manager")

    # ===== Lifecycle =====

    def _build_system_prompt(self) -> str:
        prompt = self._system_prompt
        return prompt() if callable(prompt) else prompt

    def _evict_if_full(self) -> None:
        if len(self._sessions) < self.capacity:
            return
        candidates = [s for s in self._sessions.values() if s.id != self.default_session_id]
        if not candidates:
            return
        oldest = min(candidates, key=lambda s: s.last_activity)
        del self._sessions[oldest.id]
        self.logger.info("session_evicted", session_id=oldest.id, sessions=len(self._sessions))

    def get_or_create(self, session_id: str) -> Session:
        if not session_id:
            raise SessionError("Session id must be a non-empty string")
        session = self._sessions.get(session_id)
        if session is None:
            self._evict_if_full()
            session = Session(
                id=session_id,
                messages=[{"role": "system", "content": self._build_system_prompt()}],
                file_cache=FileCache(self.file_cache_size, self.file_cache_max_chars),
            )
            self._sessions[session_id] = session
            self.logger.debug("session_created", session_id=session_id)
        session.touch()
        return session

    def exists(self, session_id: str) -> bool:
        return session_id in self._sessions

    def session_ids(self) -> list[str]:
        return list(self._sessions.keys())

    def delete(self, session_id: str) -> bool:
        """Delete a session. The reserved default session cannot be deleted."""
        if session_id == self.default_session_id:
            return False
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            self.logger.info("session_deleted", session_id=session_id)
        return removed

    # ===== History operations =====

    def append(self, session_id: str, message: dict[str, Any]) -> None:
        self.get_or_create(session_id).messages.append(message)

    def extend(self, session_id: str, messages: list[dict[str, Any]]) -> None:
        self.get_or_create(session_id).messages.extend(messages)

    def history(self, session_id: str) -> list[dict[str, Any]]:
        """Return a copy of the ordered message log."""
        return list(self.get_or_create(session_id).messages)

    def replace_history(self, session_id: str, messages: list[dict[str, Any]]) -> None:
        self.get_or_create(session_id).messages = list(messages)

    def clear(self, session_id: str) -> None:
        """Reset history to a fresh system prompt and drop cached files."""
        session = self.get_or_create(session_id)
        session.messages = [{"role": "system", "content": self._build_system_prompt()}]
        session.file_cache.clear()

    def file_cache(self, session_id: str) -> FileCache:
        return self.get_or_create(session_id).file_cache

    def rebuild_system_prompts(self, prompt: str | Callable[[], str]) -> None:
        """Replace the system prompt of every session and of future sessions."""
        self._system_prompt = prompt
        text = self._build_system_prompt()
        for session in self._sessions.values():
            if session.messages and session.messages[0].get("role") == "system":
                session.messages[0] = {"role": "system", "content": text}

    # ===== Context compression =====

    def compress(self, session_id: str, max_messages: int | None = None) -> bool:
        """
        Keep the leading system message plus the most recent messages.

        Destructive: dropped messages are gone. A no-op when the history
        (excluding the system message) is at or below the ceiling.

        Returns:
            True if messages were dropped.
        """
        session = self.get_or_create(session_id)
        ceiling = max_messages or self.max_messages
        system, body = session.messages[:1], session.messages[1:]
        if len(body) <= ceiling:
            return False

        start = safe_tail_start(body, ceiling)
        session.messages = system + body[start:]
        session.compressions += 1
        self.logger.info(
            "context_compressed",
            session_id=session_id,
            before=len(body),
            after=len(body) - start,
        )
        return True

    @staticmethod
    def summarize_messages(messages: list[dict[str, Any]]) -> str:
        """Build a compact digest of recent user requests and action tags."""
        user_requests: list[str] = []
        actions: list[str] = []
        for message in messages:
            role = message.get("role")
            text = message_text(message)
            if role == "user":
                if text and not any(marker in text for marker in _INTERNAL_MARKERS):
                    user_requests.append(text.split("\n", 1)[0])
            elif role == "assistant":
                actions.extend([m.group(0) for m in _ACTION_TAG.finditer(text)][:3])
                for call in message.get("tool_calls") or []:
                    name = call.get("function", {}).get("name")
                    if name:
                        actions.append(name)

        summary = "Conversation Summary:\n"
        if user_requests:
            summary += f"User requests: {'; '.join(user_requests[-5:])}\n"
        if actions:
            summary += f"Actions performed: {', '.join(actions[-5:])}\n"
        summary += f"Total messages: {len(messages)}\n"
        summary += "Please continue from this point."
        return summary

    def condense(self, session_id: str) -> str:
        """
        Summarize the session history (excluding the system message).

        Callers replace the history with ``[system, summary]`` themselves,
        see ``apply_condensation``.
        """
        session = self.get_or_create(session_id)
        return self.summarize_messages(session.messages[1:])

    def apply_condensation(self, session_id: str) -> str:
        """Condense and replace history with ``[system, summary]``."""
        session = self.get_or_create(session_id)
        summary = self.condense(session_id)
        session.messages = [session.messages[0], {"role": "user", "content": summary}]
        session.file_cache.clear()
        session.condensations += 1
        self.logger.warning("context_condensed", session_id=session_id)
        return summary

    def estimate_tokens(self, session_id: str) -> int:
        return estimate_tokens(self.get_or_create(session_id).messages)

    def apply_context_pressure_policy(
        self, session_id: str, limits: ModelLimits
    ) -> PressureReport:
        session = self.get_or_create(session_id)
        messages, report = apply_context_pressure_policy(
            session.messages, limits, self.summarize_messages
        )
        if report.changed:
            session.messages = messages
            session.compressions += 1
            self.logger.info(
                "context_pressure_applied",
                session_id=session_id,
                ratio_before=round(report.ratio_before, 3),
                ratio=round(report.ratio, 3),
                actions=report.actions_taken,
            )
        return report

    # ===== Introspection =====

    def summaries(self) -> list[dict[str, Any]]:
        """Per-session overview, most recently active first."""
        now = time.monotonic()
        rows = []
        for session in sorted(
            self._sessions.values(), key=lambda s: s.last_activity, reverse=True
        ):
            rows.append(
                {
                    "session_id": session.id,
                    "messages": len(session.messages),
                    "estimated_tokens": estimate_tokens(session.messages),
                    "cached_files": len(session.file_cache),
                    "idle_seconds": round(now - session.last_activity, 1),
                    "compressions": session.compressions,
                    "condensations": session.condensations,
                }
            )
        return rows
