"""
Concurrency Lane Manager

One lane per session id: tasks for the same session run strictly one at a
time in arrival order, while lanes for different sessions run concurrently.
The manager also owns the live cancellation tokens of every session so an
external abort can cancel all in-flight work tied to it.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

import structlog

from agentlane.core.domain.cancellation import CancellationToken

T = TypeVar("T")

logger = structlog.get_logger()


class LaneManager:
    """
    Per-session FIFO serialization and cancellation registry.

    Example:
        >>> lanes = LaneManager()
        >>> result = await lanes.run_exclusive("chat:42", lambda: do_work())
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._usage: dict[str, int] = {}
        self._tokens: dict[str, dict[str, CancellationToken]] = {}
        self.logger = logger.bind(component="lane_manager")

    # ===== Lanes =====

    async def run_exclusive(self, session_id: str, task: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``task`` once every earlier task for ``session_id`` has finished.

        asyncio.Lock wakes waiters in FIFO order. The lock is released in all
        cases, so a failing task never blocks the tasks queued behind it.
        """
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
            self._usage[session_id] = 0
        self._usage[session_id] += 1

        try:
            async with lock:
                self.logger.debug("lane.acquired", session_id=session_id)
                return await task()
        finally:
            self._usage[session_id] -= 1
            if self._usage[session_id] == 0:
                del self._usage[session_id]
                del self._locks[session_id]

    def is_busy(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    def pending(self, session_id: str) -> int:
        """Tasks running or queued on a session lane."""
        return self._usage.get(session_id, 0)

    def active_lanes(self) -> list[str]:
        return list(self._locks.keys())

    # ===== Cancellation =====

    def register_token(self, session_id: str) -> CancellationToken:
        token = CancellationToken(session_id)
        self._tokens.setdefault(session_id, {})[token.token_id] = token
        return token

    def unregister_token(self, session_id: str, token: CancellationToken) -> None:
        """Forget one token. Other tokens of the session are left untouched."""
        tokens = self._tokens.get(session_id)
        if not tokens:
            return
        tokens.pop(token.token_id, None)
        if not tokens:
            del self._tokens[session_id]

    def active_token(self, session_id: str) -> CancellationToken | None:
        """Most recently registered token still live for the session."""
        tokens = self._tokens.get(session_id)
        if not tokens:
            return None
        return next(reversed(tokens.values()))

    def live_tokens(self, session_id: str) -> list[CancellationToken]:
        return list(self._tokens.get(session_id, {}).values())

    def abort_session(self, session_id: str, reason: str = "aborted by caller") -> bool:
        """
        Cancel every live token of a session.

        Returns:
            True if at least one token was cancelled.
        """
        cancelled = [t for t in self.live_tokens(session_id) if t.cancel(reason)]
        if cancelled:
            self.logger.info("lane.aborted", session_id=session_id, tokens=len(cancelled))
        return bool(cancelled)

    @asynccontextmanager
    async def cancellation_scope(self, session_id: str) -> AsyncIterator[CancellationToken]:
        token = self.register_token(session_id)
        try:
            yield token
        finally:
            self.unregister_token(session_id, token)
