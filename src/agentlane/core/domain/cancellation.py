"""Cooperative cancellation tokens shared by the lane manager and the loop."""

import asyncio
import uuid

from agentlane.core.domain.errors import AbortedError


class CancellationToken:
    """
    Cooperative cancellation signal for one in-flight request.

    The token is checked at the start of each blocking await and can be
    awaited by the streaming adapter to race an in-flight model call.
    """

    def __init__(self, session_id: str | None = None):
        self.token_id = uuid.uuid4().hex[:12]
        self.session_id = session_id
        self.reason: str | None = None
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "aborted") -> bool:
        """Cancel the token. Returns False if it was already cancelled."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AbortedError(f"Request aborted: {self.reason}")

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "live"
        return f"CancellationToken({self.token_id}, session={self.session_id}, {state})"
