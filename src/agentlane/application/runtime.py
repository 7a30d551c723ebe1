"""
Application Layer - Agent Runtime

Top-level object owning every runtime component. Callers (chat connectors,
CLIs, API routes) talk only to this class.

The AgentRuntime:
- Pins each request to a session lane (one active loop per session)
- Appends the user message and compresses history inside the lane
- Runs the agentic loop with interactive or unattended options
- Persists session snapshots when a session store is configured
- Exposes best-effort abort of all in-flight work for a session
"""

import uuid
from datetime import datetime

import structlog

from agentlane.application.config import AgentLaneSettings
from agentlane.application.lanes import LaneManager
from agentlane.core.domain.agentic_loop import AgenticLoop
from agentlane.core.domain.cancellation import CancellationToken
from agentlane.core.domain.models import (
    ChatResponse,
    LoopOptions,
    LoopOutcome,
    LoopResult,
    UnattendedResponse,
)
from agentlane.infrastructure.persistence.file_session_store import FileSessionStore
from agentlane.infrastructure.persistence.session_manager import SessionManager

logger = structlog.get_logger()

ISOLATED_SESSION_PREFIX = "isolated:"


class AgentRuntime:
    """
    Session-pinned chat runtime.

    Example:
        >>> runtime = RuntimeFactory().create_runtime(executor=my_executor)
        >>> reply = await runtime.chat("chat:42", "Fix the failing test in tests/test_api.py")
        >>> print(reply.response)
    """

    def __init__(
        self,
        sessions: SessionManager,
        loop: AgenticLoop,
        lanes: LaneManager | None = None,
        settings: AgentLaneSettings | None = None,
        session_store: FileSessionStore | None = None,
    ):
        self.sessions = sessions
        self.loop = loop
        self.lanes = lanes or LaneManager()
        self.settings = settings or AgentLaneSettings()
        self.session_store = session_store
        self._restored: set[str] = set()
        self.logger = logger.bind(component="agent_runtime")

    # ===== Option presets =====

    def interactive_options(self) -> LoopOptions:
        s = self.settings
        return LoopOptions(
            max_iterations=s.max_iterations,
            mode=s.tool_mode,
            iteration_timeout=s.request_timeout,
            max_stall_retries=s.max_stall_retries,
        )

    def unattended_options(self) -> LoopOptions:
        s = self.settings
        return LoopOptions(
            max_iterations=s.unattended_max_iterations,
            mode=s.tool_mode,
            overall_timeout=s.unattended_timeout,
            iteration_timeout=s.unattended_iteration_timeout,
            max_consecutive_failures=s.max_consecutive_failures,
            malformed_edit_guard=False,
            cache_file_contents=False,
            max_stall_retries=s.max_stall_retries,
        )

    # ===== Public API =====

    async def chat(
        self, session_id: str, text: str, options: LoopOptions | None = None
    ) -> ChatResponse:
        """
        Run one interactive request on a session.

        Args:
            session_id: Session to pin the request to
            text: User message
            options: Loop options, interactive defaults if None

        Returns:
            ChatResponse with the final response and accumulated thinking

        Raises:
            TransportError: Provider failures the loop could not recover from
        """
        result = await self._run(session_id, text, options or self.interactive_options())
        return ChatResponse(
            response=result.response or result.early_return or "",
            thinking=result.thinking,
            outcome=result.outcome,
        )

    async def chat_unattended(
        self, session_id: str, text: str, options: LoopOptions | None = None
    ) -> UnattendedResponse:
        """
        Run one non-interactive request (connectors, schedulers).

        Uses a shorter iteration cap, an overall timeout, the consecutive
        failure breaker and only the raw-code hallucination check. Early
        exits (breaker, timeout, stall) surface their explanation as the
        response so the caller can decide next steps.
        """
        result = await self._run(session_id, text, options or self.unattended_options())
        return UnattendedResponse(
            response=result.early_return or result.response,
            end_message=result.end_message,
            outcome=result.outcome,
        )

    async def chat_isolated(self, text: str, options: LoopOptions | None = None) -> ChatResponse:
        """Run a request in a throwaway session that is deleted afterwards."""
        session_id = f"{ISOLATED_SESSION_PREFIX}{uuid.uuid4().hex[:12]}"
        try:
            options = options or self.interactive_options()
            result = await self._run(session_id, text, options, persist=False)
        finally:
            self.sessions.delete(session_id)
        return ChatResponse(
            response=result.response or result.early_return or "",
            thinking=result.thinking,
            outcome=result.outcome,
        )

    def abort_session(self, session_id: str) -> bool:
        """Cancel all in-flight and queued requests of a session."""
        return self.lanes.abort_session(session_id)

    async def delete_session(self, session_id: str) -> bool:
        deleted = self.sessions.delete(session_id)
        if deleted and self.session_store is not None:
            await self.session_store.delete(session_id)
        self._restored.discard(session_id)
        return deleted

    # ===== Internals =====

    async def _run(
        self,
        session_id: str,
        text: str,
        options: LoopOptions,
        persist: bool = True,
    ) -> LoopResult:
        async with self.lanes.cancellation_scope(session_id) as token:
            return await self.lanes.run_exclusive(
                session_id,
                lambda: self._run_in_lane(session_id, text, options, token, persist),
            )

    async def _restore(self, session_id: str) -> None:
        if self.session_store is None or session_id in self._restored:
            return
        self._restored.add(session_id)
        if self.sessions.exists(session_id):
            return
        messages = await self.session_store.load(session_id)
        if messages:
            session = self.sessions.get_or_create(session_id)
            # Keep the current system prompt; restore the conversation after it.
            body = [m for m in messages if m.get("role") != "system"]
            self.sessions.replace_history(session_id, session.messages[:1] + body)
            self.logger.info("session.restored", session_id=session_id, messages=len(body))

    async def _run_in_lane(
        self,
        session_id: str,
        text: str,
        options: LoopOptions,
        token: CancellationToken,
        persist: bool,
    ) -> LoopResult:
        start_time = datetime.now()
        if token.cancelled:
            # Aborted while queued: leave history and snapshot untouched.
            self.logger.info("chat.aborted_in_queue", session_id=session_id)
            return LoopResult(outcome=LoopOutcome.ABORTED)

        if persist:
            await self._restore(session_id)

        self.sessions.append(session_id, {"role": "user", "content": text})
        self.sessions.compress(session_id)

        self.logger.info(
            "chat.started",
            session_id=session_id,
            mode=options.mode.value,
            max_iterations=options.max_iterations,
        )
        try:
            result = await self.loop.run(session_id, text, options, cancel_token=token)
        except Exception as e:
            self.logger.error(
                "chat.failed",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=(datetime.now() - start_time).total_seconds(),
            )
            raise
        finally:
            if persist and self.session_store is not None:
                await self.session_store.save(session_id, self.sessions.history(session_id))

        self.logger.info(
            "chat.completed",
            session_id=session_id,
            outcome=result.outcome.value,
            iterations=result.iterations,
            duration_seconds=(datetime.now() - start_time).total_seconds(),
        )
        return result
