"""
Agentic Loop - iterative request/execute/feedback state machine

Drives one session through repeated model requests until the task ends:

    Start -> Stream -> (NativeExecute | TextParseExecute) -> Decide -> {Stream | Stop}

Key features:
- Native tool calls and textual action tags converge on one ActionGuardPipeline
- Truncated <edit>/<write> blocks are stashed and merged with the continuation
- End actions are blocked while edits remain unresolved (bounded)
- Stalled responses get fingerprinted nudges, then the loop gives up cleanly
- Token-limit errors trigger compaction/condensation and exactly one retry

Every exit returns a LoopResult. Only transport errors propagate.
"""

import time
from dataclasses import dataclass, field
from typing import Any

import structlog

from agentlane.core.domain.cancellation import CancellationToken
from agentlane.core.domain.errors import (
    AbortedError,
    ContextOverflowError,
    RequestTimeoutError,
)
from agentlane.core.domain.events import Action, ActionResult, ActionType, MUTATING_TYPES
from agentlane.core.domain.guards import ActionGuardPipeline, LoopState
from agentlane.core.domain.hallucination import HallucinationGuard
from agentlane.core.domain.history_policy import build_continuation_output
from agentlane.core.domain.models import (
    LoopOptions,
    LoopOutcome,
    LoopResult,
    StepKind,
    StepOutcome,
    StreamResult,
    ToolMode,
)
from agentlane.core.domain.policy import resolve_execution_policy
from agentlane.core.domain.stall import StallFingerprint, StallRecovery, StallVerdict
from agentlane.core.interfaces.actions import ActionExecutorProtocol
from agentlane.core.interfaces.llm import StreamingAdapterProtocol
from agentlane.core.interfaces.tools import NativeTool
from agentlane.core.prompts.loop_prompts import (
    CONTINUE_ACTION_PROMPT,
    CONTINUE_INSTRUCTION,
    EDIT_FAILED_INSTRUCTION,
    END_BLOCKED_PROMPT,
    ERROR_INSTRUCTION,
    ITERATION_WARNING,
    TRUNCATION_CONTINUE_PROMPT,
)
from agentlane.infrastructure.persistence.context_policy import ModelLimits
from agentlane.infrastructure.persistence.session_manager import SessionManager
from agentlane.infrastructure.tools.bridge import ActionBridge
from agentlane.infrastructure.tools.text_parser import find_unclosed_tag

MAX_BLOCKED_ENDS = 2


@dataclass
class _Run:
    """Loop-scoped bookkeeping for one invocation."""

    session_id: str
    options: LoopOptions
    pipeline: ActionGuardPipeline
    stall: StallRecovery
    tools: dict[str, NativeTool] | None
    cancel_token: CancellationToken | None
    started: float = field(default_factory=time.monotonic)
    iteration: int = 0
    total_iterations: int = 0
    consecutive_failures: int = 0
    truncated: str = ""
    last_output: str = ""
    thinking: list[str] = field(default_factory=list)
    results: list[ActionResult] = field(default_factory=list)

    @property
    def state(self) -> LoopState:
        return self.pipeline.state


class AgenticLoop:
    """
    Iteration state machine for one session.

    The loop is stateless between invocations; everything scoped to a run
    lives in ``_Run`` and is discarded on exit. Callers serialize runs per
    session (see application.lanes.LaneManager).
    """

    def __init__(
        self,
        sessions: SessionManager,
        adapter: StreamingAdapterProtocol,
        bridge: ActionBridge,
        executor: ActionExecutorProtocol,
        hallucination_guard: HallucinationGuard | None = None,
        model_limits: ModelLimits | None = None,
    ):
        """
        Initialize the loop with injected collaborators.

        Args:
            sessions: Session manager owning histories and file caches
            adapter: Streaming adapter issuing one model request per iteration
            bridge: Action bridge for native tools and textual tags
            executor: Shared action executor (external handlers)
            hallucination_guard: Textual-mode guard; a default one if None
            model_limits: Enables the context pressure policy when given
        """
        self.sessions = sessions
        self.adapter = adapter
        self.bridge = bridge
        self.executor = executor
        self.hallucination_guard = hallucination_guard or HallucinationGuard()
        self.model_limits = model_limits
        self.logger = structlog.get_logger().bind(component="agentic_loop")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        session_id: str,
        task: str,
        options: LoopOptions | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> LoopResult:
        """
        Run the loop on a session whose history already holds the user message.

        Args:
            session_id: Session to drive
            task: Original user request, quoted in stall nudges
            options: Loop options (defaults if None)
            cancel_token: Cooperative cancellation token

        Returns:
            LoopResult describing how the loop exited

        Raises:
            TransportError: Provider failures other than a recovered
                context overflow
        """
        options = options or LoopOptions()
        pipeline = ActionGuardPipeline(
            executor=self.executor,
            state=LoopState(),
            policy=resolve_execution_policy(options.execution_mode),
            file_cache=self.sessions.file_cache(session_id),
            cache_file_contents=options.cache_file_contents,
        )
        tools = (
            self.bridge.build_native_tools(pipeline)
            if options.mode is ToolMode.NATIVE
            else None
        )
        run = _Run(
            session_id=session_id,
            options=options,
            pipeline=pipeline,
            stall=StallRecovery(task, options.max_stall_retries),
            tools=tools,
            cancel_token=cancel_token,
        )
        self.logger.info(
            "loop.started",
            session_id=session_id,
            mode=options.mode.value,
            max_iterations=options.max_iterations,
        )

        while True:
            run.iteration += 1
            run.total_iterations += 1

            if options.overall_timeout is not None:
                elapsed = time.monotonic() - run.started
                if elapsed >= options.overall_timeout:
                    return self._finish(
                        run,
                        StepOutcome.stop(
                            LoopOutcome.TIMED_OUT,
                            early_return=(
                                f"Timed out after {elapsed:.0f}s "
                                f"({run.total_iterations - 1} iterations)."
                            ),
                        ),
                    )
            if cancel_token is not None and cancel_token.cancelled:
                return self._finish(run, StepOutcome.stop(LoopOutcome.ABORTED))

            self._emit(run, "iteration", iteration=run.iteration)
            self._apply_pressure(session_id)

            try:
                stream = await self._stream_with_recovery(run)
            except AbortedError as e:
                if e.partial_text and not run.last_output:
                    run.last_output = e.partial_text
                return self._finish(run, StepOutcome.stop(LoopOutcome.ABORTED))
            except RequestTimeoutError as e:
                return self._finish(
                    run,
                    StepOutcome.stop(LoopOutcome.TIMED_OUT, early_return=str(e)),
                )

            outcome = await self._step(run, stream)
            if outcome.kind is StepKind.BREAK:
                return self._finish(run, outcome)
            if outcome.kind is StepKind.RESET_ITERATION:
                run.iteration = 0

    # ------------------------------------------------------------------
    # Streaming and token-limit recovery
    # ------------------------------------------------------------------

    def _apply_pressure(self, session_id: str) -> None:
        if self.model_limits is not None:
            self.sessions.apply_context_pressure_policy(session_id, self.model_limits)

    async def _stream_once(self, run: _Run) -> StreamResult:
        return await self.adapter.stream(
            self.sessions.history(run.session_id),
            tools=run.tools,
            cancel_token=run.cancel_token,
            timeout=run.options.iteration_timeout,
        )

    async def _stream_with_recovery(self, run: _Run) -> StreamResult:
        try:
            return await self._stream_once(run)
        except ContextOverflowError as e:
            self.logger.warning(
                "loop.context_overflow", session_id=run.session_id, error=str(e)[:200]
            )

        recovered = False
        if self.model_limits is not None:
            report = self.sessions.apply_context_pressure_policy(
                run.session_id, self.model_limits
            )
            recovered = report.changed and report.ratio < self.model_limits.reset_ratio
        if not recovered:
            self.sessions.apply_condensation(run.session_id)
            run.state.read_coverage.clear()
        self._emit(run, "context_recovered", condensed=not recovered)

        # A second overflow propagates to the caller.
        return await self._stream_once(run)

    # ------------------------------------------------------------------
    # One iteration
    # ------------------------------------------------------------------

    def _append(self, run: _Run, role: str, content: str) -> None:
        self.sessions.append(run.session_id, {"role": role, "content": content})

    async def _step(self, run: _Run, stream: StreamResult) -> StepOutcome:
        text = stream.text or ""
        if stream.reasoning_text:
            run.thinking.append(stream.reasoning_text)

        if stream.has_native_tool_calls:
            self.sessions.extend(run.session_id, stream.raw_response_messages)
            if text.strip():
                run.last_output = text
            pairs = [
                (e.action, e.result)
                for e in stream.executions
                if e.action is not None and e.result is not None
            ]
            return await self._decide(run, stream, text, pairs, textual=False)

        merged = run.truncated + text
        run.truncated = ""
        if merged.strip():
            run.last_output = merged

        unclosed = find_unclosed_tag(merged)
        if unclosed:
            if run.iteration >= run.options.max_iterations:
                if text:
                    self._append(run, "assistant", text)
                return StepOutcome.stop(
                    LoopOutcome.LIMIT_REACHED,
                    early_return=(
                        f"Stopped after reaching the limit of {run.options.max_iterations} "
                        f"iterations with an unfinished <{unclosed}> block."
                    ),
                )
            run.truncated = merged
            if text:
                self._append(run, "assistant", text)
            self._append(run, "user", TRUNCATION_CONTINUE_PROMPT.format(tag=unclosed))
            self._emit(run, "truncation", tag=unclosed)
            self.logger.info(
                "loop.truncated_block", session_id=run.session_id, tag=unclosed
            )
            return StepOutcome.proceed()

        if text:
            self._append(run, "assistant", text)
        actions = self.bridge.parse_text(merged)
        pairs = await run.pipeline.run_batch(actions) if actions else []
        return await self._decide(run, stream, merged, pairs, textual=True)

    async def _decide(
        self,
        run: _Run,
        stream: StreamResult,
        text: str,
        pairs: list[tuple[Action, ActionResult]],
        textual: bool,
    ) -> StepOutcome:
        options = run.options
        run.results.extend(result for _, result in pairs)
        types = {action.type for action, _ in pairs}

        for action, result in pairs:
            if action.type == ActionType.SAY.value and result.result:
                if options.on_say:
                    options.on_say(result.result)
                self._emit(run, "say", message=result.result)

        if options.continue_actions and ActionType.CONTINUE.value in types:
            if textual:
                self._append(
                    run,
                    "user",
                    CONTINUE_ACTION_PROMPT.format(results=build_continuation_output(pairs)),
                )
            run.stall.on_progress()
            self.logger.info("loop.iteration_reset", session_id=run.session_id)
            return StepOutcome.reset()

        if run.iteration >= options.max_iterations:
            return StepOutcome.stop(
                LoopOutcome.LIMIT_REACHED,
                early_return=f"Stopped after reaching the limit of {options.max_iterations} iterations.",
            )

        for action, result in pairs:
            if action.type == ActionType.PLAN_READY.value and result.success:
                return StepOutcome.stop(
                    LoopOutcome.PLAN_READY, end_message=result.result or action.message
                )

        end = next(
            ((a, r) for a, r in pairs if a.type == ActionType.END.value), None
        )
        if end is not None:
            state = run.state
            if state.unresolved_edits and state.blocked_ends < MAX_BLOCKED_ENDS:
                state.blocked_ends += 1
                paths = ", ".join(sorted(state.unresolved_edits))
                self._append(run, "user", END_BLOCKED_PROMPT.format(paths=paths))
                self._emit(run, "end_blocked", paths=paths, count=state.blocked_ends)
                self.logger.info(
                    "loop.end_blocked",
                    session_id=run.session_id,
                    unresolved=paths,
                    blocked_ends=state.blocked_ends,
                )
                return StepOutcome.proceed()
            return StepOutcome.stop(LoopOutcome.ENDED, end_message=end[1].result or None)

        if options.max_consecutive_failures is not None:
            if pairs and all(not r.success for _, r in pairs):
                run.consecutive_failures += 1
                if run.consecutive_failures >= options.max_consecutive_failures:
                    failed = ", ".join(r.action for _, r in pairs)
                    return StepOutcome.stop(
                        LoopOutcome.CONSECUTIVE_FAILURES,
                        early_return=(
                            f"Stopped after {options.max_consecutive_failures} "
                            f"consecutive failures. Last errors: {failed}"
                        ),
                    )
            else:
                run.consecutive_failures = 0

        if not pairs:
            return self._handle_no_actions(run, stream, text)

        run.stall.on_progress()
        if textual:
            self._append(run, "user", self._continuation_prompt(run, pairs))
        elif run.iteration >= options.iteration_warning_at:
            self._append(run, "user", ITERATION_WARNING.format(iteration=run.iteration).strip())
        return StepOutcome.proceed()

    def _handle_no_actions(self, run: _Run, stream: StreamResult, text: str) -> StepOutcome:
        text_mode = run.options.mode is ToolMode.TEXT
        if text_mode and run.options.hallucination_guard and text.strip():
            correction = self.hallucination_guard.check(
                text, include_malformed_edits=run.options.malformed_edit_guard
            )
            if correction:
                self._append(run, "user", correction)
                self._emit(run, "hallucination", correction=correction.split("\n", 1)[0])
                return StepOutcome.proceed()

        fingerprint = StallFingerprint.of(
            mode=run.options.mode.value,
            text=text,
            reasoning=stream.reasoning_text,
            finish_reason=stream.finish_reason,
        )
        decision = run.stall.on_stall(fingerprint)
        if decision.verdict is StallVerdict.GIVE_UP:
            self.logger.warning(
                "loop.stalled", session_id=run.session_id, attempts=run.stall.attempts
            )
            return StepOutcome.stop(
                LoopOutcome.STALLED,
                early_return=(
                    f"Stopped: no actionable output after {run.stall.attempts} recovery attempts."
                ),
            )

        history = self.sessions.history(run.session_id)
        last = history[-1] if history else {}
        if not (last.get("role") == "user" and last.get("content") == decision.prompt):
            self._append(run, "user", decision.prompt)
        self._emit(run, "stall_nudge", attempt=run.stall.attempts, repeated=decision.repeated)
        return StepOutcome.proceed()

    def _continuation_prompt(
        self, run: _Run, pairs: list[tuple[Action, ActionResult]]
    ) -> str:
        failed_edits = [
            action.path
            for action, result in pairs
            if not result.success and action.type in MUTATING_TYPES and action.path
        ]
        if failed_edits:
            instruction = EDIT_FAILED_INSTRUCTION.format(paths=", ".join(failed_edits))
        elif any(not result.success for _, result in pairs):
            instruction = ERROR_INSTRUCTION
        else:
            instruction = CONTINUE_INSTRUCTION

        warning = ""
        if run.iteration >= run.options.iteration_warning_at:
            warning = ITERATION_WARNING.format(iteration=run.iteration)

        return f"{build_continuation_output(pairs)}{warning}\n{instruction}"

    # ------------------------------------------------------------------
    # Exit
    # ------------------------------------------------------------------

    def _emit(self, run: _Run, event: str, **payload: Any) -> None:
        if run.options.on_event:
            run.options.on_event(event, {"session_id": run.session_id, **payload})

    def _finish(self, run: _Run, outcome: StepOutcome) -> LoopResult:
        exit_reason = outcome.outcome or LoopOutcome.ENDED
        response = run.last_output
        if exit_reason in (LoopOutcome.ENDED, LoopOutcome.PLAN_READY) and outcome.end_message:
            response = outcome.end_message
        result = LoopResult(
            outcome=exit_reason,
            response=response,
            thinking="".join(run.thinking),
            end_message=outcome.end_message,
            early_return=outcome.early_return,
            iterations=run.total_iterations,
            results=run.results,
        )
        self.logger.info(
            "loop.finished",
            session_id=run.session_id,
            outcome=exit_reason.value,
            iterations=run.total_iterations,
            actions=len(run.results),
        )
        return result
