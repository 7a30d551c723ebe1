"""
Error hierarchy for the agentlane runtime.

Only transport-level failures and cancellation are raised. Validation
failures and policy blocks are never raised; they become failed
ActionResults fed back to the model.
"""

from typing import Optional


class AgentLaneError(Exception):
    """Base class for all agentlane errors."""

    def __init__(
        self,
        message: str,
        code: str = "AGENTLANE_ERROR",
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.code = code
        self.cause = cause


class AbortedError(AgentLaneError):
    """A request was cancelled through its cancellation token."""

    def __init__(self, message: str = "Request aborted", partial_text: str = ""):
        super().__init__(message, code="ABORTED")
        self.partial_text = partial_text


class RequestTimeoutError(AgentLaneError):
    """A single model request exceeded its hard wall-clock timeout."""

    def __init__(self, timeout: float):
        super().__init__(f"Model request timed out after {timeout:.1f}s", code="TIMEOUT")
        self.timeout = timeout


class TransportError(AgentLaneError):
    """Provider or network failure while talking to the model."""

    def __init__(self, message: str, cause: Optional[Exception] = None, code: str = "TRANSPORT"):
        super().__init__(message, code=code, cause=cause)


class ContextOverflowError(TransportError):
    """The prompt exceeds the model's context window."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, cause=cause, code="CONTEXT_OVERFLOW")


class SessionError(AgentLaneError):
    """Invalid session identifier."""

    def __init__(self, message: str):
        super().__init__(message, code="SESSION")


_OVERFLOW_MARKERS = (
    "context length",
    "context_length_exceeded",
    "context window",
    "prompt is too long",
    "maximum context",
    "too many tokens",
    "input is too long",
)


def is_context_overflow_message(text: str) -> bool:
    """Return True if a provider error message describes a context overflow."""
    lowered = (text or "").lower()
    return any(marker in lowered for marker in _OVERFLOW_MARKERS)
