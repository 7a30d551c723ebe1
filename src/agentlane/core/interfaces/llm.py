"""
Streaming adapter protocol.

The loop depends only on this normalization contract. Concrete adapters
wrap a provider transport (see infrastructure.llm.litellm_adapter).
"""

from typing import Any, Protocol

from agentlane.core.domain.cancellation import CancellationToken
from agentlane.core.domain.models import StreamResult
from agentlane.core.interfaces.tools import NativeTool


class StreamingAdapterProtocol(Protocol):
    """Issues one model request per loop iteration."""

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: dict[str, NativeTool] | None = None,
        cancel_token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> StreamResult:
        """
        Send the conversation to the model and normalize the answer.

        When ``tools`` is given, tool calls returned by the model are
        executed through each tool's callback before this coroutine
        resolves; their results appear in ``raw_response_messages`` and
        ``executions``.

        Args:
            messages: Full session history in OpenAI message format
            tools: Native tools keyed by provider-facing name
            cancel_token: Cooperative cancellation token
            timeout: Hard wall-clock timeout for this call in seconds

        Returns:
            Normalized StreamResult

        Raises:
            AbortedError: The cancellation token fired
            RequestTimeoutError: The hard timeout elapsed
            ContextOverflowError: The prompt exceeds the context window
            TransportError: Any other provider failure
        """
        ...
