"""Action executor protocol (external handlers for file, shell and search actions)."""

from typing import Protocol

from agentlane.core.domain.events import Action, ActionResult


class ActionExecutorProtocol(Protocol):
    """
    Executes actions against external handlers.

    Must return exactly one result per input action, in input order.
    Handler errors are reported as ``ActionResult(success=False, error=...)``
    rather than raised.
    """

    async def execute(self, actions: list[Action]) -> list[ActionResult]:
        ...
