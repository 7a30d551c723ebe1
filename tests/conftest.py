"""Shared fixtures for agentlane tests."""

import pytest

from agentlane.core.domain.agentic_loop import AgenticLoop
from agentlane.infrastructure.persistence.session_manager import SessionManager
from agentlane.infrastructure.tools.bridge import ActionBridge
from agentlane.infrastructure.tools.registry import ToolRegistry, default_contributions
from tests.fakes import RecordingExecutor, ScriptedAdapter


@pytest.fixture
def registry():
    return ToolRegistry(default_contributions())


@pytest.fixture
def bridge(registry):
    return ActionBridge(registry)


@pytest.fixture
def sessions():
    return SessionManager(system_prompt="You are a test agent.")


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def make_loop(sessions, bridge, executor):
    """Build an AgenticLoop around a scripted adapter."""

    def _make(steps, **kwargs):
        adapter = ScriptedAdapter(steps)
        loop = AgenticLoop(
            sessions=sessions,
            adapter=adapter,
            bridge=bridge,
            executor=kwargs.pop("executor", executor),
            **kwargs,
        )
        return loop, adapter

    return _make
