"""
Application Layer - Runtime Factory

Dependency injection for AgentRuntime. Every component is constructed here
and handed to its consumers explicitly; nothing is a module-level singleton,
so independent runtimes (and tests) never share state.

Key Responsibilities:
- Load configuration profiles (configs/<profile>.yaml)
- Instantiate infrastructure adapters (LiteLLM adapter, session store)
- Build the tool registry from built-in and external contributions
- Assemble the system prompt (with a tag catalog in text mode)
- Wire the agentic loop, lane manager and runtime together
"""

from pathlib import Path
from typing import Any, Iterable, Optional

import structlog

from agentlane.application.config import AgentLaneSettings
from agentlane.application.lanes import LaneManager
from agentlane.application.runtime import AgentRuntime
from agentlane.core.domain.agentic_loop import AgenticLoop
from agentlane.core.domain.hallucination import DEFAULT_CODE_PATTERNS, HallucinationGuard
from agentlane.core.domain.models import ToolMode
from agentlane.core.interfaces.actions import ActionExecutorProtocol
from agentlane.core.interfaces.llm import StreamingAdapterProtocol
from agentlane.infrastructure.llm.litellm_adapter import LiteLLMStreamingAdapter
from agentlane.infrastructure.persistence.context_policy import ModelLimits
from agentlane.infrastructure.persistence.file_session_store import FileSessionStore
from agentlane.infrastructure.persistence.session_manager import SessionManager
from agentlane.infrastructure.tools.bridge import ActionBridge
from agentlane.infrastructure.tools.registry import (
    ToolContribution,
    ToolRegistry,
    default_contributions,
)

DEFAULT_SYSTEM_PROMPT = (
    "You are a coding agent working inside a repository. Use the available "
    "actions to read, edit and verify files. Read a file in full before "
    "editing it. When the task is complete, end with a short summary."
)


class RuntimeFactory:
    """
    Factory for creating runtimes with dependency injection.

    Example:
        >>> factory = RuntimeFactory(config_dir="configs")
        >>> runtime = factory.create_runtime(profile="dev", executor=my_executor)
    """

    def __init__(self, config_dir: str = "configs"):
        """
        Initialize RuntimeFactory with configuration directory.

        Args:
            config_dir: Path to directory containing profile YAML files
        """
        self.config_dir = Path(config_dir)
        self.logger = structlog.get_logger().bind(component="runtime_factory")

    def load_settings(self, profile: Optional[str] = None, **overrides: Any) -> AgentLaneSettings:
        if profile is None:
            return AgentLaneSettings(**overrides)
        profile_path = self.config_dir / f"{profile}.yaml"
        if not profile_path.exists():
            self.logger.error(
                "profile_not_found",
                profile=profile,
                path=str(profile_path),
                hint="Ensure profile YAML exists in configs directory",
            )
            raise FileNotFoundError(f"Profile not found: {profile_path}")
        settings = AgentLaneSettings.load_from_file(profile_path, **overrides)
        self.logger.debug("profile_loaded", profile=profile, model=settings.model)
        return settings

    def create_runtime(
        self,
        executor: ActionExecutorProtocol,
        profile: Optional[str] = None,
        settings: Optional[AgentLaneSettings] = None,
        adapter: Optional[StreamingAdapterProtocol] = None,
        contributions: Optional[Iterable[ToolContribution]] = None,
        code_patterns: Iterable[str] = DEFAULT_CODE_PATTERNS,
    ) -> AgentRuntime:
        """
        Create a fully wired AgentRuntime.

        Args:
            executor: Shared action executor (file, shell and search handlers)
            profile: Configuration profile name, ignored if ``settings`` given
            settings: Explicit settings
            adapter: Streaming adapter, a LiteLLM adapter from settings if None
            contributions: Extra tool contributions (e.g. external tool servers)
            code_patterns: Raw-code detection patterns for text mode

        Returns:
            AgentRuntime instance with injected dependencies
        """
        settings = settings or self.load_settings(profile)

        registry = ToolRegistry(
            list(default_contributions()) + list(contributions or ()),
            allowlist=settings.tool_allowlist,
            denylist=settings.tool_denylist,
        )
        bridge = ActionBridge(registry)
        system_prompt = self._assemble_system_prompt(settings, bridge)

        sessions = SessionManager(
            system_prompt=system_prompt,
            capacity=settings.session_capacity,
            max_messages=settings.max_messages,
            file_cache_size=settings.file_cache_size,
            file_cache_max_chars=settings.file_cache_max_chars,
        )
        adapter = adapter or LiteLLMStreamingAdapter(
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )
        loop = AgenticLoop(
            sessions=sessions,
            adapter=adapter,
            bridge=bridge,
            executor=executor,
            hallucination_guard=HallucinationGuard(code_patterns=code_patterns),
            model_limits=ModelLimits(context_window=settings.context_window),
        )
        session_store = (
            FileSessionStore(settings.sessions_dir, max_messages=settings.max_messages)
            if settings.sessions_dir
            else None
        )

        self.logger.info(
            "creating_runtime",
            model=settings.model,
            tool_mode=settings.tool_mode.value,
            tools=len(registry),
            persistence=bool(session_store),
        )
        return AgentRuntime(
            sessions=sessions,
            loop=loop,
            lanes=LaneManager(),
            settings=settings,
            session_store=session_store,
        )

    def _assemble_system_prompt(self, settings: AgentLaneSettings, bridge: ActionBridge) -> str:
        prompt = settings.system_prompt or DEFAULT_SYSTEM_PROMPT
        if settings.tool_mode is not ToolMode.TEXT:
            return prompt

        lines = ["", "## AVAILABLE ACTIONS", "Write actions as tags in your response:"]
        for name, tool in bridge.build_text_tools().items():
            contribution = bridge.registry.get(name)
            if contribution is None or not contribution.tag:
                continue
            fields = ", ".join(tool.parameters_schema.get("properties", {}))
            line = f"- <{contribution.tag}>: {tool.description}"
            if fields:
                line += f" (fields: {fields})"
            lines.append(line)
        return prompt + "\n".join(lines)
