"""
Configuration for the agentlane runtime.

Settings come from (lowest to highest precedence) field defaults,
``AGENTLANE_*`` environment variables (or a ``.env`` file) and a YAML
profile under ``configs/``.
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings

from agentlane.core.domain.models import ToolMode


class AgentLaneSettings(BaseSettings):
    """Runtime settings with environment variable support."""

    # Model
    model: str = Field(default="gpt-4o-mini", description="LiteLLM model string")
    temperature: Optional[float] = Field(default=None, description="Sampling temperature")
    max_tokens: Optional[int] = Field(default=None, description="Output token cap")
    request_timeout: Optional[float] = Field(default=None, description="Per-request timeout (s)")
    context_window: int = Field(default=256000, description="Model context window (tokens)")
    tool_mode: ToolMode = Field(default=ToolMode.NATIVE, description="native or text")
    system_prompt: str = Field(default="", description="Base system prompt")

    # Interactive loop
    max_iterations: int = Field(default=50, description="Iteration cap for chat")
    max_stall_retries: int = Field(default=3, description="Stall nudges before giving up")

    # Unattended loop
    unattended_max_iterations: int = Field(default=20, description="Iteration cap for unattended chat")
    unattended_timeout: float = Field(default=120.0, description="Overall unattended time limit (s)")
    unattended_iteration_timeout: float = Field(default=60.0, description="Unattended per-request timeout (s)")
    max_consecutive_failures: int = Field(default=30, description="Breaker threshold for unattended chat")

    # Sessions
    session_capacity: int = Field(default=50, description="Sessions kept in memory")
    max_messages: int = Field(default=200, description="Compression ceiling per session")
    file_cache_size: int = Field(default=50, description="Cached files per session")
    file_cache_max_chars: int = Field(default=50000, description="Largest cacheable file")
    sessions_dir: Optional[str] = Field(default=None, description="Enables snapshot persistence")

    # Tools
    tool_allowlist: Optional[list[str]] = Field(default=None, description="Only these tools")
    tool_denylist: list[str] = Field(default_factory=list, description="Never these tools")

    model_config = {
        "env_file": ".env",
        "env_prefix": "AGENTLANE_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @classmethod
    def load_from_file(cls, config_path: Path, **overrides: Any) -> "AgentLaneSettings":
        """Load settings from a YAML profile. Missing files yield defaults."""
        config_data: dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        config_data.update(overrides)
        return cls(**config_data)
