"""agentlane - session-laned agentic loop runtime."""

__version__ = "0.1.0"
