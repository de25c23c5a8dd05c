"""Agent backends."""

from vatic.providers.base import AgentBackend
from vatic.providers.claude_provider import ClaudeProvider
from vatic.providers.ollama_provider import OllamaProvider
from vatic.providers.registry import PROVIDERS, create_agent

__all__ = ["AgentBackend", "ClaudeProvider", "OllamaProvider", "PROVIDERS", "create_agent"]
