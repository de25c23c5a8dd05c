"""Agent backend selection by ``[agent].name``."""

from vatic.config.schema import AgentConfig
from vatic.providers.base import AgentBackend
from vatic.providers.claude_provider import ClaudeProvider
from vatic.providers.ollama_provider import OllamaProvider
from vatic.sandbox.base import Environment

PROVIDERS: dict[str, type[AgentBackend]] = {
    "claude": ClaudeProvider,
    "ollama": OllamaProvider,
}


def create_agent(config: AgentConfig, environment: Environment | None = None) -> AgentBackend:
    """Build the backend named by ``config.name``."""
    return PROVIDERS[config.name](config, environment)
