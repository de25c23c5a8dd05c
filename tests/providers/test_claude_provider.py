"""Tests for the claude CLI backend."""

from unittest.mock import AsyncMock

import pytest

from vatic.config.schema import AgentConfig, EnvironmentConfig
from vatic.errors import AgentError, AgentTimeout, SandboxError, SandboxTimeout
from vatic.providers.claude_provider import ClaudeProvider
from vatic.providers.registry import create_agent
from vatic.providers.ollama_provider import OllamaProvider
from vatic.sandbox.base import LaunchResult
from vatic.sandbox.local import LocalEnvironment


def make_provider(result=None, error=None, **config):
    environment = LocalEnvironment(EnvironmentConfig())
    environment.launch = AsyncMock(return_value=result, side_effect=error)
    return ClaudeProvider(AgentConfig(**config), environment), environment


def test_command_line_defaults():
    provider, _ = make_provider()
    assert provider.build_command(None) == ["claude", "--print", "--dangerously-skip-permissions"]


def test_command_line_with_tools_model_and_system_prompt():
    provider, _ = make_provider(allowed_tools=["Read", "WebFetch"], model="sonnet")
    assert provider.build_command("be brief") == [
        "claude", "--print",
        "--allowedTools", "Read", "WebFetch",
        "--model", "sonnet",
        "--system-prompt", "be brief",
    ]


@pytest.mark.asyncio
async def test_prompt_goes_through_stdin():
    provider, environment = make_provider(LaunchResult("Sunny, 18°C\n", "", 0), timeout=30)

    assert await provider.complete("weather?") == "Sunny, 18°C"
    environment.launch.assert_awaited_once()
    assert environment.launch.await_args.kwargs == {"stdin": "weather?", "timeout": 30}


@pytest.mark.asyncio
async def test_nonzero_exit_is_an_agent_error():
    provider, _ = make_provider(LaunchResult("", "rate limited", 1))
    with pytest.raises(AgentError, match="rate limited"):
        await provider.complete("x")


@pytest.mark.asyncio
async def test_empty_answer_is_an_agent_error():
    provider, _ = make_provider(LaunchResult("  \n", "", 0))
    with pytest.raises(AgentError, match="empty"):
        await provider.complete("x")


@pytest.mark.asyncio
async def test_timeout_becomes_agent_timeout():
    provider, _ = make_provider(error=SandboxTimeout("slow"))
    with pytest.raises(AgentTimeout):
        await provider.complete("x")


@pytest.mark.asyncio
async def test_environment_failures_pass_through():
    provider, _ = make_provider(error=SandboxError("podman missing"))
    with pytest.raises(SandboxError):
        await provider.complete("x")


def test_registry():
    assert isinstance(create_agent(AgentConfig(name="claude")), ClaudeProvider)
    assert isinstance(create_agent(AgentConfig(name="ollama")), OllamaProvider)
