"""Tests for opt-in retries of agent calls."""

import pytest
from tenacity import wait_none

from vatic.config.schema import AgentConfig
from vatic.errors import AgentError
from vatic.providers.base import AgentBackend


class FlakyBackend(AgentBackend):
    kind = "flaky"

    def __init__(self, config, failures):
        super().__init__(config)
        self.failures = failures
        self.calls = 0
        self.retry_wait = wait_none()

    async def _complete(self, prompt, system_prompt):
        self.calls += 1
        if self.calls <= self.failures:
            raise AgentError(f"failure {self.calls}")
        return "ok"


@pytest.mark.asyncio
async def test_no_retries_by_default():
    backend = FlakyBackend(AgentConfig(), failures=1)
    with pytest.raises(AgentError, match="failure 1"):
        await backend.complete("x")
    assert backend.calls == 1


@pytest.mark.asyncio
async def test_retries_until_success():
    backend = FlakyBackend(AgentConfig(retries=2), failures=2)
    assert await backend.complete("x") == "ok"
    assert backend.calls == 3


@pytest.mark.asyncio
async def test_gives_up_with_last_error():
    backend = FlakyBackend(AgentConfig(retries=1), failures=5)
    with pytest.raises(AgentError, match="failure 2"):
        await backend.complete("x")
    assert backend.calls == 2
