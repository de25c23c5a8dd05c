"""Shared fixtures: a scriptable agent backend, a temporary store and job builder."""

import asyncio

import pytest

from vatic.config.schema import AgentConfig, JobConfig
from vatic.memory.sqlite_store import MemoryStore
from vatic.providers.base import AgentBackend


class FakeAgent(AgentBackend):
    """Agent backend that answers from a script, optionally slowly."""

    kind = "fake"

    def __init__(self, replies=None, delay: float = 0.0, error: Exception | None = None, config=None):
        super().__init__(config or AgentConfig())
        self.replies = list(replies or [])
        self.delay = delay
        self.error = error
        self.prompts: list[str] = []
        self.system_prompts: list[str | None] = []
        self.active = 0
        self.max_active = 0

    async def _complete(self, prompt, system_prompt):
        self.prompts.append(prompt)
        self.system_prompts.append(system_prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if self.replies:
                return self.replies.pop(0)
            return f"answer to: {prompt}"
        finally:
            self.active -= 1


@pytest.fixture
def fake_agent():
    """Factory for ``FakeAgent`` instances."""
    return FakeAgent


@pytest.fixture
def store(tmp_path):
    return MemoryStore(tmp_path / "vatic.db")


@pytest.fixture
def make_job():
    """Build a ``JobConfig`` from keyword sections."""

    def _make(alias="job", **sections):
        data = {"alias": alias, **sections}
        data.setdefault("job", {"prompt": "hello"})
        return JobConfig.model_validate(data)

    return _make
