"""Base interface for agent backends."""

from __future__ import annotations

from abc import ABC, abstractmethod

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from vatic.config.schema import AgentConfig
from vatic.errors import AgentError
from vatic.sandbox.base import Environment


class AgentBackend(ABC):
    """
    Sends a rendered prompt to a language model and returns its text.

    Implementations raise ``AgentError`` (``AgentTimeout`` on timeout) and
    never return an empty string.
    """

    kind: str = "base"
    default_timeout: float = 300.0

    def __init__(self, config: AgentConfig, environment: Environment | None = None):
        self.config = config
        self.environment = environment
        self.retry_wait = wait_exponential(multiplier=1, min=2, max=60)

    @property
    def timeout(self) -> float:
        return self.config.timeout or self.default_timeout

    async def complete(self, prompt: str, system_prompt: str | None = None) -> str:
        """Run one completion, retrying only when ``config.retries`` asks for it."""
        if self.config.retries <= 0:
            return await self._complete(prompt, system_prompt)

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(AgentError),
            wait=self.retry_wait,
            stop=stop_after_attempt(self.config.retries + 1),
            reraise=True,
            before_sleep=self._log_retry,
        ):
            with attempt:
                return await self._complete(prompt, system_prompt)
        raise AgentError(f"{self.kind}: no attempt was made")  # pragma: no cover

    def _log_retry(self, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"{self.kind} failed (attempt {state.attempt_number}/{self.config.retries + 1}), "
            f"retrying: {error}"
        )

    @abstractmethod
    async def _complete(self, prompt: str, system_prompt: str | None) -> str:
        """Single completion attempt."""
