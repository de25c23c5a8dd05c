"""Ollama HTTP backend."""

from __future__ import annotations

import httpx
from loguru import logger

from vatic.config.schema import AgentConfig
from vatic.errors import AgentError, AgentTimeout
from vatic.providers.base import AgentBackend
from vatic.sandbox.base import Environment

DEFAULT_HOST = "http://localhost:11434"
DEFAULT_MODEL = "gemma3"
CONNECT_TIMEOUT = 10.0


class OllamaProvider(AgentBackend):
    """
    Non-streaming ``POST /api/generate`` against a local or remote Ollama.

    The job environment is not involved; the request is made from the
    daemon process.
    """

    kind = "ollama"

    def __init__(
        self,
        config: AgentConfig,
        environment: Environment | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(config, environment)
        self.base_url = (config.host or DEFAULT_HOST).rstrip("/")
        self.model = config.model or DEFAULT_MODEL
        self._transport = transport

    def build_payload(self, prompt: str, system_prompt: str | None) -> dict:
        payload = {"model": self.model, "prompt": prompt, "stream": False}
        if system_prompt:
            payload["system"] = system_prompt
        return payload

    async def _complete(self, prompt: str, system_prompt: str | None) -> str:
        url = f"{self.base_url}/api/generate"
        timeout = httpx.Timeout(self.timeout, connect=CONNECT_TIMEOUT)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(url, json=self.build_payload(prompt, system_prompt))
        except httpx.TimeoutException as e:
            raise AgentTimeout(f"ollama at {self.base_url} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise AgentError(f"ollama at {self.base_url} unreachable: {e}") from e

        if not 200 <= response.status_code < 300:
            raise AgentError(
                f"ollama returned HTTP {response.status_code}: {response.text[:300]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AgentError(f"ollama returned malformed JSON: {e}") from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise AgentError("ollama response has no 'response' field")
        text = text.strip()
        if not text:
            raise AgentError("ollama returned an empty response")
        logger.debug(f"ollama/{self.model} answered {len(text)} chars")
        return text
