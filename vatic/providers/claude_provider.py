"""Claude CLI backend, run as a subprocess inside the job's environment."""

from __future__ import annotations

from loguru import logger

from vatic.config.schema import EnvironmentConfig
from vatic.errors import AgentError, AgentTimeout, SandboxTimeout
from vatic.providers.base import AgentBackend
from vatic.sandbox.local import LocalEnvironment


class ClaudeProvider(AgentBackend):
    """``claude --print`` with the prompt on stdin."""

    kind = "claude"
    binary = "claude"

    def build_command(self, system_prompt: str | None) -> list[str]:
        args = [self.binary, "--print"]
        if self.config.allowed_tools:
            args += ["--allowedTools", *self.config.allowed_tools]
        elif self.config.skip_permissions:
            args.append("--dangerously-skip-permissions")
        if self.config.model:
            args += ["--model", self.config.model]
        if system_prompt:
            args += ["--system-prompt", system_prompt]
        return args

    async def _complete(self, prompt: str, system_prompt: str | None) -> str:
        environment = self.environment or LocalEnvironment(EnvironmentConfig())
        argv = self.build_command(system_prompt)
        try:
            result = await environment.launch(argv, stdin=prompt, timeout=self.timeout)
        except SandboxTimeout as e:
            raise AgentTimeout(f"claude did not answer within {self.timeout}s") from e

        if result.exit_code != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise AgentError(f"claude exited with {result.exit_code}: {detail[:500]}")

        text = result.stdout.strip()
        if not text:
            raise AgentError("claude returned an empty response")
        logger.debug(f"claude answered {len(text)} chars")
        return text
