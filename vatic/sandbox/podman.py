"""Podman container environment."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from vatic.errors import SandboxError
from vatic.sandbox.base import Environment, run_process

DEFAULT_IMAGE = "vatic-agent:latest"
DEFAULT_PWD = "/tmp"
CONTAINERFILE = Path(__file__).with_name("Containerfile")
BUILD_TIMEOUT = 1800


class PodmanEnvironment(Environment):
    """Run commands with ``podman run`` in a throwaway container."""

    kind = "podman"
    # 125: podman itself failed, 126/127: command not executable / not found
    wrapper_exit_codes = frozenset({125, 126, 127})

    @property
    def image(self) -> str:
        return self.config.image or DEFAULT_IMAGE

    @property
    def working_dir(self) -> str:
        return self.config.pwd or DEFAULT_PWD

    def launch_cwd(self) -> str | None:
        return None

    async def ensure_ready(self) -> None:
        """Build the default image on first use."""
        if self.image == DEFAULT_IMAGE and not await self._image_exists():
            await self._build_image()
        self._ready = True

    async def _image_exists(self) -> bool:
        result = await run_process(["podman", "image", "exists", self.image], timeout=60)
        return result.ok

    async def _build_image(self) -> None:
        logger.info(f"Building podman image '{self.image}' (first-time setup)")
        if not CONTAINERFILE.exists():
            raise SandboxError(f"Containerfile missing at {CONTAINERFILE}")
        result = await run_process(
            [
                "podman", "build",
                "-t", self.image,
                "-f", str(CONTAINERFILE),
                str(CONTAINERFILE.parent),
            ],
            timeout=BUILD_TIMEOUT,
        )
        if not result.ok:
            tail = "\n".join(result.stderr.strip().splitlines()[-5:])
            raise SandboxError(f"podman build failed (exit {result.exit_code}): {tail}")
        logger.info(f"Podman image '{self.image}' built")

    def wrap(self, argv: list[str]) -> list[str]:
        pwd = self.working_dir
        args = [
            "podman", "run", "--rm", "-i",
            "--network=host",
            "-v", f"{pwd}:{pwd}",
            "-w", pwd,
        ]
        claude_dir = Path.home() / ".claude"
        if claude_dir.exists():
            args += ["-v", f"{claude_dir}:/root/.claude:ro"]
        return [*args, self.image, *argv]
