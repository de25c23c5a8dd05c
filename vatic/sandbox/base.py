"""Process launching shared by every execution environment."""

from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass

from loguru import logger

from vatic.config.schema import EnvironmentConfig
from vatic.errors import SandboxError, SandboxTimeout

REAP_TIMEOUT = 5.0


@dataclass(frozen=True)
class LaunchResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


async def run_process(
    argv: list[str],
    *,
    stdin: str | None = None,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
) -> LaunchResult:
    """
    Run ``argv`` and capture its output.

    The process is killed when ``timeout`` expires (``SandboxTimeout``) or when
    the awaiting task is cancelled, so no child outlives its run.
    """
    if not argv:
        raise SandboxError("empty command")

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env={**os.environ, **env} if env else None,
        )
    except FileNotFoundError as e:
        raise SandboxError(f"'{argv[0]}' not found, is it installed and on PATH?") from e
    except OSError as e:
        raise SandboxError(f"cannot launch '{argv[0]}': {e}") from e

    payload = stdin.encode("utf-8") if stdin is not None else None
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(payload), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(process)
        raise SandboxTimeout(f"'{argv[0]}' timed out after {timeout}s")
    except asyncio.CancelledError:
        await asyncio.shield(_kill(process))
        raise

    return LaunchResult(
        stdout=(stdout or b"").decode("utf-8", errors="replace"),
        stderr=(stderr or b"").decode("utf-8", errors="replace"),
        exit_code=process.returncode if process.returncode is not None else -1,
    )


async def _kill(process) -> None:
    """Kill the child and reap it so no zombie outlives the run."""
    try:
        process.kill()
    except ProcessLookupError:
        pass
    try:
        await asyncio.wait_for(process.wait(), timeout=REAP_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning(f"Killed process did not exit within {REAP_TIMEOUT}s")


class Environment(ABC):
    """
    Isolation strategy used to run an agent process.

    Subclasses only decide how a command is wrapped; launching, timeouts
    and cancellation are shared.
    """

    kind: str = "base"
    # exit codes reserved by the wrapper itself (shell: cannot execute / not found)
    wrapper_exit_codes: frozenset[int] = frozenset({126, 127})

    def __init__(self, config: EnvironmentConfig):
        self.config = config
        self._ready = False

    @property
    def working_dir(self) -> str | None:
        return self.config.pwd

    async def ensure_ready(self) -> None:
        """Prepare the environment once (build images, check manifests)."""
        self._ready = True

    @abstractmethod
    def wrap(self, argv: list[str]) -> list[str]:
        """Return the command line that runs ``argv`` inside this environment."""

    def launch_cwd(self) -> str | None:
        return self.working_dir

    async def launch(
        self,
        argv: list[str],
        *,
        stdin: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> LaunchResult:
        if not self._ready:
            await self.ensure_ready()
        wrapped = self.wrap(argv)
        logger.debug(f"Launching in {self.kind}: {' '.join(wrapped[:12])}")
        result = await run_process(
            wrapped, stdin=stdin, cwd=self.launch_cwd(), env=env, timeout=timeout
        )
        if result.exit_code in self.wrapper_exit_codes:
            detail = result.stderr.strip().splitlines()[-1:] or [""]
            raise SandboxError(
                f"{self.kind} could not run '{argv[0]}' (exit {result.exit_code}): {detail[0]}"
            )
        return result
