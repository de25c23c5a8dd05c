"""Guix shell environments, plain and containerized."""

from __future__ import annotations

from pathlib import Path

from vatic.sandbox.base import Environment
from vatic.errors import SandboxError

DEFAULT_MANIFEST = "manifest.scm"

# Enough for the claude CLI to run inside an otherwise empty container.
DEFAULT_CONTAINER_PACKAGES = [
    "coreutils",
    "bash",
    "grep",
    "sed",
    "gawk",
    "git",
    "node",
    "claude-code",
    "nss-certs",
]


class GuixShellEnvironment(Environment):
    """``guix shell <packages> -- cmd`` or ``guix shell -m manifest.scm -- cmd``."""

    kind = "guix-shell"

    def _manifest_path(self) -> Path:
        manifest = Path(self.config.manifest or DEFAULT_MANIFEST).expanduser()
        if not manifest.is_absolute() and self.working_dir:
            manifest = Path(self.working_dir).expanduser() / manifest
        return manifest

    async def ensure_ready(self) -> None:
        if not self.config.packages and not self._manifest_path().exists():
            raise SandboxError(
                f"{self.kind} needs 'packages' or a manifest, "
                f"{self._manifest_path()} does not exist"
            )
        self._ready = True

    def package_args(self) -> list[str]:
        if self.config.packages:
            return list(self.config.packages)
        return ["-m", str(self._manifest_path())]

    def wrap(self, argv: list[str]) -> list[str]:
        return ["guix", "shell", *self.package_args(), "--", *argv]


class GuixShellContainerEnvironment(GuixShellEnvironment):
    """
    ``guix shell --container``: private filesystem, host network.

    Only the working directory and the claude credentials directory are
    shared into the container.
    """

    kind = "guix-shell-container"

    async def ensure_ready(self) -> None:
        if self.config.manifest and not self._manifest_path().exists():
            raise SandboxError(f"{self.kind}: manifest {self._manifest_path()} does not exist")
        self._ready = True

    def package_args(self) -> list[str]:
        if self.config.packages:
            return list(self.config.packages)
        if self.config.manifest:
            return ["-m", str(self._manifest_path())]
        return list(DEFAULT_CONTAINER_PACKAGES)

    def wrap(self, argv: list[str]) -> list[str]:
        pwd = str(Path(self.working_dir or Path.cwd()).expanduser())
        args = ["guix", "shell", "--container", "--network"]
        claude_dir = Path.home() / ".claude"
        if claude_dir.exists():
            args.append(f"--share={claude_dir}")
        args.append(f"--share={pwd}")
        args.append("--preserve=^COLORTERM$")
        return [*args, *self.package_args(), "--", *argv]
