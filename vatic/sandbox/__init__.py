"""Execution environments: local, guix shell, guix container and podman."""

from vatic.config.schema import EnvironmentConfig
from vatic.sandbox.base import Environment, LaunchResult, run_process
from vatic.sandbox.guix import GuixShellContainerEnvironment, GuixShellEnvironment
from vatic.sandbox.local import LocalEnvironment
from vatic.sandbox.podman import PodmanEnvironment

ENVIRONMENTS: dict[str, type[Environment]] = {
    "local": LocalEnvironment,
    "guix-shell": GuixShellEnvironment,
    "guix-shell-container": GuixShellContainerEnvironment,
    "podman": PodmanEnvironment,
}


def create_environment(config: EnvironmentConfig | None = None) -> Environment:
    """Select the environment implementation for ``config.name``."""
    config = config or EnvironmentConfig()
    return ENVIRONMENTS[config.name](config)


__all__ = [
    "ENVIRONMENTS",
    "Environment",
    "LaunchResult",
    "create_environment",
    "run_process",
]
