"""Run commands directly on the host."""

from vatic.sandbox.base import Environment


class LocalEnvironment(Environment):
    """No isolation; runs in ``pwd`` or the daemon's working directory."""

    kind = "local"

    def wrap(self, argv: list[str]) -> list[str]:
        return list(argv)
