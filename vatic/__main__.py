"""Entry point for ``python -m vatic``."""

from vatic.cli.commands import app

if __name__ == "__main__":
    app()
