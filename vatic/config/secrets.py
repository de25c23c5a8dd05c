"""Secrets resolver backing ``{% proxy:name %}``."""

from __future__ import annotations

import os
import stat
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from vatic.errors import ConfigError, SecretNotFound

REDACTED = "***"


@dataclass(frozen=True)
class Secret:
    value: str = field(repr=False)


class SecretsResolver:
    """
    Read-only name -> secret mapping, loaded once at startup.

    Names and values cannot be enumerated. Callers resolve one name at a
    time or pass text through ``redact()``.
    """

    def __init__(self, secrets: dict[str, Secret] | None = None):
        self._secrets: dict[str, Secret] = dict(secrets or {})
        # longest first so overlapping values redact completely
        self._values = sorted(
            {s.value for s in self._secrets.values() if s.value},
            key=len,
            reverse=True,
        )

    @classmethod
    def load(cls, path: Path) -> "SecretsResolver":
        if not path.exists():
            return cls()
        _check_permissions(path)
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (tomllib.TOMLDecodeError, OSError) as e:
            raise ConfigError(f"invalid secrets file: {e}", source=str(path)) from e

        secrets: dict[str, Secret] = {}
        for name, entry in data.items():
            if isinstance(entry, str):
                secrets[name] = Secret(value=entry)
            elif isinstance(entry, dict):
                secrets[name] = Secret(value=str(entry.get("key", "")))
            else:
                raise ConfigError(f"secret '{name}' must be a string or a table", source=str(path))
        logger.debug(f"Loaded {len(secrets)} secrets")
        return cls(secrets)

    def resolve(self, name: str) -> str:
        secret = self._secrets.get(name)
        if secret is None:
            raise SecretNotFound(f"unknown secret '{name}'")
        return secret.value

    def redact(self, text: str) -> str:
        """Replace every known secret value in ``text``."""
        if not text:
            return text
        for value in self._values:
            if value in text:
                text = text.replace(value, REDACTED)
        return text

    def __repr__(self) -> str:
        return f"SecretsResolver(<{len(self._secrets)} entries>)"


def _check_permissions(path: Path) -> None:
    if os.name == "nt":
        return
    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & 0o077:
        logger.warning(
            f"{path} has mode {mode:04o}, should be 0600. Fix with: chmod 600 {path}"
        )
