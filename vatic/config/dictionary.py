"""Dictionary document backing ``{% custom:key %}`` lookups."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from vatic.errors import ConfigError

GENERAL_SECTION = "general"


class Dictionary:
    """
    Flat key/value map loaded from ``dictionary.toml``.

    Top-level string keys are looked up first, then the ``[general]`` section.
    ``section.key`` addresses any other section explicitly.
    """

    def __init__(self, values: dict[str, Any] | None = None):
        self._top: dict[str, str] = {}
        self._sections: dict[str, dict[str, str]] = {}
        for key, value in (values or {}).items():
            if isinstance(value, dict):
                self._sections[key] = {k: _as_text(f"{key}.{k}", v) for k, v in value.items()}
            else:
                self._top[key] = _as_text(key, value)

    @classmethod
    def load(cls, path: Path) -> "Dictionary":
        if not path.exists():
            return cls()
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (tomllib.TOMLDecodeError, OSError) as e:
            raise ConfigError(f"invalid dictionary: {e}", source=str(path)) from e
        return cls(data)

    def get(self, key: str) -> str | None:
        if key in self._top:
            return self._top[key]
        general = self._sections.get(GENERAL_SECTION, {})
        if key in general:
            return general[key]
        if "." in key:
            section, _, name = key.partition(".")
            return self._sections.get(section, {}).get(name)
        return None

    def __len__(self) -> int:
        return len(self._top) + sum(len(s) for s in self._sections.values())


def _as_text(key: str, value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise ConfigError(f"dictionary value '{key}' must be a scalar")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
