"""Configuration loading utilities."""

from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from vatic.config.dictionary import Dictionary
from vatic.config.schema import ChannelConfig, JobConfig, VaticSettings
from vatic.config.secrets import SecretsResolver
from vatic.errors import ConfigError

_OUTPUT_KEY = re.compile(r"^output(?::(\d+))?$")


@dataclass
class LoadedConfig:
    """Everything read from the config directory at startup."""

    settings: VaticSettings
    jobs: dict[str, JobConfig] = field(default_factory=dict)
    channels: dict[str, ChannelConfig] = field(default_factory=dict)
    dictionary: Dictionary = field(default_factory=Dictionary)
    secrets: SecretsResolver = field(default_factory=SecretsResolver)
    errors: list[ConfigError] = field(default_factory=list)

    def get_job(self, alias: str) -> JobConfig | None:
        return self.jobs.get(alias)

    def failed(self, alias: str) -> ConfigError | None:
        """Return the load error of the job document named ``alias``, if any."""
        for error in self.errors:
            if error.source and Path(error.source).stem == alias:
                return error
        return None


def load_config(settings: VaticSettings | None = None) -> LoadedConfig:
    """
    Load jobs, channels, dictionary and secrets from ``settings.config_dir``.

    A malformed job or channel document is logged and skipped. A malformed
    dictionary or secrets document raises ``ConfigError`` since every
    render depends on them.
    """
    settings = settings or VaticSettings()
    config_dir = Path(settings.config_dir).expanduser()
    loaded = LoadedConfig(settings=settings)

    loaded.dictionary = Dictionary.load(config_dir / "dictionary.toml")
    loaded.secrets = SecretsResolver.load(config_dir / "secrets.toml")

    for path, data in _iter_documents(config_dir / "jobs", loaded.errors):
        try:
            job = parse_job(data, default_alias=path.stem)
        except ConfigError as e:
            e.source = str(path)
            loaded.errors.append(e)
            continue
        if job.alias in loaded.jobs:
            loaded.errors.append(ConfigError(f"duplicate job alias '{job.alias}'", source=str(path)))
            continue
        loaded.jobs[job.alias] = job

    for path, data in _iter_documents(config_dir / "channels", loaded.errors):
        try:
            channel = parse_channel(data, default_name=path.stem)
        except ConfigError as e:
            e.source = str(path)
            loaded.errors.append(e)
            continue
        loaded.channels[channel.name] = channel

    for error in loaded.errors:
        logger.error(f"Config error, skipped: {error}")
    logger.debug(
        f"Loaded {len(loaded.jobs)} jobs, {len(loaded.channels)} channels from {config_dir}"
    )
    return loaded


def parse_job(data: dict[str, Any], default_alias: str) -> JobConfig:
    """Validate one job document."""
    payload: dict[str, Any] = {
        "alias": data.get("alias") or default_alias,
        "name": data.get("name", ""),
    }
    for section in ("agent", "job", "environment", "input", "session", "history"):
        if section in data:
            payload[section] = data[section]

    outputs: list[tuple[int, dict[str, Any]]] = []
    for key, value in data.items():
        match = _OUTPUT_KEY.match(key)
        if not match:
            continue
        if not isinstance(value, dict):
            raise ConfigError(f"[{key}] must be a table")
        order = int(match.group(1)) if match.group(1) else 1
        outputs.append((order, value))
    payload["outputs"] = [value for _, value in sorted(outputs, key=lambda item: item[0])]

    try:
        return JobConfig.model_validate(payload)
    except ValidationError as e:
        raise ConfigError(_format_validation(e)) from e


def parse_channel(data: dict[str, Any], default_name: str) -> ChannelConfig:
    """Validate one channel document."""
    section = data.get("channel")
    if not isinstance(section, dict):
        raise ConfigError("missing [channel] table")
    section = dict(section)
    name = section.pop("name", None) or data.get("name") or default_name
    try:
        return ChannelConfig.model_validate({"name": name, "channel": section})
    except ValidationError as e:
        raise ConfigError(_format_validation(e)) from e


def _iter_documents(directory: Path, errors: list[ConfigError]):
    if not directory.is_dir():
        return
    for path in sorted(directory.glob("*.toml")):
        try:
            with open(path, "rb") as f:
                yield path, tomllib.load(f)
        except (tomllib.TOMLDecodeError, OSError) as e:
            errors.append(ConfigError(f"cannot parse: {e}", source=str(path)))


def _format_validation(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        message = item.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)
