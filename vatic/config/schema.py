"""Configuration schema using Pydantic."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, Literal, Union

from croniter import croniter
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _xdg_dir(env_var: str, fallback: str) -> Path:
    base = os.environ.get(env_var)
    root = Path(base) if base else Path.home() / fallback
    return root / "vatic"


# ---------------------------------------------------------------------------
# Process settings
# ---------------------------------------------------------------------------


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file_enabled: bool = False
    file_name: str = "vatic.log"  # relative to data_dir
    rotation: str = "10 MB"
    retention: str = "7 days"


class VaticSettings(BaseSettings):
    """Process-wide settings, overridable with VATIC_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="VATIC_", env_nested_delimiter="__")

    config_dir: Path = Field(default_factory=lambda: _xdg_dir("XDG_CONFIG_HOME", ".config"))
    data_dir: Path = Field(default_factory=lambda: _xdg_dir("XDG_DATA_HOME", ".local/share"))
    workers: int = Field(4, ge=1)
    shutdown_grace: float = Field(30.0, ge=0)
    prune_keep: int = Field(1000, ge=1)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "vatic.db"


# ---------------------------------------------------------------------------
# Job documents
# ---------------------------------------------------------------------------


class AgentConfig(BaseModel):
    """Agent backend used by a job."""
    name: Literal["claude", "ollama"] = "claude"
    prompt: str | None = None  # system prompt
    host: str | None = None  # ollama only
    model: str | None = None
    skip_permissions: bool = True  # claude only
    allowed_tools: list[str] = Field(default_factory=list)  # claude only, disables skip_permissions
    timeout: float | None = Field(None, gt=0)
    retries: int = Field(0, ge=0)  # extra attempts after an AgentError, off by default


class JobSection(BaseModel):
    """The [job] table: schedule and prompt template."""
    interval: str | None = None  # 5-field cron expression
    prompt: str | None = None

    @field_validator("interval")
    @classmethod
    def _valid_cron(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if len(value.split()) != 5 or not croniter.is_valid(value):
            raise ValueError(f"invalid cron expression '{value}' (expected 5 fields)")
        return value


class EnvironmentConfig(BaseModel):
    """Execution environment for the agent process."""
    name: Literal["local", "guix-shell", "guix-shell-container", "podman"] = "local"
    pwd: str | None = None
    packages: list[str] = Field(default_factory=list)
    manifest: str | None = None  # guix manifest path, used when packages is empty
    image: str | None = None  # podman only

    @field_validator("packages", mode="before")
    @classmethod
    def _split_packages(cls, value):
        if isinstance(value, str):
            return value.split()
        return value


class InputConfig(BaseModel):
    """Channel trigger for a job."""
    channel: str
    trigger: str | None = None
    trigger_match: Literal["anywhere", "start", "end"] = "anywhere"
    allowed_senders: list[str] | None = None

    @field_validator("channel")
    @classmethod
    def _channel_required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("input requires a channel")
        return value.strip()


class SessionConfig(BaseModel):
    """Conversation window kept per channel session."""
    context: int = Field(10, ge=0)


class HistoryConfig(BaseModel):
    """Summarization prompt rendered against each result before it is stored."""
    prompt: str


class OutputConfig(BaseModel):
    """One output sink."""
    name: Literal["notification", "msmtp", "command", "channel"]
    channel: str | None = None
    to: str | None = None
    subject: str | None = None
    message: str | None = None  # template rendered with {% result %}
    command: str | None = None

    @model_validator(mode="after")
    def _kind_fields(self) -> "OutputConfig":
        if self.name == "command" and not self.command:
            raise ValueError("command output requires 'command'")
        if self.name == "msmtp" and not self.to:
            raise ValueError("msmtp output requires 'to'")
        return self


class JobConfig(BaseModel):
    """A job document, keyed by alias."""
    alias: str
    name: str = ""
    agent: AgentConfig = Field(default_factory=AgentConfig)
    job: JobSection = Field(default_factory=JobSection)
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    input: InputConfig | None = None
    session: SessionConfig | None = None
    history: HistoryConfig | None = None
    outputs: list[OutputConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _runnable(self) -> "JobConfig":
        if not self.name:
            self.name = self.alias
        if self.input is None and not self.job.prompt:
            raise ValueError("job has neither a prompt nor an input channel")
        if self.job.interval and not self.job.prompt:
            raise ValueError("scheduled job requires [job].prompt")
        return self

    @property
    def interval(self) -> str | None:
        return self.job.interval

    @property
    def prompt(self) -> str | None:
        return self.job.prompt


# ---------------------------------------------------------------------------
# Channel documents
# ---------------------------------------------------------------------------


class StdinChannelConfig(BaseModel):
    type: Literal["stdin"] = "stdin"


class TelegramChannelConfig(BaseModel):
    type: Literal["telegram"] = "telegram"
    token: str
    proxy: str | None = None  # HTTP/SOCKS5 proxy URL


class MatrixChannelConfig(BaseModel):
    type: Literal["matrix"] = "matrix"
    homeserver: str
    user: str
    password: str
    sync_timeout_ms: int = 30_000


class WhatsAppChannelConfig(BaseModel):
    type: Literal["whatsapp"] = "whatsapp"
    bridge_url: str = "ws://localhost:3001"


class HimalayaChannelConfig(BaseModel):
    type: Literal["himalaya"] = "himalaya"
    poll_interval: int = Field(60, ge=1)
    account: str | None = None


ChannelSpec = Annotated[
    Union[
        StdinChannelConfig,
        TelegramChannelConfig,
        MatrixChannelConfig,
        WhatsAppChannelConfig,
        HimalayaChannelConfig,
    ],
    Field(discriminator="type"),
]


class ChannelConfig(BaseModel):
    """A channel document, keyed by name."""
    name: str
    channel: ChannelSpec

    @property
    def type(self) -> str:
        return self.channel.type
