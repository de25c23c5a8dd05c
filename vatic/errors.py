"""Error taxonomy for job runs, channels and outputs."""

from __future__ import annotations

from enum import Enum


class VaticError(Exception):
    """Base class for every error raised by vatic."""


class ConfigError(VaticError):
    """Malformed or missing job, channel, dictionary or secrets document."""

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.source = source

    def __str__(self) -> str:
        message = super().__str__()
        if self.source:
            return f"{self.source}: {message}"
        return message


class RenderError(VaticError):
    """Malformed template, unknown tag or failed pipe sub-call."""


class UndefinedVariable(RenderError):
    """A tag referenced a value the render context does not hold."""


class SandboxError(VaticError):
    """The execution environment could not launch or finish a process."""


class SandboxTimeout(SandboxError):
    """A launched process exceeded its timeout and was killed."""


class AgentError(VaticError):
    """The agent backend was unreachable or returned an unusable answer."""


class AgentTimeout(AgentError):
    """The agent backend did not answer within its timeout."""


class StoreError(VaticError):
    """The memory/session store could not be read or written."""


class SecretNotFound(VaticError):
    """No secret is registered under the requested name."""


class ChannelErrorKind(str, Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"


class ChannelError(VaticError):
    """A channel adapter failed. Fatal errors end the adapter loop."""

    def __init__(self, channel: str, message: str, fatal: bool = False):
        super().__init__(message)
        self.channel = channel
        self.fatal = fatal

    @property
    def kind(self) -> ChannelErrorKind:
        return ChannelErrorKind.FATAL if self.fatal else ChannelErrorKind.TRANSIENT

    def __str__(self) -> str:
        return f"{self.channel} ({self.kind.value}): {super().__str__()}"


class OutputError(VaticError):
    """A single output sink failed."""

    def __init__(self, sink: str, index: int, message: str):
        super().__init__(message)
        self.sink = sink
        self.index = index

    def __str__(self) -> str:
        return f"output #{self.index} ({self.sink}): {super().__str__()}"


class JobNotFound(VaticError):
    """No job is configured under the requested alias."""


class JobRunError(VaticError):
    """A job run aborted. Carries the alias and the stage that failed."""

    def __init__(self, alias: str, stage: str, cause: Exception):
        super().__init__(f"[{alias}] {stage} failed: {cause}")
        self.alias = alias
        self.stage = stage
        self.cause = cause
