"""Output sinks: desktop notification, email, shell command, channel reply."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from loguru import logger

from vatic.bus.events import InboundMessage, OutboundMessage
from vatic.config.schema import OutputConfig
from vatic.errors import ChannelError, OutputError, SandboxError
from vatic.sandbox.base import LaunchResult, run_process

if TYPE_CHECKING:
    from vatic.channels.manager import ChannelManager

SINK_TIMEOUT = 60.0
COMMAND_TIMEOUT = 300.0
DEFAULT_SUBJECT = "vatic notification"
RESULT_VAR = "VATIC_RESULT"


def sanitize_header(value: str) -> str:
    """Strip CR/LF so a value cannot inject extra headers."""
    return value.replace("\r", "").replace("\n", "")


def build_email(to: str, subject: str, body: str) -> str:
    return f"To: {sanitize_header(to)}\nSubject: {sanitize_header(subject)}\n\n{body}"


def prepare_command(command: str) -> str:
    """Point ``{% result %}`` at the environment variable holding the result."""
    return command.replace("{% result %}", f'"${RESULT_VAR}"')


class Sink(ABC):
    """Delivers one rendered message. Raises ``OutputError`` on failure."""

    kind: str = "base"

    def __init__(self, index: int, config: OutputConfig):
        self.index = index
        self.config = config

    def error(self, message: str) -> OutputError:
        return OutputError(self.kind, self.index, message)

    async def _run(self, argv: list[str], **kwargs) -> LaunchResult:
        try:
            result = await run_process(argv, **kwargs)
        except SandboxError as e:
            raise self.error(str(e)) from e
        if not result.ok:
            detail = result.stderr.strip() or result.stdout.strip()
            raise self.error(f"{argv[0]} exited with {result.exit_code}: {detail[:300]}")
        return result

    @abstractmethod
    async def deliver(self, message: str, result: str, inbound: InboundMessage | None) -> None:
        """Send ``message``; ``result`` is the raw agent output."""


class NotificationSink(Sink):
    kind = "notification"

    async def deliver(self, message: str, result: str, inbound: InboundMessage | None) -> None:
        await self._run(["notify-send", "vatic", message], timeout=SINK_TIMEOUT)


class MsmtpSink(Sink):
    kind = "msmtp"

    async def deliver(self, message: str, result: str, inbound: InboundMessage | None) -> None:
        to = self.config.to or ""
        email = build_email(to, self.config.subject or DEFAULT_SUBJECT, message)
        await self._run(["msmtp", to], stdin=email, timeout=SINK_TIMEOUT)


class CommandSink(Sink):
    kind = "command"

    async def deliver(self, message: str, result: str, inbound: InboundMessage | None) -> None:
        command = prepare_command(self.config.command or "")
        await self._run(["sh", "-c", command], env={RESULT_VAR: result}, timeout=COMMAND_TIMEOUT)


class ChannelSink(Sink):
    """Replies through a channel adapter, by default to whoever triggered the run."""

    kind = "channel"

    def __init__(self, index: int, config: OutputConfig, channels: "ChannelManager | None"):
        super().__init__(index, config)
        self.channels = channels

    async def deliver(self, message: str, result: str, inbound: InboundMessage | None) -> None:
        if self.channels is None:
            raise self.error("channel replies are only available in the daemon")
        channel = self.config.channel or (inbound.channel if inbound else None)
        to = self.config.to or (inbound.sender if inbound else None)
        if not channel or not to:
            raise self.error("no channel or recipient (set 'channel' and 'to' for scheduled jobs)")
        try:
            await self.channels.send(OutboundMessage(channel=channel, to=to, content=message))
        except ChannelError as e:
            raise self.error(str(e)) from e
        logger.debug(f"Reply sent via {channel} to {to}")


def create_sink(index: int, config: OutputConfig, channels: "ChannelManager | None" = None) -> Sink:
    if config.name == "notification":
        return NotificationSink(index, config)
    if config.name == "msmtp":
        return MsmtpSink(index, config)
    if config.name == "command":
        return CommandSink(index, config)
    if config.name == "channel":
        return ChannelSink(index, config, channels)
    raise OutputError(config.name, index, f"unknown output type '{config.name}'")
