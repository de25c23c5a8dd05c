"""Event types for the dispatch bus."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

from vatic.errors import ChannelError


@dataclass(frozen=True)
class InboundMessage:
    """Normalized message received from a channel."""

    channel: str  # channel name, the join key from job inputs
    sender: str  # reply destination: chat id, room id, address
    text: str
    received_at: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def session_key(self) -> str:
        """Key for per-conversation session turns."""
        return f"{self.channel}:{self.sender}"

    def with_text(self, text: str) -> "InboundMessage":
        return replace(self, text=text)

    @property
    def preview(self) -> str:
        if len(self.text) > 50:
            return self.text[:50] + "…"
        return self.text


@dataclass
class OutboundMessage:
    """Reply to send through a channel."""

    channel: str
    to: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchEvent:
    """A request to run one job, from a cron fire or a trigger hit."""

    alias: str
    source: Literal["cron", "channel", "manual"]
    message: InboundMessage | None = None  # trigger-stripped, absent for cron
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ChannelEvent:
    """A failure reported by a channel adapter."""

    channel: str
    error: ChannelError
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def fatal(self) -> bool:
        return self.error.fatal
