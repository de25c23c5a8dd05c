"""Message bus module for decoupled channel-orchestrator communication."""

from vatic.bus.events import ChannelEvent, DispatchEvent, InboundMessage, OutboundMessage
from vatic.bus.queue import MessageBus

__all__ = ["ChannelEvent", "DispatchEvent", "InboundMessage", "MessageBus", "OutboundMessage"]
