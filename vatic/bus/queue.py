"""Async message queue decoupling channel adapters from the orchestrator."""

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from vatic.bus.events import ChannelEvent, InboundMessage
from vatic.errors import ChannelError


class MessageBus:
    """
    Async message bus shared by every channel adapter.

    Channels push normalized messages to the inbound queue and report
    failures to channel event subscribers.
    """

    def __init__(self):
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self._event_subscribers: list[Callable[[ChannelEvent], Awaitable[None]]] = []

    async def publish_inbound(self, msg: InboundMessage) -> None:
        """Publish a message from a channel to the orchestrator."""
        await self.inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        """Consume the next inbound message (blocks until available)."""
        return await self.inbound.get()

    async def report(self, error: ChannelError) -> None:
        """Report a transient or fatal channel failure."""
        event = ChannelEvent(channel=error.channel, error=error)
        for callback in self._event_subscribers:
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Error dispatching channel event: {e}")

    def subscribe_channel_events(self, callback: Callable[[ChannelEvent], Awaitable[None]]) -> None:
        """Subscribe to channel failure events."""
        self._event_subscribers.append(callback)

    @property
    def inbound_size(self) -> int:
        """Number of pending inbound messages."""
        return self.inbound.qsize()
