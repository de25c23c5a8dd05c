"""Base channel interface for messaging platforms."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from vatic.bus.events import InboundMessage, OutboundMessage
from vatic.bus.queue import MessageBus
from vatic.errors import ChannelError

BACKOFF_INITIAL = 1.0
BACKOFF_MAX = 60.0


class BaseChannel(ABC):
    """
    Abstract base class for channel adapters.

    Subclasses implement ``_listen()`` (one connection's worth of receiving)
    and ``send()``. ``start()`` wraps ``_listen()`` in the reconnect loop:
    transient failures are reported and retried with exponential backoff,
    a fatal ``ChannelError`` is reported and ends the loop.
    """

    kind: str = "base"

    def __init__(self, name: str, config: Any, bus: MessageBus):
        """
        Initialize the channel.

        Args:
            name: Channel name, the join key used by job inputs and outputs.
            config: Kind-specific configuration.
            bus: The message bus for communication.
        """
        self.name = name
        self.config = config
        self.bus = bus
        self._running = False
        self._stopped = asyncio.Event()
        self._backoff = BACKOFF_INITIAL

    async def start(self) -> None:
        """Run the listen loop until stopped, a fatal error, or the source ends."""
        self._running = True
        self._stopped.clear()
        logger.info(f"Channel {self.name} ({self.kind}) starting")

        while self._running:
            try:
                await self._listen()
                break
            except asyncio.CancelledError:
                raise
            except ChannelError as e:
                await self.bus.report(e)
                if e.fatal:
                    logger.error(f"Channel {self.name} stopped: {e}")
                    break
                logger.warning(f"Channel {self.name}: {e}")
            except Exception as e:
                error = ChannelError(self.name, str(e) or type(e).__name__)
                await self.bus.report(error)
                logger.warning(f"Channel {self.name}: {error}")

            if not self._running:
                break
            delay = self._backoff
            self._backoff = min(self._backoff * 2, BACKOFF_MAX)
            logger.info(f"Channel {self.name} reconnecting in {delay:.0f}s")
            await self._sleep(delay)

        self._running = False
        logger.info(f"Channel {self.name} stopped")

    async def stop(self) -> None:
        """Stop the channel and clean up resources."""
        self._running = False
        self._stopped.set()

    @abstractmethod
    async def _listen(self) -> None:
        """
        Connect and forward messages via ``_handle_message()``.

        Returns when the source is exhausted or ``stop()`` was called; raises
        ``ChannelError`` (or any exception, treated as transient) otherwise.
        """

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> None:
        """
        Send a message through this channel.

        Raises:
            ChannelError: The message could not be delivered.
        """

    def _connected(self) -> None:
        """Mark a healthy connection; the next failure backs off from the start."""
        self._backoff = BACKOFF_INITIAL

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns False when stopped."""
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
            return False
        except asyncio.TimeoutError:
            return self._running

    async def _handle_message(
        self,
        sender: str,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Normalize an incoming platform message and publish it to the bus."""
        msg = InboundMessage(
            channel=self.name,
            sender=str(sender),
            text=text,
            metadata=dict(metadata or {}),
        )
        logger.info(f"Channel {self.name}: message from {msg.sender}: {msg.preview}")
        logger.debug(f"Channel {self.name}: full text: {msg.text}")
        await self.bus.publish_inbound(msg)

    @property
    def is_running(self) -> bool:
        return self._running
