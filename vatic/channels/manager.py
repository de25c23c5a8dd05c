"""Channel manager: builds adapters from channel documents and runs them."""

from __future__ import annotations

import asyncio

from loguru import logger

from vatic.bus.events import OutboundMessage
from vatic.bus.queue import MessageBus
from vatic.channels.base import BaseChannel
from vatic.config.schema import ChannelConfig, StdinChannelConfig
from vatic.errors import ChannelError

DEFAULT_CHANNEL = "stdin"


def create_channel(config: ChannelConfig, bus: MessageBus) -> BaseChannel:
    """Instantiate the adapter for ``config.type``."""
    kind = config.type
    if kind == "stdin":
        from vatic.channels.stdin import StdinChannel
        return StdinChannel(config.name, config.channel, bus)
    if kind == "telegram":
        from vatic.channels.telegram import TelegramChannel
        return TelegramChannel(config.name, config.channel, bus)
    if kind == "matrix":
        from vatic.channels.matrix import MatrixChannel
        return MatrixChannel(config.name, config.channel, bus)
    if kind == "whatsapp":
        from vatic.channels.whatsapp import WhatsAppChannel
        return WhatsAppChannel(config.name, config.channel, bus)
    if kind == "himalaya":
        from vatic.channels.himalaya import HimalayaChannel
        return HimalayaChannel(config.name, config.channel, bus)
    raise ValueError(f"unknown channel type '{kind}'")


class ChannelManager:
    """
    Owns one adapter per configured channel and one listen task per adapter.

    With no channel documents a single ``stdin`` channel is served.
    """

    def __init__(self, configs: list[ChannelConfig], bus: MessageBus):
        self.bus = bus
        self.channels: dict[str, BaseChannel] = {}
        self._tasks: dict[str, asyncio.Task] = {}

        if not configs:
            configs = [ChannelConfig(name=DEFAULT_CHANNEL, channel=StdinChannelConfig())]
        for config in configs:
            try:
                self.channels[config.name] = create_channel(config, bus)
            except Exception as e:
                logger.error(f"Channel {config.name} ({config.type}) could not be created: {e}")

    @property
    def enabled_channels(self) -> list[str]:
        return list(self.channels)

    def get(self, name: str) -> BaseChannel | None:
        return self.channels.get(name)

    async def start_all(self) -> None:
        """Start every adapter in its own task."""
        for name, channel in self.channels.items():
            if name in self._tasks and not self._tasks[name].done():
                continue
            self._tasks[name] = asyncio.create_task(channel.start(), name=f"channel:{name}")
            self._tasks[name].add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"{task.get_name()} crashed: {error}")

    async def stop_all(self) -> None:
        """Stop every adapter and cancel the listen tasks."""
        for name, channel in self.channels.items():
            try:
                await channel.stop()
            except Exception as e:
                logger.warning(f"Channel {name} stop failed: {e}")
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def send(self, msg: OutboundMessage) -> None:
        """Deliver ``msg`` through the channel it names."""
        channel = self.channels.get(msg.channel)
        if channel is None:
            raise ChannelError(msg.channel, "no such channel", fatal=True)
        await channel.send(msg)
