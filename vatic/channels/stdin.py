"""Terminal channel: one message per line on standard input."""

from __future__ import annotations

import asyncio
import sys

from rich.console import Console
from rich.text import Text

from vatic.bus.events import OutboundMessage
from vatic.bus.queue import MessageBus
from vatic.channels.base import BaseChannel
from vatic.config.schema import StdinChannelConfig

LOCAL_SENDER = "local"


class StdinChannel(BaseChannel):
    """Reads lines from stdin as sender ``local`` and prints replies to stdout."""

    kind = "stdin"

    def __init__(
        self,
        name: str,
        config: StdinChannelConfig,
        bus: MessageBus,
        reader: asyncio.StreamReader | None = None,
        console: Console | None = None,
    ):
        super().__init__(name, config, bus)
        self._reader = reader
        self.console = console or Console(highlight=False)

    async def _open_reader(self) -> asyncio.StreamReader:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)
        return reader

    async def _listen(self) -> None:
        if self._reader is None:
            self._reader = await self._open_reader()
        self._connected()

        while self._running:
            line = await self._reader.readline()
            if not line:
                break  # end of file
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                await self._handle_message(LOCAL_SENDER, text)

    async def send(self, msg: OutboundMessage) -> None:
        self.console.print(Text(msg.content))
