import asyncio
import io

import pytest
from rich.console import Console

from vatic.bus.events import OutboundMessage
from vatic.bus.queue import MessageBus
from vatic.channels.stdin import LOCAL_SENDER, StdinChannel
from vatic.config.schema import StdinChannelConfig


@pytest.mark.asyncio
async def test_reads_lines_until_eof():
    bus = MessageBus()
    reader = asyncio.StreamReader()
    reader.feed_data(b"weather Lisbon\n\n   \nsecond line\n")
    reader.feed_eof()
    channel = StdinChannel("stdin", StdinChannelConfig(), bus, reader=reader)

    await asyncio.wait_for(channel.start(), timeout=1)

    first = await bus.consume_inbound()
    second = await bus.consume_inbound()
    assert (first.sender, first.text) == (LOCAL_SENDER, "weather Lisbon")
    assert second.text == "second line"
    assert bus.inbound_size == 0


@pytest.mark.asyncio
async def test_send_prints_plain_text():
    buffer = io.StringIO()
    console = Console(file=buffer, highlight=False, width=120)
    channel = StdinChannel("stdin", StdinChannelConfig(), MessageBus(), console=console)

    await channel.send(OutboundMessage(channel="stdin", to=LOCAL_SENDER, content="[bold]Sunny[/bold]"))

    assert buffer.getvalue().strip() == "[bold]Sunny[/bold]"
