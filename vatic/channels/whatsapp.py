"""WhatsApp channel implementation using a websocket bridge."""

from __future__ import annotations

import json

import websockets
from loguru import logger

from vatic.bus.events import OutboundMessage
from vatic.bus.queue import MessageBus
from vatic.channels.base import BaseChannel
from vatic.config.schema import WhatsAppChannelConfig
from vatic.errors import ChannelError


class WhatsAppChannel(BaseChannel):
    """
    WhatsApp channel that connects to a bridge process over a websocket.

    The bridge owns the WhatsApp Web session (QR pairing included). Frames
    are JSON: ``{"type": "message", "sender", "content"}`` inbound and
    ``{"type": "send", "to", "text"}`` outbound.
    """

    kind = "whatsapp"

    def __init__(self, name: str, config: WhatsAppChannelConfig, bus: MessageBus):
        super().__init__(name, config, bus)
        self.config: WhatsAppChannelConfig = config
        self._ws = None

    async def _listen(self) -> None:
        bridge_url = self.config.bridge_url
        logger.info(f"Connecting to WhatsApp bridge at {bridge_url}...")
        try:
            async with websockets.connect(bridge_url) as ws:
                self._ws = ws
                self._connected()
                logger.info("Connected to WhatsApp bridge")
                async for raw in ws:
                    await self._handle_bridge_message(raw)
                    if not self._running:
                        break
        except (OSError, websockets.WebSocketException) as e:
            raise ChannelError(self.name, f"bridge connection error: {e}") from e
        finally:
            self._ws = None
        if self._running:
            raise ChannelError(self.name, "bridge closed the connection")

    async def stop(self) -> None:
        await super().stop()
        if self._ws is not None:
            await self._ws.close()

    async def _handle_bridge_message(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from WhatsApp bridge: {str(raw)[:100]}")
            return
        if not isinstance(data, dict):
            logger.warning(f"Ignoring non-object frame from WhatsApp bridge: {str(raw)[:100]}")
            return

        frame_type = data.get("type")
        if frame_type == "message":
            sender = data.get("sender", "")
            content = str(data.get("content", "")).strip()
            if sender and content:
                await self._handle_message(sender, content)
        elif frame_type == "qr":
            logger.info("WhatsApp bridge is waiting for QR pairing, scan it in the bridge terminal")
        elif frame_type == "status":
            logger.info(f"WhatsApp status: {data.get('status')}")
        elif frame_type == "error":
            logger.error(f"WhatsApp bridge error: {data.get('error')}")

    async def send(self, msg: OutboundMessage) -> None:
        if self._ws is None:
            raise ChannelError(self.name, "bridge not connected")
        payload = {"type": "send", "to": msg.to, "text": msg.content}
        try:
            await self._ws.send(json.dumps(payload))
        except websockets.WebSocketException as e:
            raise ChannelError(self.name, f"send to {msg.to} failed: {e}") from e
