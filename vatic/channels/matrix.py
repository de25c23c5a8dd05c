"""Matrix channel using the client-server API over httpx."""

from __future__ import annotations

import uuid
from urllib.parse import quote

import httpx
from loguru import logger

from vatic.bus.events import OutboundMessage
from vatic.bus.queue import MessageBus
from vatic.channels.base import BaseChannel
from vatic.config.schema import MatrixChannelConfig
from vatic.errors import ChannelError

API = "/_matrix/client/v3"


class MatrixChannel(BaseChannel):
    """
    Password login followed by a ``/sync`` long-poll loop.

    Only ``m.text`` messages from other users in joined rooms are forwarded;
    the sender is the room id, so replies go to the room. Pending invites
    are accepted. The first sync only records the position, so history from
    before the daemon started is not replayed.
    """

    kind = "matrix"

    def __init__(
        self,
        name: str,
        config: MatrixChannelConfig,
        bus: MessageBus,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(name, config, bus)
        self.config: MatrixChannelConfig = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._token: str | None = None
        self.user_id: str | None = None
        self._since: str | None = None

    def _make_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self.config.sync_timeout_ms / 1000 + 30, connect=10)
        return httpx.AsyncClient(
            base_url=self.config.homeserver.rstrip("/"),
            timeout=timeout,
            transport=self._transport,
        )

    async def _listen(self) -> None:
        async with self._make_client() as client:
            self._client = client
            try:
                if self._token is None:
                    await self._login(client)
                while self._running:
                    await self._sync_once(client)
                    self._connected()
            except httpx.HTTPError as e:
                raise ChannelError(self.name, f"{type(e).__name__}: {e}") from e
            finally:
                self._client = None

    async def _login(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            f"{API}/login",
            json={
                "type": "m.login.password",
                "identifier": {"type": "m.id.user", "user": self.config.user},
                "password": self.config.password,
                "initial_device_display_name": "vatic",
            },
        )
        if response.status_code in (401, 403):
            raise ChannelError(self.name, "login rejected, check user and password", fatal=True)
        if response.status_code != 200:
            raise ChannelError(self.name, f"login failed with HTTP {response.status_code}")
        data = response.json()
        self._token = data["access_token"]
        self.user_id = data.get("user_id")
        logger.info(f"Matrix logged in as {self.user_id}")

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    async def _sync_once(self, client: httpx.AsyncClient) -> None:
        params = {"timeout": str(self.config.sync_timeout_ms)}
        if self._since:
            params["since"] = self._since
        else:
            params["timeout"] = "0"
        response = await client.get(f"{API}/sync", params=params, headers=self._headers())
        if response.status_code == 401:
            self._token = None
            raise ChannelError(self.name, "access token expired, logging in again")
        if response.status_code != 200:
            raise ChannelError(self.name, f"sync failed with HTTP {response.status_code}")

        data = response.json()
        first_sync = self._since is None
        self._since = data.get("next_batch", self._since)
        rooms = data.get("rooms", {})

        for room_id in rooms.get("invite", {}):
            await self._join(client, room_id)

        if first_sync:
            return
        for room_id, room in rooms.get("join", {}).items():
            for event in room.get("timeline", {}).get("events", []):
                await self._on_event(room_id, event)

    async def _join(self, client: httpx.AsyncClient, room_id: str) -> None:
        response = await client.post(
            f"{API}/join/{quote(room_id, safe='')}", json={}, headers=self._headers()
        )
        if response.status_code == 200:
            logger.info(f"Matrix joined {room_id}")
        else:
            logger.warning(f"Matrix could not join {room_id}: HTTP {response.status_code}")

    async def _on_event(self, room_id: str, event: dict) -> None:
        if event.get("type") != "m.room.message":
            return
        if event.get("sender") == self.user_id:
            return
        content = event.get("content", {})
        if content.get("msgtype") != "m.text":
            return
        body = str(content.get("body", "")).strip()
        if body:
            await self._handle_message(room_id, body, {"user": event.get("sender")})

    async def send(self, msg: OutboundMessage) -> None:
        client = self._client
        if client is None or self._token is None:
            raise ChannelError(self.name, "not connected")
        txn = uuid.uuid4().hex
        path = f"{API}/rooms/{quote(msg.to, safe='')}/send/m.room.message/{txn}"
        try:
            response = await client.put(
                path,
                json={"msgtype": "m.text", "body": msg.content},
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise ChannelError(self.name, f"send to {msg.to} failed: {e}") from e
        if response.status_code != 200:
            raise ChannelError(self.name, f"send to {msg.to} failed with HTTP {response.status_code}")
