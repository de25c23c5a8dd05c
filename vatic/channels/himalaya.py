"""Email channel polling a mailbox through the himalaya CLI."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass

from loguru import logger

from vatic.bus.events import OutboundMessage
from vatic.bus.queue import MessageBus
from vatic.channels.base import BaseChannel
from vatic.config.schema import HimalayaChannelConfig
from vatic.errors import ChannelError, SandboxError
from vatic.sandbox.base import run_process

MAX_SEEN = 10_000
COMMAND_TIMEOUT = 30.0
REPLY_SUBJECT = "Re: vatic"


@dataclass(frozen=True)
class Envelope:
    id: str
    flags: str
    sender: str
    subject: str


def parse_envelope_line(line: str) -> Envelope | None:
    """Parse one tab-separated row of ``himalaya envelope list``."""
    parts = line.split("\t", 3)
    if len(parts) < 4:
        return None
    envelope_id = parts[0].strip()
    if not envelope_id or envelope_id == "ID":
        return None
    return Envelope(
        id=envelope_id,
        flags=parts[1].strip(),
        sender=parts[2].strip(),
        subject=parts[3].strip(),
    )


def sanitize_header(value: str) -> str:
    return value.replace("\r", "").replace("\n", "")


def format_email_text(subject: str, body: str) -> str:
    if not subject:
        return body
    return f"{subject}\n\n{body}"


class HimalayaChannel(BaseChannel):
    """
    Fixed-interval mailbox poller.

    A poll that is still in flight when the next tick comes is not doubled;
    that tick is skipped. Envelopes already present at the first poll are
    marked seen without being dispatched.
    """

    kind = "himalaya"
    binary = "himalaya"

    def __init__(self, name: str, config: HimalayaChannelConfig, bus: MessageBus):
        super().__init__(name, config, bus)
        self.config: HimalayaChannelConfig = config
        self._seen: set[str] = set()
        self._seen_order: deque[str] = deque()
        self._primed = False
        self._poll_task: asyncio.Task | None = None

    def _account_args(self) -> list[str]:
        return ["--account", self.config.account] if self.config.account else []

    async def _himalaya(self, args: list[str], stdin: str | None = None) -> str:
        argv = [self.binary, *args, *self._account_args()]
        try:
            result = await run_process(argv, stdin=stdin, timeout=COMMAND_TIMEOUT)
        except SandboxError as e:
            fatal = "not found" in str(e)
            raise ChannelError(self.name, str(e), fatal=fatal) from e
        if not result.ok:
            raise ChannelError(self.name, f"himalaya {' '.join(args[:2])} failed: {result.stderr.strip()}")
        return result.stdout

    async def _listen(self) -> None:
        self._connected()
        try:
            while self._running:
                if self._poll_task is not None and self._poll_task.done():
                    task, self._poll_task = self._poll_task, None
                    task.result()  # surfaces a fatal error from the last poll
                if self._poll_task is None:
                    self._poll_task = asyncio.create_task(self.poll())
                else:
                    logger.debug(f"Channel {self.name}: previous poll still running, skipping")
                if not await self._sleep(self.config.poll_interval):
                    break
        finally:
            if self._poll_task is not None and not self._poll_task.done():
                self._poll_task.cancel()
            self._poll_task = None

    async def poll(self) -> int:
        """Run one poll. Returns the number of messages dispatched."""
        try:
            output = await self._himalaya(["envelope", "list", "--max-width", "0"])
        except ChannelError as e:
            if e.fatal:
                raise
            logger.error(f"Channel {self.name}: {e}")
            await self.bus.report(e)
            return 0

        envelopes = [env for line in output.splitlines() if (env := parse_envelope_line(line))]
        fresh = [env for env in envelopes if env.id not in self._seen]
        for env in fresh:
            self._mark_seen(env.id)

        if not self._primed:
            self._primed = True
            logger.info(f"Channel {self.name}: {len(fresh)} existing envelopes marked seen")
            return 0

        dispatched = 0
        for env in fresh:
            try:
                body = await self._himalaya(["message", "read", env.id])
            except ChannelError as e:
                if e.fatal:
                    raise
                logger.error(f"Channel {self.name}: reading message {env.id}: {e}")
                continue
            await self._handle_message(
                env.sender,
                format_email_text(env.subject, body.strip()),
                {"envelope_id": env.id, "subject": env.subject},
            )
            dispatched += 1
        return dispatched

    def _mark_seen(self, envelope_id: str) -> None:
        self._seen.add(envelope_id)
        self._seen_order.append(envelope_id)
        while len(self._seen) > MAX_SEEN:
            self._seen.discard(self._seen_order.popleft())

    async def send(self, msg: OutboundMessage) -> None:
        email = f"To: {sanitize_header(msg.to)}\r\nSubject: {REPLY_SUBJECT}\r\n\r\n{msg.content}"
        await self._himalaya(["message", "send"], stdin=email)
