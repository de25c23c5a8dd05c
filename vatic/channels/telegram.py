"""Telegram channel implementation using python-telegram-bot."""

from __future__ import annotations

from loguru import logger
from telegram import Update
from telegram.error import InvalidToken, TelegramError
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from vatic.bus.events import OutboundMessage
from vatic.bus.queue import MessageBus
from vatic.channels.base import BaseChannel
from vatic.config.schema import TelegramChannelConfig
from vatic.errors import ChannelError

MAX_MESSAGE_LENGTH = 4000


def strip_mention(text: str, username: str | None) -> str:
    """Remove the first ``@username`` mention (case-insensitive) and trim."""
    if not username:
        return text.strip()
    mention = f"@{username}".lower()
    index = text.lower().find(mention)
    if index < 0:
        return text.strip()
    before = text[:index].rstrip()
    after = text[index + len(mention):].lstrip()
    if before and after:
        return f"{before} {after}".strip()
    return (before or after).strip()


def split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split a long reply into chunks, preferring line boundaries."""
    if len(text) <= max_length:
        return [text]
    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) <= max_length:
            current = candidate
            continue
        if current:
            chunks.append(current)
        while len(line) > max_length:
            chunks.append(line[:max_length])
            line = line[max_length:]
        current = line
    if current:
        chunks.append(current)
    return chunks


class TelegramChannel(BaseChannel):
    """
    Telegram channel using long polling.

    Messages are keyed by chat id, so a reply goes back to the chat the
    message came from. A leading ``@botname`` mention is stripped before the
    text reaches trigger matching.
    """

    kind = "telegram"

    def __init__(self, name: str, config: TelegramChannelConfig, bus: MessageBus):
        super().__init__(name, config, bus)
        self.config: TelegramChannelConfig = config
        self._app: Application | None = None
        self.bot_username: str | None = None

    def _build_app(self) -> Application:
        builder = Application.builder().token(self.config.token)
        if self.config.proxy:
            builder = builder.proxy(self.config.proxy).get_updates_proxy(self.config.proxy)
        return builder.build()

    async def _listen(self) -> None:
        if not self.config.token:
            raise ChannelError(self.name, "bot token not configured", fatal=True)

        try:
            self._app = self._build_app()
            self._app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._on_message))
            await self._app.initialize()
            await self._app.start()
        except InvalidToken as e:
            raise ChannelError(self.name, f"invalid bot token: {e}", fatal=True) from e

        try:
            me = await self._app.bot.get_me()
            self.bot_username = me.username
            logger.info(f"Telegram bot @{self.bot_username} connected")
            await self._app.updater.start_polling(
                allowed_updates=["message"],
                drop_pending_updates=True,
            )
            self._connected()
            await self._stopped.wait()
        except InvalidToken as e:
            raise ChannelError(self.name, f"invalid bot token: {e}", fatal=True) from e
        except TelegramError as e:
            raise ChannelError(self.name, str(e)) from e
        finally:
            await self._shutdown_app()

    async def _shutdown_app(self) -> None:
        app, self._app = self._app, None
        if app is None:
            return
        try:
            if app.updater and app.updater.running:
                await app.updater.stop()
            if app.running:
                await app.stop()
            await app.shutdown()
        except TelegramError as e:
            logger.warning(f"Telegram shutdown error: {e}")

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        if message is None or not message.text:
            return
        text = strip_mention(message.text, self.bot_username)
        if not text:
            return
        metadata = {}
        if update.effective_user:
            metadata["user_id"] = update.effective_user.id
            metadata["username"] = update.effective_user.username
        await self._handle_message(str(message.chat_id), text, metadata)

    async def send(self, msg: OutboundMessage) -> None:
        if self._app is None:
            raise ChannelError(self.name, "bot is not running")
        try:
            chat_id = int(msg.to)
        except ValueError:
            raise ChannelError(self.name, f"invalid chat id '{msg.to}'") from None
        try:
            for chunk in split_message(msg.content):
                await self._app.bot.send_message(chat_id=chat_id, text=chunk)
        except TelegramError as e:
            raise ChannelError(self.name, f"send to {chat_id} failed: {e}") from e
