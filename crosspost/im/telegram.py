"""Telegram transport using python-telegram-bot (async native).

Config: config.channels.telegram.enabled = true, .token = "BOT_TOKEN"
Optional: config.channels.telegram.allow_from = ["123456789"]

Every text message, command and photo from an allowed user becomes a
crosspost Message and is pushed to the MessageBus. Photos are downloaded
at their largest size; the photo caption travels with the image, not as
message text. TelegramChannel is also the Messenger replies go through.
"""

from __future__ import annotations

from loguru import logger
from telegram import BotCommand, ReplyParameters, Update
from telegram import Message as TelegramMessage
from telegram.ext import Application, ApplicationBuilder, MessageHandler, filters

from crosspost.bus import MessageBus
from crosspost.config.schema import ChannelEntry
from crosspost.im.messages import Image, Message

TRANSPORT = "telegram"
TELEGRAM_MAX_MESSAGE_LENGTH = 4096
TELEGRAM_MAX_CAPTION_LENGTH = 1024


def split_message(text: str, max_length: int = TELEGRAM_MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into chunks that fit within Telegram's message limit.

    Splits on newline boundaries when possible, falls back to a hard
    split at max_length.
    """
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n", 0, max_length)
        if split_at == -1 or split_at < max_length // 2:
            split_at = max_length
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].lstrip("\n")
    return chunks


async def message_from_telegram(tg_message: TelegramMessage) -> Message:
    """Convert a Telegram message into a transport-agnostic Message."""
    images: tuple[Image, ...] = ()
    if tg_message.photo:
        # Sizes are ordered smallest first.
        largest = tg_message.photo[-1]
        tg_file = await largest.get_file()
        data = bytes(await tg_file.download_as_bytearray())
        images = (Image(data=data, caption=tg_message.caption or ""),)

    return Message(
        transport=TRANSPORT,
        chat_id=str(tg_message.chat_id),
        user_id=str(tg_message.from_user.id) if tg_message.from_user else "",
        message_id=str(tg_message.message_id),
        text=tg_message.text or "",
        images=images,
    )


class TelegramChannel:
    """Telegram bot: inbound producer for the bus and outbound Messenger."""

    def __init__(self, config: ChannelEntry, commands: list[tuple[str, str]] | None = None) -> None:
        self._config = config
        self._commands = commands or []
        self._app: Application | None = None
        self._bus: MessageBus | None = None

    @property
    def name(self) -> str:
        return TRANSPORT

    def is_allowed(self, user_id: str) -> bool:
        """Check if a user ID is in the allowlist. Empty list allows everyone."""
        if not self._config.allow_from:
            return True
        return user_id in self._config.allow_from

    async def handle_update(self, update: Update) -> None:
        """Convert and enqueue one update; drops updates from users not allowed."""
        tg_message = update.effective_message
        if tg_message is None or self._bus is None:
            return
        user_id = str(update.effective_user.id) if update.effective_user else ""
        if not self.is_allowed(user_id):
            logger.warning("Telegram: blocked message from non-allowed user {}", user_id)
            return
        try:
            message = await message_from_telegram(tg_message)
        except Exception as exc:
            logger.error("Telegram: could not read message from user {}: {}", user_id, exc)
            await tg_message.reply_text("Sorry, I could not read that message.")
            return
        if message.is_empty:
            return
        await self._bus.push_inbound(message)

    async def start(self, bus: MessageBus) -> None:
        token = self._config.token.get_secret_value()
        if not token:
            raise ValueError("Telegram bot token is required (config.channels.telegram.token)")

        self._bus = bus
        self._app = ApplicationBuilder().token(token).build()

        async def on_update(update: Update, _ctx) -> None:
            await self.handle_update(update)

        self._app.add_handler(MessageHandler(filters.TEXT | filters.PHOTO, on_update))

        await self._app.initialize()
        await self._app.start()

        if self._commands:
            try:
                await self._app.bot.set_my_commands(
                    [BotCommand(cmd.lstrip("/"), desc) for cmd, desc in self._commands]
                )
            except Exception as exc:
                logger.warning("Failed to register Telegram bot commands: {}", exc)

        if self._app.updater:
            await self._app.updater.start_polling(drop_pending_updates=True)
        logger.info("Telegram channel started")

    async def stop(self) -> None:
        if self._app:
            if self._app.updater:
                await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
            self._app = None
            logger.info("Telegram channel stopped")

    async def send_message(self, message: Message) -> None:
        """Send text, then each image as a photo. Raises on any failure."""
        if self._app is None:
            raise RuntimeError("Telegram channel is not started")
        bot = self._app.bot
        chat_id = int(message.chat_id)
        reply = (
            ReplyParameters(message_id=int(message.in_reply_to), allow_sending_without_reply=True)
            if message.in_reply_to
            else None
        )

        if message.text:
            for chunk in split_message(message.text):
                await bot.send_message(
                    chat_id=chat_id,
                    text=chunk,
                    reply_parameters=reply,
                )
        for image in message.images:
            await bot.send_photo(
                chat_id=chat_id,
                photo=image.data,
                caption=image.caption[:TELEGRAM_MAX_CAPTION_LENGTH] or None,
                reply_parameters=reply,
            )
        logger.debug(
            "Telegram: sent reply to chat {} ({} chars, {} image(s))",
            message.chat_id,
            len(message.text),
            len(message.images),
        )
