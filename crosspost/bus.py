"""Async inbound queue between chat transports and the dispatcher.

Transports push Messages as they arrive; the gateway consumer pops them
and hands each one to the Dispatcher. Replies do not go back through the
bus: flows talk to the Messenger directly.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from crosspost.im.messages import Message


class MessageBus:
    """Bounded asyncio queue of inbound messages."""

    def __init__(self, max_queue_size: int = 256) -> None:
        self._inbound: asyncio.Queue[Message] = asyncio.Queue(maxsize=max_queue_size)

    async def push_inbound(self, message: Message) -> None:
        """Called by transports to submit an incoming user message."""
        await self._inbound.put(message)
        logger.debug(
            "Inbound queued: transport={} chat_id={} user_id={} len={} images={}",
            message.transport,
            message.chat_id,
            message.user_id,
            len(message.text),
            len(message.images),
        )

    async def pop_inbound(self) -> Message:
        return await self._inbound.get()

    @property
    def inbound_pending(self) -> int:
        return self._inbound.qsize()
