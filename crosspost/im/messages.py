"""Transport-agnostic chat messages.

Inbound Messages are built by a transport binding (see crosspost.im.telegram)
and routed through the flow engine. Flows never build outbound messages from
scratch: every reply is derived from the inbound message with Message.reply(),
which keeps the routing identifiers intact.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from crosspost.errors import NotACommandError
from crosspost.im.commands import Command, CommandParser, parse_command


@dataclass(frozen=True, slots=True)
class Image:
    """Raw image bytes and the caption they were sent with."""

    data: bytes
    caption: str = ""


@dataclass(frozen=True, slots=True)
class Message:
    """A chat message, either received from a user or sent back as a reply."""

    transport: str
    chat_id: str
    user_id: str
    message_id: str = ""
    in_reply_to: str | None = None
    text: str = ""
    images: tuple[Image, ...] = field(default_factory=tuple)

    @property
    def is_command(self) -> bool:
        return bool(self.text) and self.text.startswith("/")

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.images

    def reply(self, text: str, *images: Image) -> Message:
        """Build an outbound message answering this one."""
        return Message(
            transport=self.transport,
            chat_id=self.chat_id,
            user_id=self.user_id,
            in_reply_to=self.message_id or None,
            text=text,
            images=tuple(images),
        )

    def as_command(self, parser: CommandParser | None = None) -> Command:
        """Parse the text as a /command, using parser when one is given.

        Raises NotACommandError when the text is not a command.
        """
        if not self.is_command:
            raise NotACommandError(self.text)
        return (parser or parse_command)(self.text)


@runtime_checkable
class Messenger(Protocol):
    """Sends messages back through the transport a conversation came from."""

    @property
    def name(self) -> str: ...

    async def send_message(self, message: Message) -> None:
        """Deliver message. Raises on delivery failure."""
        ...
