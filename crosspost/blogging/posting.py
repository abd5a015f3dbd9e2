"""Flow for drafting a microblog post in chat and publishing it everywhere.

Commands understood while the flow is active:

    /new [langs=en,es | en,es]   start a draft (optionally tagged with languages)
    /send                        publish the draft to every authorized platform
    /cancel                      discard the draft

Any other message appends its text (one line per message) and images to
the draft. /send and /cancel end the flow; /new keeps it running.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Mapping

from loguru import logger

from crosspost.blogging.micro import BlogImage, MicroblogPost
from crosspost.blogging.platform import AuthedPlatform
from crosspost.errors import DeliveryError
from crosspost.im.commands import CommandParser, parse_command, split_args
from crosspost.im.flow import Flow, FlowStatus
from crosspost.im.messages import Image, Message, Messenger

NEW_COMMAND = "/new"
SEND_COMMAND = "/send"
CANCEL_COMMAND = "/cancel"
POSTING_COMMANDS = (NEW_COMMAND, SEND_COMMAND, CANCEL_COMMAND)

_MSG_ALREADY_ACTIVE = (
    "You already have an active post. Use /send to post it or /cancel to discard it."
)
_MSG_STARTED = (
    "Started a new post. Now send text or images to add content. "
    "Use /send when ready or /cancel to discard."
)
_MSG_NO_POST_TO_SEND = "No active post to send. Use /new to start a post."
_MSG_NO_ACTIVE_POST = "No active post. Use /new to start writing a new post."
_MSG_CANCELED = "Post canceled."
_MSG_NOTHING_TO_CANCEL = "No active post to cancel."
_MSG_CONTENT_ADDED = "Content added to your post."
_MSG_NOTHING_ADDED = "Received message, but no content was added."
_MSG_NO_PLATFORMS = "No blogging platforms are configured, nothing was sent."
_MSG_EMPTY_POST = (
    "Your post is empty. Send text or images first, or use /cancel to discard it."
)
_MSG_INTERRUPTED_DRAFT_KEPT = (
    "Sending was interrupted before the post reached any platform. "
    "It is still your draft: use /send to try again or /cancel to discard it."
)


def parse_langs(args: tuple[str, ...] | list[str]) -> list[str]:
    """Extract language tags from /new arguments.

    Accepts langs=en,es (or lang=en) and falls back to the first
    positional argument.
    """
    keywords, positional = split_args(args)
    raw = keywords.get("langs") or keywords.get("lang")
    if raw is None and positional:
        raw = positional[0]
    if not raw:
        return []
    return [lang.strip() for lang in raw.split(",") if lang.strip()]


class DraftStore:
    """In-memory drafts keyed by user id, at most one per user.

    Every method holds the lock for its whole read-modify-write, so two
    concurrent /send calls can never both get the same draft.
    """

    def __init__(self) -> None:
        self._drafts: dict[str, MicroblogPost] = {}
        self._lock = threading.Lock()

    def create(self, user_id: str, langs: list[str] | None = None) -> MicroblogPost | None:
        """Create an empty draft. Returns None if the user already has one."""
        with self._lock:
            if user_id in self._drafts:
                return None
            draft = MicroblogPost(langs=list(langs or []))
            self._drafts[user_id] = draft
            return draft

    def append(self, user_id: str, text: str, images: list[BlogImage]) -> int | None:
        """Add content to the user's draft.

        Returns the number of items added, or None when there is no draft.
        """
        with self._lock:
            draft = self._drafts.get(user_id)
            if draft is None:
                return None
            added = 0
            if text:
                draft.add_text(text)
                added += 1
            for image in images:
                draft.add_image(image)
                added += 1
            return added

    def pop(self, user_id: str) -> MicroblogPost | None:
        """Remove and return the user's draft."""
        with self._lock:
            return self._drafts.pop(user_id, None)

    def restore(self, user_id: str, draft: MicroblogPost) -> bool:
        """Put a popped draft back. Returns False if the user started a new one."""
        with self._lock:
            if user_id in self._drafts:
                return False
            self._drafts[user_id] = draft
            return True

    def get(self, user_id: str) -> MicroblogPost | None:
        with self._lock:
            return self._drafts.get(user_id)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._drafts

    def __len__(self) -> int:
        with self._lock:
            return len(self._drafts)


class PostingFlow(Flow):
    """Accumulates a draft from chat messages and cross-posts it."""

    def __init__(
        self,
        platforms: Mapping[str, AuthedPlatform],
        drafts: DraftStore | None = None,
        command_parser: CommandParser = parse_command,
    ) -> None:
        super().__init__(command_parser)
        self._platforms = dict(platforms)
        self._drafts = drafts if drafts is not None else DraftStore()

    @property
    def drafts(self) -> DraftStore:
        return self._drafts

    async def start(self, message: Message, messenger: Messenger) -> FlowStatus:
        return await self.handle_message(message, messenger)

    async def handle_message(self, message: Message, messenger: Messenger) -> FlowStatus:
        if not message.is_command:
            return await self._append(message, messenger)

        command = message.as_command(self.command_parser)
        if command.name == NEW_COMMAND:
            return await self._new(message, messenger, parse_langs(command.args))
        if command.name == SEND_COMMAND:
            return await self._send(message, messenger)
        if command.name == CANCEL_COMMAND:
            return await self._cancel(message, messenger)

        await messenger.send_message(
            message.reply(
                f"Unknown command {command.name}. While writing a post use "
                f"{SEND_COMMAND} to publish it or {CANCEL_COMMAND} to discard it."
            )
        )
        return FlowStatus.CONTINUE

    async def _new(self, message: Message, messenger: Messenger, langs: list[str]) -> FlowStatus:
        draft = self._drafts.create(message.user_id, langs)
        if draft is None:
            await messenger.send_message(message.reply(_MSG_ALREADY_ACTIVE))
            return FlowStatus.CONTINUE
        logger.info("Started draft for user {} (langs={})", message.user_id, langs or "-")
        await messenger.send_message(message.reply(_MSG_STARTED))
        return FlowStatus.CONTINUE

    async def _append(self, message: Message, messenger: Messenger) -> FlowStatus:
        images = images_to_blog(message.images)
        added = self._drafts.append(message.user_id, message.text, images)
        if added is None:
            await messenger.send_message(message.reply(_MSG_NO_ACTIVE_POST))
            return FlowStatus.FINISHED
        if added:
            await messenger.send_message(message.reply(_MSG_CONTENT_ADDED))
        else:
            await messenger.send_message(message.reply(_MSG_NOTHING_ADDED))
        return FlowStatus.CONTINUE

    async def _cancel(self, message: Message, messenger: Messenger) -> FlowStatus:
        draft = self._drafts.pop(message.user_id)
        await messenger.send_message(
            message.reply(_MSG_CANCELED if draft is not None else _MSG_NOTHING_TO_CANCEL)
        )
        return FlowStatus.FINISHED

    async def _send(self, message: Message, messenger: Messenger) -> FlowStatus:
        # Removed before publishing so a second /send finds nothing to publish.
        draft = self._drafts.pop(message.user_id)
        if draft is None:
            await messenger.send_message(message.reply(_MSG_NO_POST_TO_SEND))
            return FlowStatus.FINISHED

        if draft.is_empty:
            self._drafts.restore(message.user_id, draft)
            await messenger.send_message(message.reply(_MSG_EMPTY_POST))
            return FlowStatus.CONTINUE

        logger.info(
            "Sending post for user {}: {} chars, {} image(s)",
            message.user_id,
            len(draft.text),
            len(draft.images),
        )
        if not self._platforms:
            await messenger.send_message(message.reply(_MSG_NO_PLATFORMS))
            return FlowStatus.FINISHED

        delivery_errors: list[Exception] = []
        attempted: list[str] = []
        try:
            for name, platform in self._platforms.items():
                report = await self._publish(name, platform, message.user_id, draft)
                attempted.append(name)
                try:
                    await messenger.send_message(message.reply(report))
                except Exception as exc:
                    logger.warning(
                        "Could not report {} result to user {}: {}", name, message.user_id, exc
                    )
                    delivery_errors.append(exc)
        except asyncio.CancelledError:
            await self._report_interrupted(message, messenger, draft, attempted)
            raise

        if delivery_errors:
            raise DeliveryError(delivery_errors)
        return FlowStatus.FINISHED

    async def _report_interrupted(
        self, message: Message, messenger: Messenger, draft: MicroblogPost, attempted: list[str]
    ) -> None:
        """Tell the user a /send was cut short; keep the draft if nothing went out."""
        missing = [name for name in self._platforms if name not in attempted]
        logger.warning(
            "Sending post for user {} interrupted, not sent to {}", message.user_id, missing
        )
        if not attempted and self._drafts.restore(message.user_id, draft):
            text = _MSG_INTERRUPTED_DRAFT_KEPT
        else:
            names = ", ".join(missing)
            text = f"Sending was interrupted. Post not sent to: {names}."
        try:
            await messenger.send_message(message.reply(text))
        except Exception as exc:
            logger.warning(
                "Could not report interrupted send to user {}: {}", message.user_id, exc
            )

    @staticmethod
    async def _publish(
        name: str, platform: AuthedPlatform, user_id: str, draft: MicroblogPost
    ) -> str:
        """Publish draft on one platform and describe the outcome for the user."""
        if not platform.is_authorized(user_id):
            logger.info("Skipping {} for user {}: not authorized", name, user_id)
            return f"Post not sent to {name}: account not authorized (use /{name}_auth)."
        try:
            url = await platform.post(user_id, draft)
        except Exception as exc:
            logger.warning("Posting to {} failed for user {}: {}", name, user_id, exc)
            return f"Post not sent to {name}: {exc}"
        logger.info("Posted to {} for user {}: {}", name, user_id, url)
        return f"Post sent to {name} ({url})"


def images_to_blog(images: tuple[Image, ...]) -> list[BlogImage]:
    return [BlogImage(data=img.data, alt_text=img.caption) for img in images]
