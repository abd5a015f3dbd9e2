"""Interactive authorization handshakes.

An Authorizer runs its handshake in a background task and talks to the user
through an AuthorizationChannel. The channel is half-duplex and strictly
turn based: the background task asks a question, the chat side delivers
the question to the user, the user's answer is sent back, and so on until
the background task closes the channel.

Channel states, from the chat side:

    AWAITING_PROMPT --receive() yields prompt--> AWAITING_ANSWER
    AWAITING_ANSWER --send(answer)-------------> AWAITING_PROMPT
    AWAITING_PROMPT --receive() sees close-----> CLOSED

Operations attempted in the wrong state raise TurnOrderError right away
instead of blocking forever.

Usage (background side):

    async def handshake(channel: AuthorizationChannel) -> str | None:
        server = await channel.ask("Which server?")
        ...
        return "Authorized."          # optional farewell for the user

    channel = AuthorizationChannel.spawn(handshake, name="mastodon:42")
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Protocol, runtime_checkable

from loguru import logger

from crosspost.errors import ChannelClosedError, TurnOrderError

_CLOSED = object()

AuthorizationProcedure = Callable[["AuthorizationChannel"], Awaitable[str | None]]


class TurnState(StrEnum):
    """Whose turn it is on an authorization channel, seen from the chat side."""

    AWAITING_PROMPT = "awaiting_prompt"
    AWAITING_ANSWER = "awaiting_answer"
    CLOSED = "closed"


class AuthorizationChannel:
    """Single-turn string conduit between a handshake task and a chat flow."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._prompts: asyncio.Queue[object] = asyncio.Queue()
        self._answers: asyncio.Queue[object] = asyncio.Queue()
        self._state = TurnState.AWAITING_PROMPT
        self._pending_prompt: str | None = None
        self._asking = False
        self._closed = False
        self._farewell: str | None = None
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def spawn(cls, procedure: AuthorizationProcedure, *, name: str = "") -> AuthorizationChannel:
        """Run procedure in its own task, closing the channel when it ends.

        The procedure's return value becomes the farewell text. A procedure
        that raises closes the channel with the error as farewell.
        """
        channel = cls(name)
        channel._task = asyncio.create_task(channel._run(procedure), name=f"authorization-{name}")
        return channel

    async def _run(self, procedure: AuthorizationProcedure) -> None:
        farewell: str | None = None
        try:
            farewell = await procedure(self)
        except ChannelClosedError:
            logger.debug("Authorization '{}' stopped: channel closed", self.name)
        except asyncio.CancelledError:
            logger.debug("Authorization '{}' aborted", self.name)
            raise
        except Exception as exc:
            logger.error("Authorization '{}' failed: {}", self.name, exc)
            farewell = f"Authorization failed: {exc}"
        finally:
            self.close(farewell)

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def pending_prompt(self) -> str | None:
        """The prompt the user still has to answer, if any."""
        return self._pending_prompt

    @property
    def farewell(self) -> str | None:
        return self._farewell

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Background side ──

    async def ask(self, prompt: str) -> str:
        """Deliver prompt to the user and wait for the answer.

        Raises ChannelClosedError if the channel is, or becomes, closed.
        """
        if self._closed:
            raise ChannelClosedError(f"{self.name}: channel closed")
        if self._asking:
            raise TurnOrderError(f"{self.name}: a prompt is already waiting for an answer")
        self._asking = True
        try:
            self._prompts.put_nowait(prompt)
            answer = await self._answers.get()
        finally:
            self._asking = False
        if answer is _CLOSED:
            raise ChannelClosedError(f"{self.name}: channel closed while waiting for an answer")
        return str(answer)

    def close(self, farewell: str | None = None) -> None:
        """Signal the end of the handshake. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._farewell = farewell
        self._prompts.put_nowait(_CLOSED)
        if self._asking:
            self._answers.put_nowait(_CLOSED)

    def abort(self) -> None:
        """Stop the background task and close the channel."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.close()

    # ── Chat side ──

    async def receive(self) -> str | None:
        """Wait for the next prompt. Returns None once the channel is closed.

        A prompt still queued when the channel closed is discarded.
        """
        if self._closed:
            self._state = TurnState.CLOSED
            self._pending_prompt = None
            return None
        if self._state is TurnState.AWAITING_ANSWER:
            raise TurnOrderError(
                f"{self.name}: prompt {self._pending_prompt!r} is still unanswered"
            )
        if self._state is TurnState.CLOSED:
            return None
        item = await self._prompts.get()
        if item is _CLOSED or self._closed:
            self._state = TurnState.CLOSED
            return None
        self._state = TurnState.AWAITING_ANSWER
        self._pending_prompt = str(item)
        return self._pending_prompt

    async def send(self, answer: str) -> None:
        """Answer the pending prompt."""
        if self._state is TurnState.CLOSED:
            raise ChannelClosedError(f"{self.name}: channel closed")
        if self._state is not TurnState.AWAITING_ANSWER:
            raise TurnOrderError(f"{self.name}: no prompt is waiting for an answer")
        self._state = TurnState.AWAITING_PROMPT
        self._pending_prompt = None
        if self._closed:
            logger.debug("Authorization '{}' already closed, dropping answer", self.name)
            return
        self._answers.put_nowait(answer)
        # Let the background task pick the answer up before we start waiting.
        await asyncio.sleep(0)


@runtime_checkable
class Authorizer(Protocol):
    """Something that can link a chat user to an external account."""

    def is_authorized(self, user_id: str) -> bool: ...

    def start_authorization(self, user_id: str) -> AuthorizationChannel:
        """Spawn the handshake for user_id and return its channel."""
        ...
