"""Chat flow that drives an Authorizer's handshake.

The flow knows nothing about the handshake itself. On start it asks the
authorizer for a channel, then alternates: the user's answer goes into the
channel, the next prompt comes out of it and is sent to the user verbatim.
When the background task closes the channel the flow is finished.

If the task running a turn is cancelled (for instance by a turn timeout),
the turn is abandoned without replying and the handshake is aborted so
its background task does not outlive the conversation.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from crosspost.blogging.auth import AuthorizationChannel, Authorizer, TurnState
from crosspost.errors import FlowHandlingError
from crosspost.im.commands import CommandParser, parse_command
from crosspost.im.flow import Flow, FlowStatus
from crosspost.im.messages import Message, Messenger

CANCEL_COMMAND = "/cancel"


class AuthorizerFlow(Flow):
    """Runs one platform's authorization handshake over chat."""

    def __init__(
        self,
        authorizer: Authorizer,
        platform_name: str = "",
        command_parser: CommandParser = parse_command,
    ) -> None:
        super().__init__(command_parser)
        self._authorizer = authorizer
        self._platform_name = platform_name or type(authorizer).__name__
        self._channel: AuthorizationChannel | None = None

    @property
    def channel(self) -> AuthorizationChannel | None:
        return self._channel

    async def start(self, message: Message, messenger: Messenger) -> FlowStatus:
        if self._channel is not None and not self._channel.closed:
            self._channel.abort()
        self._channel = self._authorizer.start_authorization(message.user_id)
        logger.info(
            "{} authorizer: started authorization for user {}",
            self._platform_name,
            message.user_id,
        )
        # The entry command carries no answer; this just fetches the first prompt.
        return await self.handle_message(message, messenger)

    async def handle_message(self, message: Message, messenger: Messenger) -> FlowStatus:
        channel = self._channel
        if channel is None:
            raise FlowHandlingError(self._platform_name, "no authorization channel")

        if message.is_command and message.as_command(self.command_parser).name == CANCEL_COMMAND:
            channel.abort()
            self._channel = None
            logger.info(
                "{} authorizer: user {} canceled authorization",
                self._platform_name,
                message.user_id,
            )
            await messenger.send_message(message.reply("Authorization canceled."))
            return FlowStatus.FINISHED

        has_answer = not message.is_command and bool(message.text)
        try:
            if channel.state is TurnState.AWAITING_ANSWER:
                if not has_answer:
                    await messenger.send_message(message.reply(channel.pending_prompt or ""))
                    return FlowStatus.CONTINUE
                logger.debug(
                    "{} authorizer: answer from user {} in chat {}",
                    self._platform_name,
                    message.user_id,
                    message.chat_id,
                )
                await channel.send(message.text)
            elif has_answer:
                logger.warning(
                    "{} authorizer: no question pending for user {}, ignoring answer",
                    self._platform_name,
                    message.user_id,
                )
                await messenger.send_message(
                    message.reply("No question is pending, your message was ignored.")
                )

            prompt = await channel.receive()
        except asyncio.CancelledError:
            logger.info(
                "{} authorizer: turn for user {} abandoned, aborting handshake",
                self._platform_name,
                message.user_id,
            )
            channel.abort()
            raise

        if prompt is None:
            logger.info(
                "{} authorizer: finished authorization for user {}",
                self._platform_name,
                message.user_id,
            )
            self._channel = None
            if channel.farewell:
                try:
                    await messenger.send_message(message.reply(channel.farewell))
                except Exception as exc:
                    logger.warning(
                        "{} authorizer: could not deliver farewell: {}", self._platform_name, exc
                    )
            return FlowStatus.FINISHED

        await messenger.send_message(message.reply(prompt))
        return FlowStatus.CONTINUE
