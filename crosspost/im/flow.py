"""Conversation flows and the per-user flow scheduler.

A Flow owns a user's conversation from the moment one of its entry
commands is received until it reports FlowStatus.FINISHED. While a flow is
active every message from that user goes to it, commands included.

FlowScheduler is a two-state machine per user:

    Idle ──entry command──> InFlow(name) ──FINISHED──> Idle

Any other outcome (CONTINUE, or an exception) keeps the flow active.
The scheduler does no locking: callers must never run two handle_message()
calls for the same user concurrently (see crosspost.dispatcher).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum

from loguru import logger

from crosspost.errors import (
    FlowAlreadyRegisteredError,
    FlowConfigurationError,
    FlowHandlingError,
    FlowTriggerConflictError,
    NotACommandError,
)
from crosspost.im.commands import COMMAND_PREFIX, CommandParser, parse_command
from crosspost.im.messages import Message, Messenger


class FlowStatus(StrEnum):
    """Outcome of a flow step as seen by the scheduler."""

    CONTINUE = "continue"
    FINISHED = "finished"


class Flow(ABC):
    """A stateful conversation handler.

    Subclasses customise how they parse their own commands by passing a
    different command_parser, not by overriding a method.
    """

    def __init__(self, command_parser: CommandParser = parse_command) -> None:
        self.command_parser = command_parser

    @abstractmethod
    async def start(self, message: Message, messenger: Messenger) -> FlowStatus:
        """Begin the flow with the entry command message."""

    @abstractmethod
    async def handle_message(self, message: Message, messenger: Messenger) -> FlowStatus:
        """Handle a message received while this flow is active."""


@dataclass(slots=True)
class FlowRegistration:
    name: str
    flow: Flow
    commands: frozenset[str] = field(default_factory=frozenset)


class FlowScheduler:
    """Routes one user's messages to the active flow or starts a new one."""

    def __init__(self) -> None:
        self._flows: dict[str, FlowRegistration] = {}
        self._entry_points: dict[str, str] = {}
        self._current: str = ""

    @property
    def current_flow(self) -> str:
        """Name of the active flow, or "" when idle."""
        return self._current

    @property
    def is_idle(self) -> bool:
        return not self._current

    @property
    def flow_names(self) -> list[str]:
        return list(self._flows)

    def entry_commands(self) -> dict[str, str]:
        """Map of entry command to flow name."""
        return dict(self._entry_points)

    def register_flow(self, flow: Flow, name: str, commands: list[str]) -> None:
        """Register flow under name, started by any of commands.

        All checks run before anything is stored, so a failed registration
        leaves the scheduler untouched.
        """
        if name in self._flows:
            raise FlowAlreadyRegisteredError(name)

        seen: set[str] = set()
        for command in commands:
            if not command.startswith(COMMAND_PREFIX) or len(command) == 1:
                raise FlowConfigurationError(
                    f"{command!r}: entry commands must start with '{COMMAND_PREFIX}'"
                )
            if command in self._entry_points:
                raise FlowTriggerConflictError(command, self._entry_points[command])
            if command in seen:
                raise FlowTriggerConflictError(command, name)
            seen.add(command)

        self._flows[name] = FlowRegistration(name=name, flow=flow, commands=frozenset(seen))
        for command in seen:
            self._entry_points[command] = name
        logger.debug("Registered flow '{}' for commands {}", name, sorted(seen))

    async def handle_message(self, message: Message, messenger: Messenger) -> None:
        """Forward message to the active flow, or start the flow it triggers.

        Non-commands and unknown commands received while idle are ignored.
        Errors raised by a flow are wrapped in FlowHandlingError and leave
        the flow active.
        """
        logger.debug(
            "Entering handler for user {}, current flow: '{}'", message.user_id, self._current
        )
        try:
            if self._current:
                await self._forward(self._current, message, messenger)
                return

            if not message.is_command:
                return

            try:
                command = message.as_command()
            except NotACommandError:
                logger.debug("Message is not a command we know how to handle: {}", message.text)
                return

            name = self._entry_points.get(command.name)
            if name is None:
                logger.debug("Command not recognized: {}", command.name)
                return

            self._current = name
            logger.info("Starting flow '{}' for user {}", name, message.user_id)
            try:
                status = await self._flows[name].flow.start(message, messenger)
            except Exception as exc:
                raise FlowHandlingError(name, f"starting flow: {exc}") from exc
            self._apply(name, status)
        finally:
            logger.debug(
                "Exiting handler for user {}, current flow: '{}'", message.user_id, self._current
            )

    async def _forward(self, name: str, message: Message, messenger: Messenger) -> None:
        try:
            status = await self._flows[name].flow.handle_message(message, messenger)
        except Exception as exc:
            raise FlowHandlingError(name, f"handling message: {exc}") from exc
        self._apply(name, status)

    def _apply(self, name: str, status: FlowStatus) -> None:
        if status is FlowStatus.FINISHED and self._current == name:
            logger.info("Flow '{}' finished", name)
            self._current = ""
