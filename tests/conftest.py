"""Shared test fixtures for the crosspost test suite.

The _isolate_crosspost_config fixture (autouse) prevents CrosspostConfig from
reading the user's real ~/.crosspost/config.json during tests.

RecordingMessenger and ScriptedAuthorizer are in-memory stand-ins for a chat
transport and a platform handshake.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from crosspost.blogging.auth import AuthorizationChannel
from crosspost.config.schema import CrosspostConfig
from crosspost.im.messages import Message


@pytest.fixture(autouse=True)
def _isolate_crosspost_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point CrosspostConfig's json_file at an empty temp file for every test."""
    empty_config = tmp_path / "crosspost_test_config.json"
    empty_config.write_text("{}", encoding="utf-8")
    monkeypatch.setitem(CrosspostConfig.model_config, "json_file", empty_config)


class RecordingMessenger:
    """Messenger that records every message instead of sending it."""

    name = "recording"

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[Message] = []
        self.fail = fail

    async def send_message(self, message: Message) -> None:
        if self.fail:
            raise ConnectionError("transport down")
        self.sent.append(message)

    @property
    def texts(self) -> list[str]:
        return [m.text for m in self.sent]


class ScriptedAuthorizer:
    """Authorizer asking a fixed list of questions, then closing with a farewell.

    Answers are recorded in `answers`; a successful run marks the user
    authorized.
    """

    def __init__(
        self,
        prompts: list[str],
        farewell: str | None = "Authorized.",
        error: Exception | None = None,
    ) -> None:
        self.prompts = prompts
        self.farewell = farewell
        self.error = error
        self.answers: list[str] = []
        self.authorized: set[str] = set()
        self.channels: list[AuthorizationChannel] = []

    def is_authorized(self, user_id: str) -> bool:
        return user_id in self.authorized

    def start_authorization(self, user_id: str) -> AuthorizationChannel:
        async def procedure(channel: AuthorizationChannel) -> str | None:
            for prompt in self.prompts:
                self.answers.append(await channel.ask(prompt))
            if self.error is not None:
                raise self.error
            self.authorized.add(user_id)
            return self.farewell

        channel = AuthorizationChannel.spawn(procedure, name=f"scripted:{user_id}")
        self.channels.append(channel)
        return channel


def _make_message(text: str = "", user_id: str = "42", message_id: str = "1", images=()) -> Message:
    return Message(
        transport="test",
        chat_id="100",
        user_id=user_id,
        message_id=message_id,
        text=text,
        images=tuple(images),
    )


@pytest.fixture
def make_message():
    """Factory for inbound messages from user 42 in chat 100."""
    return _make_message


@pytest.fixture
def messenger() -> RecordingMessenger:
    return RecordingMessenger()


@pytest.fixture
def failing_messenger() -> RecordingMessenger:
    return RecordingMessenger(fail=True)


@pytest.fixture
def scripted_authorizer():
    """Factory for ScriptedAuthorizer instances."""
    return ScriptedAuthorizer


@pytest.fixture
def config(tmp_path: Path) -> CrosspostConfig:
    """A config whose credentials live in the test's temp directory."""
    return CrosspostConfig(credentials_path=tmp_path / "credentials.json")
