"""Slash-command parsing.

A command is a message whose text starts with "/". The text is split on
spaces: the first token is the command, the rest are its arguments.
Arguments of the form key=value can be separated from positional ones
with split_args().
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from crosspost.errors import NotACommandError

COMMAND_PREFIX = "/"


@dataclass(frozen=True, slots=True)
class Command:
    """A parsed /command and its raw arguments."""

    name: str
    args: tuple[str, ...] = field(default_factory=tuple)

    @property
    def keywords(self) -> dict[str, str]:
        return split_args(self.args)[0]

    @property
    def positional(self) -> list[str]:
        return split_args(self.args)[1]


CommandParser = Callable[[str], Command]


def parse_command(text: str) -> Command:
    """Split command text into the command token and its arguments.

    Raises NotACommandError when text is empty or has no leading "/".
    Repeated spaces do not produce empty arguments. A "@botname" suffix,
    as Telegram sends in group chats ("/new@crosspost_bot"), is dropped.
    """
    if not text or not text.startswith(COMMAND_PREFIX):
        raise NotACommandError(text)
    tokens = [token for token in text.split(" ") if token]
    name = tokens[0].partition("@")[0]
    return Command(name=name, args=tuple(tokens[1:]))


def split_args(args: tuple[str, ...] | list[str]) -> tuple[dict[str, str], list[str]]:
    """Partition arguments into key=value pairs and remaining positional tokens.

    Only the first "=" separates key from value, so "url=a=b" maps
    "url" to "a=b". Later duplicates of a key win.
    """
    keywords: dict[str, str] = {}
    positional: list[str] = []
    for arg in args:
        key, sep, value = arg.partition("=")
        if sep:
            keywords[key] = value
        else:
            positional.append(arg)
    return keywords, positional
