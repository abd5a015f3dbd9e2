"""Chat-side model: messages, commands, flows and the flow scheduler."""

from crosspost.im.commands import Command, CommandParser, parse_command, split_args
from crosspost.im.flow import Flow, FlowScheduler, FlowStatus
from crosspost.im.messages import Image, Message, Messenger

__all__ = [
    "Command",
    "CommandParser",
    "Flow",
    "FlowScheduler",
    "FlowStatus",
    "Image",
    "Message",
    "Messenger",
    "parse_command",
    "split_args",
]
