"""Exception hierarchy for crosspost.

Configuration errors are raised while wiring flows together and are fatal
to setup. Protocol errors signal misuse of a command or of an authorization
channel. Delivery errors collect messenger failures that happened while
reporting results to the user. Finishing a flow is never an error: flows
report it through FlowStatus.FINISHED.
"""

from __future__ import annotations


class CrosspostError(Exception):
    """Base class for all crosspost errors."""


class FlowConfigurationError(CrosspostError):
    """A flow registration is invalid."""


class FlowAlreadyRegisteredError(FlowConfigurationError):
    """A flow with the same name is already registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name}: flow already registered")


class FlowTriggerConflictError(FlowConfigurationError):
    """An entry command is already bound to a flow."""

    def __init__(self, command: str, bound_to: str = "") -> None:
        self.command = command
        self.bound_to = bound_to
        detail = f" (bound to '{bound_to}')" if bound_to else ""
        super().__init__(f"{command}: flow trigger conflict{detail}")


class NotACommandError(CrosspostError):
    """Text was expected to be a /command but is not."""

    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__(f"{text!r}: not a command")


class FlowHandlingError(CrosspostError):
    """A flow raised while starting or handling a message."""

    def __init__(self, flow_name: str, message: str) -> None:
        self.flow_name = flow_name
        super().__init__(f"{flow_name}: {message}")


class ChannelClosedError(CrosspostError):
    """The authorization channel was closed by one of its ends."""


class TurnOrderError(CrosspostError):
    """An authorization channel operation was attempted out of turn."""


class PlatformError(CrosspostError):
    """A blogging platform rejected a request or could not be reached."""

    def __init__(self, message: str, *, platform: str = "", status_code: int = 0) -> None:
        self.platform = platform
        self.status_code = status_code
        super().__init__(message)


class NotAuthorizedError(PlatformError):
    """The user has no usable credentials for the platform."""


class DeliveryError(CrosspostError):
    """One or more replies could not be delivered through the messenger."""

    def __init__(self, errors: list[Exception]) -> None:
        self.errors = list(errors)
        joined = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} delivery error(s): {joined}")


class CredentialStoreError(CrosspostError):
    """The credential file could not be decrypted or parsed."""
