"""Blogging platform contracts."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from crosspost.blogging.auth import Authorizer
from crosspost.blogging.micro import MicroblogPost


@runtime_checkable
class Platform(Protocol):
    """A service drafts can be published to."""

    async def post(self, user_id: str, draft: MicroblogPost) -> str:
        """Publish draft on behalf of user_id and return the post's URL.

        Raises PlatformError (or a subclass) when publishing fails.
        """
        ...


@runtime_checkable
class AuthedPlatform(Platform, Authorizer, Protocol):
    """A platform that also knows how to authorize users interactively."""
