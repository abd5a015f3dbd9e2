"""Wiring between configuration, platforms and per-user flow schedulers.

Every user gets a scheduler of their own with:

    /<platform>_auth   AuthorizerFlow for each enabled platform
    /new /send /cancel PostingFlow (entry commands from flows.posting_commands)

Flows hold per-conversation state, so they are built per user. The
DraftStore and the platform clients are shared by all users.
"""

from __future__ import annotations

from collections.abc import Mapping

import httpx
from loguru import logger

from crosspost.blogging.authorize_flow import AuthorizerFlow
from crosspost.blogging.bluesky import BlueskyPlatform
from crosspost.blogging.mastodon import MastodonPlatform
from crosspost.blogging.platform import AuthedPlatform
from crosspost.blogging.posting import DraftStore, PostingFlow
from crosspost.config.schema import CrosspostConfig
from crosspost.dispatcher import SchedulerFactory
from crosspost.im.flow import FlowScheduler
from crosspost.security.credential_store import CredentialStore

POSTING_FLOW = "posting"


def auth_command(platform_name: str) -> str:
    return f"/{platform_name}_auth"


def open_credential_store(config: CrosspostConfig) -> CredentialStore:
    """CredentialStore at config.credentials_path, keyed by the configured passphrase."""
    passphrase = config.credentials_passphrase.get_secret_value()
    if not passphrase:
        logger.warning(
            "credentials_passphrase is empty; set CROSSPOST_CREDENTIALS_PASSPHRASE "
            "to protect stored platform credentials"
        )
    return CredentialStore(config.credentials_path, passphrase=passphrase)


def build_platforms(
    config: CrosspostConfig,
    store: CredentialStore,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, AuthedPlatform]:
    """Instantiate the enabled platform clients, keyed by platform name."""
    timeout = config.flows.http_timeout_seconds
    platforms: dict[str, AuthedPlatform] = {}
    if config.platforms.mastodon.enabled:
        platforms[MastodonPlatform.name] = MastodonPlatform(
            config.platforms.mastodon, store, timeout=timeout, transport=transport
        )
    if config.platforms.bluesky.enabled:
        platforms[BlueskyPlatform.name] = BlueskyPlatform(
            config.platforms.bluesky, store, timeout=timeout, transport=transport
        )
    logger.debug("Enabled platforms: {}", sorted(platforms) or "none")
    return platforms


def build_scheduler_factory(
    config: CrosspostConfig,
    platforms: Mapping[str, AuthedPlatform],
    drafts: DraftStore,
) -> SchedulerFactory:
    """Return a factory building a fully registered FlowScheduler per user.

    Registration errors surface on the first call, so callers should build
    one scheduler eagerly at startup to fail fast.
    """
    posting_commands = list(config.flows.posting_commands)

    def factory(user_id: str) -> FlowScheduler:
        scheduler = FlowScheduler()
        for name, platform in platforms.items():
            scheduler.register_flow(
                AuthorizerFlow(platform, platform_name=name),
                f"{name}_auth",
                [auth_command(name)],
            )
        scheduler.register_flow(PostingFlow(platforms, drafts), POSTING_FLOW, posting_commands)
        return scheduler

    return factory


def bot_commands(platforms: Mapping[str, AuthedPlatform]) -> list[tuple[str, str]]:
    """Command menu entries (command, description) for the chat transport."""
    commands = [
        ("/new", "Start writing a new post"),
        ("/send", "Publish the current post"),
        ("/cancel", "Discard the current post or authorization"),
    ]
    for name in platforms:
        commands.append((auth_command(name), f"Link your {name.capitalize()} account"))
    return commands
