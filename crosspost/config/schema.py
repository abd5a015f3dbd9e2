"""Pydantic configuration models for crosspost.

All config is loaded from ~/.crosspost/config.json and can be overridden
via CROSSPOST_ prefixed environment variables, e.g.
CROSSPOST_CHANNELS__TELEGRAM__TOKEN or CROSSPOST_FLOWS__TURN_TIMEOUT_SECONDS.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_serializer
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.main import JsonConfigSettingsSource


class ChannelEntry(BaseModel):
    """Configuration for a single chat channel."""

    enabled: bool = False
    token: SecretStr = SecretStr("")
    allow_from: list[str] = Field(
        default_factory=list,
        description="User IDs allowed to interact. Empty list allows everyone.",
    )

    @field_serializer("token", when_used="json")
    @staticmethod
    def _serialize_token(v: SecretStr) -> str:
        return v.get_secret_value()


class ChannelsConfig(BaseModel):
    telegram: ChannelEntry = Field(default_factory=ChannelEntry)


class MastodonConfig(BaseModel):
    """Mastodon app registration settings."""

    enabled: bool = True
    client_name: str = Field(
        default="crosspost",
        description="Application name shown on posts and in the user's authorized apps.",
    )
    client_website: str = ""
    scopes: str = "read write follow"
    server: str = Field(
        default="",
        description="Instance URL used for every user. Empty = ask during authorization.",
    )


class BlueskyConfig(BaseModel):
    enabled: bool = True
    service_url: str = Field(
        default="https://bsky.social",
        description="PDS / entryway used for sessions and record creation.",
    )


class PlatformsConfig(BaseModel):
    mastodon: MastodonConfig = Field(default_factory=MastodonConfig)
    bluesky: BlueskyConfig = Field(default_factory=BlueskyConfig)


class FlowsConfig(BaseModel):
    """Conversation engine settings."""

    turn_timeout_seconds: float = Field(
        default=0,
        ge=0,
        description="Upper bound for handling a single message. 0 = unbounded.",
    )
    posting_commands: list[str] = Field(
        default_factory=lambda: ["/new", "/send", "/cancel"],
        description="Entry commands that start the posting flow.",
    )
    http_timeout_seconds: float = Field(default=30.0, gt=0)


class CrosspostConfig(BaseSettings):
    """Root configuration.

    Loaded from ~/.crosspost/config.json with CROSSPOST_ env var overrides.
    """

    model_config = SettingsConfigDict(
        env_prefix="CROSSPOST_",
        env_nested_delimiter="__",
        json_file=Path("~/.crosspost/config.json").expanduser(),
        json_file_encoding="utf-8",
        extra="ignore",
    )

    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    platforms: PlatformsConfig = Field(default_factory=PlatformsConfig)
    flows: FlowsConfig = Field(default_factory=FlowsConfig)
    credentials_path: Path = Field(
        default=Path("~/.crosspost/credentials.json"),
        description="Encrypted file holding per-user platform credentials (chmod 600).",
    )
    credentials_passphrase: SecretStr = Field(
        default=SecretStr(""),
        description="Passphrase the credential file key is derived from.",
    )

    @field_serializer("credentials_passphrase", when_used="json")
    @staticmethod
    def _serialize_passphrase(v: SecretStr) -> str:
        return v.get_secret_value()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Enable JSON file loading alongside env vars and init kwargs."""
        return (
            init_settings,
            env_settings,
            JsonConfigSettingsSource(settings_cls),
        )
