"""Mastodon publishing and out-of-band OAuth authorization.

Authorization runs over chat, so it uses the out-of-band redirect: the
user opens the authorize URL in a browser and pastes the code Mastodon
shows them back into the chat.

    1. ask for the instance URL (unless configured or remembered)
    2. POST /api/v1/apps                      register the application
    3. ask the user to open /oauth/authorize and paste the code
    4. POST /oauth/token                      exchange the code
    5. GET  /api/v1/accounts/verify_credentials
"""

from __future__ import annotations

import functools
from urllib.parse import urlencode

import httpx
from loguru import logger
from pydantic import BaseModel, SecretStr, ValidationError, field_serializer

from crosspost.blogging.auth import AuthorizationChannel
from crosspost.blogging.client import HTTPPlatform, guess_image_type
from crosspost.blogging.micro import MicroblogPost
from crosspost.config.schema import MastodonConfig
from crosspost.errors import NotAuthorizedError, PlatformError
from crosspost.security.credential_store import CredentialStore

OOB_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"

PROMPT_SERVER = "What is the Mastodon instance server URL?"


def normalize_server(server: str) -> str:
    """Turn "mastodon.social" or "https://mastodon.social/" into a base URL."""
    server = server.strip().rstrip("/")
    if not server:
        raise PlatformError("no Mastodon server given", platform=MastodonPlatform.name)
    if not server.startswith(("http://", "https://")):
        server = f"https://{server}"
    return server


class MastodonCredentials(BaseModel):
    """Persisted per-user Mastodon state."""

    server: str
    client_id: str = ""
    client_secret: SecretStr = SecretStr("")
    access_token: SecretStr = SecretStr("")
    account: str = ""

    @field_serializer("client_secret", "access_token", when_used="json")
    @staticmethod
    def _serialize_secret(v: SecretStr) -> str:
        return v.get_secret_value()


class MastodonPlatform(HTTPPlatform):
    """AuthedPlatform for Mastodon-compatible servers."""

    name = "mastodon"

    def __init__(
        self,
        config: MastodonConfig,
        store: CredentialStore,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(store, timeout=timeout, transport=transport)
        self._config = config

    def credentials(self, user_id: str) -> MastodonCredentials | None:
        raw = self._stored(user_id)
        if raw is None:
            return None
        try:
            return MastodonCredentials.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed Mastodon credentials for user {}: {}", user_id, exc)
            return None

    def is_authorized(self, user_id: str) -> bool:
        creds = self.credentials(user_id)
        return creds is not None and bool(creds.access_token.get_secret_value())

    def start_authorization(self, user_id: str) -> AuthorizationChannel:
        return AuthorizationChannel.spawn(
            functools.partial(self._authorize, user_id), name=f"{self.name}:{user_id}"
        )

    def authorize_url(self, server: str, client_id: str) -> str:
        params = {
            "client_id": client_id,
            "response_type": "code",
            "redirect_uri": OOB_REDIRECT_URI,
            "scope": self._config.scopes,
        }
        return f"{server}/oauth/authorize?{urlencode(params)}"

    async def _authorize(self, user_id: str, channel: AuthorizationChannel) -> str:
        stored = self.credentials(user_id)
        server = self._config.server or (stored.server if stored else "")
        if not server:
            logger.info("No Mastodon server known for user {}, asking", user_id)
            server = await channel.ask(PROMPT_SERVER)
        server = normalize_server(server)

        async with self._client(base_url=server) as client:
            app = await self._call(
                client,
                "POST",
                "/api/v1/apps",
                "registering application",
                data={
                    "client_name": self._config.client_name,
                    "redirect_uris": OOB_REDIRECT_URI,
                    "scopes": self._config.scopes,
                    "website": self._config.client_website,
                },
            )
            client_id = app["client_id"]
            client_secret = app["client_secret"]

            code = await channel.ask(
                "Open your browser to\n"
                f"{self.authorize_url(server, client_id)}\n"
                "and copy/paste the given code here."
            )

            token = await self._call(
                client,
                "POST",
                "/oauth/token",
                "exchanging authorization code",
                data={
                    "grant_type": "authorization_code",
                    "code": code.strip(),
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "redirect_uri": OOB_REDIRECT_URI,
                    "scope": self._config.scopes,
                },
            )
            access_token = token["access_token"]

            account = await self._call(
                client,
                "GET",
                "/api/v1/accounts/verify_credentials",
                "verifying credentials",
                headers={"Authorization": f"Bearer {access_token}"},
            )

        creds = MastodonCredentials(
            server=server,
            client_id=client_id,
            client_secret=SecretStr(client_secret),
            access_token=SecretStr(access_token),
            account=account.get("acct", ""),
        )
        self._store.save(self.name, user_id, creds.model_dump(mode="json"))
        logger.info("Mastodon account {} authorized for user {}", creds.account, user_id)
        return f"Mastodon account @{creds.account} on {server} is now authorized."

    async def post(self, user_id: str, draft: MicroblogPost) -> str:
        creds = self.credentials(user_id)
        if creds is None or not creds.access_token.get_secret_value():
            raise NotAuthorizedError("Mastodon account not authorized", platform=self.name)

        headers = {"Authorization": f"Bearer {creds.access_token.get_secret_value()}"}
        async with self._client(base_url=creds.server, headers=headers) as client:
            media_ids: list[str] = []
            for idx, image in enumerate(draft.images):
                attachment = await self._call(
                    client,
                    "POST",
                    "/api/v2/media",
                    f"uploading image {idx}",
                    files={"file": (f"image{idx}", image.data, guess_image_type(image.data))},
                    data={"description": image.alt_text},
                )
                media_ids.append(str(attachment["id"]))

            payload: dict[str, object] = {"status": draft.text, "media_ids": media_ids}
            if draft.langs:
                payload["language"] = draft.langs[0]
            status = await self._call(
                client, "POST", "/api/v1/statuses", "posting status", json=payload
            )

        url = status.get("url") or status.get("uri", "")
        logger.debug("Mastodon status {} created for user {}", status.get("id"), user_id)
        return url
