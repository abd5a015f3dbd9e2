"""Bluesky publishing over XRPC with app passwords.

Bluesky has no OAuth handshake for third-party bots: users create an app
password in their settings and hand it over. The handshake therefore only
asks for what is not stored yet (handle, then app password), checks them
with com.atproto.server.createSession, and saves them.

A fresh session is created for every post; nothing but the handle and the
app password is persisted.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, SecretStr, ValidationError, field_serializer

from crosspost.blogging import facets
from crosspost.blogging.auth import AuthorizationChannel
from crosspost.blogging.client import HTTPPlatform, guess_image_type
from crosspost.blogging.micro import MicroblogPost
from crosspost.config.schema import BlueskyConfig
from crosspost.errors import NotAuthorizedError, PlatformError
from crosspost.security.credential_store import CredentialStore

POST_COLLECTION = "app.bsky.feed.post"
IMAGES_EMBED = "app.bsky.embed.images"

PROMPT_HANDLE = "What is your Bluesky handle?"
PROMPT_APP_PASSWORD = "What is your Bluesky app password?"


class BlueskyCredentials(BaseModel):
    handle: str = ""
    app_password: SecretStr = SecretStr("")

    @field_serializer("app_password", when_used="json")
    @staticmethod
    def _serialize_password(v: SecretStr) -> str:
        return v.get_secret_value()


@dataclass(frozen=True, slots=True)
class Session:
    did: str
    handle: str
    access_jwt: str


def post_url(handle: str, record_uri: str) -> str:
    """Public web URL for an at://<did>/app.bsky.feed.post/<rkey> record."""
    rkey = record_uri.rsplit("/", 1)[-1]
    return f"https://bsky.app/profile/{handle}/post/{rkey}"


class BlueskyPlatform(HTTPPlatform):
    """AuthedPlatform for Bluesky (or any atproto PDS)."""

    name = "bluesky"

    def __init__(
        self,
        config: BlueskyConfig,
        store: CredentialStore,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(store, timeout=timeout, transport=transport)
        self._service_url = config.service_url.rstrip("/")

    def credentials(self, user_id: str) -> BlueskyCredentials:
        raw = self._stored(user_id) or {}
        try:
            return BlueskyCredentials.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed Bluesky credentials for user {}: {}", user_id, exc)
            return BlueskyCredentials()

    def is_authorized(self, user_id: str) -> bool:
        creds = self.credentials(user_id)
        return bool(creds.handle and creds.app_password.get_secret_value())

    def start_authorization(self, user_id: str) -> AuthorizationChannel:
        return AuthorizationChannel.spawn(
            functools.partial(self._authorize, user_id), name=f"{self.name}:{user_id}"
        )

    async def _authorize(self, user_id: str, channel: AuthorizationChannel) -> str:
        creds = self.credentials(user_id)
        handle = creds.handle
        if not handle:
            handle = (await channel.ask(PROMPT_HANDLE)).strip().lstrip("@")
        password = creds.app_password.get_secret_value()
        if not password:
            password = (await channel.ask(PROMPT_APP_PASSWORD)).strip()

        async with self._client(base_url=self._service_url) as client:
            try:
                session = await self._create_session(client, handle, password)
            except PlatformError:
                if self.forget(user_id):
                    logger.info("Dropped rejected Bluesky credentials for user {}", user_id)
                raise

        creds = BlueskyCredentials(handle=session.handle, app_password=SecretStr(password))
        self._store.save(self.name, user_id, creds.model_dump(mode="json"))
        logger.info("Bluesky account {} authorized for user {}", session.handle, user_id)
        return f"Bluesky account @{session.handle} is now authorized."

    async def _create_session(
        self, client: httpx.AsyncClient, handle: str, password: str
    ) -> Session:
        body = await self._call(
            client,
            "POST",
            "/xrpc/com.atproto.server.createSession",
            "creating session",
            json={"identifier": handle, "password": password},
        )
        return Session(
            did=body["did"], handle=body.get("handle", handle), access_jwt=body["accessJwt"]
        )

    async def post(self, user_id: str, draft: MicroblogPost) -> str:
        if not self.is_authorized(user_id):
            raise NotAuthorizedError("Bluesky account not authorized", platform=self.name)
        creds = self.credentials(user_id)

        async with self._client(base_url=self._service_url) as client:
            session = await self._create_session(
                client, creds.handle, creds.app_password.get_secret_value()
            )
            auth = {"Authorization": f"Bearer {session.access_jwt}"}

            record: dict[str, Any] = {
                "$type": POST_COLLECTION,
                "text": draft.text,
                "createdAt": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            }
            if draft.langs:
                record["langs"] = list(draft.langs)
            post_facets = await self._facets(client, draft.text)
            if post_facets:
                record["facets"] = post_facets

            if draft.images:
                images = []
                for idx, image in enumerate(draft.images):
                    uploaded = await self._call(
                        client,
                        "POST",
                        "/xrpc/com.atproto.repo.uploadBlob",
                        f"uploading image {idx}",
                        content=image.data,
                        headers={**auth, "Content-Type": guess_image_type(image.data)},
                    )
                    images.append({"alt": image.alt_text, "image": uploaded["blob"]})
                record["embed"] = {"$type": IMAGES_EMBED, "images": images}

            created = await self._call(
                client,
                "POST",
                "/xrpc/com.atproto.repo.createRecord",
                "creating post",
                json={"repo": session.did, "collection": POST_COLLECTION, "record": record},
                headers=auth,
            )

        return post_url(session.handle, created["uri"])

    async def _facets(self, client: httpx.AsyncClient, text: str) -> list[dict[str, Any]]:
        """Link facets plus mention facets for handles that resolve."""
        result = []
        for span in facets.find_mentions(text):
            try:
                resolved = await self._call(
                    client,
                    "GET",
                    "/xrpc/com.atproto.identity.resolveHandle",
                    f"resolving @{span.value}",
                    params={"handle": span.value},
                )
            except PlatformError as exc:
                logger.debug("Mention @{} left as plain text: {}", span.value, exc)
                continue
            result.append(facets.mention_facet(span, resolved["did"]))
        result.extend(facets.link_facets(text))
        return result
