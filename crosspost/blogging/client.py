"""Shared plumbing for HTTP-backed blogging platforms.

Each platform subclasses HTTPPlatform, which owns the credential lookup,
the httpx client construction and the translation of HTTP failures into
PlatformError. An httpx transport can be injected so tests run against
httpx.MockTransport instead of the network.
"""

from __future__ import annotations

import functools
from typing import Any

import httpx
import magic
from loguru import logger

from crosspost.errors import PlatformError
from crosspost.security.credential_store import CredentialStore

GENERIC_MIME_TYPE = "application/octet-stream"


@functools.cache
def _mime_detector() -> magic.Magic:
    return magic.Magic(mime=True)


def guess_image_type(data: bytes) -> str:
    """MIME type of image bytes as detected by libmagic.

    Anything libmagic does not recognise as an image is reported as
    application/octet-stream and left for the platform to reject.
    """
    mime = _mime_detector().from_buffer(data)
    if not mime.startswith("image/"):
        logger.debug("Upload is not a recognised image: {}", mime)
        return GENERIC_MIME_TYPE
    return mime


class HTTPPlatform:
    """Base class for platforms reached over HTTP with per-user credentials."""

    name: str = ""

    def __init__(
        self,
        store: CredentialStore,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._transport = transport

    def _client(self, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport, **kwargs)

    def _stored(self, user_id: str) -> dict[str, Any] | None:
        return self._store.get(self.name, user_id)

    def forget(self, user_id: str) -> bool:
        """Drop the stored credentials for user_id."""
        return self._store.delete(self.name, user_id)

    async def _call(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        action: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Send one request and return its JSON body.

        Raises PlatformError on transport failures and non-2xx responses.
        """
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise PlatformError(f"{action} failed: {exc}", platform=self.name) from exc

        if response.is_error:
            logger.debug(
                "{} {} {} -> {}: {}",
                self.name,
                method,
                url,
                response.status_code,
                response.text[:200],
            )
            raise PlatformError(
                f"{action} failed: {response.status_code} {response.text[:200]}",
                platform=self.name,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise PlatformError(
                f"{action} failed: invalid JSON response", platform=self.name
            ) from exc
