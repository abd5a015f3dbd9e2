"""Rich-text facets for Bluesky posts.

Bluesky does not auto-link text: links and mentions have to be declared as
facets whose indices are UTF-8 byte offsets into the post text. Matching is
done on the encoded bytes so the offsets come out right for non-ASCII text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

LINK_FEATURE = "app.bsky.richtext.facet#link"
MENTION_FEATURE = "app.bsky.richtext.facet#mention"

_MENTION_RE = re.compile(
    rb"(?:^|[^A-Za-z0-9_])"
    rb"(@(?:[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+"
    rb"[A-Za-z](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)"
)
_URL_RE = re.compile(
    rb"(?:^|[^A-Za-z0-9_])"
    rb"(https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[A-Za-z0-9()]{1,6}\b"
    rb"(?:[-a-zA-Z0-9()@:%_+.~#?&/=]*[-a-zA-Z0-9@%_+~#/=])?)"
)


@dataclass(frozen=True, slots=True)
class Span:
    """A match in the post text, by UTF-8 byte offsets (end exclusive)."""

    start: int
    end: int
    value: str


def find_mentions(text: str) -> list[Span]:
    """Mentions such as @alice.bsky.social; value is the handle without "@"."""
    data = text.encode("utf-8")
    return [
        Span(m.start(1), m.end(1), m.group(1)[1:].decode("utf-8"))
        for m in _MENTION_RE.finditer(data)
    ]


def find_links(text: str) -> list[Span]:
    data = text.encode("utf-8")
    return [Span(m.start(1), m.end(1), m.group(1).decode("utf-8")) for m in _URL_RE.finditer(data)]


def link_facets(text: str) -> list[dict[str, Any]]:
    return [
        {
            "index": {"byteStart": span.start, "byteEnd": span.end},
            "features": [{"$type": LINK_FEATURE, "uri": span.value}],
        }
        for span in find_links(text)
    ]


def mention_facet(span: Span, did: str) -> dict[str, Any]:
    return {
        "index": {"byteStart": span.start, "byteEnd": span.end},
        "features": [{"$type": MENTION_FEATURE, "did": did}],
    }
