"""Microblog drafts as accumulated from chat messages."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class BlogImage:
    """Image bytes as received from a chat, plus the alt text to publish."""

    data: bytes
    alt_text: str = ""


@dataclass(slots=True)
class MicroblogPost:
    """A draft post: text grows one line per contribution, images in order."""

    text: str = ""
    images: list[BlogImage] = field(default_factory=list)
    langs: list[str] = field(default_factory=list)

    def add_text(self, text: str) -> None:
        if self.text:
            self.text += "\n"
        self.text += text

    def add_image(self, image: BlogImage) -> None:
        self.images.append(image)

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.images
