from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

MEDIA_IMAGE = "IMAGE"
MEDIA_VIDEO = "VIDEO"
MEDIA_CAROUSEL = "CAROUSEL_ALBUM"


@dataclass(frozen=True)
class RemoteChild:
    """One ordered child media item of a carousel post."""

    id: str
    media_type: str
    media_url: str | None = None
    thumbnail_url: str | None = None


@dataclass(frozen=True)
class RemotePost:
    """A post as returned by the Graph API, with the raw item kept as an opaque payload."""

    id: str
    media_type: str
    media_url: str | None = None
    thumbnail_url: str | None = None
    permalink: str | None = None
    caption: str | None = None
    timestamp: str | None = None
    like_count: int | None = None
    comments_count: int | None = None
    children: tuple[RemoteChild, ...] = ()

    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_carousel(self) -> bool:
        return self.media_type == MEDIA_CAROUSEL


@dataclass(frozen=True)
class RemoteProfile:
    username: str
    name: str | None = None
    followers_count: int | None = None

    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)
