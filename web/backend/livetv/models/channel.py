"""
Channel, Category and user library data models.
"""
import re
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

MAX_STREAM_SOURCES = 5

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """URL-safe slug: lowercase, ``&`` spelled out, other runs become ``-``."""
    slug = name.lower().replace("&", "and")
    slug = _SLUG_INVALID.sub("-", slug)
    return slug.strip("-")


class Category(BaseModel):
    """Channel category."""
    id: str
    name: str
    icon_url: str = ""
    slug: str = ""
    source_playlist_url: Optional[str] = None  # bulk-import source

    @model_validator(mode="after")
    def derive_slug(self):
        if not self.slug:
            self.slug = slugify(self.name)
        if not self.slug:
            raise ValueError("Category name cannot be empty or invalid")
        return self


class PublicChannel(BaseModel):
    """Channel fields that are safe to list publicly."""
    id: str
    name: str
    logo_url: str = ""
    category_id: str
    category_name: str = ""  # denormalized for display


class Channel(PublicChannel):
    """Full channel record consumed by the player."""
    streams: list[str] = Field(min_length=1, max_length=MAX_STREAM_SOURCES)
    auth_cookie: Optional[str] = None
    is_playlist: bool = True  # source is an HLS playlist, not a single media file

    @field_validator("streams")
    @classmethod
    def check_streams(cls, streams: list[str]) -> list[str]:
        cleaned = []
        for url in streams:
            url = url.strip()
            parsed = urlparse(url)
            if not parsed.scheme or not parsed.netloc:
                raise ValueError(f"Stream URL is not well-formed: {url!r}")
            cleaned.append(url)
        return cleaned

    @field_validator("auth_cookie")
    @classmethod
    def blank_cookie_is_none(cls, cookie: Optional[str]) -> Optional[str]:
        if cookie is None:
            return None
        return cookie.strip() or None

    def public(self) -> PublicChannel:
        return PublicChannel(**self.model_dump(include=set(PublicChannel.model_fields)))


class QualityLevel(BaseModel):
    """One encoded rendition of a stream."""
    index: int
    height: Optional[int] = None
    width: Optional[int] = None
    bitrate: Optional[int] = None
    name: Optional[str] = None
    uri: Optional[str] = None


class LibraryChannel(BaseModel):
    """Denormalized channel fields stored in favorites and recents."""
    id: str
    name: str
    logo_url: str = ""
    category_id: str = ""
    category_name: str = ""


class FavoriteEntry(LibraryChannel):
    added_at: int  # epoch milliseconds


class RecentEntry(LibraryChannel):
    watched_at: int  # epoch milliseconds


class PlaylistEntry(BaseModel):
    """One entry of an M3U channel playlist."""
    name: str
    logo: str = ""
    url: str
