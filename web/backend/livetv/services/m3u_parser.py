"""
M3U Parser Service.
Parses IPTV channel playlists used for bulk-importing a category.
"""
import hashlib
import logging
import re
from typing import Optional

import httpx

from livetv.config import get_settings
from livetv.models.channel import Category, Channel, PlaylistEntry

logger = logging.getLogger(__name__)

# Regexes for the EXTINF line
NAME_PATTERN = re.compile(r",(.+)$")
LOGO_PATTERN = re.compile(r'tvg-logo="([^"]+)"')


class M3UParser:
    """Parse M3U channel playlists."""

    def parse(self, content: str) -> list[PlaylistEntry]:
        """
        Parse playlist text into entries.

        An ``#EXTINF`` line is paired with the URL on the line right after
        it; entries without a URL line are skipped.
        """
        entries = []
        lines = content.split("\n")

        for i, line in enumerate(lines):
            if not line.startswith("#EXTINF:"):
                continue

            url_line = lines[i + 1].strip() if i + 1 < len(lines) else ""
            if not url_line or url_line.startswith("#"):
                continue

            name_match = NAME_PATTERN.search(line.strip())
            logo_match = LOGO_PATTERN.search(line)

            entries.append(PlaylistEntry(
                name=name_match.group(1).strip() if name_match else "Unknown Channel",
                logo=logo_match.group(1) if logo_match else "",
                url=url_line,
            ))

        logger.info(f"Parsed {len(entries)} playlist entries")
        return entries

    async def fetch(self, url: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> list[PlaylistEntry]:
        """Download and parse a playlist."""
        settings = get_settings()
        async with httpx.AsyncClient(
            timeout=settings.relay_timeout_seconds,
            transport=transport,
            headers={"User-Agent": settings.relay_user_agent},
            follow_redirects=True,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
            return self.parse(response.text)


def channel_id_for(category_id: str, url: str) -> str:
    """Stable channel ID so re-imports update instead of duplicating."""
    return hashlib.md5(f"{category_id}{url}".encode()).hexdigest()[:12]


def entries_to_channels(entries: list[PlaylistEntry], category: Category) -> list[Channel]:
    """Turn playlist entries into single-source channels of a category."""
    channels = []
    for entry in entries:
        try:
            channels.append(Channel(
                id=channel_id_for(category.id, entry.url),
                name=entry.name,
                logo_url=entry.logo,
                category_id=category.id,
                category_name=category.name,
                streams=[entry.url],
            ))
        except ValueError as e:
            logger.warning(f"Skipping playlist entry {entry.name!r}: {e}")
    return channels
