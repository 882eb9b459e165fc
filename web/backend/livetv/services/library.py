"""
Favorites and recently-watched channels for one device.
"""
import logging
import time
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from livetv.config import get_settings
from livetv.models.channel import FavoriteEntry, LibraryChannel, RecentEntry

logger = logging.getLogger(__name__)

FAVORITES_KEY = "favoriteChannels"
RECENTS_KEY = "recentChannels"


class KeyValueStore(Protocol):
    async def get_value(self, device_id: str, key: str) -> Optional[Any]: ...

    async def set_value(self, device_id: str, key: str, value: Any) -> None: ...


class MemoryStore:
    """Key-value store kept in process memory."""

    def __init__(self):
        self._values: dict[tuple[str, str], Any] = {}

    async def get_value(self, device_id: str, key: str) -> Optional[Any]:
        return self._values.get((device_id, key))

    async def set_value(self, device_id: str, key: str, value: Any):
        self._values[(device_id, key)] = value


def now_ms() -> int:
    return int(time.time() * 1000)


class Library:
    """Favorites and recents of one device, persisted in a key-value store."""

    def __init__(self, store: KeyValueStore, device_id: str, recents_limit: Optional[int] = None):
        self.store = store
        self.device_id = device_id
        self.recents_limit = recents_limit or get_settings().recents_limit

    async def _load(self, key: str, model):
        raw = await self.store.get_value(self.device_id, key)
        if not raw:
            return []
        try:
            return [model.model_validate(item) for item in raw]
        except (ValidationError, TypeError) as e:
            logger.error(f"Error parsing {key} for device {self.device_id}: {e}")
            await self.store.set_value(self.device_id, key, [])
            return []

    async def _save(self, key: str, entries: list):
        await self.store.set_value(self.device_id, key, [entry.model_dump() for entry in entries])

    async def favorites(self) -> list[FavoriteEntry]:
        return await self._load(FAVORITES_KEY, FavoriteEntry)

    async def recents(self) -> list[RecentEntry]:
        """Most recently watched first."""
        return await self._load(RECENTS_KEY, RecentEntry)

    async def add_favorite(self, channel: LibraryChannel) -> list[FavoriteEntry]:
        entries = [f for f in await self.favorites() if f.id != channel.id]
        entries.append(FavoriteEntry(**channel.model_dump(), added_at=now_ms()))
        await self._save(FAVORITES_KEY, entries)
        return entries

    async def remove_favorite(self, channel_id: str) -> list[FavoriteEntry]:
        entries = [f for f in await self.favorites() if f.id != channel_id]
        await self._save(FAVORITES_KEY, entries)
        return entries

    async def is_favorite(self, channel_id: str) -> bool:
        return any(f.id == channel_id for f in await self.favorites())

    async def add_recent(self, channel: LibraryChannel) -> list[RecentEntry]:
        """Record a watch: deduplicated, newest first, capped."""
        entries = [r for r in await self.recents() if r.id != channel.id]
        entries.insert(0, RecentEntry(**channel.model_dump(), watched_at=now_ms()))
        entries = entries[:self.recents_limit]
        await self._save(RECENTS_KEY, entries)
        return entries
