"""
SQLite-backed channel store.
Holds categories and channels for the catalogue, plus a per-device key-value
table used by the favorites/recents library.
"""
import aiosqlite
import json
import logging
from pathlib import Path
from typing import Any, Optional

from livetv.config import get_settings
from livetv.models.channel import Category, Channel

logger = logging.getLogger(__name__)


class DuplicateSlug(ValueError):
    """Another category already uses this slug."""


class ChannelStore:
    """Async SQLite store for categories, channels and device data."""

    def __init__(self, db_path: Optional[str] = None):
        settings = get_settings()
        self.db_path = db_path or settings.database_path
        self._ensure_directory()

    def _ensure_directory(self):
        """Create data directory if it doesn't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self):
        """Create database tables if they don't exist."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS categories (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE,
                    data TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS channels (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    category_id TEXT NOT NULL,
                    data TEXT NOT NULL
                )
            """)

            # Device-scoped key-value pairs (favorites, recents)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS device_values (
                    device_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    PRIMARY KEY (device_id, key)
                )
            """)

            await db.execute("CREATE INDEX IF NOT EXISTS idx_channels_category ON channels(category_id)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_channels_name ON channels(name)")

            await db.commit()

    # Category methods
    async def store_category(self, category: Category):
        """Insert or update a category. Slugs must stay unique."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT id FROM categories WHERE slug = ? AND id != ?",
                (category.slug, category.id)
            )
            if await cursor.fetchone():
                raise DuplicateSlug(f"Slug already in use: {category.slug}")

            await db.execute(
                """INSERT OR REPLACE INTO categories (id, name, slug, data)
                   VALUES (?, ?, ?, ?)""",
                (category.id, category.name, category.slug, category.model_dump_json())
            )
            await db.commit()

    async def get_categories(self) -> list[Category]:
        """All categories ordered by name."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT data FROM categories ORDER BY name")
            rows = await cursor.fetchall()
            return [Category.model_validate_json(row[0]) for row in rows]

    async def get_category_by_id(self, category_id: str) -> Optional[Category]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT data FROM categories WHERE id = ?", (category_id,))
            row = await cursor.fetchone()
            return Category.model_validate_json(row[0]) if row else None

    async def get_category_by_slug(self, slug: str) -> Optional[Category]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT data FROM categories WHERE slug = ?", (slug,))
            row = await cursor.fetchone()
            return Category.model_validate_json(row[0]) if row else None

    async def delete_category(self, category_id: str) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            await db.commit()
            return cursor.rowcount > 0

    # Channel methods
    async def store_channel(self, channel: Channel):
        """Insert or update a single channel."""
        await self.store_channels([channel])

    async def store_channels(self, channels: list[Channel]):
        """Bulk store/update channels using upsert pattern."""
        async with aiosqlite.connect(self.db_path) as db:
            for channel in channels:
                await db.execute(
                    """INSERT OR REPLACE INTO channels (id, name, category_id, data)
                       VALUES (?, ?, ?, ?)""",
                    (channel.id, channel.name, channel.category_id, channel.model_dump_json())
                )
            await db.commit()

    async def get_channel_by_id(self, channel_id: str) -> Optional[Channel]:
        """Get single channel by ID."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT data FROM channels WHERE id = ?", (channel_id,))
            row = await cursor.fetchone()
            return Channel.model_validate_json(row[0]) if row else None

    async def get_channels_by_category(self, category_id: str) -> list[Channel]:
        """Channels of one category ordered by name."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT data FROM channels WHERE category_id = ? ORDER BY name",
                (category_id,)
            )
            rows = await cursor.fetchall()
            return [Channel.model_validate_json(row[0]) for row in rows]

    async def delete_channel(self, channel_id: str) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM channels WHERE id = ?", (channel_id,))
            await db.commit()
            return cursor.rowcount > 0

    # Device key-value methods
    async def get_value(self, device_id: str, key: str) -> Optional[Any]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT value FROM device_values WHERE device_id = ? AND key = ?",
                (device_id, key)
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            try:
                return json.loads(row[0])
            except json.JSONDecodeError:
                logger.error(f"Discarding unreadable {key} for device {device_id}")
                return None

    async def set_value(self, device_id: str, key: str, value: Any):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """INSERT OR REPLACE INTO device_values (device_id, key, value)
                   VALUES (?, ?, ?)""",
                (device_id, key, json.dumps(value))
            )
            await db.commit()


# Singleton instance
_store: Optional[ChannelStore] = None


async def get_store() -> ChannelStore:
    """Get or create channel store singleton."""
    global _store
    if _store is None:
        _store = ChannelStore()
        await _store.initialize()
    return _store
