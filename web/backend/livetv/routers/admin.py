"""
Admin API endpoints for curating categories and channels.
All endpoints require the X-Admin-Key header.
"""
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException

from livetv.config import get_settings
from livetv.models.channel import Category, Channel, slugify
from livetv.services.m3u_parser import M3UParser, entries_to_channels
from livetv.services.store import DuplicateSlug, get_store

logger = logging.getLogger(__name__)


async def require_admin(x_admin_key: Optional[str] = Header(None)):
    """Reject requests without a valid admin API key."""
    settings = get_settings()
    if x_admin_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing admin API key")


router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/categories")
async def save_category(category: Category):
    """Create or update a category. The slug is derived from the name."""
    category = category.model_copy(update={"slug": slugify(category.name)})
    store = await get_store()
    try:
        await store.store_category(category)
    except DuplicateSlug as e:
        raise HTTPException(status_code=409, detail=str(e))
    return category


@router.delete("/categories/{category_id}")
async def delete_category(category_id: str):
    store = await get_store()
    deleted = await store.delete_category(category_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Category not found")
    return {"deleted": True, "id": category_id}


@router.post("/channels")
async def save_channel(channel: Channel):
    """Create or update a channel. Its category name is denormalized."""
    store = await get_store()
    category = await store.get_category_by_id(channel.category_id)
    if not category:
        raise HTTPException(status_code=400, detail="Unknown category")

    channel = channel.model_copy(update={"category_name": category.name})
    await store.store_channel(channel)
    return channel


@router.delete("/channels/{channel_id}")
async def delete_channel(channel_id: str):
    store = await get_store()
    deleted = await store.delete_channel(channel_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Channel not found")
    return {"deleted": True, "id": channel_id}


@router.post("/categories/{category_id}/import")
async def import_category_playlist(category_id: str):
    """
    Bulk-create channels from the category's source playlist.
    Re-importing updates existing channels instead of duplicating them.
    """
    store = await get_store()
    category = await store.get_category_by_id(category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    if not category.source_playlist_url:
        raise HTTPException(status_code=400, detail="Category has no source playlist")

    try:
        entries = await M3UParser().fetch(category.source_playlist_url)
    except httpx.HTTPError as e:
        logger.error(f"Playlist import failed for {category_id}: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to fetch playlist: {e}")

    channels = entries_to_channels(entries, category)
    await store.store_channels(channels)
    return {
        "success": True,
        "message": f"Imported {len(channels)} channels into {category.name}",
        "imported": len(channels),
        "skipped": len(entries) - len(channels),
    }
