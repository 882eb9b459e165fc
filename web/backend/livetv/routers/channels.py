"""
Channel and category browsing API endpoints.
"""
import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from livetv.services.m3u_parser import M3UParser
from livetv.services.probe import ProbeService, get_probe_service
from livetv.services.store import get_store

router = APIRouter(prefix="/api", tags=["channels"])


@router.get("/categories")
async def list_categories():
    """
    List all categories ordered by name.
    """
    store = await get_store()
    categories = await store.get_categories()
    return {"categories": categories}


@router.get("/categories/{slug}")
async def get_category(slug: str):
    store = await get_store()
    category = await store.get_category_by_slug(slug)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@router.get("/categories/{slug}/channels")
async def list_category_channels(slug: str):
    """
    List the public fields of a category's channels, ordered by name.
    """
    store = await get_store()
    category = await store.get_category_by_slug(slug)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")

    channels = await store.get_channels_by_category(category.id)
    return {
        "category": category,
        "channels": [channel.public() for channel in channels],
        "total": len(channels),
    }


@router.get("/channels/{channel_id}")
async def get_channel(channel_id: str):
    """
    Get a channel with its stream sources for the player.
    """
    store = await get_store()
    channel = await store.get_channel_by_id(channel_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")
    return channel


@router.get("/channels/{channel_id}/probe")
async def probe_channel(
    channel_id: str,
    request: Request,
    probe: ProbeService = Depends(get_probe_service),
):
    """
    Check whether a channel plays, walking its sources the way the
    browser player does (direct first, then relay, then next source).
    """
    store = await get_store()
    channel = await store.get_channel_by_id(channel_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")

    relay_base = str(request.base_url).rstrip("/")
    return await probe.probe(channel, relay_base)


@router.get("/playlists/parse")
async def parse_playlist(url: str = Query(..., description="M3U playlist URL")):
    """
    Fetch an M3U channel playlist and list its entries.
    """
    parser = M3UParser()
    try:
        entries = await parser.fetch(url)
    except httpx.HTTPError as e:
        raise HTTPException(status_code=502, detail=f"Failed to parse playlist: {e}")
    return entries
