"""
User data API endpoints.
Handles favorites and recently watched channels per device.
"""
from fastapi import APIRouter, Header

from livetv.models.channel import LibraryChannel
from livetv.services.library import Library
from livetv.services.store import get_store

router = APIRouter(prefix="/api/user", tags=["user"])


async def get_library(device_id: str) -> Library:
    store = await get_store()
    return Library(store, device_id)


# Favorites endpoints
@router.get("/favorites")
async def get_favorites(
    x_device_id: str = Header(..., description="Device fingerprint for user identification")
):
    """Get the device's favorite channels."""
    library = await get_library(x_device_id)
    favorites = await library.favorites()
    return {"favorites": favorites, "count": len(favorites)}


@router.post("/favorites")
async def add_favorite(
    channel: LibraryChannel,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Add a channel to favorites."""
    library = await get_library(x_device_id)
    favorites = await library.add_favorite(channel)
    return {"favorites": favorites, "count": len(favorites)}


@router.delete("/favorites/{channel_id}")
async def remove_favorite(
    channel_id: str,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Remove a channel from favorites."""
    library = await get_library(x_device_id)
    favorites = await library.remove_favorite(channel_id)
    return {"favorites": favorites, "count": len(favorites)}


@router.get("/favorites/{channel_id}/check")
async def check_favorite(
    channel_id: str,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Check if a channel is in favorites."""
    library = await get_library(x_device_id)
    return {"is_favorite": await library.is_favorite(channel_id), "channel_id": channel_id}


# Recently watched endpoints
@router.get("/recents")
async def get_recents(
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Get recently watched channels, newest first."""
    library = await get_library(x_device_id)
    recents = await library.recents()
    return {"recents": recents, "count": len(recents)}


@router.post("/recents")
async def record_watch(
    channel: LibraryChannel,
    x_device_id: str = Header(..., description="Device fingerprint")
):
    """Record that a channel was watched."""
    library = await get_library(x_device_id)
    recents = await library.add_recent(channel)
    return {"recents": recents, "count": len(recents)}
