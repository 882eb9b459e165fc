"""
Relay endpoint.
The browser fetches upstream playlists, segments and keys through here.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from livetv.config import get_settings
from livetv.services.relay import RelayService, get_relay_service

router = APIRouter(prefix=get_settings().relay_path, tags=["relay"])


@router.api_route("", methods=["GET", "HEAD"])
async def relay(
    url: Optional[str] = Query(None, description="Percent-encoded absolute upstream URL"),
    cookie: Optional[str] = Query(None, description="Opaque auth cookie or token"),
    range_header: Optional[str] = Header(None, alias="Range"),
    service: RelayService = Depends(get_relay_service),
):
    """
    Relay an upstream HLS playlist or media resource.

    Playlists come back rewritten so every URI points at this endpoint
    again; media is streamed through unchanged.
    """
    return await service.handle(url, cookie, range_header)


@router.options("")
async def relay_preflight(service: RelayService = Depends(get_relay_service)):
    """CORS preflight for the relay."""
    return service.preflight()
