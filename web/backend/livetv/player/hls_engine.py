"""
HTTP playlist engine.

A minimal engine for server-side use: it loads a playlist over HTTP, reports
the variant levels and whether the stream is live, and surfaces load
failures as engine errors. It does not download or decode segments.
"""
import asyncio
import logging
import re
from typing import Optional
from urllib.parse import urljoin

import httpx

from livetv.models.channel import QualityLevel
from livetv.player.events import (
    EngineConfig,
    EngineEvent,
    EngineEventType,
    EngineListener,
    ErrorType,
)
from livetv.player.media import NativePlayback

logger = logging.getLogger(__name__)

ATTRIBUTE_PATTERN = re.compile(r'([A-Z0-9-]+)=("[^"]*"|[^,]*)')


def parse_attributes(tag_line: str) -> dict:
    """Parse the attribute list of an HLS tag line."""
    _, _, attributes = tag_line.partition(":")
    return {key: value.strip('"') for key, value in ATTRIBUTE_PATTERN.findall(attributes)}


def parse_levels(content: str, base_url: str) -> list[QualityLevel]:
    """Extract variant levels from a master playlist. Media playlists have none."""
    levels = []
    pending: Optional[dict] = None

    for line in content.splitlines():
        line = line.strip()
        if line.startswith("#EXT-X-STREAM-INF"):
            pending = parse_attributes(line)
        elif line and not line.startswith("#") and pending is not None:
            width = height = None
            resolution = pending.get("RESOLUTION", "")
            if "x" in resolution:
                w, _, h = resolution.partition("x")
                if w.isdigit() and h.isdigit():
                    width, height = int(w), int(h)
            bandwidth = pending.get("BANDWIDTH", "")
            levels.append(QualityLevel(
                index=len(levels),
                width=width,
                height=height,
                bitrate=int(bandwidth) if bandwidth.isdigit() else None,
                name=pending.get("NAME"),
                uri=urljoin(base_url, line),
            ))
            pending = None

    return levels


def is_live_playlist(content: str) -> bool:
    """A media playlist without an end marker is live."""
    return "#EXT-X-ENDLIST" not in content


class HttpPlaylistEngine:
    """Playlist-only engine backed by httpx."""

    def __init__(self, config: EngineConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport
        self._listeners: list[EngineListener] = []
        self._media = None
        self._url: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._destroyed = False
        self.current_level = -1

    def on(self, listener: EngineListener):
        self._listeners.append(listener)

    def _emit(self, event: EngineEvent):
        if self._destroyed:
            return
        for listener in self._listeners:
            listener(event)

    def attach_media(self, media):
        self._media = media

    def load_source(self, url: str):
        self._url = url
        self._spawn()

    def start_load(self):
        self._spawn()

    def recover_media_error(self):
        self._spawn()

    def set_current_level(self, index: int):
        self.current_level = index
        if index >= 0:
            self._emit(EngineEvent(EngineEventType.LEVEL_SWITCHED, level=index))

    def destroy(self):
        self._destroyed = True
        self._listeners.clear()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _spawn(self):
        if self._destroyed or not self._url:
            return
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._load(self._url))

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> tuple[str, str]:
        response = await client.get(url)
        response.raise_for_status()
        return response.text, str(response.url)

    async def _load(self, url: str):
        headers = {"User-Agent": self.config.user_agent} if self.config.user_agent else {}
        try:
            async with httpx.AsyncClient(
                timeout=self.config.manifest_loading_timeout,
                transport=self._transport,
                headers=headers,
                follow_redirects=True,
            ) as client:
                content, final_url = await self._fetch(client, url)

                if not content.lstrip().startswith("#EXTM3U"):
                    self._emit(EngineEvent(
                        EngineEventType.ERROR,
                        error_type=ErrorType.OTHER,
                        fatal=True,
                        details="manifestParsingError",
                    ))
                    return

                levels = parse_levels(content, final_url)
                media_playlist = content
                if levels:
                    level = self.current_level if 0 <= self.current_level < len(levels) else 0
                    media_playlist, _ = await self._fetch(client, levels[level].uri)

        except httpx.HTTPStatusError as e:
            logger.warning(f"Playlist load failed with {e.response.status_code}: {url}")
            self._emit(EngineEvent(
                EngineEventType.ERROR,
                error_type=ErrorType.NETWORK,
                fatal=True,
                status=e.response.status_code,
                details="manifestLoadError",
            ))
            return
        except httpx.TimeoutException:
            logger.warning(f"Playlist load timed out: {url}")
            self._emit(EngineEvent(
                EngineEventType.ERROR,
                error_type=ErrorType.NETWORK,
                fatal=True,
                details="manifestLoadTimeOut",
            ))
            return
        except httpx.HTTPError as e:
            logger.warning(f"Playlist load failed: {url}: {e}")
            self._emit(EngineEvent(
                EngineEventType.ERROR,
                error_type=ErrorType.NETWORK,
                fatal=True,
                details="manifestLoadError",
            ))
            return

        live = is_live_playlist(media_playlist)
        if self._media is not None:
            self._media.set_source(url)
        self._emit(EngineEvent(EngineEventType.MANIFEST_PARSED, levels=levels, live=live))
        self._emit(EngineEvent(EngineEventType.LEVEL_LOADED, level=max(self.current_level, 0), live=live))


class HttpMediaPlayback(NativePlayback):
    """
    Native playback that confirms the media URL answers before reporting it
    playable. Only the first byte is requested.
    """

    def __init__(self, config: Optional[EngineConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config)
        self._transport = transport
        self._task: Optional[asyncio.Task] = None
        self._destroyed = False

    def load_source(self, url: str):
        self._url = url
        self._spawn()

    def start_load(self):
        self._spawn()

    def destroy(self):
        self._destroyed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        super().destroy()

    def _spawn(self):
        if self._destroyed or not self._url:
            return
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._check(self._url))

    async def _check(self, url: str):
        headers = {"Range": "bytes=0-0"}
        if self.config is not None and self.config.user_agent:
            headers["User-Agent"] = self.config.user_agent
        timeout = self.config.manifest_loading_timeout if self.config is not None else 10.0
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport, follow_redirects=True) as client:
                async with client.stream("GET", url, headers=headers) as response:
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Media load failed with {e.response.status_code}: {url}")
            self._emit(EngineEvent(
                EngineEventType.ERROR,
                error_type=ErrorType.NETWORK,
                fatal=True,
                status=e.response.status_code,
                details="fragLoadError",
            ))
            return
        except httpx.TimeoutException:
            logger.warning(f"Media load timed out: {url}")
            self._emit(EngineEvent(
                EngineEventType.ERROR,
                error_type=ErrorType.NETWORK,
                fatal=True,
                details="fragLoadTimeOut",
            ))
            return
        except httpx.HTTPError as e:
            logger.warning(f"Media load failed: {url}: {e}")
            self._emit(EngineEvent(
                EngineEventType.ERROR,
                error_type=ErrorType.NETWORK,
                fatal=True,
                details="fragLoadError",
            ))
            return

        if not self._destroyed and self._media is not None:
            self._ready()
