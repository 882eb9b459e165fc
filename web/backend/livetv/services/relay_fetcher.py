"""
Upstream fetcher for the relay.
Performs the HTTP request on behalf of the browser with headers that look
like the upstream's own player.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Optional
from urllib.parse import urlparse

import httpx

from livetv.config import Settings, get_settings
from livetv.errors import UpstreamRejected, UpstreamUnreachable

logger = logging.getLogger(__name__)


class ContentClass(str, Enum):
    """What kind of resource an upstream response carries."""
    PLAYLIST = "playlist"
    MEDIA = "media"
    KEY = "key"


PLAYLIST_EXTENSIONS = (".m3u8", ".m3u")
KEY_EXTENSIONS = (".key",)


@dataclass
class RelayRequest:
    """One upstream exchange requested by the browser."""
    target_url: str
    cookie: Optional[str] = None
    range_header: Optional[str] = None


@dataclass
class RawResponse:
    """Streamed upstream response. Must be closed with ``aclose``."""
    url: str
    status_code: int
    headers: httpx.Headers
    content_class: ContentClass
    _response: httpx.Response = field(repr=False)
    _client: httpx.AsyncClient = field(repr=False)

    @property
    def is_playlist(self) -> bool:
        return self.content_class is ContentClass.PLAYLIST

    async def text(self) -> str:
        """Read the whole body as text."""
        await self._response.aread()
        return self._response.text

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_bytes(chunk_size=65536):
            yield chunk

    async def aclose(self):
        await self._response.aclose()
        await self._client.aclose()


def classify(url: str, content_type: str) -> ContentClass:
    """Classify a response as playlist, key or media."""
    path = urlparse(url).path.lower()
    content_type = content_type.lower()
    if "mpegurl" in content_type or "m3u8" in content_type or path.endswith(PLAYLIST_EXTENSIONS):
        return ContentClass.PLAYLIST
    if path.endswith(KEY_EXTENSIONS):
        return ContentClass.KEY
    return ContentClass.MEDIA


def format_cookie(cookie: str, cookie_name: str = "Edge-Cache-Cookie") -> str:
    """A bare token is wrapped in the upstream's expected cookie name."""
    cookie = cookie.strip()
    if "=" not in cookie:
        return f"{cookie_name}={cookie}"
    return cookie


class RelayFetcher:
    """Fetch upstream playlists and media for the relay."""

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport

    def build_headers(self, request: RelayRequest) -> dict:
        """Build outbound headers that match the upstream's own origin."""
        headers = {
            "User-Agent": self.settings.relay_user_agent,
            "Accept": "*/*",
            "Accept-Language": "en-US,en;q=0.9",
        }

        parsed = urlparse(request.target_url)
        if parsed.scheme and parsed.netloc:
            origin = f"{parsed.scheme}://{parsed.netloc}"
            headers["Origin"] = origin
            headers["Referer"] = f"{origin}/"

        if request.cookie and request.cookie.strip():
            headers["Cookie"] = format_cookie(request.cookie, self.settings.relay_cookie_name)

        if request.range_header:
            headers["Range"] = request.range_header

        return headers

    async def fetch(self, request: RelayRequest) -> RawResponse:
        """
        Fetch the target URL and return the streamed response.

        Raises:
            UpstreamUnreachable: on timeout or transport failure
            UpstreamRejected: on a non-2xx upstream status
        """
        client = httpx.AsyncClient(
            timeout=self.settings.relay_timeout_seconds,
            transport=self._transport,
        )
        try:
            response = await client.send(
                client.build_request("GET", request.target_url, headers=self.build_headers(request)),
                stream=True,
                follow_redirects=True,
            )
        except httpx.TimeoutException as e:
            await client.aclose()
            logger.warning(f"Upstream timeout for {request.target_url}: {e}")
            raise UpstreamUnreachable(f"Upstream timed out: {request.target_url}")
        except httpx.HTTPError as e:
            await client.aclose()
            logger.warning(f"Upstream unreachable for {request.target_url}: {e}")
            raise UpstreamUnreachable(f"Upstream unreachable: {e}")

        logger.info(f"Upstream {response.status_code} for {request.target_url}")

        if not response.is_success:
            try:
                await response.aread()
                logger.error(f"Upstream error body: {response.text[:500]}")
            except httpx.HTTPError as e:
                logger.debug(f"Could not read upstream error body: {e}")
            finally:
                await response.aclose()
                await client.aclose()
            raise UpstreamRejected(response.status_code, response.reason_phrase)

        final_url = str(response.url)
        content_type = response.headers.get("content-type", "")
        content_class = classify(request.target_url, content_type)
        if content_class is ContentClass.MEDIA:
            content_class = classify(final_url, content_type)
        return RawResponse(
            url=final_url,
            status_code=response.status_code,
            headers=response.headers,
            content_class=content_class,
            _response=response,
            _client=client,
        )
