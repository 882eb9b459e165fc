"""
Playlist-rewriting relay service.
Fetches upstream HLS playlists and media for the browser, rewrites playlist
URIs so every follow-up fetch goes through the relay, and keeps CORS headers
on every answer so the browser can always read the result.
"""
import logging
from typing import Optional
from urllib.parse import unquote, urlparse

from fastapi import Response
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask

from livetv.config import Settings, get_settings
from livetv.errors import InvalidTarget, MissingTarget, RelayError
from livetv.services.playlist_rewriter import (
    MANIFEST_CACHE_CONTROL,
    MANIFEST_CONTENT_TYPE,
    rewrite_playlist,
)
from livetv.services.relay_fetcher import RawResponse, RelayFetcher, RelayRequest

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Expose-Headers": "*",
}

FORWARDED_HEADERS = [
    "content-type",
    "content-length",
    "accept-ranges",
    "content-range",
    "etag",
    "last-modified",
    "cache-control",
]

# Content types guessed from the URL when the upstream sends none
GUESSED_CONTENT_TYPES = [
    (".ts", "video/mp2t"),
    ("/play/", "video/mp2t"),
    (".m4s", "video/iso.segment"),
    (".mp4", "video/mp4"),
    (".aac", "audio/aac"),
    (".key", "application/octet-stream"),
]


def decode_target(raw: str) -> str:
    """Decode the target URL, tolerating a second layer of encoding."""
    value = raw.strip()
    for _ in range(2):
        if "://" in value:
            break
        decoded = unquote(value)
        if decoded == value:
            break
        value = decoded
    return value


def guess_content_type(url: str) -> Optional[str]:
    url_lower = url.lower()
    for marker, content_type in GUESSED_CONTENT_TYPES:
        if marker in url_lower:
            return content_type
    return None


class RelayService:
    """Stateless relay: every call is one independent upstream exchange."""

    def __init__(self, fetcher: Optional[RelayFetcher] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.fetcher = fetcher or RelayFetcher(self.settings)

    def preflight(self) -> Response:
        """Answer a CORS preflight."""
        return Response(
            status_code=200,
            headers={**CORS_HEADERS, "Access-Control-Max-Age": str(self.settings.cors_max_age)},
        )

    def error_response(self, error: RelayError) -> Response:
        return PlainTextResponse(error.message, status_code=error.status_code, headers=CORS_HEADERS)

    def parse_request(self, url: Optional[str], cookie: Optional[str], range_header: Optional[str]) -> RelayRequest:
        """Validate query parameters into a relay request."""
        if not url or not url.strip():
            raise MissingTarget("Missing stream URL")

        target = decode_target(url)
        parsed = urlparse(target)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidTarget(f"Invalid stream URL: {target}")

        return RelayRequest(
            target_url=target,
            cookie=cookie.strip() if cookie and cookie.strip() else None,
            range_header=range_header,
        )

    async def handle(
        self,
        url: Optional[str],
        cookie: Optional[str] = None,
        range_header: Optional[str] = None,
    ) -> Response:
        """
        Relay one request. Never raises: every failure becomes a plain-text
        response with CORS headers so the browser's fetch always resolves.
        """
        raw = None
        try:
            request = self.parse_request(url, cookie, range_header)
            raw = await self.fetcher.fetch(request)

            if raw.is_playlist:
                try:
                    return await self._playlist_response(raw, request)
                finally:
                    await raw.aclose()

            response = self._media_response(raw)
            raw = None  # closed by the streaming response
            return response

        except RelayError as e:
            logger.warning(f"Relay error ({e.kind.value}): {e.message}")
            return self.error_response(e)
        except Exception as e:
            logger.error(f"Relay error for {url}: {e}", exc_info=True)
            if raw is not None:
                await raw.aclose()
            return PlainTextResponse(
                f"Proxy error: {e or 'Unknown error'}",
                status_code=500,
                headers=CORS_HEADERS,
            )

    async def _playlist_response(self, raw: RawResponse, request: RelayRequest) -> Response:
        content = await raw.text()
        logger.info(f"Playlist received from {raw.url}, length: {len(content)}")

        rewritten = rewrite_playlist(
            content, raw.url, request.cookie, self.settings.relay_path, self.settings.relay_public_base
        )

        return Response(
            content=rewritten,
            media_type=MANIFEST_CONTENT_TYPE,
            headers={**CORS_HEADERS, "Cache-Control": MANIFEST_CACHE_CONTROL},
        )

    def _media_response(self, raw: RawResponse) -> StreamingResponse:
        headers = {}
        for name in FORWARDED_HEADERS:
            value = raw.headers.get(name)
            if value:
                headers[name] = value

        # The body is decoded by httpx, the upstream length no longer applies
        if raw.headers.get("content-encoding"):
            headers.pop("content-length", None)

        if "content-type" not in headers:
            guessed = guess_content_type(raw.url)
            if guessed:
                headers["content-type"] = guessed

        headers.setdefault("cache-control", MANIFEST_CACHE_CONTROL)
        headers.update(CORS_HEADERS)

        return StreamingResponse(
            raw.aiter_bytes(),
            status_code=raw.status_code,
            headers=headers,
            background=BackgroundTask(raw.aclose),
        )


# Singleton
_relay_service: Optional[RelayService] = None


def get_relay_service() -> RelayService:
    """Get or create relay service singleton."""
    global _relay_service
    if _relay_service is None:
        _relay_service = RelayService()
    return _relay_service
