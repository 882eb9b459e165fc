"""
Tests for the relay fetcher and the /relay endpoint.
"""
import httpx
import pytest
from fastapi.testclient import TestClient

from livetv.config import Settings
from livetv.errors import UpstreamRejected, UpstreamUnreachable
from livetv.main import app
from livetv.services.relay import RelayService, decode_target, get_relay_service
from livetv.services.relay_fetcher import (
    ContentClass,
    RelayFetcher,
    RelayRequest,
    classify,
    format_cookie,
)


class Upstream:
    """Mock upstream that records every request it receives."""

    def __init__(self, handler):
        self.handler = handler
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


@pytest.fixture
def relay_client():
    """Build a TestClient whose relay talks to a mock upstream."""
    def build(handler):
        upstream = Upstream(handler)
        service = RelayService(
            fetcher=RelayFetcher(Settings(), transport=httpx.MockTransport(upstream)),
            settings=Settings(),
        )
        app.dependency_overrides[get_relay_service] = lambda: service
        return TestClient(app), upstream

    yield build
    app.dependency_overrides.clear()


class TestRelayFetcher:

    def test_bare_token_cookie_is_wrapped(self):
        assert format_cookie("abc123") == "Edge-Cache-Cookie=abc123"

    def test_full_cookie_forwarded_verbatim(self):
        assert format_cookie("session=xyz; region=eu") == "session=xyz; region=eu"

    def test_headers_use_upstream_origin(self):
        fetcher = RelayFetcher(Settings())
        headers = fetcher.build_headers(RelayRequest(
            target_url="https://cdn.example.com:8443/live/index.m3u8?t=1",
            cookie="abc123",
            range_header="bytes=0-99",
        ))

        assert headers["Origin"] == "https://cdn.example.com:8443"
        assert headers["Referer"] == "https://cdn.example.com:8443/"
        assert headers["Cookie"] == "Edge-Cache-Cookie=abc123"
        assert headers["Range"] == "bytes=0-99"
        assert "Mozilla/5.0" in headers["User-Agent"]
        assert headers["Accept"] == "*/*"

    def test_blank_cookie_not_sent(self):
        headers = RelayFetcher(Settings()).build_headers(RelayRequest("https://a.example/x.ts", cookie="  "))
        assert "Cookie" not in headers

    def test_classification(self):
        assert classify("https://a/x", "application/vnd.apple.mpegurl") is ContentClass.PLAYLIST
        assert classify("https://a/x", "application/x-mpegURL") is ContentClass.PLAYLIST
        assert classify("https://a/stream", "application/x-m3u8") is ContentClass.PLAYLIST
        assert classify("https://a/stream", "audio/m3u8; charset=utf-8") is ContentClass.PLAYLIST
        assert classify("https://a/live/index.m3u8?token=1", "text/plain") is ContentClass.PLAYLIST
        assert classify("https://a/list.m3u", "") is ContentClass.PLAYLIST
        assert classify("https://a/keys/k1.key", "application/octet-stream") is ContentClass.KEY
        assert classify("https://a/seg1.ts", "video/mp2t") is ContentClass.MEDIA

    @pytest.mark.asyncio
    async def test_non_2xx_raises_upstream_rejected(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(403, text="denied"))
        fetcher = RelayFetcher(Settings(), transport=transport)

        with pytest.raises(UpstreamRejected) as exc_info:
            await fetcher.fetch(RelayRequest("https://cdn.example.com/live.m3u8"))

        assert exc_info.value.status == 403
        assert exc_info.value.status_text == "Forbidden"

    @pytest.mark.asyncio
    async def test_timeout_raises_upstream_unreachable(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        fetcher = RelayFetcher(Settings(), transport=httpx.MockTransport(handler))

        with pytest.raises(UpstreamUnreachable):
            await fetcher.fetch(RelayRequest("https://cdn.example.com/live.m3u8"))

    @pytest.mark.asyncio
    async def test_fetch_classifies_and_streams(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, content=b"\x47" * 188, headers={"content-type": "video/mp2t"})
        )
        fetcher = RelayFetcher(Settings(), transport=transport)

        raw = await fetcher.fetch(RelayRequest("https://cdn.example.com/seg1.ts"))
        try:
            assert raw.content_class is ContentClass.MEDIA
            body = b"".join([chunk async for chunk in raw.aiter_bytes()])
            assert body == b"\x47" * 188
        finally:
            await raw.aclose()


def test_decode_target_tolerates_double_encoding():
    assert decode_target("https://cdn.x/a.m3u8") == "https://cdn.x/a.m3u8"
    assert decode_target("https%3A%2F%2Fcdn.x%2Fa.m3u8") == "https://cdn.x/a.m3u8"
    assert decode_target("https%253A%252F%252Fcdn.x%252Fa.m3u8") == "https://cdn.x/a.m3u8"


class TestRelayEndpoint:

    def test_missing_url_returns_400_with_cors(self, relay_client):
        client, upstream = relay_client(lambda request: httpx.Response(200))

        response = client.get("/relay")

        assert response.status_code == 400
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.text == "Missing stream URL"
        assert upstream.requests == []

    def test_invalid_url_returns_400(self, relay_client):
        client, _ = relay_client(lambda request: httpx.Response(200))

        response = client.get("/relay", params={"url": "ftp://files.example.com/a.ts"})

        assert response.status_code == 400
        assert response.headers["access-control-allow-origin"] == "*"

    def test_upstream_status_passed_through(self, relay_client):
        client, _ = relay_client(lambda request: httpx.Response(403, text="nope"))

        response = client.get("/relay", params={"url": "https://cdn.example.com/live/index.m3u8"})

        assert response.status_code == 403
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.text == "Upstream error: 403 Forbidden"

    def test_transport_failure_returns_500(self, relay_client):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = relay_client(handler)

        response = client.get("/relay", params={"url": "https://down.example.com/live.m3u8"})

        assert response.status_code == 500
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["content-type"].startswith("text/plain")

    def test_bare_cookie_forwarded_as_edge_cache_cookie(self, relay_client):
        client, upstream = relay_client(
            lambda request: httpx.Response(200, content=b"data", headers={"content-type": "video/mp2t"})
        )

        client.get("/relay", params={"url": "https://cdn.example.com/seg.ts", "cookie": "abc123"})

        sent = upstream.requests[0]
        assert sent.headers["cookie"] == "Edge-Cache-Cookie=abc123"
        assert sent.headers["origin"] == "https://cdn.example.com"
        assert sent.headers["referer"] == "https://cdn.example.com/"

    def test_playlist_rewritten_with_manifest_headers(self, relay_client, media_playlist):
        client, _ = relay_client(lambda request: httpx.Response(
            200,
            text=media_playlist,
            headers={"content-type": "application/x-mpegURL", "cache-control": "max-age=60"},
        ))

        response = client.get("/relay", params={
            "url": "https://cdn.example.com/live/index.m3u8",
            "cookie": "abc123",
        })

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/vnd.apple.mpegurl")
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
        assert response.headers["access-control-allow-origin"] == "*"
        assert "/relay?url=https%3A%2F%2Fcdn.example.com%2Flive%2Fsegment100.ts&cookie=abc123" in response.text
        assert "#EXT-X-MEDIA-SEQUENCE:100" in response.text

    def test_playlist_resolved_against_redirect_target(self, relay_client):
        def handler(request):
            if request.url.host == "entry.example.com":
                return httpx.Response(302, headers={"location": "https://edge.example.com/hls/live.m3u8"})
            return httpx.Response(200, text="#EXTM3U\n#EXTINF:4,\nseg.ts\n")

        client, _ = relay_client(handler)

        response = client.get("/relay", params={"url": "https://entry.example.com/channel.m3u8"})

        assert "/relay?url=https%3A%2F%2Fedge.example.com%2Fhls%2Fseg.ts" in response.text

    def test_media_streamed_with_forwarded_headers(self, relay_client):
        body = b"\x47" * 376
        client, upstream = relay_client(lambda request: httpx.Response(
            206,
            content=body[:188],
            headers={
                "content-type": "video/mp2t",
                "content-range": "bytes 0-187/376",
                "accept-ranges": "bytes",
                "etag": '"abc"',
            },
        ))

        response = client.get(
            "/relay",
            params={"url": "https://cdn.example.com/seg.ts"},
            headers={"Range": "bytes=0-187"},
        )

        assert response.status_code == 206
        assert response.content == body[:188]
        assert response.headers["content-type"] == "video/mp2t"
        assert response.headers["content-range"] == "bytes 0-187/376"
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["etag"] == '"abc"'
        assert response.headers["access-control-expose-headers"] == "*"
        assert upstream.requests[0].headers["range"] == "bytes=0-187"

    def test_missing_media_content_type_guessed(self, relay_client):
        client, _ = relay_client(lambda request: httpx.Response(200, content=b"\x47\x00"))

        response = client.get("/relay", params={"url": "https://cdn.example.com/play/12345"})

        assert response.headers["content-type"] == "video/mp2t"

    def test_double_encoded_url_accepted(self, relay_client):
        client, upstream = relay_client(
            lambda request: httpx.Response(200, content=b"x", headers={"content-type": "video/mp2t"})
        )

        response = client.get("/relay?url=https%253A%252F%252Fcdn.example.com%252Fseg.ts")

        assert response.status_code == 200
        assert str(upstream.requests[0].url) == "https://cdn.example.com/seg.ts"

    def test_options_preflight(self, relay_client):
        client, _ = relay_client(lambda request: httpx.Response(200))

        response = client.options("/relay")

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-allow-methods"] == "GET, HEAD, OPTIONS"
        assert response.headers["access-control-max-age"] == "86400"

    def test_browser_preflight_answered_by_relay(self, relay_client):
        """Test a preflight carrying Origin and Access-Control-Request-Method gets the relay contract."""
        client, upstream = relay_client(lambda request: httpx.Response(200))

        response = client.options(
            "/relay",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": "range",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-allow-methods"] == "GET, HEAD, OPTIONS"
        assert response.headers["access-control-expose-headers"] == "*"
        assert response.headers["access-control-max-age"] == "86400"
        assert upstream.requests == []

    def test_api_preflight_still_handled(self, relay_client):
        client, _ = relay_client(lambda request: httpx.Response(200))

        response = client.options(
            "/api/health",
            headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "GET"},
        )

        assert response.status_code == 200
        assert "access-control-allow-origin" in response.headers
