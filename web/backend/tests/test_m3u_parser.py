"""
Tests for M3U parser service.
"""
import httpx
import pytest

from livetv.models.channel import Category
from livetv.services.m3u_parser import M3UParser, channel_id_for, entries_to_channels

SAMPLE_PLAYLIST = """#EXTM3U
#EXTINF:-1 tvg-id="ABC.us" tvg-logo="https://img.example.com/abc.png" group-title="News",ABC East
https://cdn.example.com/abc-east.m3u8
#EXTINF:-1 tvg-id="CBS.us",CBS West
http://cdn.example.com/cbs-west.m3u8
#EXTINF:-1,Orphan Entry
#EXTINF:-1,Second Entry
https://cdn.example.com/second.m3u8
"""


class TestM3UParser:
    """Test suite for M3U parsing functionality."""

    def test_parse_extinf_entry(self):
        """Test parsing a single EXTINF entry extracts name, logo and URL."""
        entries = M3UParser().parse(SAMPLE_PLAYLIST)

        assert entries[0].name == "ABC East"
        assert entries[0].logo == "https://img.example.com/abc.png"
        assert entries[0].url == "https://cdn.example.com/abc-east.m3u8"

    def test_missing_logo_is_empty(self):
        entries = M3UParser().parse(SAMPLE_PLAYLIST)

        assert entries[1].name == "CBS West"
        assert entries[1].logo == ""

    def test_entry_without_url_skipped(self):
        """Test an EXTINF followed by another directive yields no entry."""
        entries = M3UParser().parse(SAMPLE_PLAYLIST)

        assert [e.name for e in entries] == ["ABC East", "CBS West", "Second Entry"]

    def test_handle_malformed_lines(self):
        """Test parser handles malformed content gracefully."""
        entries = M3UParser().parse("""#EXTM3U
#EXTINF:-1
http://example.com/no-name.m3u8
Random garbage line
""")

        assert len(entries) == 1
        assert entries[0].name == "Unknown Channel"

    def test_empty_playlist(self):
        assert M3UParser().parse("") == []

    @pytest.mark.asyncio
    async def test_fetch(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=SAMPLE_PLAYLIST))

        entries = await M3UParser().fetch("https://lists.example.com/us.m3u", transport=transport)

        assert len(entries) == 3

    @pytest.mark.asyncio
    async def test_fetch_failure_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))

        with pytest.raises(httpx.HTTPStatusError):
            await M3UParser().fetch("https://lists.example.com/missing.m3u", transport=transport)


class TestEntriesToChannels:

    def test_channels_belong_to_category(self):
        category = Category(id="news", name="News")
        channels = entries_to_channels(M3UParser().parse(SAMPLE_PLAYLIST), category)

        assert len(channels) == 3
        assert all(c.category_id == "news" and c.category_name == "News" for c in channels)
        assert channels[0].streams == ["https://cdn.example.com/abc-east.m3u8"]
        assert channels[0].logo_url == "https://img.example.com/abc.png"

    def test_ids_stable_across_imports(self):
        category = Category(id="news", name="News")
        first = entries_to_channels(M3UParser().parse(SAMPLE_PLAYLIST), category)
        second = entries_to_channels(M3UParser().parse(SAMPLE_PLAYLIST), category)

        assert [c.id for c in first] == [c.id for c in second]
        assert first[0].id == channel_id_for("news", "https://cdn.example.com/abc-east.m3u8")
        assert len(first[0].id) == 12

    def test_malformed_url_skipped(self):
        category = Category(id="news", name="News")
        entries = M3UParser().parse("#EXTINF:-1,Broken\nnot-a-url\n#EXTINF:-1,Good\nhttps://a.example.com/x.m3u8\n")

        channels = entries_to_channels(entries, category)

        assert [c.name for c in channels] == ["Good"]
