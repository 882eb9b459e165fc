"""
Pytest configuration and fixtures for Live TV backend tests.
"""
import os
import tempfile

# Keep the app's database out of the working tree
os.environ.setdefault("LIVETV_DATABASE_PATH", os.path.join(tempfile.mkdtemp(), "livetv_test.db"))

import pytest

from livetv.config import Settings
from livetv.models.channel import Channel, QualityLevel
from livetv.player.events import EngineEvent, EngineEventType, ErrorType


class FakeEngine:
    """Scripted playback engine: tests emit events by hand."""

    def __init__(self, config):
        self.config = config
        self.listeners = []
        self.media = None
        self.loaded = []
        self.start_loads = 0
        self.recover_calls = 0
        self.levels_set = []
        self.destroyed = False

    def on(self, listener):
        self.listeners.append(listener)

    def attach_media(self, media):
        self.media = media

    def load_source(self, url):
        self.loaded.append(url)

    def start_load(self):
        self.start_loads += 1

    def recover_media_error(self):
        self.recover_calls += 1

    def set_current_level(self, index):
        self.levels_set.append(index)

    def destroy(self):
        self.destroyed = True

    def emit(self, event):
        for listener in self.listeners:
            listener(event)

    def manifest_parsed(self, levels=None, live=True):
        self.emit(EngineEvent(EngineEventType.MANIFEST_PARSED, levels=levels or [], live=live))

    def level_loaded(self, live=True):
        self.emit(EngineEvent(EngineEventType.LEVEL_LOADED, level=0, live=live))

    def network_error(self, status=None, fatal=True):
        self.emit(EngineEvent(
            EngineEventType.ERROR,
            error_type=ErrorType.NETWORK,
            fatal=fatal,
            status=status,
            details="manifestLoadError",
        ))

    def media_error(self, fatal=True):
        self.emit(EngineEvent(
            EngineEventType.ERROR,
            error_type=ErrorType.MEDIA,
            fatal=fatal,
            details="bufferAppendError",
        ))


class FakeEngineFactory:
    """Engine factory that remembers every engine it built."""

    def __init__(self, engine_class=FakeEngine):
        self.engine_class = engine_class
        self.engines = []

    def __call__(self, config):
        engine = self.engine_class(config)
        self.engines.append(engine)
        return engine

    @property
    def last(self):
        return self.engines[-1]


@pytest.fixture
def settings(tmp_path):
    """Settings with short timers for state machine tests."""
    return Settings(
        database_path=str(tmp_path / "test.db"),
        network_retry_delay_seconds=0.01,
        controls_idle_seconds=0.05,
        probe_timeout_seconds=5.0,
    )


@pytest.fixture
def engine_factory():
    return FakeEngineFactory()


@pytest.fixture
def channel():
    return Channel(
        id="news-1",
        name="News One",
        logo_url="https://img.example.com/news1.png",
        category_id="news",
        category_name="News",
        streams=["https://cdn.example.com/live/index.m3u8"],
        auth_cookie="abc123",
    )


@pytest.fixture
def two_source_channel():
    return Channel(
        id="sports-1",
        name="Sports One",
        category_id="sports",
        category_name="Sports",
        streams=[
            "https://cdn-a.example.com/sports/index.m3u8",
            "https://cdn-b.example.com/sports/index.m3u8",
        ],
    )


@pytest.fixture
def quality_levels():
    return [
        QualityLevel(index=0, height=360, width=640, bitrate=800000),
        QualityLevel(index=1, height=720, width=1280, bitrate=2800000),
    ]


@pytest.fixture
def master_playlist():
    return """#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360,NAME="360p"
low/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=2800000,RESOLUTION=1280x720,NAME="720p"
high/index.m3u8
"""


@pytest.fixture
def media_playlist():
    return """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:10
#EXT-X-MEDIA-SEQUENCE:100
#EXT-X-KEY:METHOD=AES-128,URI="keys/k1.key",IV=0x1234
#EXTINF:10,
segment100.ts
#EXTINF:10,
segment101.ts
"""
