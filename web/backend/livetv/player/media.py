"""
Media output element abstraction and native (non-adaptive) playback.
"""
import logging
import math
from typing import Optional, Protocol

from livetv.player.events import EngineConfig, EngineEvent, EngineEventType, EngineListener

logger = logging.getLogger(__name__)


class AutoplayBlocked(Exception):
    """The media element refused to start playback without a user gesture."""


class MediaElement(Protocol):
    """The single output element owned by the player controller."""
    muted: bool
    paused: bool
    current_time: float
    duration: float

    def set_source(self, url: str) -> None: ...

    def clear_source(self) -> None: ...

    def load(self) -> None: ...

    def play(self) -> None: ...

    def user_gesture(self) -> None: ...

    def pause(self) -> None: ...

    def request_fullscreen(self) -> None: ...

    def exit_fullscreen(self) -> None: ...

    def request_picture_in_picture(self) -> None: ...

    def exit_picture_in_picture(self) -> None: ...


class HeadlessMediaElement:
    """
    In-memory media element.

    Used by the server-side channel probe, where nothing is rendered.
    Mirrors the browser rule that autoplay with sound is blocked.
    """

    def __init__(self, block_unmuted_autoplay: bool = True):
        self.block_unmuted_autoplay = block_unmuted_autoplay
        self.src: Optional[str] = None
        self.muted = False
        self.paused = True
        self.current_time = 0.0
        self.duration = math.inf
        self.fullscreen = False
        self.picture_in_picture = False
        self.user_activated = False
        self.load_count = 0

    def set_source(self, url: str):
        self.src = url
        self.current_time = 0.0
        self.load_count += 1

    def clear_source(self):
        self.src = None
        self.paused = True

    def load(self):
        self.load_count += 1

    def user_gesture(self):
        """Record that the user interacted with the page."""
        self.user_activated = True

    def play(self):
        if self.block_unmuted_autoplay and not self.muted and not self.user_activated:
            raise AutoplayBlocked("Playback with sound requires a user gesture")
        self.paused = False

    def pause(self):
        self.paused = True

    def request_fullscreen(self):
        self.fullscreen = True

    def exit_fullscreen(self):
        self.fullscreen = False

    def request_picture_in_picture(self):
        self.picture_in_picture = True

    def exit_picture_in_picture(self):
        self.picture_in_picture = False


class NativePlayback:
    """
    Engine stand-in for sources that are a single media file rather than a
    playlist: the URL goes straight to the media element.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config
        self._listeners: list[EngineListener] = []
        self._media: Optional[MediaElement] = None
        self._url: Optional[str] = None

    def on(self, listener: EngineListener):
        self._listeners.append(listener)

    def _emit(self, event: EngineEvent):
        for listener in self._listeners:
            listener(event)

    def attach_media(self, media: MediaElement):
        self._media = media

    def load_source(self, url: str):
        self._url = url
        self._ready()

    def _ready(self):
        """Hand the URL to the media element and report it playable."""
        if self._media is None:
            raise RuntimeError("No media element attached")
        self._media.set_source(self._url)
        live = math.isinf(self._media.duration) if self._media.duration else True
        self._emit(EngineEvent(EngineEventType.MANIFEST_PARSED, levels=[], live=live))

    def start_load(self):
        if self._media is not None:
            self._media.load()

    def recover_media_error(self):
        if self._media is not None and self._url:
            self._media.set_source(self._url)

    def set_current_level(self, index: int):
        logger.debug(f"Native playback has no levels, ignoring level {index}")

    def destroy(self):
        if self._media is not None:
            self._media.clear_source()
        self._listeners.clear()
        self._media = None
