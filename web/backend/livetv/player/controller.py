"""
Player controller and UI state machine.

Owns the media element, the source selector and the engine adapter for the
channel being watched, and derives the visible affordances (loading, error,
controls, scrub bar, server list) from their state.
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from livetv.config import Settings, get_settings
from livetv.errors import ErrorKind
from livetv.models.channel import Channel, QualityLevel
from livetv.player.engine import EngineAdapter, PlaybackSession
from livetv.player.events import AdapterEvent, AdapterEventType, EngineFactory, ErrorType
from livetv.player.media import AutoplayBlocked, MediaElement
from livetv.player.sources import SourceSelector

logger = logging.getLogger(__name__)


class PlayerState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    ERROR = "error"
    ENDED = "ended"


ERROR_MESSAGES = {
    ErrorKind.SOURCE_EXHAUSTED: "This stream could not be played. It might be offline or restricted.",
    ErrorKind.DECODE_OR_MEDIA: "This stream could not be decoded.",
}
DEFAULT_ERROR_MESSAGE = "Playback failed."

StateListener = Callable[["PlayerController"], None]


class PlayerController:
    """Player for one channel at a time."""

    def __init__(
        self,
        media: MediaElement,
        engine_factory: EngineFactory,
        settings: Optional[Settings] = None,
        relay_base: str = "",
        native_factory: Optional[EngineFactory] = None,
    ):
        self.settings = settings or get_settings()
        self.media = media
        self.adapter = EngineAdapter(engine_factory, media, self.settings, relay_base, native_factory)
        self.adapter.subscribe(self._on_adapter_event)
        self.controls_idle_seconds = self.settings.controls_idle_seconds

        self.channel: Optional[Channel] = None
        self.selector: Optional[SourceSelector] = None
        self.state = PlayerState.IDLE
        self.levels: list[QualityLevel] = []
        self.is_live = True
        self.current_level: Optional[int] = None
        self.buffering = False
        self.error_kind: Optional[ErrorKind] = None
        self.error_message: Optional[str] = None

        self.fullscreen = False
        self.picture_in_picture = False
        self.controls_visible = True
        self.menu: Optional[str] = None

        self._hide_handle: Optional[asyncio.TimerHandle] = None
        self._listeners: list[StateListener] = []

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def session(self) -> Optional[PlaybackSession]:
        return self.adapter.session

    @property
    def muted(self) -> bool:
        return self.media.muted

    @property
    def active_source_index(self) -> Optional[int]:
        return self.selector.index if self.selector else None

    @property
    def source_count(self) -> int:
        return len(self.selector) if self.selector else 0

    @property
    def server_labels(self) -> list[str]:
        return [f"Server {i + 1}" for i in range(self.source_count)]

    @property
    def quality(self) -> Optional[int]:
        """Pinned quality level, ``None`` when automatic."""
        return self.session.quality if self.session else None

    @property
    def scrub_bar_visible(self) -> bool:
        return not self.is_live and self.state in (PlayerState.PLAYING, PlayerState.PAUSED, PlayerState.ENDED)

    @property
    def loading(self) -> bool:
        return self.state is PlayerState.LOADING or self.buffering

    def subscribe(self, listener: StateListener):
        self._listeners.append(listener)

    def _set_state(self, state: PlayerState):
        if state is self.state:
            return
        logger.debug(f"Player state {self.state.value} -> {state.value}")
        self.state = state
        for listener in list(self._listeners):
            listener(self)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def open_channel(self, channel: Channel):
        """Start watching a channel from its first source, muted."""
        self.channel = channel
        self.selector = SourceSelector(channel.streams)
        # Browsers block autoplay with sound
        self.media.muted = True
        self._start()

    def retry(self):
        """Cold restart from the first source with relay mode and retries reset."""
        if self.channel is None or self.selector is None:
            return
        self.selector.reset()
        self._start()

    def switch_source(self, index: int):
        """User switch to another server of the current channel."""
        if self.channel is None or self.selector is None:
            return
        self.selector.select(index)
        self._start()

    def _start(self):
        self.levels = []
        self.is_live = True
        self.current_level = None
        self.buffering = False
        self.error_kind = None
        self.error_message = None
        self._set_state(PlayerState.LOADING)
        self.show_controls()
        self.adapter.start(self.selector, self.channel.auth_cookie, self.channel.is_playlist)

    async def close(self):
        self._cancel_hide()
        await self.adapter.close()
        self.media.pause()
        self.channel = None
        self.selector = None
        self._set_state(PlayerState.IDLE)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def play(self):
        self.media.user_gesture()
        if self.state not in (PlayerState.PAUSED, PlayerState.ENDED, PlayerState.PLAYING):
            return
        try:
            self.media.play()
        except AutoplayBlocked as e:
            logger.info(f"Play refused by media element: {e}")
            self._set_state(PlayerState.PAUSED)
            self.show_controls()
            return
        self._set_state(PlayerState.PLAYING)
        self.user_activity()

    def pause(self):
        if self.state is not PlayerState.PLAYING:
            return
        self.media.pause()
        self._set_state(PlayerState.PAUSED)
        self.show_controls()

    def toggle_play(self):
        if self.state is PlayerState.PLAYING:
            self.pause()
        else:
            self.play()

    def mute(self):
        self.media.muted = True

    def unmute(self):
        self.media.user_gesture()
        self.media.muted = False

    def toggle_mute(self):
        self.media.user_gesture()
        self.media.muted = not self.media.muted

    def toggle_fullscreen(self):
        if self.fullscreen:
            self.media.exit_fullscreen()
        else:
            self.media.request_fullscreen()
        self.fullscreen = not self.fullscreen

    def toggle_picture_in_picture(self):
        if self.picture_in_picture:
            self.media.exit_picture_in_picture()
        else:
            self.media.request_picture_in_picture()
        self.picture_in_picture = not self.picture_in_picture

    def seek(self, position: float) -> bool:
        """Seek within a non-live stream. Live streams cannot be scrubbed."""
        if self.is_live or self.state not in (PlayerState.PLAYING, PlayerState.PAUSED, PlayerState.ENDED):
            logger.debug("Seek ignored for live or inactive stream")
            return False
        self.media.current_time = max(0.0, position)
        if self.state is PlayerState.ENDED:
            self._set_state(PlayerState.PAUSED)
        return True

    def set_quality(self, level: Optional[int]):
        """Pin a quality level, ``None`` for automatic."""
        self.adapter.set_quality(level)
        if level is None:
            self.current_level = None

    # ------------------------------------------------------------------
    # Control visibility
    # ------------------------------------------------------------------

    def show_controls(self):
        self.controls_visible = True
        self._cancel_hide()

    def user_activity(self):
        """Pointer or touch activity: show controls and restart the idle timer."""
        self.show_controls()
        self._schedule_hide()

    def open_menu(self, name: str):
        """Settings, quality or server submenu. Suppresses auto-hide."""
        self.menu = name
        self.show_controls()

    def close_menu(self):
        self.menu = None
        self._schedule_hide()

    def _schedule_hide(self):
        self._cancel_hide()
        if self.state is not PlayerState.PLAYING or self.menu is not None:
            return
        loop = asyncio.get_running_loop()
        self._hide_handle = loop.call_later(self.controls_idle_seconds, self._hide_controls)

    def _hide_controls(self):
        self._hide_handle = None
        if self.state is PlayerState.PLAYING and self.menu is None:
            self.controls_visible = False

    def _cancel_hide(self):
        if self._hide_handle is not None:
            self._hide_handle.cancel()
            self._hide_handle = None

    # ------------------------------------------------------------------
    # Media element notifications
    # ------------------------------------------------------------------

    def media_playing(self):
        self.buffering = False
        if self.state in (PlayerState.PAUSED, PlayerState.LOADING, PlayerState.ENDED):
            self._set_state(PlayerState.PLAYING)
            self._schedule_hide()

    def media_paused(self):
        if self.state is PlayerState.PLAYING:
            self._set_state(PlayerState.PAUSED)
            self.show_controls()

    def media_ended(self):
        if self.state in (PlayerState.PLAYING, PlayerState.PAUSED):
            self._set_state(PlayerState.ENDED)
            self.show_controls()

    def media_failed(self, error_type: ErrorType = ErrorType.NETWORK, details: str = ""):
        self.adapter.media_failed(error_type, fatal=True, details=details)

    # ------------------------------------------------------------------
    # Adapter events
    # ------------------------------------------------------------------

    def _on_adapter_event(self, event: AdapterEvent):
        if event.type is AdapterEventType.READY:
            self.levels = list(event.levels)
            self.is_live = event.is_live
            if self.state is PlayerState.LOADING:
                self._autoplay()

        elif event.type is AdapterEventType.QUALITY_SWITCHED:
            self.current_level = event.level

        elif event.type is AdapterEventType.BUFFER_STALL:
            self.buffering = True

        elif event.type is AdapterEventType.RECOVERED:
            self.buffering = False

        elif event.type in (AdapterEventType.SOURCE_CHANGED, AdapterEventType.RELAY_ESCALATED):
            self.levels = []
            self._set_state(PlayerState.LOADING)

        elif event.type is AdapterEventType.ERROR and event.fatal:
            self.error_kind = event.kind
            self.error_message = ERROR_MESSAGES.get(event.kind, DEFAULT_ERROR_MESSAGE)
            self.buffering = False
            self._set_state(PlayerState.ERROR)
            self.show_controls()

    def _autoplay(self):
        try:
            self.media.play()
        except AutoplayBlocked as e:
            logger.info(f"Autoplay blocked: {e}")
            self._set_state(PlayerState.PAUSED)
            self.show_controls()
            return
        self._set_state(PlayerState.PLAYING)
        self._schedule_hide()
