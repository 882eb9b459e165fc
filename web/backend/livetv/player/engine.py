"""
Playback engine adapter.

Drives one adaptive-playback engine session at a time against a channel's
current source, classifies engine errors and decides between a fixed-delay
reload, escalation to the relay, failover to the next source, in-place media
recovery, or a terminal error.

Engine callbacks never touch state directly: they are tagged with the id of
the session that produced them and queued. A single pump task applies queued
events, discarding any whose tag is not the live session, so callbacks from a
destroyed engine can never leak into the current one.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from livetv.config import Settings, get_settings
from livetv.errors import ErrorKind, SourceExhausted
from livetv.models.channel import QualityLevel
from livetv.player.events import (
    AdapterEvent,
    AdapterEventType,
    AdapterListener,
    EngineConfig,
    EngineEvent,
    EngineEventType,
    EngineFactory,
    ErrorType,
    PlaybackEngine,
)
from livetv.player.media import MediaElement, NativePlayback
from livetv.player.sources import SourceSelector
from livetv.services.playlist_rewriter import relay_reference

logger = logging.getLogger(__name__)

AUTO_LEVEL = -1


@dataclass
class PlaybackSession:
    """State of one open attempt against one URL."""
    session_id: int
    url: str
    source_index: int = 0
    use_relay: bool = False
    retry_count: int = 0
    quality: Optional[int] = None  # None means automatic
    is_live: bool = True
    levels: list[QualityLevel] = field(default_factory=list)
    last_error: Optional[ErrorKind] = None
    recovering: bool = False
    terminated: bool = False


def classify_error(event: EngineEvent) -> ErrorKind:
    """Map an engine error onto the error taxonomy."""
    if event.error_type is ErrorType.NETWORK:
        if event.status:
            return ErrorKind.UPSTREAM_REJECTED
        return ErrorKind.UPSTREAM_UNREACHABLE
    if event.error_type is ErrorType.MEDIA:
        return ErrorKind.DECODE_OR_MEDIA
    return ErrorKind.PLAYBACK


class EngineAdapter:
    """Adapter between the player controller and a playback engine."""

    def __init__(
        self,
        engine_factory: EngineFactory,
        media: MediaElement,
        settings: Optional[Settings] = None,
        relay_base: str = "",
        native_factory: Optional[EngineFactory] = None,
    ):
        self.settings = settings or get_settings()
        self.engine_factory = engine_factory
        self.native_factory = native_factory or NativePlayback
        self.media = media
        self.relay_base = relay_base.rstrip("/")
        self.config = EngineConfig.from_settings(self.settings)
        self.max_retries = self.settings.max_network_retries
        self.retry_delay = self.settings.network_retry_delay_seconds

        self.session: Optional[PlaybackSession] = None
        self.selector: Optional[SourceSelector] = None
        self.cookie: Optional[str] = None
        self.treat_as_playlist = True

        self._engine: Optional[PlaybackEngine] = None
        self._session_counter = 0
        self._pinned_quality: Optional[int] = None
        self._listeners: list[AdapterListener] = []
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pump_task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    def subscribe(self, listener: AdapterListener):
        self._listeners.append(listener)

    def playback_url(self, url: str, use_relay: bool) -> str:
        if not use_relay:
            return url
        return self.relay_base + relay_reference(url, self.cookie, self.settings.relay_path)

    def start(
        self,
        selector: SourceSelector,
        cookie: Optional[str] = None,
        treat_as_playlist: bool = True,
    ) -> PlaybackSession:
        """Open the selector's current source directly, from a clean slate."""
        self.selector = selector
        self.cookie = cookie
        self.treat_as_playlist = treat_as_playlist
        self._pinned_quality = None
        return self.open(selector.current(), cookie, treat_as_playlist)

    def open(
        self,
        url: str,
        cookie: Optional[str] = None,
        treat_as_playlist: bool = True,
        use_relay: bool = False,
    ) -> PlaybackSession:
        """Tear down the current engine and open ``url`` in a new session."""
        self._teardown()
        self.cookie = cookie
        self.treat_as_playlist = treat_as_playlist
        self._ensure_pump()

        self._session_counter += 1
        session = PlaybackSession(
            session_id=self._session_counter,
            url=url,
            source_index=self.selector.index if self.selector else 0,
            use_relay=use_relay,
            quality=self._pinned_quality,
        )
        self.session = session

        target = self.playback_url(url, use_relay)
        logger.info(
            f"Opening session {session.session_id} on source {session.source_index} "
            f"({'relay' if use_relay else 'direct'}): {url}"
        )

        engine = self.engine_factory(self.config) if treat_as_playlist else self.native_factory(self.config)
        self._engine = engine
        session_id = session.session_id
        engine.on(lambda event: self._enqueue(session_id, event))
        engine.attach_media(self.media)
        engine.load_source(target)
        return session

    def set_quality(self, level: Optional[int]):
        """Pin a quality level, or return to automatic selection with ``None``."""
        session = self.session
        if session is None or session.terminated:
            return
        if level is not None and not 0 <= level < len(session.levels):
            raise ValueError(f"No quality level {level}")
        session.quality = level
        self._pinned_quality = level
        if self._engine is not None:
            self._engine.set_current_level(AUTO_LEVEL if level is None else level)

    def media_failed(self, error_type: ErrorType = ErrorType.NETWORK, fatal: bool = True, details: str = ""):
        """Feed a media element failure into the current session."""
        if self.session is None:
            return
        self._enqueue(
            self.session.session_id,
            EngineEvent(EngineEventType.ERROR, error_type=error_type, fatal=fatal, details=details),
        )

    async def drain(self):
        """Wait until every queued engine event has been applied."""
        await self._queue.join()

    async def close(self):
        self._teardown()
        self.session = None
        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None

    # ------------------------------------------------------------------
    # Event queue
    # ------------------------------------------------------------------

    def _enqueue(self, session_id: int, event: EngineEvent):
        self._queue.put_nowait((session_id, event))

    def _ensure_pump(self):
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.get_running_loop().create_task(self._pump())

    async def _pump(self):
        while True:
            session_id, event = await self._queue.get()
            try:
                session = self.session
                if session is None or session.terminated or session.session_id != session_id:
                    logger.debug(f"Discarding {event.type.value} from stale session {session_id}")
                    continue
                self._handle(session, event)
            except Exception as e:
                logger.error(f"Failed to apply engine event {event.type.value}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    def _emit(self, event_type: AdapterEventType, **kwargs):
        session = self.session
        event = AdapterEvent(
            type=event_type,
            session_id=session.session_id if session else 0,
            is_live=session.is_live if session else True,
            source_index=session.source_index if session else None,
            **kwargs,
        )
        for listener in list(self._listeners):
            listener(event)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _handle(self, session: PlaybackSession, event: EngineEvent):
        if event.type is EngineEventType.MANIFEST_PARSED:
            session.levels = list(event.levels)
            if event.live is not None:
                session.is_live = event.live
            self._clear_failures(session)
            if session.quality is not None and session.quality < len(session.levels):
                self._engine.set_current_level(session.quality)
            self._emit(AdapterEventType.READY, levels=session.levels)

        elif event.type is EngineEventType.LEVEL_LOADED:
            self._clear_failures(session)
            if event.live is not None and event.live != session.is_live:
                session.is_live = event.live
                self._emit(AdapterEventType.READY, levels=session.levels)

        elif event.type is EngineEventType.FRAG_BUFFERED:
            self._clear_failures(session)

        elif event.type is EngineEventType.LEVEL_SWITCHED:
            self._emit(AdapterEventType.QUALITY_SWITCHED, level=event.level)

        elif event.type is EngineEventType.BUFFER_STALLED:
            self._emit(AdapterEventType.BUFFER_STALL)

        elif event.type is EngineEventType.ERROR:
            self._handle_error(session, event)

    def _clear_failures(self, session: PlaybackSession):
        """A clean load clears accumulated failure history."""
        was_failing = session.recovering or session.retry_count > 0
        session.retry_count = 0
        session.recovering = False
        if was_failing:
            logger.info(f"Session {session.session_id} recovered")
            self._emit(AdapterEventType.RECOVERED)

    def _handle_error(self, session: PlaybackSession, event: EngineEvent):
        kind = classify_error(event)
        session.last_error = kind

        if event.error_type is ErrorType.NETWORK:
            self._handle_network_error(session, event, kind)
            return

        if event.error_type is ErrorType.MEDIA and event.fatal:
            self._recover_media(session, kind)
            return

        if event.fatal:
            self._terminate(kind, f"Fatal playback error: {event.details or kind.value}")
            return

        logger.warning(f"Non-fatal {event.error_type} on session {session.session_id}: {event.details}")
        self._emit(AdapterEventType.ERROR, kind=kind, fatal=False, message=event.details)

    def _handle_network_error(self, session: PlaybackSession, event: EngineEvent, kind: ErrorKind):
        if session.retry_count < self.max_retries:
            session.retry_count += 1
            logger.warning(
                f"{kind.value} on session {session.session_id} ({event.details or event.status}), "
                f"retry {session.retry_count}/{self.max_retries} in {self.retry_delay}s"
            )
            self._emit(AdapterEventType.ERROR, kind=kind, fatal=False, message=event.details)
            self._schedule_reload(session.session_id)
            return

        if not session.use_relay:
            logger.info(f"Retry budget exhausted on source {session.source_index}, switching to relay")
            self.open(session.url, self.cookie, self.treat_as_playlist, use_relay=True)
            self._emit(AdapterEventType.RELAY_ESCALATED)
            return

        self._advance_source(kind)

    def _advance_source(self, kind: ErrorKind):
        if self.selector is None:
            self._terminate(ErrorKind.SOURCE_EXHAUSTED, "Stream source failed")
            return
        try:
            url = self.selector.advance()
        except SourceExhausted:
            logger.error(f"All {len(self.selector)} sources failed (last error: {kind.value})")
            self._terminate(ErrorKind.SOURCE_EXHAUSTED, "All stream sources failed")
            return

        logger.info(f"Advancing to source {self.selector.index}")
        self.open(url, self.cookie, self.treat_as_playlist, use_relay=False)
        self._emit(AdapterEventType.SOURCE_CHANGED)

    def _recover_media(self, session: PlaybackSession, kind: ErrorKind):
        if session.recovering:
            self._terminate(kind, "Media recovery failed")
            return
        session.recovering = True
        logger.warning(f"Media error on session {session.session_id}, attempting recovery")
        try:
            self._engine.recover_media_error()
        except Exception as e:
            logger.error(f"Media recovery raised: {e}", exc_info=True)
            self._terminate(kind, "Media recovery failed")

    def _terminate(self, kind: ErrorKind, message: str):
        session = self.session
        if session is not None:
            session.last_error = kind
            session.terminated = True
        logger.error(f"Terminal playback error ({kind.value}): {message}")
        self._teardown()
        self._emit(AdapterEventType.ERROR, kind=kind, fatal=True, message=message)

    # ------------------------------------------------------------------
    # Timers and teardown
    # ------------------------------------------------------------------

    def _schedule_reload(self, session_id: int):
        self._cancel_reload()
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self.retry_delay, self._reload, session_id)

    def _reload(self, session_id: int):
        self._retry_handle = None
        session = self.session
        if session is None or session.terminated or session.session_id != session_id:
            return
        if self._engine is not None:
            self._engine.start_load()

    def _cancel_reload(self):
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _teardown(self):
        self._cancel_reload()
        if self._engine is not None:
            engine, self._engine = self._engine, None
            try:
                engine.destroy()
            except Exception as e:
                logger.warning(f"Engine destroy failed: {e}")
