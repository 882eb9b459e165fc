"""
Event types exchanged with the adaptive-playback engine and emitted by the
engine adapter.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol

from pydantic import BaseModel

from livetv.config import Settings
from livetv.errors import ErrorKind
from livetv.models.channel import QualityLevel


class ErrorType(str, Enum):
    """Engine error families."""
    NETWORK = "networkError"
    MEDIA = "mediaError"
    OTHER = "otherError"


class EngineEventType(str, Enum):
    MANIFEST_PARSED = "manifestParsed"
    LEVEL_LOADED = "levelLoaded"
    LEVEL_SWITCHED = "levelSwitched"
    FRAG_BUFFERED = "fragBuffered"
    BUFFER_STALLED = "bufferStalled"
    ERROR = "error"


@dataclass
class EngineEvent:
    """Something the engine observed."""
    type: EngineEventType
    levels: list[QualityLevel] = field(default_factory=list)
    live: Optional[bool] = None
    level: Optional[int] = None
    error_type: Optional[ErrorType] = None
    fatal: bool = False
    status: Optional[int] = None  # HTTP status of a failed load, if any
    details: str = ""


class AdapterEventType(str, Enum):
    READY = "ready"
    QUALITY_SWITCHED = "qualitySwitched"
    BUFFER_STALL = "bufferStall"
    RECOVERED = "recovered"
    ERROR = "error"
    RELAY_ESCALATED = "relayEscalated"
    SOURCE_CHANGED = "sourceChanged"


@dataclass
class AdapterEvent:
    """Something the adapter reports to the player controller."""
    type: AdapterEventType
    session_id: int
    levels: list[QualityLevel] = field(default_factory=list)
    is_live: bool = True
    level: Optional[int] = None
    kind: Optional[ErrorKind] = None
    fatal: bool = False
    message: str = ""
    source_index: Optional[int] = None


EngineListener = Callable[[EngineEvent], None]
AdapterListener = Callable[[AdapterEvent], None]


class EngineConfig(BaseModel):
    """Tuning knobs handed to the engine untouched."""
    max_buffer_length: int = 30
    max_max_buffer_length: int = 600
    live_sync_duration_count: int = 3
    enable_worker: bool = True
    low_latency_mode: bool = True
    manifest_loading_timeout: float = 10.0
    user_agent: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            max_buffer_length=settings.engine_max_buffer_length,
            max_max_buffer_length=settings.engine_max_max_buffer_length,
            live_sync_duration_count=settings.engine_live_sync_duration_count,
            enable_worker=settings.engine_enable_worker,
            low_latency_mode=settings.engine_low_latency_mode,
            manifest_loading_timeout=settings.engine_manifest_timeout_seconds,
            user_agent=settings.relay_user_agent,
        )


class PlaybackEngine(Protocol):
    """The adaptive-playback engine the adapter drives."""

    def on(self, listener: EngineListener) -> None: ...

    def attach_media(self, media) -> None: ...

    def load_source(self, url: str) -> None: ...

    def start_load(self) -> None: ...

    def recover_media_error(self) -> None: ...

    def set_current_level(self, index: int) -> None:
        """Pin a level, or ``-1`` for automatic selection."""
        ...

    def destroy(self) -> None: ...


EngineFactory = Callable[[EngineConfig], PlaybackEngine]
