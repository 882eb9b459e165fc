"""
Error taxonomy shared by the relay and the playback pipeline.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Names of the failure classes reported to the player."""
    MISSING_TARGET = "MissingTarget"
    INVALID_TARGET = "InvalidTarget"
    UPSTREAM_UNREACHABLE = "UpstreamUnreachable"
    UPSTREAM_REJECTED = "UpstreamRejected"
    DECODE_OR_MEDIA = "DecodeOrMediaError"
    SOURCE_EXHAUSTED = "SourceExhausted"
    PLAYBACK = "PlaybackError"


class RelayError(Exception):
    """Base class for failures surfaced by the relay."""
    kind = ErrorKind.PLAYBACK
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class MissingTarget(RelayError):
    """The client supplied no target URL."""
    kind = ErrorKind.MISSING_TARGET
    status_code = 400


class InvalidTarget(RelayError):
    """The target URL is not an absolute http(s) URL."""
    kind = ErrorKind.INVALID_TARGET
    status_code = 400


class UpstreamError(RelayError):
    """The upstream could not deliver the requested resource."""


class UpstreamUnreachable(UpstreamError):
    """Timeout, DNS or connection failure talking to the upstream."""
    kind = ErrorKind.UPSTREAM_UNREACHABLE
    status_code = 500


class UpstreamRejected(UpstreamError):
    """The upstream answered with a non-2xx status."""
    kind = ErrorKind.UPSTREAM_REJECTED

    def __init__(self, status: int, status_text: str = ""):
        super().__init__(f"Upstream error: {status} {status_text}".rstrip())
        self.status = status
        self.status_text = status_text
        self.status_code = status


class PlaybackError(Exception):
    """Base class for failures raised by the playback pipeline."""
    kind = ErrorKind.PLAYBACK

    def __init__(self, message: str = "", source_index: Optional[int] = None):
        super().__init__(message or self.kind.value)
        self.source_index = source_index


class DecodeOrMediaError(PlaybackError):
    """Local engine fault that in-place recovery could not fix."""
    kind = ErrorKind.DECODE_OR_MEDIA


class SourceExhausted(PlaybackError):
    """Every candidate stream URL of a channel has failed."""
    kind = ErrorKind.SOURCE_EXHAUSTED
