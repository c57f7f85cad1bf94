"""
Typed events funneled into a call's single ordered queue.

Both adapters decode their wire frames into these dataclasses; the per-call
actor applies them to the turn coordinator one at a time.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict, Any


# =============================
# Telephony -> coordinator
# =============================
@dataclass(frozen=True)
class StreamStarted:
    session_id: str
    media_format: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MediaReceived:
    timestamp_ms: int
    audio: bytes


@dataclass(frozen=True)
class MarkAcked:
    token: str


@dataclass(frozen=True)
class StreamStopped:
    pass


# =============================
# AI service -> coordinator
# =============================
@dataclass(frozen=True)
class SessionUpdated:
    pass


@dataclass(frozen=True)
class SpeechStarted:
    pass


@dataclass(frozen=True)
class SpeechCommitted:
    item_id: Optional[str] = None


@dataclass(frozen=True)
class ResponseStarted:
    response_id: Optional[str] = None


@dataclass(frozen=True)
class AudioFragment:
    item_id: Optional[str]
    audio: bytes
    response_id: Optional[str] = None


@dataclass(frozen=True)
class ResponseDone:
    response_id: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class ResponseFailed:
    response_id: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class ServiceError:
    code: Optional[str] = None
    message: str = ""


# =============================
# Session-internal
# =============================
@dataclass(frozen=True)
class CancelDeadline:
    """Bounded wait for a cancel acknowledgment elapsed."""
    epoch: int


@dataclass(frozen=True)
class TransportClosed:
    side: str  # "telephony" | "ai"
    reason: str = ""
