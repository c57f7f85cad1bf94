
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Set

from playback_tracker import PlaybackTracker


class ResponseState(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    ACTIVE = "active"
    CANCELLING = "cancelling"


@dataclass
class CallState:
    """
    Per-call conversational state. Owned by the turn coordinator and only
    mutated from the call's event loop.
    """
    stream_sid: Optional[str] = None
    latest_media_timestamp: int = 0  # ms (from Twilio media events)
    response_state: ResponseState = ResponseState.IDLE
    session_ready: bool = False
    # id of the assistant item currently streaming to the caller
    active_item_id: Optional[str] = None
    active_response_id: Optional[str] = None
    # capacity-1 slot for a response.create that arrived while a turn was outstanding
    deferred_request: bool = False
    greeting_sent: bool = False
    cancel_epoch: int = 0
    # responses already cancelled; their late events must not touch the current turn
    cancelled_response_ids: Set[str] = field(default_factory=set)
    playback: PlaybackTracker = field(default_factory=PlaybackTracker)

    @property
    def playback_start_timestamp(self) -> Optional[int]:
        return self.playback.start_clock_ms

    @property
    def pending_marks(self):
        return self.playback.pending_marks

    def turn_outstanding(self) -> bool:
        return self.response_state is not ResponseState.IDLE

    def restart_stream(self, stream_sid: str) -> None:
        self.stream_sid = stream_sid
        self.latest_media_timestamp = 0
        self.cancelled_response_ids.clear()
        self.playback.reset()

    def observe_media_clock(self, timestamp_ms: int) -> None:
        # monotone within a stream; Twilio can repeat timestamps
        if timestamp_ms > self.latest_media_timestamp:
            self.latest_media_timestamp = timestamp_ms
