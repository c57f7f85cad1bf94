"""
Timeline of assistant audio delivered toward the caller.
"""
from collections import deque
from typing import Deque, Optional

from config import AUDIO_BYTES_PER_MS, MARK_PREFIX


class PlaybackTracker:
    """
    Tracks marks sent after each outbound audio chunk and the media-clock
    instant the current assistant item started playing.

    Control decisions use the media clock; the mark backlog is diagnostic
    only, since Twilio acks lag real playback.
    """

    def __init__(self, bytes_per_ms: int = AUDIO_BYTES_PER_MS):
        self.bytes_per_ms = bytes_per_ms
        self.pending_marks: Deque[str] = deque()
        self.start_clock_ms: Optional[int] = None
        self.item_id: Optional[str] = None
        self.sent_bytes = 0
        self._seq = 0

    # -- marks ---------------------------------------------------------
    def next_token(self) -> str:
        self._seq += 1
        return f"{MARK_PREFIX}-{self._seq}"

    def record_sent(self, token: str) -> None:
        self.pending_marks.append(token)

    def record_acked(self, token: str) -> bool:
        """
        Dequeue an acknowledged mark. Marks queued ahead of it have played
        too and are dropped with it. Unknown tokens are ignored.
        """
        if token not in self.pending_marks:
            return False
        while self.pending_marks:
            if self.pending_marks.popleft() == token:
                break
        return True

    def current_backlog(self) -> int:
        return len(self.pending_marks)

    # -- playback clock ------------------------------------------------
    def latch(self, clock_ms: int, item_id: Optional[str] = None) -> None:
        """Start timing a new item at the given media clock."""
        self.start_clock_ms = clock_ms
        self.item_id = item_id
        self.sent_bytes = 0

    def record_audio(self, nbytes: int) -> None:
        self.sent_bytes += nbytes

    def sent_ms(self) -> int:
        return self.sent_bytes // self.bytes_per_ms if self.bytes_per_ms else 0

    def elapsed_ms(self, clock_ms: int) -> int:
        if self.start_clock_ms is None:
            return 0
        return max(0, clock_ms - self.start_clock_ms)

    def still_playing(self, clock_ms: int) -> bool:
        """True while the caller has not yet heard everything sent for the item."""
        if self.item_id is None or self.start_clock_ms is None:
            return False
        return self.elapsed_ms(clock_ms) < self.sent_ms()

    def reset(self) -> int:
        """Drop all pending marks and the playback clock; returns the dropped backlog."""
        dropped = len(self.pending_marks)
        self.pending_marks.clear()
        self.start_clock_ms = None
        self.item_id = None
        self.sent_bytes = 0
        return dropped
