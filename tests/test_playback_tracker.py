from __future__ import annotations

from playback_tracker import PlaybackTracker


def test_marks_are_acknowledged_in_fifo_order():
    tracker = PlaybackTracker()
    tokens = [tracker.next_token() for _ in range(3)]
    for token in tokens:
        tracker.record_sent(token)

    assert tracker.record_acked(tokens[0]) is True
    assert list(tracker.pending_marks) == tokens[1:]
    assert tracker.current_backlog() == 2


def test_ack_implies_earlier_marks_played():
    tracker = PlaybackTracker()
    tokens = [tracker.next_token() for _ in range(4)]
    for token in tokens:
        tracker.record_sent(token)

    tracker.record_acked(tokens[2])

    assert list(tracker.pending_marks) == [tokens[3]]


def test_unknown_ack_is_ignored():
    tracker = PlaybackTracker()
    tracker.record_sent("responsePart-1")

    assert tracker.record_acked("responsePart-99") is False
    assert tracker.record_acked("responsePart-1") is True
    # a repeated ack never drives the backlog negative
    assert tracker.record_acked("responsePart-1") is False
    assert tracker.current_backlog() == 0


def test_tokens_are_unique():
    tracker = PlaybackTracker()
    assert len({tracker.next_token() for _ in range(50)}) == 50


def test_elapsed_is_clamped_to_zero():
    tracker = PlaybackTracker()
    assert tracker.elapsed_ms(500) == 0

    tracker.latch(1000, "item_1")
    assert tracker.elapsed_ms(900) == 0
    assert tracker.elapsed_ms(1450) == 450


def test_still_playing_uses_audio_sent_not_acks():
    tracker = PlaybackTracker(bytes_per_ms=8)
    tracker.latch(1000, "item_1")
    tracker.record_audio(1600)  # 200ms

    assert tracker.sent_ms() == 200
    assert tracker.still_playing(1150) is True
    assert tracker.still_playing(1200) is False


def test_still_playing_requires_an_item():
    tracker = PlaybackTracker()
    tracker.latch(1000)
    tracker.record_audio(8000)

    assert tracker.still_playing(1001) is False


def test_reset_drops_backlog_and_clock():
    tracker = PlaybackTracker()
    tracker.latch(10, "item_1")
    for _ in range(5):
        tracker.record_sent(tracker.next_token())

    assert tracker.reset() == 5
    assert tracker.current_backlog() == 0
    assert tracker.start_clock_ms is None
    assert tracker.item_id is None
    assert tracker.sent_ms() == 0
