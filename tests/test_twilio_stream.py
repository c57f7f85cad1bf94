from __future__ import annotations

import base64
import json

import pytest
from starlette.websockets import WebSocketState

import events as ev
from call_state import ResponseState
from observability import FrameDropped
from twilio_stream import TwilioChannel, decode_twilio_frame


def frame(**data) -> str:
    return json.dumps(data)


def media_frame(timestamp: int, audio: bytes = b"\xff" * 160, track: str = "inbound") -> str:
    return frame(
        event="media",
        streamSid="MZ1",
        media={"track": track, "timestamp": str(timestamp), "payload": base64.b64encode(audio).decode()},
    )


class FakeWebSocket:
    def __init__(self, frames=()) -> None:
        self.frames = list(frames)
        self.sent: list[dict] = []
        self.client_state = WebSocketState.CONNECTED
        self.closed = False

    async def iter_text(self):
        for item in self.frames:
            yield item

    async def send_json(self, message: dict) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self.client_state = WebSocketState.DISCONNECTED


def test_decode_start():
    event = decode_twilio_frame(frame(
        event="start",
        start={"streamSid": "MZ1", "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000}},
    ))
    assert event == ev.StreamStarted("MZ1", {"encoding": "audio/x-mulaw", "sampleRate": 8000})


def test_decode_media():
    event = decode_twilio_frame(media_frame(1240, b"\x00\x01"))
    assert event == ev.MediaReceived(1240, b"\x00\x01")


def test_decode_mark_and_stop():
    assert decode_twilio_frame(frame(event="mark", mark={"name": "responsePart-3"})) == ev.MarkAcked("responsePart-3")
    assert decode_twilio_frame(frame(event="stop", stop={})) == ev.StreamStopped()


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2, 3]",
        frame(event="start", start={}),
        frame(event="media", media={"timestamp": "abc", "payload": "////"}),
        frame(event="media", media={"timestamp": "10", "payload": "***"}),
        frame(event="mark", mark={}),
        frame(event="connected", protocol="Call"),
        media_frame(10, track="outbound"),
    ],
)
def test_malformed_or_irrelevant_frames_decode_to_none(raw):
    assert decode_twilio_frame(raw) is None


@pytest.mark.asyncio
async def test_outbound_messages_use_twilio_shapes():
    ws = FakeWebSocket()
    channel = TwilioChannel(ws)

    await channel.send_audio("MZ1", b"\xff\xfe")
    await channel.send_mark("MZ1", "responsePart-1")
    await channel.send_clear("MZ1")

    assert ws.sent == [
        {"event": "media", "streamSid": "MZ1", "media": {"payload": base64.b64encode(b"\xff\xfe").decode()}},
        {"event": "mark", "streamSid": "MZ1", "mark": {"name": "responsePart-1"}},
        {"event": "clear", "streamSid": "MZ1"},
    ]


@pytest.mark.asyncio
async def test_sends_are_skipped_without_stream_or_connection():
    ws = FakeWebSocket()
    channel = TwilioChannel(ws)

    await channel.send_clear(None)
    ws.client_state = WebSocketState.DISCONNECTED
    await channel.send_audio("MZ1", b"\xff")

    assert ws.sent == []


@pytest.mark.asyncio
async def test_run_drops_malformed_frame_and_stops_on_stop():
    dropped = []
    ws = FakeWebSocket([
        frame(event="start", start={"streamSid": "MZ1"}),
        "{broken",
        media_frame(20),
        frame(event="stop"),
        media_frame(40),
    ])
    channel = TwilioChannel(ws, observer=dropped.append)
    emitted = []

    async def emit(event):
        emitted.append(event)

    await channel.run(emit)

    assert [type(e) for e in emitted] == [ev.StreamStarted, ev.MediaReceived, ev.StreamStopped]
    assert len(dropped) == 1 and isinstance(dropped[0], FrameDropped)


@pytest.mark.asyncio
async def test_run_reports_transport_close():
    channel = TwilioChannel(FakeWebSocket([frame(event="start", start={"streamSid": "MZ1"})]))
    emitted = []

    async def emit(event):
        emitted.append(event)

    await channel.run(emit)

    assert emitted[-1] == ev.TransportClosed("telephony", "closed")


@pytest.mark.asyncio
async def test_malformed_frame_mid_call_leaves_session_untouched(coordinator, ai, telephony):
    ws = FakeWebSocket([
        frame(event="start", start={"streamSid": "MZ1"}),
        media_frame(100),
    ])
    emitted = []

    async def emit(event):
        emitted.append(event)

    await TwilioChannel(ws).run(emit)
    for event in emitted[:-1]:
        await coordinator.handle(event)
    await coordinator.handle(ev.SessionUpdated())
    await coordinator.handle(ev.SpeechCommitted("a"))

    snapshot = (coordinator.response_state, coordinator.state.latest_media_timestamp, len(ai.sent), len(telephony.sent))

    ws = FakeWebSocket(['{"event": "media", "media": {"timestamp": 9999}'])
    emitted = []
    await TwilioChannel(ws).run(emit)

    assert emitted == [ev.TransportClosed("telephony", "closed")]
    assert snapshot == (ResponseState.REQUESTED, 100, len(ai.sent), len(telephony.sent))


@pytest.mark.asyncio
async def test_close_is_idempotent():
    ws = FakeWebSocket()
    channel = TwilioChannel(ws)

    await channel.close()
    await channel.close()

    assert ws.closed is True
