
import base64
import binascii
import logging
from typing import Optional, Callable, Awaitable

from fastapi.websockets import WebSocketDisconnect
from starlette.websockets import WebSocket, WebSocketState

import events as ev
from config import TELEPHONY_AUDIO_ENCODING
from observability import FrameDropped, Observer, null_observer
from utils import normalize_event_to_dict, as_int

logger = logging.getLogger(__name__)

Emit = Callable[[object], Awaitable[None]]


def decode_twilio_frame(raw) -> Optional[object]:
    """
    Turn one Twilio Media Streams frame into a typed event.
    Returns None for anything malformed or not relevant to the call.
    """
    data = normalize_event_to_dict(raw)
    if data is None:
        return None
    event = data.get("event")

    if event == "start":
        start = data.get("start")
        if not isinstance(start, dict):
            return None
        sid = start.get("streamSid") or data.get("streamSid")
        if not isinstance(sid, str) or not sid:
            return None
        media_format = start.get("mediaFormat")
        return ev.StreamStarted(sid, media_format if isinstance(media_format, dict) else {})

    if event == "media":
        media = data.get("media")
        if not isinstance(media, dict):
            return None
        track = media.get("track")
        if track and track != "inbound":
            return None
        timestamp = as_int(media.get("timestamp"))
        payload = media.get("payload")
        if timestamp is None or not isinstance(payload, str):
            return None
        try:
            audio = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            return None
        return ev.MediaReceived(timestamp, audio)

    if event == "mark":
        mark = data.get("mark")
        name = mark.get("name") if isinstance(mark, dict) else None
        if not isinstance(name, str) or not name:
            return None
        return ev.MarkAcked(name)

    if event == "stop":
        return ev.StreamStopped()

    return None


class TwilioChannel:
    """
    Twilio side of a call: reads Media Streams frames into events and
    executes the coordinator's outbound instructions verbatim.
    """

    def __init__(self, websocket: WebSocket, observer: Observer = null_observer):
        self.websocket = websocket
        self.observer = observer

    async def run(self, emit: Emit) -> None:
        """Forward decoded frames until the stream stops or the socket closes."""
        reason = "disconnected"
        try:
            async for message in self.websocket.iter_text():
                event = decode_twilio_frame(message)
                if event is None:
                    self.observer(FrameDropped(None, "telephony", "malformed frame"))
                    continue
                if isinstance(event, ev.StreamStarted):
                    self._check_media_format(event)
                await emit(event)
                if isinstance(event, ev.StreamStopped):
                    return
            reason = "closed"
        except WebSocketDisconnect:
            logger.info("Twilio WebSocket disconnected")
        await emit(ev.TransportClosed("telephony", reason))

    def _check_media_format(self, event: ev.StreamStarted) -> None:
        encoding = event.media_format.get("encoding")
        if encoding and encoding != TELEPHONY_AUDIO_ENCODING:
            logger.warning(
                "[%s] stream encoding %s differs from configured %s",
                event.session_id, encoding, TELEPHONY_AUDIO_ENCODING,
            )

    # -- outbound ------------------------------------------------------
    async def send_audio(self, stream_sid: Optional[str], audio: bytes) -> None:
        await self._send(stream_sid, {
            "event": "media",
            "streamSid": stream_sid,
            "media": {"payload": base64.b64encode(audio).decode("ascii")},
        })

    async def send_clear(self, stream_sid: Optional[str]) -> None:
        await self._send(stream_sid, {"event": "clear", "streamSid": stream_sid})

    async def send_mark(self, stream_sid: Optional[str], token: str) -> None:
        await self._send(stream_sid, {
            "event": "mark",
            "streamSid": stream_sid,
            "mark": {"name": token},
        })

    async def _send(self, stream_sid: Optional[str], message: dict) -> None:
        if not stream_sid or self.websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            await self.websocket.send_json(message)
        except (RuntimeError, WebSocketDisconnect) as e:
            # socket closed mid-send; the reader reports the close
            logger.debug("Twilio send after close dropped: %s", e)

    async def close(self) -> None:
        if self.websocket.client_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close()
        except RuntimeError as e:
            logger.debug("Twilio close ignored: %s", e)
