
import asyncio
import base64
import binascii
import json
import logging
from typing import Any, Callable, Awaitable, Dict, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

import config
import events as ev
from observability import FrameDropped, Observer, null_observer
from utils import normalize_event_to_dict

logger = logging.getLogger(__name__)

Emit = Callable[[object], Awaitable[None]]

AUDIO_DELTA_TYPES = ("response.output_audio.delta", "response.audio.delta")
RESPONSE_ENDED_TYPES = ("response.failed", "response.canceled", "response.cancelled")


class RealtimeConnectionError(ConnectionError):
    """The Realtime service could not be reached or refused the session."""


def realtime_url(beta: Optional[bool] = None) -> str:
    beta = config.OPENAI_REALTIME_BETA if beta is None else beta
    params = {"model": config.OPENAI_REALTIME_MODEL}
    if not beta:
        # GA session.update has no temperature field; it rides on the URL
        params.update(temperature=config.TEMPERATURE, voice=config.VOICE)
    return f"{config.OPENAI_REALTIME_URL}?{urlencode(params)}"


def realtime_headers(beta: Optional[bool] = None) -> Dict[str, str]:
    beta = config.OPENAI_REALTIME_BETA if beta is None else beta
    headers = {"Authorization": f"Bearer {config.OPENAI_API_KEY}"}
    if beta:
        headers["OpenAI-Beta"] = "realtime=v1"
    return headers


def build_session_update(beta: Optional[bool] = None) -> Dict[str, Any]:
    """
    session.update configuring modalities, voice, server VAD and the
    companded 8 kHz audio format Twilio streams.
    """
    beta = config.OPENAI_REALTIME_BETA if beta is None else beta
    # responses are requested explicitly so only one is ever in flight
    turn_detection = {"type": "server_vad", "create_response": False, "interrupt_response": False}

    if beta:
        audio_format = config.BETA_AUDIO_FORMATS[config.AI_AUDIO_FORMAT]
        return {
            "type": "session.update",
            "session": {
                "modalities": list(config.MODALITIES),
                "instructions": config.SYSTEM_MESSAGE,
                "voice": config.VOICE,
                "temperature": config.TEMPERATURE,
                "input_audio_format": audio_format,
                "output_audio_format": audio_format,
                "turn_detection": turn_detection,
            },
        }

    audio_format = {"type": config.GA_AUDIO_FORMATS[config.AI_AUDIO_FORMAT]}
    # GA accepts a single output modality; audio carries its own transcript
    output_modalities = ["audio"] if "audio" in config.MODALITIES else list(config.MODALITIES)[:1]
    return {
        "type": "session.update",
        "session": {
            "type": "realtime",
            "model": config.OPENAI_REALTIME_MODEL,
            "output_modalities": output_modalities,
            "instructions": config.SYSTEM_MESSAGE,
            "audio": {
                "input": {"format": audio_format, "turn_detection": turn_detection},
                "output": {"format": audio_format, "voice": config.VOICE},
            },
        },
    }


def decode_realtime_event(raw) -> Optional[object]:
    """Map one Realtime server event to a typed event; None for ignored or malformed frames."""
    data = normalize_event_to_dict(raw)
    if data is None:
        return None
    t = data.get("type")

    if t == "session.updated":
        return ev.SessionUpdated()
    if t == "input_audio_buffer.speech_started":
        return ev.SpeechStarted()
    if t == "input_audio_buffer.committed":
        return ev.SpeechCommitted(data.get("item_id"))
    if t == "response.created":
        return ev.ResponseStarted(_response_field(data, "id"))
    if t in AUDIO_DELTA_TYPES:
        delta = data.get("delta")
        if not isinstance(delta, str):
            return None
        try:
            audio = base64.b64decode(delta, validate=True)
        except (binascii.Error, ValueError):
            return None
        return ev.AudioFragment(data.get("item_id"), audio, data.get("response_id"))
    if t == "response.done":
        return ev.ResponseDone(_response_field(data, "id"), _response_field(data, "status"))
    if t in RESPONSE_ENDED_TYPES:
        return ev.ResponseFailed(_response_field(data, "id") or data.get("response_id"), t.split(".", 1)[1])
    if t == "error":
        error = data.get("error") if isinstance(data.get("error"), dict) else {}
        return ev.ServiceError(error.get("code"), str(error.get("message") or error or ""))
    return None


def _response_field(data: Dict[str, Any], key: str) -> Optional[str]:
    response = data.get("response")
    if isinstance(response, dict):
        return response.get(key)
    return None


class RealtimeChannel:
    """
    Duplex connection to the OpenAI Realtime API for one call.
    """

    def __init__(self, connection, beta: Optional[bool] = None, observer: Observer = null_observer):
        self.connection = connection
        self.beta = config.OPENAI_REALTIME_BETA if beta is None else beta
        self.observer = observer

    @classmethod
    async def connect(cls, observer: Observer = null_observer) -> "RealtimeChannel":
        """
        Establish a websocket connection to OpenAI Realtime with the proper headers.
        Not retried: a failed connect ends the call setup.
        """
        try:
            connection = await websockets.connect(
                realtime_url(),
                additional_headers=realtime_headers(),
            )
        except (OSError, WebSocketException) as e:
            raise RealtimeConnectionError(f"Realtime connection failed: {e}") from e
        logger.info("Connected to OpenAI Realtime API")
        return cls(connection, observer=observer)

    async def initialize_session(self) -> None:
        """Send the initial session.update."""
        if config.SESSION_UPDATE_DELAY_MS > 0:
            await asyncio.sleep(config.SESSION_UPDATE_DELAY_MS / 1000)
        await self._send(build_session_update(self.beta))

    async def run(self, emit: Emit) -> None:
        """Forward decoded service events until the connection closes."""
        reason = "closed"
        try:
            async for raw in self.connection:
                event = decode_realtime_event(raw)
                if event is None:
                    self._note_ignored(raw)
                    continue
                await emit(event)
        except ConnectionClosed as e:
            reason = f"connection closed: {e}"
            logger.info("OpenAI Realtime WebSocket closed: %s", e)
        await emit(ev.TransportClosed("ai", reason))

    def _note_ignored(self, raw) -> None:
        data = normalize_event_to_dict(raw)
        if data is None:
            self.observer(FrameDropped(None, "ai", "malformed frame"))
        elif data.get("type") in config.LOG_EVENT_TYPES:
            logger.debug("OpenAI event: %s", data.get("type"))

    # -- outbound ------------------------------------------------------
    async def append_audio(self, audio: bytes) -> None:
        await self._send({
            "type": "input_audio_buffer.append",
            "audio": base64.b64encode(audio).decode("ascii"),
        })

    async def request_response(self) -> None:
        await self._send({"type": "response.create"})

    async def cancel_response(self, response_id: Optional[str] = None) -> None:
        message: Dict[str, Any] = {"type": "response.cancel"}
        if response_id:
            message["response_id"] = response_id
        await self._send(message)

    async def truncate(self, item_id: str, audio_end_ms: int) -> None:
        await self._send({
            "type": "conversation.item.truncate",
            "item_id": item_id,
            "content_index": 0,
            "audio_end_ms": max(0, int(audio_end_ms)),
        })

    async def send_user_text(self, text: str) -> None:
        """Add a user message to the conversation (used for the opening greeting)."""
        await self._send({
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            },
        })

    async def _send(self, message: Dict[str, Any]) -> None:
        try:
            await self.connection.send(json.dumps(message))
        except ConnectionClosed as e:
            # reader side reports the close and tears the call down
            logger.debug("OpenAI send after close dropped (%s): %s", message.get("type"), e)

    async def close(self) -> None:
        await self.connection.close()
