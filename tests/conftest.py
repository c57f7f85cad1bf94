"""Shared test fixtures and fakes."""
from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

# Must be set before importing modules that read configuration.
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ["SESSION_UPDATE_DELAY_MS"] = "0"
os.environ["GREETING_PROMPT"] = ""

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import pytest

import events as ev
from turn_coordinator import TurnCoordinator


class RecordingAI:
    """Records every instruction sent toward the Realtime service."""

    def __init__(self) -> None:
        self.sent: list[tuple] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.initialized = False
        self.closed = False

    def kinds(self) -> list[str]:
        return [entry[0] for entry in self.sent if entry[0] != "append"]

    async def append_audio(self, audio: bytes) -> None:
        self.sent.append(("append", audio))

    async def request_response(self) -> None:
        self.sent.append(("response.create",))

    async def cancel_response(self, response_id=None) -> None:
        self.sent.append(("response.cancel", response_id))

    async def truncate(self, item_id: str, audio_end_ms: int) -> None:
        self.sent.append(("truncate", item_id, audio_end_ms))

    async def send_user_text(self, text: str) -> None:
        self.sent.append(("user_text", text))

    async def initialize_session(self) -> None:
        self.initialized = True

    async def run(self, emit) -> None:
        while True:
            event = await self.inbox.get()
            if event is None:
                break
            await emit(event)
        await emit(ev.TransportClosed("ai", "closed"))

    async def close(self) -> None:
        self.closed = True


class RecordingTelephony:
    """Records every instruction sent toward Twilio."""

    def __init__(self) -> None:
        self.sent: list[tuple] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def kinds(self) -> list[str]:
        return [entry[0] for entry in self.sent]

    async def send_audio(self, stream_sid, audio: bytes) -> None:
        self.sent.append(("media", stream_sid, audio))

    async def send_clear(self, stream_sid) -> None:
        self.sent.append(("clear", stream_sid))

    async def send_mark(self, stream_sid, token: str) -> None:
        self.sent.append(("mark", stream_sid, token))

    async def run(self, emit) -> None:
        while True:
            event = await self.inbox.get()
            if event is None:
                break
            await emit(event)
        await emit(ev.TransportClosed("telephony", "closed"))

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def ai() -> RecordingAI:
    return RecordingAI()


@pytest.fixture
def telephony() -> RecordingTelephony:
    return RecordingTelephony()


@pytest.fixture
def observations() -> list:
    return []


@pytest.fixture
def armed_timers() -> list:
    return []


@pytest.fixture
def coordinator(ai, telephony, observations, armed_timers) -> TurnCoordinator:
    return TurnCoordinator(
        ai,
        telephony,
        observer=observations.append,
        arm_cancel_timer=armed_timers.append,
        greeting_prompt="",
    )


@pytest.fixture
def ulaw_chunk() -> bytes:
    """20ms of mu-law silence at 8kHz."""
    return b"\xff" * 160
