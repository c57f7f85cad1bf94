"""
WebSocket handler bridging one Twilio media stream to one OpenAI Realtime session.
"""
import asyncio
import logging
from typing import List, Optional

from fastapi import WebSocket

import events as ev
from config import CANCEL_TIMEOUT_SECONDS
from observability import LoggingObserver, Observer
from openai_client import RealtimeChannel, RealtimeConnectionError
from turn_coordinator import TurnCoordinator
from twilio_stream import TwilioChannel
from utils import safe_task

logger = logging.getLogger(__name__)


class CallBridge:
    """
    Per-call actor. Both readers push into one queue; events are applied to
    the coordinator strictly one at a time. Ends when either side closes or
    Twilio sends stop, and leaves no task running behind it.
    """

    def __init__(
        self,
        telephony,
        ai,
        observer: Optional[Observer] = None,
        cancel_timeout: float = CANCEL_TIMEOUT_SECONDS,
    ):
        self.telephony = telephony
        self.ai = ai
        self.cancel_timeout = cancel_timeout
        self.queue: asyncio.Queue = asyncio.Queue()
        self.coordinator = TurnCoordinator(
            ai,
            telephony,
            observer=observer or LoggingObserver(),
            arm_cancel_timer=self._arm_cancel_timer,
        )
        self._cancel_timer: Optional[asyncio.Task] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def state(self):
        return self.coordinator.state

    async def emit(self, event) -> None:
        await self.queue.put(event)

    async def run(self) -> None:
        self._tasks = [
            asyncio.create_task(self._read("telephony", self.telephony), name="twilio->bridge"),
            asyncio.create_task(self._read("ai", self.ai), name="openai->bridge"),
        ]
        try:
            await self.ai.initialize_session()
            while True:
                event = await self.queue.get()
                if isinstance(event, ev.TransportClosed):
                    logger.info("[%s] %s side closed (%s)", self.state.stream_sid, event.side, event.reason)
                    break
                if isinstance(event, ev.StreamStopped):
                    logger.info("[%s] Twilio stream stopped", self.state.stream_sid)
                    break
                await self.coordinator.handle(event)
        except Exception:
            logger.exception("[%s] call bridge failed", self.state.stream_sid)
        finally:
            await self._teardown()

    async def _read(self, side: str, channel) -> None:
        await safe_task(channel.run(self.emit), f"{side} reader")
        # a crashed reader still has to end the call
        await self.emit(ev.TransportClosed(side, "reader stopped"))

    def _arm_cancel_timer(self, epoch: int) -> None:
        if self._cancel_timer is not None:
            self._cancel_timer.cancel()
        self._cancel_timer = asyncio.create_task(self._cancel_deadline(epoch), name="cancel-deadline")

    async def _cancel_deadline(self, epoch: int) -> None:
        await asyncio.sleep(self.cancel_timeout)
        await self.emit(ev.CancelDeadline(epoch))

    async def _teardown(self) -> None:
        pending = [t for t in self._tasks if not t.done()]
        if self._cancel_timer is not None and not self._cancel_timer.done():
            pending.append(self._cancel_timer)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for side, channel in (("ai", self.ai), ("telephony", self.telephony)):
            try:
                await channel.close()
            except Exception:
                logger.exception("closing %s channel failed", side)


class WebSocketHandler:
    """Handles WebSocket connections for realtime voice communication."""

    @staticmethod
    async def handle_media_stream(websocket: WebSocket, connect=None):
        """Main WebSocket handler for media stream from Twilio."""
        connect = connect or RealtimeChannel.connect
        await websocket.accept()
        observer = LoggingObserver()
        telephony = TwilioChannel(websocket, observer)
        try:
            ai = await connect(observer=observer)
        except RealtimeConnectionError as e:
            logger.error("OpenAI bridge failed: %s", e)
            await telephony.close()
            return

        await CallBridge(telephony, ai, observer).run()
