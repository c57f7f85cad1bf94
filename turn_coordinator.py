"""
Turn-taking coordinator: decides who may speak when.

At most one response is in flight toward the Realtime service. A caller turn
that ends while a response is outstanding fills a single deferred slot and is
issued the moment the coordinator returns to idle. Caller speech during an
outstanding response is a barge-in: the assistant item is truncated at what the
caller actually heard, generation is cancelled and Twilio's playback buffer is
cleared.

All events for one call must be applied sequentially through `handle`.
"""
from typing import Callable, Optional

import events as ev
from call_state import CallState, ResponseState
from config import GREETING_PROMPT
from observability import (
    BargeIn,
    CancelTimedOut,
    FrameDropped,
    Observer,
    ProtocolViolation,
    RequestDeferred,
    ServiceFailure,
    StateTransition,
    null_observer,
)

# error codes with dedicated handling
BENIGN_ERROR_CODES = {"input_audio_buffer_commit_empty"}
ACTIVE_RESPONSE_ERROR = "conversation_already_has_active_response"


class TurnCoordinator:
    """Per-call response state machine driving both channel adapters."""

    def __init__(
        self,
        ai,
        telephony,
        state: Optional[CallState] = None,
        observer: Observer = null_observer,
        arm_cancel_timer: Optional[Callable[[int], None]] = None,
        greeting_prompt: Optional[str] = None,
    ):
        self.ai = ai
        self.telephony = telephony
        self.state = state or CallState()
        self.observer = observer
        self.arm_cancel_timer = arm_cancel_timer
        self.greeting_prompt = GREETING_PROMPT if greeting_prompt is None else greeting_prompt
        self._handlers = {
            ev.StreamStarted: self._on_stream_started,
            ev.MediaReceived: self._on_media,
            ev.MarkAcked: self._on_mark,
            ev.SessionUpdated: self._on_session_updated,
            ev.SpeechStarted: self._on_speech_started,
            ev.SpeechCommitted: self._on_speech_committed,
            ev.ResponseStarted: self._on_response_started,
            ev.AudioFragment: self._on_audio_fragment,
            ev.ResponseDone: self._on_response_finished,
            ev.ResponseFailed: self._on_response_finished,
            ev.ServiceError: self._on_service_error,
            ev.CancelDeadline: self._on_cancel_deadline,
        }

    @property
    def response_state(self) -> ResponseState:
        return self.state.response_state

    async def handle(self, event) -> None:
        handler = self._handlers.get(type(event))
        if handler is not None:
            await handler(event)

    # =============================
    # Telephony events
    # =============================
    async def _on_stream_started(self, event: ev.StreamStarted):
        self.state.restart_stream(event.session_id)

    async def _on_media(self, event: ev.MediaReceived):
        self.state.observe_media_clock(event.timestamp_ms)
        await self.ai.append_audio(event.audio)

    async def _on_mark(self, event: ev.MarkAcked):
        self.state.playback.record_acked(event.token)

    # =============================
    # Realtime service events
    # =============================
    async def _on_session_updated(self, event: ev.SessionUpdated):
        st = self.state
        st.session_ready = True
        if self.greeting_prompt and not st.greeting_sent and not st.turn_outstanding():
            st.greeting_sent = True
            await self.ai.send_user_text(self.greeting_prompt)
            await self._request_response("greeting")
            return
        await self._promote_deferred()

    async def _on_speech_committed(self, event: ev.SpeechCommitted):
        st = self.state
        if not st.session_ready:
            self._defer("session not ready")
        elif st.turn_outstanding():
            self._defer(f"turn {st.response_state.value}")
        else:
            await self._request_response("speech committed")

    async def _on_response_started(self, event: ev.ResponseStarted):
        st = self.state
        if self._was_cancelled(event.response_id):
            self._dropped("ai", f"start of cancelled response {event.response_id}")
        elif st.response_state is ResponseState.REQUESTED:
            st.active_response_id = event.response_id
            self._enter_active("response.created")
        elif st.response_state is ResponseState.CANCELLING:
            self._adopt_cancelled(event.response_id)

    async def _on_audio_fragment(self, event: ev.AudioFragment):
        st = self.state
        if self._was_cancelled(event.response_id):
            self._dropped("ai", f"audio of cancelled response {event.response_id}")
            return
        if st.response_state is ResponseState.CANCELLING:
            self._adopt_cancelled(event.response_id)
        elif st.response_state is ResponseState.REQUESTED:
            st.active_response_id = st.active_response_id or event.response_id
            self._enter_active("first audio fragment")

        if st.response_state is not ResponseState.ACTIVE:
            self._dropped("ai", f"audio while {st.response_state.value}")
            return
        if event.response_id and st.active_response_id and event.response_id != st.active_response_id:
            self._dropped("ai", f"stale audio for response {event.response_id}")
            return
        if st.stream_sid is None:
            self._dropped("ai", "audio before stream start")
            return

        if event.item_id and event.item_id != st.active_item_id:
            st.active_item_id = event.item_id
            st.playback.latch(st.latest_media_timestamp, event.item_id)

        await self.telephony.send_audio(st.stream_sid, event.audio)
        st.playback.record_audio(len(event.audio))
        token = st.playback.next_token()
        st.playback.record_sent(token)
        await self.telephony.send_mark(st.stream_sid, token)

    async def _on_response_finished(self, event):
        st = self.state
        if st.response_state is ResponseState.IDLE:
            return
        if self._was_cancelled(event.response_id):
            self._dropped("ai", f"late completion of cancelled response {event.response_id}")
            return
        if event.response_id and st.active_response_id and event.response_id != st.active_response_id:
            self._dropped("ai", f"completion for other response {event.response_id}")
            return

        if st.response_state is ResponseState.CANCELLING:
            await self._return_to_idle("cancel acknowledged")
            return

        failed = isinstance(event, ev.ResponseFailed) or event.status in ("failed", "cancelled", "incomplete")
        if failed:
            self.observer(ServiceFailure(st.stream_sid, "response_failed", event.status or "failed"))
            await self._return_to_idle(f"response {event.status or 'failed'}")
        else:
            await self._return_to_idle("response.done")

    async def _on_service_error(self, event: ev.ServiceError):
        st = self.state
        if event.code in BENIGN_ERROR_CODES:
            return
        if event.code == ACTIVE_RESPONSE_ERROR:
            self.observer(ProtocolViolation(st.stream_sid, event.message or event.code))
            st.active_item_id = None
            st.active_response_id = None
            st.playback.reset()
            self._transition(ResponseState.IDLE, "protocol violation")
            # promotion empties the slot, so a repeated rejection ends in Idle
            await self._promote_deferred()
            return

        self.observer(ServiceFailure(st.stream_sid, event.code or "error", event.message))
        # failure ends the turn; in Cancelling this is also the cancel ack race
        if st.turn_outstanding():
            await self._return_to_idle(f"error {event.code}")

    async def _on_speech_started(self, event: ev.SpeechStarted):
        st = self.state
        if st.response_state in (ResponseState.REQUESTED, ResponseState.ACTIVE):
            await self._barge_in()
        elif st.response_state is ResponseState.IDLE and st.playback.still_playing(st.latest_media_timestamp):
            await self._interrupt_playback_tail()

    async def _on_cancel_deadline(self, event: ev.CancelDeadline):
        st = self.state
        if st.response_state is ResponseState.CANCELLING and event.epoch == st.cancel_epoch:
            self.observer(CancelTimedOut(st.stream_sid))
            await self._return_to_idle("cancel timeout")

    # =============================
    # Transitions
    # =============================
    def _transition(self, new_state: ResponseState, reason: str) -> None:
        previous = self.state.response_state
        self.state.response_state = new_state
        self.observer(StateTransition(self.state.stream_sid, previous.value, new_state.value, reason))

    def _defer(self, reason: str) -> None:
        self.state.deferred_request = True
        self.observer(RequestDeferred(self.state.stream_sid, reason))

    def _dropped(self, source: str, reason: str) -> None:
        self.observer(FrameDropped(self.state.stream_sid, source, reason))

    def _was_cancelled(self, response_id: Optional[str]) -> bool:
        st = self.state
        return bool(response_id) and response_id != st.active_response_id and response_id in st.cancelled_response_ids

    def _adopt_cancelled(self, response_id: Optional[str]) -> None:
        # cancel was sent before the service named the response
        st = self.state
        if response_id and st.active_response_id is None:
            st.active_response_id = response_id
            st.cancelled_response_ids.add(response_id)

    def _enter_active(self, reason: str) -> None:
        st = self.state
        self._transition(ResponseState.ACTIVE, reason)
        # caller-perceived time starts now, not at request time
        st.playback.latch(st.latest_media_timestamp)
        st.active_item_id = None

    async def _request_response(self, reason: str) -> None:
        st = self.state
        st.deferred_request = False
        st.active_response_id = None
        self._transition(ResponseState.REQUESTED, reason)
        await self.ai.request_response()

    async def _promote_deferred(self) -> None:
        st = self.state
        if st.deferred_request and st.session_ready and not st.turn_outstanding():
            await self._request_response("deferred request")

    async def _return_to_idle(self, reason: str) -> None:
        st = self.state
        st.active_item_id = None
        st.active_response_id = None
        self._transition(ResponseState.IDLE, reason)
        await self._promote_deferred()

    async def _barge_in(self) -> None:
        st = self.state
        elapsed = st.playback.elapsed_ms(st.latest_media_timestamp)
        item_id = st.active_item_id
        if item_id is None and st.playback.still_playing(st.latest_media_timestamp):
            # the previous turn's item is still audible
            item_id = st.playback.item_id

        self._transition(ResponseState.CANCELLING, "caller speech")
        st.cancel_epoch += 1
        if st.active_response_id:
            st.cancelled_response_ids.add(st.active_response_id)

        if item_id:
            await self.ai.truncate(item_id, elapsed)
        await self.ai.cancel_response(st.active_response_id)
        await self.telephony.send_clear(st.stream_sid)

        backlog = st.playback.reset()
        st.active_item_id = None
        self.observer(BargeIn(st.stream_sid, item_id, elapsed, backlog, cancelled=True))

        if self.arm_cancel_timer is not None:
            self.arm_cancel_timer(st.cancel_epoch)

    async def _interrupt_playback_tail(self) -> None:
        """Caller spoke over audio of a turn that already finished generating."""
        st = self.state
        item_id = st.playback.item_id
        elapsed = st.playback.elapsed_ms(st.latest_media_timestamp)
        await self.ai.truncate(item_id, elapsed)
        await self.telephony.send_clear(st.stream_sid)
        backlog = st.playback.reset()
        self.observer(BargeIn(st.stream_sid, item_id, elapsed, backlog, cancelled=False))
