"""
Observations emitted by the turn coordinator, and the logging collaborator
that renders them.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateTransition:
    session_id: Optional[str]
    previous: str
    current: str
    reason: str


@dataclass(frozen=True)
class RequestDeferred:
    session_id: Optional[str]
    reason: str


@dataclass(frozen=True)
class BargeIn:
    session_id: Optional[str]
    item_id: Optional[str]
    elapsed_ms: int
    backlog: int
    cancelled: bool


@dataclass(frozen=True)
class ServiceFailure:
    session_id: Optional[str]
    kind: str
    detail: str


@dataclass(frozen=True)
class ProtocolViolation:
    session_id: Optional[str]
    detail: str


@dataclass(frozen=True)
class FrameDropped:
    session_id: Optional[str]
    source: str
    reason: str


@dataclass(frozen=True)
class CancelTimedOut:
    session_id: Optional[str]


Observation = Union[
    StateTransition,
    RequestDeferred,
    BargeIn,
    ServiceFailure,
    ProtocolViolation,
    FrameDropped,
    CancelTimedOut,
]

Observer = Callable[[Observation], None]


def null_observer(observation: Observation) -> None:
    return None


class LoggingObserver:
    """Render coordinator observations as log records."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def __call__(self, observation: Observation) -> None:
        if isinstance(observation, StateTransition):
            self.log.info(
                "[%s] %s -> %s (%s)",
                observation.session_id, observation.previous, observation.current, observation.reason,
            )
        elif isinstance(observation, RequestDeferred):
            self.log.info("[%s] response.create deferred (%s)", observation.session_id, observation.reason)
        elif isinstance(observation, BargeIn):
            self.log.info(
                "[%s] barge-in item=%s elapsed=%sms backlog=%s cancelled=%s",
                observation.session_id,
                observation.item_id,
                observation.elapsed_ms,
                observation.backlog,
                observation.cancelled,
            )
        elif isinstance(observation, ServiceFailure):
            self.log.warning("[%s] %s: %s", observation.session_id, observation.kind, observation.detail)
        elif isinstance(observation, ProtocolViolation):
            self.log.error("[%s] protocol violation, forcing idle: %s", observation.session_id, observation.detail)
        elif isinstance(observation, CancelTimedOut):
            self.log.warning("[%s] cancel not acknowledged in time, forcing idle", observation.session_id)
        elif isinstance(observation, FrameDropped):
            self.log.debug("[%s] dropped %s frame: %s", observation.session_id, observation.source, observation.reason)
