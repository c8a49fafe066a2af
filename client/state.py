from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

from shared.protocol import ChatMessage, FrameDecodeError

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

ERR_CONNECTION = "Connection error occurred"
ERR_CONSTRUCTION = "Failed to connect to server"
ERR_EXHAUSTED = "Max reconnection attempts reached. Please restart the client."


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ReconnectPolicy:
    """Bounded exponential backoff: delay = min(base * 2**attempt, ceiling)."""
    max_attempts: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000

    def delay_ms(self, attempt: int) -> int:
        return min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)

    def can_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts


@dataclass(frozen=True)
class Snapshot:
    """What the transition function needs to know about the manager."""
    state: ConnectionState = ConnectionState.DISCONNECTED
    attempts: int = 0
    has_transport: bool = False
    timer_pending: bool = False
    policy: ReconnectPolicy = field(default_factory=ReconnectPolicy)


# ========================================
#           EVENTS
# ========================================

@dataclass(frozen=True)
class ConnectRequested:
    url: str

@dataclass(frozen=True)
class TransportFailed:
    detail: str

@dataclass(frozen=True)
class TransportOpened:
    pass

@dataclass(frozen=True)
class FrameReceived:
    raw: Union[str, bytes]

@dataclass(frozen=True)
class TransportErrored:
    detail: str = ""

@dataclass(frozen=True)
class TransportClosed:
    code: int = ABNORMAL_CLOSURE
    reason: str = ""

@dataclass(frozen=True)
class DisconnectRequested:
    reason: str = "User initiated disconnect"


Event = Union[ConnectRequested, TransportFailed, TransportOpened, FrameReceived,
              TransportErrored, TransportClosed, DisconnectRequested]


# ========================================
#           EFFECTS
# ========================================

@dataclass(frozen=True)
class OpenTransport:
    url: str

@dataclass(frozen=True)
class CloseTransport:
    code: int
    reason: str

@dataclass(frozen=True)
class ReleaseTransport:
    """Forget the current handle without closing it (it is already closed)."""
    pass

@dataclass(frozen=True)
class CancelTimer:
    pass

@dataclass(frozen=True)
class ScheduleReconnect:
    delay_ms: int
    attempt: int

@dataclass(frozen=True)
class SetError:
    message: Optional[str]

@dataclass(frozen=True)
class SetSession:
    user_id: Optional[str]

@dataclass(frozen=True)
class SetAttempts:
    attempts: int

@dataclass(frozen=True)
class AppendMessage:
    message: ChatMessage

@dataclass(frozen=True)
class DropFrame:
    reason: str


Effect = Union[OpenTransport, CloseTransport, ReleaseTransport, CancelTimer, ScheduleReconnect,
               SetError, SetSession, SetAttempts, AppendMessage, DropFrame]


@dataclass(frozen=True)
class Transition:
    state: ConnectionState
    effects: Tuple[Effect, ...] = ()


def transition(snap: Snapshot, event: Event) -> Transition:
    """
    Compute the next state and the side effects for one event.

    Pure: the manager applies the returned effects in order. Events that do
    not apply to the current state yield the current state and no effects.
    """
    state = snap.state

    if isinstance(event, ConnectRequested):
        if snap.has_transport:
            return Transition(state)
        effects: List[Effect] = []
        if snap.timer_pending:
            effects.append(CancelTimer())
        effects += [SetError(None), OpenTransport(event.url)]
        return Transition(ConnectionState.CONNECTING, tuple(effects))

    if isinstance(event, TransportFailed):
        # construction never succeeded, nothing to recover automatically
        return Transition(ConnectionState.DISCONNECTED, (SetError(ERR_CONSTRUCTION), SetSession(None)))

    if isinstance(event, TransportOpened):
        if state is not ConnectionState.CONNECTING:
            return Transition(state)
        return Transition(ConnectionState.CONNECTED, (SetError(None), SetAttempts(0)))

    if isinstance(event, FrameReceived):
        if state is not ConnectionState.CONNECTED:
            return Transition(state, (DropFrame(f"frame received while {state.value}"),))
        try:
            message = ChatMessage.from_json(event.raw)
        except FrameDecodeError as e:
            return Transition(state, (DropFrame(str(e)),))
        if message.is_join_ack:
            return Transition(state, (SetSession(message.user_id), AppendMessage(message)))
        return Transition(state, (AppendMessage(message),))

    if isinstance(event, TransportErrored):
        if not snap.has_transport:
            return Transition(state)
        return Transition(state, (SetError(ERR_CONNECTION),))

    if isinstance(event, TransportClosed):
        if state is ConnectionState.DISCONNECTED:
            return Transition(state)
        effects = [SetSession(None), ReleaseTransport()]
        if event.code == NORMAL_CLOSURE:
            return Transition(ConnectionState.DISCONNECTED, tuple(effects))
        if snap.policy.can_retry(snap.attempts):
            attempt = snap.attempts + 1
            effects += [SetAttempts(attempt), ScheduleReconnect(snap.policy.delay_ms(attempt), attempt)]
        else:
            effects.append(SetError(ERR_EXHAUSTED))
        return Transition(ConnectionState.DISCONNECTED, tuple(effects))

    if isinstance(event, DisconnectRequested):
        effects = []
        if snap.timer_pending:
            effects.append(CancelTimer())
        if snap.has_transport:
            effects.append(CloseTransport(NORMAL_CLOSURE, event.reason))
        effects.append(SetSession(None))
        return Transition(ConnectionState.DISCONNECTED, tuple(effects))

    raise TypeError(f"Unknown event: {event!r}")
