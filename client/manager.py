from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from shared.log import get_logger, log_chat_event
from shared.protocol import ChatMessage, ContentRejected, encode_chat, prepare_content
from shared.utils import build_endpoint
from .state import (
    ERR_EXHAUSTED,
    AppendMessage,
    CancelTimer,
    CloseTransport,
    ConnectionState,
    ConnectRequested,
    DisconnectRequested,
    DropFrame,
    Effect,
    Event,
    FrameReceived,
    OpenTransport,
    ReconnectPolicy,
    ReleaseTransport,
    ScheduleReconnect,
    SetAttempts,
    SetError,
    SetSession,
    Snapshot,
    TransportClosed,
    TransportErrored,
    TransportFailed,
    TransportOpened,
    transition,
)
from .timers import ReconnectTimer, Scheduler, loop_scheduler
from .ws_client import Frame, Transport, TransportFactory, WebSocketTransport

logger = get_logger(__name__)

# observer(level, event, fields)
Observer = Callable[[str, str, Dict[str, Any]], None]
Handler = Callable[[Any], None]

_NOTIFICATIONS = ("state", "message", "error")


@dataclass(frozen=True)
class ConnectionParams:
    url: str
    username: str
    channel: str

    @property
    def endpoint(self) -> str:
        return build_endpoint(self.url, self.username, self.channel)


class _Binding:
    """Routes events of one transport to the manager while it is current."""

    def __init__(self, manager: ConnectionManager) -> None:
        self.manager = manager

    def on_open(self, transport: Transport) -> None:
        self.manager._on_transport_event(self, TransportOpened())

    def on_message(self, transport: Transport, data: Frame) -> None:
        self.manager._on_transport_event(self, FrameReceived(data))

    def on_error(self, transport: Transport, detail: str) -> None:
        self.manager._on_transport_event(self, TransportErrored(detail))

    def on_close(self, transport: Transport, code: int, reason: str) -> None:
        self.manager._on_transport_event(self, TransportClosed(code, reason))


class ConnectionManager:
    """
    Auto-reconnecting chat connection.

    Owns at most one transport and at most one pending reconnect timer.
    Every event goes through `transition()`; this class only applies the
    returned effects and exposes the result:

        state, session_id, messages, error  (read)
        connect(), disconnect(), send_message(content) -> bool, dispose()

    Nothing here raises to the caller for transport or protocol failures;
    they surface through `state` and `error`.
    """

    def __init__(
        self,
        url: str,
        username: str,
        channel: str,
        *,
        policy: Optional[ReconnectPolicy] = None,
        transport_factory: Optional[TransportFactory] = None,
        scheduler: Optional[Scheduler] = None,
        observer: Optional[Observer] = None,
    ) -> None:
        self.params = ConnectionParams(url=url, username=username, channel=channel)
        self.policy = policy or ReconnectPolicy()
        self._transport_factory: TransportFactory = transport_factory or WebSocketTransport
        self._scheduler: Scheduler = scheduler or loop_scheduler
        self._observer: Observer = observer or self._log_event

        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._session_id: Optional[str] = None
        self._error: Optional[str] = None
        self._messages: List[ChatMessage] = []

        self._transport: Optional[Transport] = None
        self._binding: Optional[_Binding] = None
        self._timer: Optional[ReconnectTimer] = None
        self._disposed = False
        self._dispatching = False
        self._events: Deque[Event] = deque()
        self._notifications: Deque[Tuple[str, Any]] = deque()
        self.handlers: Dict[str, List[Handler]] = {name: [] for name in _NOTIFICATIONS}

    # ========================================
    #           CONSUMER SURFACE
    # ========================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def reconnect_pending(self) -> bool:
        return self._timer is not None and self._timer.pending

    @property
    def exhausted(self) -> bool:
        """True once automatic reconnection gave up; only connect() recovers."""
        return self._error == ERR_EXHAUSTED and self._state is ConnectionState.DISCONNECTED

    @property
    def disposed(self) -> bool:
        return self._disposed

    def on(self, name: str, handler: Handler) -> None:
        """Register for "state", "message" or "error" notifications"""
        if name not in self.handlers:
            raise ValueError(f"Unknown notification: {name}")
        self.handlers[name].append(handler)

    def connect(self) -> None:
        if self._disposed:
            self._observe("debug", "connect_ignored", reason="disposed")
            return
        if self._transport is not None:
            self._observe("debug", "already_connected", state=self._state.value)
            return
        url = self.params.endpoint
        self._observe("info", "connecting", url=url, attempt=self._attempts or None)
        self._dispatch(ConnectRequested(url))

    def disconnect(self) -> None:
        if self._disposed:
            return
        self._observe("info", "disconnect_requested", state=self._state.value)
        self._dispatch(DisconnectRequested())

    def send_message(self, content: str) -> bool:
        transport = self._transport
        if self._state is not ConnectionState.CONNECTED or transport is None or not transport.is_open:
            self._observe("debug", "send_rejected", reason="not connected", state=self._state.value)
            return False
        try:
            text = prepare_content(content)
        except ContentRejected as e:
            self._observe("debug", "send_rejected", reason=str(e))
            return False

        frame = encode_chat(text)
        try:
            transport.send(frame)
        except Exception as e:
            self._observe("error", "send_failed", reason=str(e), msg_type="message")
            return False
        self._observe("debug", "sent", msg_type="message", length=len(text))
        return True

    def dispose(self) -> None:
        """Release the timer and the transport; later events and calls are ignored"""
        if self._disposed:
            return
        self._observe("debug", "disposing", state=self._state.value)
        self._dispatch(DisconnectRequested(reason="Client disposed"))
        self._disposed = True
        for handlers in self.handlers.values():
            handlers.clear()

    # ========================================
    #           EVENT HANDLING
    # ========================================

    def _snapshot(self) -> Snapshot:
        return Snapshot(
            state=self._state,
            attempts=self._attempts,
            has_transport=self._transport is not None,
            timer_pending=self.reconnect_pending,
            policy=self.policy,
        )

    def _on_transport_event(self, binding: _Binding, event: Event) -> None:
        if binding is not self._binding or self._disposed:
            self._observe("debug", "stale_event_ignored", kind=type(event).__name__)
            return
        if isinstance(event, TransportOpened):
            self._observe("info", "connected")
        elif isinstance(event, TransportErrored):
            self._observe("warning", "transport_error", detail=event.detail)
        elif isinstance(event, TransportClosed):
            self._observe("info", "closed", code=event.code, reason=event.reason)
        self._dispatch(event)

    def _dispatch(self, event: Event) -> None:
        """
        Run an event through the state machine and apply its effects.

        Events raised while effects are being applied are queued and handled
        in order after the current ones. Listeners are only called once every
        queued effect has been applied, so they always see settled state and
        may call back into the manager.
        """
        self._events.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._events:
                result = transition(self._snapshot(), self._events.popleft())
                self._set_state(result.state)
                for effect in result.effects:
                    self._apply(effect)
        finally:
            self._events.clear()
            self._dispatching = False
        self._flush_notifications()

    def _apply(self, effect: Effect) -> None:
        if isinstance(effect, OpenTransport):
            self._open_transport(effect.url)
        elif isinstance(effect, CloseTransport):
            transport = self._release_transport()
            if transport is not None:
                try:
                    transport.close(effect.code, effect.reason)
                except Exception as e:
                    self._observe("error", "close_failed", reason=str(e))
        elif isinstance(effect, ReleaseTransport):
            self._release_transport()
        elif isinstance(effect, CancelTimer):
            self._cancel_timer()
        elif isinstance(effect, ScheduleReconnect):
            self._cancel_timer()
            self._timer = ReconnectTimer(self._scheduler, effect.delay_ms / 1000, self._on_reconnect_due)
            self._observe("info", "reconnect_scheduled", attempt=effect.attempt,
                          max_attempts=self.policy.max_attempts, delay_ms=effect.delay_ms)
        elif isinstance(effect, SetError):
            if effect.message != self._error:
                self._error = effect.message
                if effect.message == ERR_EXHAUSTED:
                    self._observe("error", "reconnect_exhausted", attempt=self._attempts)
                self._notify("error", effect.message)
        elif isinstance(effect, SetSession):
            if effect.user_id != self._session_id:
                if effect.user_id:
                    self._observe("info", "session_assigned", user_id=effect.user_id)
                else:
                    self._observe("debug", "session_cleared")
                self._session_id = effect.user_id
        elif isinstance(effect, SetAttempts):
            self._attempts = effect.attempts
        elif isinstance(effect, AppendMessage):
            self._messages.append(effect.message)
            self._observe("debug", "message", msg_type=effect.message.wire_type or effect.message.kind.value)
            self._notify("message", effect.message)
        elif isinstance(effect, DropFrame):
            self._observe("warning", "frame_dropped", reason=effect.reason)
        else:
            raise TypeError(f"Unknown effect: {effect!r}")

    def _open_transport(self, url: str) -> None:
        binding = _Binding(self)
        self._binding = binding
        try:
            transport = self._transport_factory(url, binding)
        except Exception as e:
            self._binding = None
            self._observe("error", "transport_failed", url=url, reason=str(e))
            self._dispatch(TransportFailed(str(e)))
            return
        # events reported synchronously by the factory are still queued here
        self._transport = transport

    def _release_transport(self) -> Optional[Transport]:
        transport = self._transport
        self._transport = None
        self._binding = None
        return transport

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            if self._timer.pending:
                self._observe("debug", "reconnect_cancelled")
            self._timer.cancel()
            self._timer = None

    def _on_reconnect_due(self) -> None:
        self._timer = None
        self._observe("info", "reconnect_attempt", attempt=self._attempts, max_attempts=self.policy.max_attempts)
        self.connect()

    # ========================================
    #           NOTIFICATIONS & OBSERVABILITY
    # ========================================

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        self._observe("debug", "state", previous=previous.value, current=state.value)
        self._notify("state", state)

    def _notify(self, name: str, value: Any) -> None:
        self._notifications.append((name, value))

    def _flush_notifications(self) -> None:
        while self._notifications:
            name, value = self._notifications.popleft()
            for handler in list(self.handlers[name]):
                try:
                    handler(value)
                except Exception as e:
                    logger.error(f"{name} handler failed: {e}")

    def _observe(self, level: str, event: str, **fields: Any) -> None:
        try:
            self._observer(level, event, fields)
        except Exception as e:
            logger.error(f"Observer failed on {event}: {e}")

    def _log_event(self, level: str, event: str, fields: Dict[str, Any]) -> None:
        log_chat_event(logger, level, event, username=self.params.username,
                       channel=self.params.channel, **fields)
