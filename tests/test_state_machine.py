import json

from client.state import (
    ERR_CONNECTION,
    ERR_CONSTRUCTION,
    ERR_EXHAUSTED,
    AppendMessage,
    CancelTimer,
    CloseTransport,
    ConnectionState,
    ConnectRequested,
    DisconnectRequested,
    DropFrame,
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

URL = "ws://localhost:8080/ws?username=alice&channel=general"
CONNECTED = Snapshot(state=ConnectionState.CONNECTED, has_transport=True)


def test_connect_from_disconnected():
    result = transition(Snapshot(), ConnectRequested(URL))
    assert result.state is ConnectionState.CONNECTING
    assert result.effects == (SetError(None), OpenTransport(URL))


def test_connect_cancels_pending_timer_first():
    result = transition(Snapshot(timer_pending=True), ConnectRequested(URL))
    assert result.effects[0] == CancelTimer()
    assert OpenTransport(URL) in result.effects


def test_connect_with_live_handle_is_noop():
    for state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
        result = transition(Snapshot(state=state, has_transport=True), ConnectRequested(URL))
        assert result.state is state
        assert result.effects == ()


def test_open_resets_attempts():
    snap = Snapshot(state=ConnectionState.CONNECTING, attempts=3, has_transport=True)
    result = transition(snap, TransportOpened())
    assert result.state is ConnectionState.CONNECTED
    assert result.effects == (SetError(None), SetAttempts(0))


def test_join_ack_sets_session_then_appends():
    frame = json.dumps({"type": "user_connected", "user_id": "u-123", "content": "welcome"})
    result = transition(CONNECTED, FrameReceived(frame))
    assert result.state is ConnectionState.CONNECTED
    assert result.effects[0] == SetSession("u-123")
    assert isinstance(result.effects[1], AppendMessage)
    assert result.effects[1].message.content == "welcome"


def test_malformed_frame_is_dropped():
    result = transition(CONNECTED, FrameReceived("{oops"))
    assert result.state is ConnectionState.CONNECTED
    assert len(result.effects) == 1
    assert isinstance(result.effects[0], DropFrame)


def test_frame_outside_connected_is_dropped():
    snap = Snapshot(state=ConnectionState.CONNECTING, has_transport=True)
    result = transition(snap, FrameReceived('{"type": "system", "content": "x"}'))
    assert all(isinstance(e, DropFrame) for e in result.effects)


def test_error_event_keeps_state():
    result = transition(CONNECTED, TransportErrored("reset"))
    assert result.state is ConnectionState.CONNECTED
    assert result.effects == (SetError(ERR_CONNECTION),)


def test_normal_close_schedules_nothing():
    result = transition(CONNECTED, TransportClosed(1000, "bye"))
    assert result.state is ConnectionState.DISCONNECTED
    assert result.effects == (SetSession(None), ReleaseTransport())


def test_abnormal_close_schedules_backoff():
    result = transition(CONNECTED, TransportClosed(1006))
    assert result.state is ConnectionState.DISCONNECTED
    assert result.effects == (
        SetSession(None),
        ReleaseTransport(),
        SetAttempts(1),
        ScheduleReconnect(delay_ms=2000, attempt=1),
    )


def test_close_at_ceiling_is_terminal():
    snap = Snapshot(state=ConnectionState.CONNECTING, attempts=5, has_transport=True)
    result = transition(snap, TransportClosed(1006))
    assert result.state is ConnectionState.DISCONNECTED
    assert SetError(ERR_EXHAUSTED) in result.effects
    assert not any(isinstance(e, ScheduleReconnect) for e in result.effects)


def test_close_when_already_disconnected_is_ignored():
    result = transition(Snapshot(), TransportClosed(1006))
    assert result.effects == ()


def test_delay_sequence():
    policy = ReconnectPolicy()
    attempts, delays = 0, []
    snap = CONNECTED
    while True:
        result = transition(snap, TransportClosed(1006))
        scheduled = [e for e in result.effects if isinstance(e, ScheduleReconnect)]
        if not scheduled:
            break
        delays.append(scheduled[0].delay_ms)
        attempts = scheduled[0].attempt
        snap = Snapshot(state=ConnectionState.CONNECTING, attempts=attempts, has_transport=True, policy=policy)
    assert delays == [2000, 4000, 8000, 10000, 10000]
    assert attempts == policy.max_attempts


def test_disconnect_releases_handle_and_timer():
    snap = Snapshot(state=ConnectionState.CONNECTED, has_transport=True, timer_pending=True)
    result = transition(snap, DisconnectRequested())
    assert result.state is ConnectionState.DISCONNECTED
    assert result.effects == (
        CancelTimer(),
        CloseTransport(1000, "User initiated disconnect"),
        SetSession(None),
    )


def test_disconnect_when_idle_only_clears_session():
    result = transition(Snapshot(), DisconnectRequested())
    assert result.state is ConnectionState.DISCONNECTED
    assert result.effects == (SetSession(None),)


def test_construction_failure_is_not_retried():
    result = transition(Snapshot(state=ConnectionState.CONNECTING), TransportFailed("bad uri"))
    assert result.state is ConnectionState.DISCONNECTED
    assert SetError(ERR_CONSTRUCTION) in result.effects
    assert not any(isinstance(e, ScheduleReconnect) for e in result.effects)
