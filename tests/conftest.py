import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from client.manager import ConnectionManager


class DummyTransport:
    """In-memory transport; tests drive the listener events by hand."""

    def __init__(self, url, listener):
        self.url = url
        self.listener = listener
        self.sent_messages = []
        self.is_open = False
        self.closed = False
        self.close_code = None
        self.close_reason = None

    def send(self, data):
        self.sent_messages.append(data)

    def close(self, code=1000, reason=""):
        self.is_open = False
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    # events
    def open(self):
        self.is_open = True
        self.listener.on_open(self)

    def receive(self, frame):
        if not isinstance(frame, (str, bytes)):
            frame = json.dumps(frame)
        self.listener.on_message(self, frame)

    def error(self, detail="boom"):
        self.listener.on_error(self, detail)

    def drop(self, code=1006, reason=""):
        self.is_open = False
        self.listener.on_close(self, code, reason)


class DummyTransportFactory:
    def __init__(self):
        self.transports = []
        self.fail_with = None

    def __call__(self, url, listener):
        if self.fail_with is not None:
            raise self.fail_with
        transport = DummyTransport(url, listener)
        self.transports.append(transport)
        return transport

    @property
    def last(self):
        return self.transports[-1]


class DummyTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class DummyScheduler:
    """Records scheduled callbacks instead of running them."""

    def __init__(self):
        self.timers = []

    def __call__(self, delay, callback):
        timer = DummyTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled]

    @property
    def delays_ms(self):
        return [round(t.delay * 1000) for t in self.timers]

    def fire(self, timer=None):
        timer = timer or self.timers[-1]
        timer.callback()


@pytest.fixture
def factory():
    return DummyTransportFactory()


@pytest.fixture
def scheduler():
    return DummyScheduler()


@pytest.fixture
def events():
    return []


@pytest.fixture
def manager(factory, scheduler, events):
    return ConnectionManager(
        "ws://localhost:8080/ws",
        "alice",
        "general",
        transport_factory=factory,
        scheduler=scheduler,
        observer=lambda level, event, fields: events.append((level, event, fields)),
    )
