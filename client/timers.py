from __future__ import annotations
import asyncio
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


class ReconnectTimer:
    """
    The single pending reconnect the manager may own.

    Wraps whatever the scheduler returns so that cancellation and firing are
    both observable: `pending` is False once the callback ran or cancel()
    was called, and a cancelled timer never runs its callback.
    """

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self._callback = callback
        self._fired = False
        self._cancelled = False
        self._handle: Optional[TimerHandle] = scheduler(delay, self._fire)

    @property
    def pending(self) -> bool:
        return not (self._fired or self._cancelled)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _fire(self) -> None:
        if not self.pending:
            return
        self._fired = True
        self._handle = None
        self._callback()

    def cancel(self) -> None:
        if not self.pending:
            return
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


def loop_scheduler(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    """Default scheduler: a call_later on the running event loop"""
    return asyncio.get_running_loop().call_later(delay, callback)
